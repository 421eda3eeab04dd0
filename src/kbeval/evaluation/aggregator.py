"""
Aggregator Module - Fold per-query scores into a task-level result.
===================================================================

Two aggregation policies are supported; one run uses exactly one of them
for every metric, and the policy is recorded on the result:

- macro: precision, recall, f1, mrr and ndcg are means of per-query scores
- micro: precision and recall are computed once over the pooled retrieval
  outcome of all queries and f1 is derived from them; mrr and ndcg stay
  per-query means, since rank metrics have no pooled form
"""

from dataclasses import dataclass, field
from typing import Sequence

from kbeval.evaluation.metrics import MetricInput, f1_from
from kbeval.shared.config import AggregationPolicy
from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import EvaluationResult

logger = get_logger(__name__)


@dataclass
class QueryOutcome:
    """Scored result of one question in an evaluation run."""

    qa_pair_id: str
    question: str
    metric_input: MetricInput
    scores: dict[str, float] = field(default_factory=dict)
    latency_ms: float = 0.0
    correct: bool = False


def judge_correct(scores: dict[str, float], metric: str = "mrr", threshold: float = 0.0) -> bool:
    """A query is correct when the chosen metric strictly exceeds the threshold."""
    return scores.get(metric, 0.0) > threshold


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _pooled_precision_recall(outcomes: Sequence[QueryOutcome]) -> tuple[float, float]:
    retrieved_total = 0
    retrieved_hits = 0
    relevant_total = 0
    distinct_hits = 0

    for outcome in outcomes:
        relevant = outcome.metric_input.relevant_set()
        retrieved = outcome.metric_input.retrieved_ids

        retrieved_total += len(retrieved)
        retrieved_hits += sum(1 for doc_id in retrieved if doc_id in relevant)
        relevant_total += len(relevant)
        distinct_hits += len(relevant.intersection(retrieved))

    precision = retrieved_hits / retrieved_total if retrieved_total else 0.0
    recall = distinct_hits / relevant_total if relevant_total else 0.0
    return precision, recall


def aggregate(
    outcomes: Sequence[QueryOutcome],
    policy: AggregationPolicy = AggregationPolicy.MACRO,
) -> EvaluationResult:
    """
    Aggregate per-query outcomes into an EvaluationResult.

    Args:
        outcomes: Scored queries of one run
        policy: Aggregation policy applied to every metric

    Returns:
        EvaluationResult (all zeros for an empty run)
    """
    policy = AggregationPolicy(policy)
    n = len(outcomes)

    if n == 0:
        return EvaluationResult(aggregation=policy)

    def per_query(name: str) -> list[float]:
        return [o.scores.get(name, 0.0) for o in outcomes]

    if policy == AggregationPolicy.MICRO:
        precision, recall = _pooled_precision_recall(outcomes)
        f1 = f1_from(precision, recall)
    else:
        precision = _mean(per_query("precision"))
        recall = _mean(per_query("recall"))
        f1 = _mean(per_query("f1"))

    total_correct = sum(1 for o in outcomes if o.correct)

    result = EvaluationResult(
        precision=precision,
        recall=recall,
        f1_score=f1,
        avg_response_time_ms=_mean([o.latency_ms for o in outcomes]),
        total_correct=total_correct,
        total_wrong=n - total_correct,
        mrr=_mean(per_query("mrr")),
        ndcg=_mean(per_query("ndcg")),
        num_queries=n,
        aggregation=policy,
    )

    logger.info(
        f"Aggregated {n} queries ({policy.value}): "
        f"P={result.precision:.3f} R={result.recall:.3f} F1={result.f1_score:.3f}"
    )
    return result
