"""
Metrics Module - Retrieval quality metrics.
===========================================

Scores a single query's retrieval result against annotated ground truth:

- Precision: relevant entries / retrieved entries
- Recall: distinct relevant documents found / relevant documents
- F1: harmonic mean of precision and recall
- MRR: reciprocal rank of the first relevant result
- NDCG@k: binary-relevance normalized discounted cumulative gain

Every metric is a pure function of its ``MetricInput``: all working sets
are built per call, so one instance can be shared across threads.

Precision counts duplicate retrieved ids individually while Recall and
MRR work on distinct ids. Callers rely on these numbers, so the
asymmetry is kept.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from kbeval.shared.errors import ValidationError
from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import DocumentId

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Metric Input
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MetricInput:
    """
    Scoring input for one query.

    Attributes:
        ground_truth: Relevance groups, one per annotation source
        retrieved_ids: Retrieved ids in rank order (index 0 = best)
    """

    ground_truth: Sequence[Sequence[DocumentId]] = field(default_factory=tuple)
    retrieved_ids: Sequence[DocumentId] = field(default_factory=tuple)

    def relevant_set(self) -> set[DocumentId]:
        """Union of all relevance groups."""
        return {doc_id for group in self.ground_truth for doc_id in group}


# ─────────────────────────────────────────────────────────────────────────────
# Metric Interface
# ─────────────────────────────────────────────────────────────────────────────


class Metric(ABC):
    """
    Abstract base class for retrieval metrics.

    Implementations must provide:
    - compute(): score in [0, 1] for one MetricInput
    - name: stable lowercase identifier used in reports
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Metric identifier."""
        pass

    @abstractmethod
    def compute(self, metric_input: MetricInput) -> float:
        """
        Score a single query.

        Args:
            metric_input: Ground truth and retrieved ids for the query

        Returns:
            Score in [0, 1]; never NaN
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


# ─────────────────────────────────────────────────────────────────────────────
# Metric Implementations
# ─────────────────────────────────────────────────────────────────────────────


class PrecisionMetric(Metric):
    """Precision = retrieved entries that are relevant / retrieved entries."""

    @property
    def name(self) -> str:
        return "precision"

    def compute(self, metric_input: MetricInput) -> float:
        retrieved = metric_input.retrieved_ids
        if not retrieved:
            return 0.0

        relevant = metric_input.relevant_set()
        # Each retrieved entry counts, duplicates included
        hits = sum(1 for doc_id in retrieved if doc_id in relevant)
        return hits / len(retrieved)


class RecallMetric(Metric):
    """Recall = distinct relevant ids retrieved / size of the relevant set."""

    @property
    def name(self) -> str:
        return "recall"

    def compute(self, metric_input: MetricInput) -> float:
        relevant = metric_input.relevant_set()
        if not relevant:
            return 0.0

        hit_set = relevant.intersection(metric_input.retrieved_ids)
        return len(hit_set) / len(relevant)


class F1Metric(Metric):
    """F1 = 2PR / (P + R), 0.0 when P + R is zero."""

    def __init__(self):
        self._precision = PrecisionMetric()
        self._recall = RecallMetric()

    @property
    def name(self) -> str:
        return "f1"

    def compute(self, metric_input: MetricInput) -> float:
        precision = self._precision.compute(metric_input)
        recall = self._recall.compute(metric_input)
        return f1_from(precision, recall)


class MRRMetric(Metric):
    """Reciprocal rank (1-based) of the first relevant retrieved id."""

    @property
    def name(self) -> str:
        return "mrr"

    def compute(self, metric_input: MetricInput) -> float:
        relevant = metric_input.relevant_set()
        if not relevant:
            return 0.0

        for rank, doc_id in enumerate(metric_input.retrieved_ids):
            if doc_id in relevant:
                return 1.0 / (rank + 1)
        return 0.0


class NDCGMetric(Metric):
    """
    NDCG@k with binary relevance.

    DCG sums ``rel / log2(rank + 2)`` over the first ``min(k, len(retrieved))``
    positions (0-based rank). IDCG places all relevant documents first,
    over ``min(k, |relevant|)`` positions. ``k <= 0`` means "use the full
    retrieved length" and is resolved per call.
    """

    def __init__(self, k: int = 10):
        self.k = k

    @property
    def name(self) -> str:
        return "ndcg"

    def compute(self, metric_input: MetricInput) -> float:
        k = self.k if self.k > 0 else len(metric_input.retrieved_ids)
        relevant = metric_input.relevant_set()

        idcg = _ideal_dcg(len(relevant), k)
        if idcg == 0:
            return 0.0

        dcg = _dcg(metric_input.retrieved_ids, relevant, k)
        # Repeated relevant ids can push DCG past the ideal
        return min(1.0, dcg / idcg)

    def __repr__(self) -> str:
        return f"NDCGMetric(k={self.k})"


def _discount(rank: int) -> float:
    return 1.0 / math.log2(rank + 2)


def _dcg(retrieved_ids: Sequence[DocumentId], relevant: set[DocumentId], k: int) -> float:
    cutoff = min(k, len(retrieved_ids))
    return sum(
        _discount(rank)
        for rank in range(cutoff)
        if retrieved_ids[rank] in relevant
    )


def _ideal_dcg(num_relevant: int, k: int) -> float:
    return sum(_discount(rank) for rank in range(min(k, num_relevant)))


def f1_from(precision: float, recall: float) -> float:
    """Harmonic mean of precision and recall, 0.0 when both are zero."""
    if precision + recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


# ─────────────────────────────────────────────────────────────────────────────
# Metric Registry
# ─────────────────────────────────────────────────────────────────────────────


METRIC_NAMES: tuple[str, ...] = ("precision", "recall", "f1", "mrr", "ndcg")


def get_metric(name: str, ndcg_k: int = 10) -> Metric:
    """
    Build a metric by its identifier.

    Raises:
        ValidationError: If the name is not one of METRIC_NAMES
    """
    key = name.lower()
    if key == "precision":
        return PrecisionMetric()
    if key == "recall":
        return RecallMetric()
    if key == "f1":
        return F1Metric()
    if key == "mrr":
        return MRRMetric()
    if key == "ndcg":
        return NDCGMetric(k=ndcg_k)
    raise ValidationError(f"Unknown metric: {name}")


def default_metrics(ndcg_k: int = 10) -> list[Metric]:
    """The fixed set of five metrics, in reporting order."""
    return [get_metric(name, ndcg_k) for name in METRIC_NAMES]


def compute_all(
    metric_input: MetricInput,
    metrics: Optional[Iterable[Metric]] = None,
) -> dict[str, float]:
    """
    Score one query with every metric.

    Args:
        metric_input: Ground truth and retrieved ids for the query
        metrics: Metrics to run (default: the five built-in metrics)

    Returns:
        Mapping of metric name to score
    """
    if metrics is None:
        metrics = default_metrics()

    scores = {metric.name: metric.compute(metric_input) for metric in metrics}
    logger.debug(f"Scored query: {scores}")
    return scores
