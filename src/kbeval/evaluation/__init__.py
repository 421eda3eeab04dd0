"""
Evaluation Module - Retrieval scoring and evaluation task orchestration.
========================================================================

Components:
- metrics: Precision, Recall, F1, MRR and NDCG@k for one query
- aggregator: Fold per-query scores into a task-level result
- lifecycle: Task state machine
- orchestrator: Create, run, track and cancel evaluation tasks
- executors: Schedulers for evaluation pipelines
- datasets: Dataset and recorded-run file loading

Example:
    >>> from kbeval.evaluation import EvaluationOrchestrator
    >>> orchestrator = EvaluationOrchestrator(store, datasets, kbs, retriever)
    >>> task = orchestrator.create_evaluation("ds-1", "kb-1")
    >>> result = orchestrator.run_evaluation(task.id).result().result
    >>> print(f"MRR: {result.mrr:.3f}")
"""

from kbeval.evaluation.metrics import (
    METRIC_NAMES,
    F1Metric,
    Metric,
    MetricInput,
    MRRMetric,
    NDCGMetric,
    PrecisionMetric,
    RecallMetric,
    compute_all,
    default_metrics,
    get_metric,
)
from kbeval.evaluation.aggregator import QueryOutcome, aggregate, judge_correct
from kbeval.evaluation.executors import InlineExecutor, create_executor
from kbeval.evaluation.datasets import load_dataset, load_run
from kbeval.evaluation.orchestrator import EvaluationOrchestrator

__all__ = [
    # Metrics
    "METRIC_NAMES",
    "Metric",
    "MetricInput",
    "PrecisionMetric",
    "RecallMetric",
    "F1Metric",
    "MRRMetric",
    "NDCGMetric",
    "compute_all",
    "default_metrics",
    "get_metric",
    # Aggregation
    "QueryOutcome",
    "aggregate",
    "judge_correct",
    # Execution
    "InlineExecutor",
    "create_executor",
    "EvaluationOrchestrator",
    # Datasets
    "load_dataset",
    "load_run",
]
