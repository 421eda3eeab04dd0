"""
Schemas Module - Pydantic data models for the application.
==========================================================

Defines the data contracts shared by the evaluator and its collaborators:
- Datasets, QA pairs and knowledge bases (collaborator-owned records)
- Retrieval responses
- Evaluation tasks and results (task-store records and API payloads)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from kbeval.shared.config import AggregationPolicy
from kbeval.shared.utils import generate_id, utcnow

# Document identifiers are opaque: compared by equality, never ordered
DocumentId = Union[int, str]


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class EvaluationTaskStatus(str, Enum):
    """Evaluation task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ─────────────────────────────────────────────────────────────────────────────
# Dataset & Knowledge Base Models
# ─────────────────────────────────────────────────────────────────────────────


class QAPair(BaseModel):
    """
    A question with its annotated relevant documents.

    ``passage_ids`` is the primary relevance group; ``extra_judgments``
    holds further groups from other annotation sources. The effective
    relevant set of the question is the union of all groups.
    """

    id: str = Field(default_factory=generate_id, description="QA pair identifier")
    question: str = Field(..., description="Question text sent to retrieval")
    answer: str = Field(default="", description="Reference answer")
    passage_ids: list[DocumentId] = Field(
        default_factory=list, description="Relevant document ids"
    )
    passages: list[str] = Field(default_factory=list, description="Relevant passage texts")
    extra_judgments: list[list[DocumentId]] = Field(
        default_factory=list, description="Additional relevance groups"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    def ground_truth(self) -> list[list[DocumentId]]:
        """All non-empty relevance groups for this question."""
        groups = [list(self.passage_ids)] + [list(g) for g in self.extra_judgments]
        return [g for g in groups if g]


class Dataset(BaseModel):
    """An evaluation dataset: a named collection of QA pairs."""

    id: str = Field(default_factory=generate_id)
    name: str = Field(default="")
    description: str = Field(default="")
    qa_pairs: list[QAPair] = Field(default_factory=list)

    @property
    def record_count(self) -> int:
        return len(self.qa_pairs)


class KnowledgeBase(BaseModel):
    """A knowledge base retrieval runs against."""

    id: str = Field(default_factory=generate_id)
    name: str = Field(default="")
    description: str = Field(default="")


# ─────────────────────────────────────────────────────────────────────────────
# Retrieval Models
# ─────────────────────────────────────────────────────────────────────────────


class RetrievalResponse(BaseModel):
    """Ordered document ids returned for one question, plus call latency."""

    retrieved_ids: list[DocumentId] = Field(default_factory=list)
    latency_ms: float = Field(default=0.0, ge=0.0)


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation Models
# ─────────────────────────────────────────────────────────────────────────────


class EvaluationResult(BaseModel):
    """
    Task-level evaluation outcome.

    ``total_correct + total_wrong`` always equals ``num_queries``.
    """

    precision: float = Field(default=0.0, ge=0.0, le=1.0)
    recall: float = Field(default=0.0, ge=0.0, le=1.0)
    f1_score: float = Field(default=0.0, ge=0.0, le=1.0)
    avg_response_time_ms: float = Field(default=0.0, ge=0.0)
    total_correct: int = Field(default=0, ge=0)
    total_wrong: int = Field(default=0, ge=0)

    mrr: float = Field(default=0.0, ge=0.0, le=1.0)
    ndcg: float = Field(default=0.0, ge=0.0, le=1.0)
    num_queries: int = Field(default=0, ge=0)
    aggregation: AggregationPolicy = AggregationPolicy.MACRO

    @model_validator(mode="after")
    def validate_counts(self) -> "EvaluationResult":
        """Correct and wrong judgments must cover every evaluated query."""
        judged = self.total_correct + self.total_wrong
        if self.num_queries == 0:
            self.num_queries = judged
        elif judged != self.num_queries:
            raise ValueError(
                f"total_correct + total_wrong = {judged}, expected {self.num_queries}"
            )
        return self

    def summary(self) -> str:
        """Generate a summary string."""
        lines = [
            "=== Evaluation Result ===",
            f"  Precision: {self.precision:.3f}",
            f"  Recall: {self.recall:.3f}",
            f"  F1: {self.f1_score:.3f}",
            f"  MRR: {self.mrr:.3f}",
            f"  NDCG: {self.ndcg:.3f}",
            f"  Avg Response Time: {self.avg_response_time_ms:.1f} ms",
            f"  Correct / Wrong: {self.total_correct} / {self.total_wrong}",
            f"  Queries: {self.num_queries} ({self.aggregation.value})",
        ]
        return "\n".join(lines)


class CreateEvaluationRequest(BaseModel):
    """Payload accepted when creating an evaluation task."""

    dataset_id: str = Field(..., min_length=1)
    knowledge_base_id: str = Field(..., min_length=1)
    chat_model_id: Optional[str] = None
    rerank_model_id: Optional[str] = None


class EvaluationTask(BaseModel):
    """
    A single evaluation run record, as held by the task store.

    Mutated only by the orchestrator through the lifecycle rules; the
    ``result`` is attached exactly when the status becomes ``completed``.
    """

    id: str = Field(default_factory=generate_id)
    dataset_id: str
    knowledge_base_id: str
    chat_model_id: Optional[str] = None
    rerank_model_id: Optional[str] = None

    status: EvaluationTaskStatus = EvaluationTaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    total_questions: int = Field(default=0, ge=0)
    completed_count: int = Field(default=0, ge=0)

    result: Optional[EvaluationResult] = None
    error_msg: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("dataset_id", "knowledge_base_id")
    @classmethod
    def validate_reference(cls, v: str) -> str:
        if not v:
            raise ValueError("reference id must not be empty")
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in (EvaluationTaskStatus.COMPLETED, EvaluationTaskStatus.FAILED)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON payload returned to callers."""
        return self.model_dump(mode="json", exclude_none=True)
