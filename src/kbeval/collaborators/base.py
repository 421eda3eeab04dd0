"""
Collaborator Interfaces - What the evaluator needs from the outside.
====================================================================

The evaluation core owns no storage and performs no retrieval itself.
It talks to four collaborators through these protocols:

- DatasetLookup: datasets and their QA pairs
- KnowledgeBaseLookup: knowledge base existence
- RetrievalCollaborator: the search/generation step under evaluation
- TaskStore: persistence of evaluation task records

Lookups raise NotFoundError for unknown ids. TaskStore writes that take
an ``expected_status`` are compare-and-set operations on a single task
row and return False (without writing) when the row is not in that
state; this is the serialization primitive the orchestrator relies on.
"""

import threading
from typing import Any, Optional, Protocol, runtime_checkable

from kbeval.shared.schemas import (
    Dataset,
    EvaluationResult,
    EvaluationTask,
    EvaluationTaskStatus,
    KnowledgeBase,
    RetrievalResponse,
)


@runtime_checkable
class DatasetLookup(Protocol):
    def get_by_id(self, dataset_id: str) -> Dataset: ...


@runtime_checkable
class KnowledgeBaseLookup(Protocol):
    def get_by_id(self, knowledge_base_id: str) -> KnowledgeBase: ...


@runtime_checkable
class RetrievalCollaborator(Protocol):
    def retrieve(
        self,
        knowledge_base_id: str,
        question: str,
        *,
        rerank_model_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResponse:
        """
        Run retrieval for one question.

        Implementations doing slow I/O should abandon the call once
        ``cancel_event`` is set.
        """
        ...


@runtime_checkable
class TaskStore(Protocol):
    def create(self, task: EvaluationTask) -> EvaluationTask: ...

    def get_by_id(self, task_id: str) -> EvaluationTask: ...

    def update_progress(
        self,
        task_id: str,
        progress: int,
        status: EvaluationTaskStatus,
        *,
        expected_status: Optional[EvaluationTaskStatus] = None,
        error_msg: Optional[str] = None,
        completed_count: Optional[int] = None,
    ) -> bool: ...

    def update_result(
        self,
        task_id: str,
        result: EvaluationResult,
        *,
        expected_status: EvaluationTaskStatus = EvaluationTaskStatus.RUNNING,
    ) -> bool: ...

    def compare_and_set_status(
        self,
        task_id: str,
        expected: EvaluationTaskStatus,
        new: EvaluationTaskStatus,
        **fields: Any,
    ) -> bool: ...

    def list_tasks(
        self,
        knowledge_base_id: Optional[str],
        limit: int,
        offset: int,
    ) -> tuple[list[EvaluationTask], int]: ...

    def delete(self, task_id: str) -> None: ...

    def get_by_status(self, status: EvaluationTaskStatus) -> list[EvaluationTask]: ...
