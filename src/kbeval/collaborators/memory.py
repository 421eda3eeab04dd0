"""
In-Memory Collaborators - Process-local stores for datasets, KBs and tasks.
===========================================================================

Used by the CLI and the test suite. ``InMemoryTaskStore`` provides the
same single-row guarantees a database row update would: every write
happens under one lock, status changes are compare-and-set, progress
never decreases and terminal rows never change status again.

Records are copied on the way in and out, so callers never share
mutable state with the store.
"""

import itertools
import threading
from pathlib import Path
from typing import Any, Optional

from kbeval.shared.errors import NotFoundError, ValidationError
from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import (
    Dataset,
    EvaluationResult,
    EvaluationTask,
    EvaluationTaskStatus,
    KnowledgeBase,
    QAPair,
)
from kbeval.shared.utils import utcnow

logger = get_logger(__name__)

_TERMINAL = (EvaluationTaskStatus.COMPLETED, EvaluationTaskStatus.FAILED)
_MUTABLE_FIELDS = {"progress", "error_msg", "completed_count", "total_questions", "result"}


# ─────────────────────────────────────────────────────────────────────────────
# Dataset & Knowledge Base Repositories
# ─────────────────────────────────────────────────────────────────────────────


class InMemoryDatasetRepository:
    """Dataset lookup backed by a dict."""

    def __init__(self, datasets: Optional[list[Dataset]] = None):
        self._lock = threading.Lock()
        self._datasets: dict[str, Dataset] = {}
        for dataset in datasets or []:
            self.add(dataset)

    @classmethod
    def from_files(cls, *paths: str | Path) -> "InMemoryDatasetRepository":
        """Build a repository from dataset files (JSON, JSONL or YAML)."""
        from kbeval.evaluation.datasets import load_dataset

        return cls([load_dataset(path) for path in paths])

    def add(self, dataset: Dataset) -> Dataset:
        with self._lock:
            if dataset.id in self._datasets:
                logger.warning(f"Dataset {dataset.id} already exists, replacing")
            self._datasets[dataset.id] = dataset.model_copy(deep=True)
        return dataset

    def add_qa_pairs(self, dataset_id: str, pairs: list[QAPair]) -> int:
        """Append QA pairs to an existing dataset; returns the new record count."""
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                raise NotFoundError("dataset", dataset_id)
            dataset.qa_pairs.extend(p.model_copy(deep=True) for p in pairs)
            return dataset.record_count

    def get_by_id(self, dataset_id: str) -> Dataset:
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                raise NotFoundError("dataset", dataset_id)
            return dataset.model_copy(deep=True)

    def delete(self, dataset_id: str) -> None:
        with self._lock:
            if self._datasets.pop(dataset_id, None) is None:
                raise NotFoundError("dataset", dataset_id)

    def __len__(self) -> int:
        return len(self._datasets)


class InMemoryKnowledgeBaseRepository:
    """Knowledge base lookup backed by a dict."""

    def __init__(self, knowledge_bases: Optional[list[KnowledgeBase]] = None):
        self._knowledge_bases: dict[str, KnowledgeBase] = {
            kb.id: kb for kb in knowledge_bases or []
        }

    def add(self, knowledge_base: KnowledgeBase) -> KnowledgeBase:
        self._knowledge_bases[knowledge_base.id] = knowledge_base
        return knowledge_base

    def get_by_id(self, knowledge_base_id: str) -> KnowledgeBase:
        knowledge_base = self._knowledge_bases.get(knowledge_base_id)
        if knowledge_base is None:
            raise NotFoundError("knowledge base", knowledge_base_id)
        return knowledge_base


# ─────────────────────────────────────────────────────────────────────────────
# Task Store
# ─────────────────────────────────────────────────────────────────────────────


class InMemoryTaskStore:
    """
    Evaluation task store with single-row update semantics.

    Example:
        >>> store = InMemoryTaskStore()
        >>> task = store.create(EvaluationTask(dataset_id="ds", knowledge_base_id="kb"))
        >>> store.compare_and_set_status(task.id, PENDING, RUNNING)
        True
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: dict[str, EvaluationTask] = {}
        self._order: dict[str, int] = {}
        self._counter = itertools.count()

    def create(self, task: EvaluationTask) -> EvaluationTask:
        with self._lock:
            if task.id in self._tasks:
                raise ValidationError(f"Task {task.id} already exists")
            stored = task.model_copy(deep=True)
            self._tasks[stored.id] = stored
            self._order[stored.id] = next(self._counter)
            return stored.model_copy(deep=True)

    def get_by_id(self, task_id: str) -> EvaluationTask:
        with self._lock:
            return self._get(task_id).model_copy(deep=True)

    def compare_and_set_status(
        self,
        task_id: str,
        expected: EvaluationTaskStatus,
        new: EvaluationTaskStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a task from ``expected`` to ``new`` status atomically.

        Extra ``fields`` (progress, error_msg, completed_count,
        total_questions, result) are applied in the same write.
        Returns False without writing when the current status differs.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update task fields: {sorted(unknown)}")

        with self._lock:
            task = self._get(task_id)
            if task.status != expected:
                logger.debug(
                    f"Rejected {task_id} {expected.value}->{new.value}: status is {task.status.value}"
                )
                return False
            self._apply(task, EvaluationTaskStatus(new), fields)
            return True

    def update_progress(
        self,
        task_id: str,
        progress: int,
        status: EvaluationTaskStatus,
        *,
        expected_status: Optional[EvaluationTaskStatus] = None,
        error_msg: Optional[str] = None,
        completed_count: Optional[int] = None,
    ) -> bool:
        fields: dict[str, Any] = {"progress": progress}
        if error_msg is not None:
            fields["error_msg"] = error_msg
        if completed_count is not None:
            fields["completed_count"] = completed_count

        with self._lock:
            task = self._get(task_id)
            if expected_status is not None and task.status != expected_status:
                return False
            if task.status in _TERMINAL and task.status != status:
                logger.warning(
                    f"Ignoring write to {task_id}: {task.status.value} is terminal"
                )
                return False
            self._apply(task, EvaluationTaskStatus(status), fields)
            return True

    def update_result(
        self,
        task_id: str,
        result: EvaluationResult,
        *,
        expected_status: EvaluationTaskStatus = EvaluationTaskStatus.RUNNING,
    ) -> bool:
        return self.compare_and_set_status(
            task_id,
            expected_status,
            EvaluationTaskStatus.COMPLETED,
            progress=100,
            result=result,
        )

    def list_tasks(
        self,
        knowledge_base_id: Optional[str],
        limit: int,
        offset: int,
    ) -> tuple[list[EvaluationTask], int]:
        """Tasks newest first, optionally filtered by knowledge base."""
        with self._lock:
            tasks = [
                t
                for t in self._tasks.values()
                if not knowledge_base_id or t.knowledge_base_id == knowledge_base_id
            ]
            tasks.sort(key=lambda t: (t.created_at, self._order[t.id]), reverse=True)
            page = tasks[offset : offset + limit]
            return [t.model_copy(deep=True) for t in page], len(tasks)

    def delete(self, task_id: str) -> None:
        """Remove a task; unknown ids are a no-op."""
        with self._lock:
            self._tasks.pop(task_id, None)
            self._order.pop(task_id, None)

    def get_by_status(self, status: EvaluationTaskStatus) -> list[EvaluationTask]:
        status = EvaluationTaskStatus(status)
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in sorted(self._tasks.values(), key=lambda t: self._order[t.id])
                if t.status == status
            ]

    def __len__(self) -> int:
        return len(self._tasks)

    # Must be called with the lock held

    def _get(self, task_id: str) -> EvaluationTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("evaluation task", task_id)
        return task

    def _apply(
        self,
        task: EvaluationTask,
        status: EvaluationTaskStatus,
        fields: dict[str, Any],
    ) -> None:
        now = utcnow()

        progress = fields.pop("progress", None)
        if progress is not None:
            task.progress = max(task.progress, int(progress))
        for name, value in fields.items():
            setattr(task, name, value)

        if status == EvaluationTaskStatus.RUNNING and task.started_at is None:
            task.started_at = now
        if status in _TERMINAL and task.status not in _TERMINAL:
            task.completed_at = now

        task.status = status
        task.updated_at = now
