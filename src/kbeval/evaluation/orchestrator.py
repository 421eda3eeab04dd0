"""
Orchestrator Module - Evaluation task lifecycle and scoring pipeline.
=====================================================================

Drives an evaluation run end to end:
1. Validate the dataset and knowledge base and create a pending task
2. Move the task to running and schedule the scoring pipeline
3. Retrieve for every QA pair, score it with all five metrics
4. Persist progress as the run advances
5. Aggregate and complete the task, or mark it failed

Runs execute on an Executor; ``run_evaluation`` returns the Future of the
pipeline, which resolves to the task record as it stood when the
pipeline stopped. At most one pipeline runs per task id: an in-process
registry rejects a second run, and the pending→running compare-and-set
in the task store rejects it across processes.
"""

import threading
import time
from concurrent.futures import CancelledError, Executor, Future
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from kbeval.collaborators.base import (
    DatasetLookup,
    KnowledgeBaseLookup,
    RetrievalCollaborator,
    TaskStore,
)
from kbeval.evaluation import lifecycle
from kbeval.evaluation.aggregator import QueryOutcome, aggregate, judge_correct
from kbeval.evaluation.executors import create_executor
from kbeval.evaluation.metrics import Metric, MetricInput, compute_all, default_metrics
from kbeval.shared.config import Settings, get_settings
from kbeval.shared.errors import EvaluationError, NotFoundError, StateError, ValidationError
from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import (
    CreateEvaluationRequest,
    EvaluationResult,
    EvaluationTask,
    EvaluationTaskStatus,
    QAPair,
    RetrievalResponse,
)

logger = get_logger(__name__)

PENDING = EvaluationTaskStatus.PENDING
RUNNING = EvaluationTaskStatus.RUNNING
COMPLETED = EvaluationTaskStatus.COMPLETED
FAILED = EvaluationTaskStatus.FAILED

CANCELLED_MESSAGE = "cancelled"


class PipelineCancelled(Exception):
    """Raised inside a pipeline once its cancellation signal is set."""


class EvaluationOrchestrator:
    """
    Creates, runs, tracks and cancels evaluation tasks.

    Example:
        >>> orchestrator = EvaluationOrchestrator(store, datasets, kbs, retriever)
        >>> task = orchestrator.create_evaluation("ds-1", "kb-1")
        >>> future = orchestrator.run_evaluation(task.id)
        >>> print(future.result().result.summary())
    """

    def __init__(
        self,
        task_store: TaskStore,
        dataset_lookup: DatasetLookup,
        knowledge_base_lookup: KnowledgeBaseLookup,
        retriever: RetrievalCollaborator,
        executor: Optional[Executor] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[list[Metric]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            task_store: Persistence for task records
            dataset_lookup: Dataset and QA-pair source
            knowledge_base_lookup: Knowledge base existence checks
            retriever: Retrieval step under evaluation
            executor: Scheduler for pipelines (default: owned thread pool)
            settings: Settings (default: global settings)
            metrics: Metrics to score with (default: the five built-ins)
        """
        self.settings = settings or get_settings()
        self.task_store = task_store
        self.dataset_lookup = dataset_lookup
        self.knowledge_base_lookup = knowledge_base_lookup
        self.retriever = retriever

        self._owns_executor = executor is None
        self._executor = executor or create_executor(self.settings.evaluation.max_workers)
        self._metrics = metrics or default_metrics(self.settings.evaluation.ndcg_k)

        # Guards the in-process registry only; task rows are serialized by the store
        self._lock = threading.RLock()
        self._active: dict[str, Future] = {}
        self._cancel_events: dict[str, threading.Event] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Task Creation & Queries
    # ─────────────────────────────────────────────────────────────────────

    def create_evaluation(
        self,
        dataset_id: str,
        knowledge_base_id: str,
        chat_model_id: Optional[str] = None,
        rerank_model_id: Optional[str] = None,
    ) -> EvaluationTask:
        """
        Validate references and persist a new pending task.

        Raises:
            ValidationError: If an id is missing
            NotFoundError: If the knowledge base or dataset does not exist
        """
        try:
            request = CreateEvaluationRequest(
                dataset_id=dataset_id,
                knowledge_base_id=knowledge_base_id,
                chat_model_id=chat_model_id,
                rerank_model_id=rerank_model_id,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid evaluation request: {e}") from e

        return self.submit(request)

    def submit(self, request: CreateEvaluationRequest) -> EvaluationTask:
        """Create a pending task from a request payload."""
        self.knowledge_base_lookup.get_by_id(request.knowledge_base_id)
        dataset = self.dataset_lookup.get_by_id(request.dataset_id)

        task = self.task_store.create(
            EvaluationTask(
                dataset_id=request.dataset_id,
                knowledge_base_id=request.knowledge_base_id,
                chat_model_id=request.chat_model_id,
                rerank_model_id=request.rerank_model_id,
                total_questions=dataset.record_count,
            )
        )
        logger.info(
            f"Created evaluation task {task.id} "
            f"(dataset={task.dataset_id}, kb={task.knowledge_base_id}, questions={task.total_questions})"
        )
        return task

    def get_evaluation(self, task_id: str) -> EvaluationTask:
        """Load a task. Raises NotFoundError if absent."""
        return self.task_store.get_by_id(task_id)

    def calculate_metrics(self, task_id: str) -> EvaluationResult:
        """Stored result of a task, or an all-zero result if it has none yet."""
        task = self.task_store.get_by_id(task_id)
        if task.result is not None:
            return task.result
        return EvaluationResult()

    def list_evaluation_tasks(
        self,
        knowledge_base_id: Optional[str] = None,
        limit: int = 0,
        offset: int = 0,
    ) -> tuple[list[EvaluationTask], int]:
        """
        List tasks newest first.

        ``limit <= 0`` falls back to the configured default page size;
        negative offsets clamp to 0.
        """
        tasks_config = self.settings.tasks
        if limit <= 0:
            limit = tasks_config.default_page_limit
        offset = max(offset, 0)
        return self.task_store.list_tasks(knowledge_base_id, limit, offset)

    def get_tasks_by_status(self, status: EvaluationTaskStatus | str) -> list[EvaluationTask]:
        return self.task_store.get_by_status(_parse_status(status))

    def delete_evaluation_task(self, task_id: str) -> None:
        """
        Delete a task record, signalling its pipeline to stop first.

        Deleting an unknown id is a no-op.
        """
        with self._lock:
            event = self._cancel_events.get(task_id)
        if event is not None:
            event.set()
        self.task_store.delete(task_id)
        logger.info(f"Deleted evaluation task {task_id}")

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle Operations
    # ─────────────────────────────────────────────────────────────────────

    def run_evaluation(self, task_id: str) -> Future:
        """
        Start the scoring pipeline of a pending task without waiting for it.

        Returns:
            Future resolving to the task record once the pipeline stops

        Raises:
            NotFoundError: If the task does not exist
            StateError: If the task is not pending or already has a pipeline
        """
        task = self.task_store.get_by_id(task_id)
        handle: Future = Future()
        handle.set_running_or_notify_cancel()

        with self._lock:
            active = self._active.get(task_id)
            if active is not None and not active.done():
                raise StateError(
                    f"task {task_id} already has a running pipeline",
                    task_id=task_id,
                    current=RUNNING.value,
                    requested=RUNNING.value,
                )

            lifecycle.ensure_transition(task_id, task.status, RUNNING)
            if not self.task_store.compare_and_set_status(task_id, PENDING, RUNNING):
                current = self.task_store.get_by_id(task_id).status
                raise StateError(
                    f"task {task_id} is already {current.value}",
                    task_id=task_id,
                    current=current.value,
                    requested=RUNNING.value,
                )

            cancel_event = threading.Event()
            self._cancel_events[task_id] = cancel_event
            self._active[task_id] = handle

        handle.add_done_callback(lambda f: self._release(task_id, f))
        logger.info(f"Starting evaluation task {task_id}")

        # Submitted outside the lock: an inline executor runs the whole pipeline here
        try:
            future = self._executor.submit(self._run_pipeline, task, cancel_event)
        except RuntimeError as e:
            self.task_store.update_progress(
                task_id, 0, FAILED, expected_status=RUNNING, error_msg=f"not scheduled: {e}"
            )
            error = StateError(f"task {task_id} could not be scheduled: {e}", task_id=task_id)
            handle.set_exception(error)
            raise error from e

        future.add_done_callback(lambda f: _transfer(f, handle))
        return handle

    def cancel_evaluation(self, task_id: str) -> EvaluationTask:
        """
        Cancel a running task: mark it failed and stop its pipeline.

        The last recorded progress is kept.

        Raises:
            NotFoundError: If the task does not exist
            StateError: If the task is not running (including when it
                finished before the cancellation landed)
        """
        task = self.task_store.get_by_id(task_id)
        lifecycle.ensure_transition(task_id, task.status, FAILED)

        cancelled = self.task_store.update_progress(
            task_id,
            task.progress,
            FAILED,
            expected_status=RUNNING,
            error_msg=CANCELLED_MESSAGE,
        )
        if not cancelled:
            current = self.task_store.get_by_id(task_id).status
            raise StateError(
                f"task {task_id} is no longer running ({current.value})",
                task_id=task_id,
                current=current.value,
                requested=FAILED.value,
            )

        with self._lock:
            event = self._cancel_events.get(task_id)
        if event is not None:
            event.set()

        logger.info(f"Cancelled evaluation task {task_id} at {task.progress}%")
        return self.task_store.get_by_id(task_id)

    def update_task_progress(
        self,
        task_id: str,
        progress: int,
        status: EvaluationTaskStatus | str,
        completed_count: Optional[int] = None,
    ) -> EvaluationTask:
        """
        Record progress (and optionally a status change) for a task.

        Raises:
            ValidationError: If progress is outside [0, 100], goes backwards,
                or the status asks for completion without a result
            StateError: If the status change is illegal or the task
                changed state concurrently
        """
        if not 0 <= progress <= 100:
            raise ValidationError(f"progress must be between 0 and 100, got {progress}")
        status = _parse_status(status)
        if status == COMPLETED:
            raise ValidationError("completing a task requires a result; use complete_task")

        task = self.task_store.get_by_id(task_id)
        if status != task.status:
            lifecycle.ensure_transition(task_id, task.status, status)
        elif task.is_terminal:
            raise StateError(
                f"task {task_id} is already {task.status.value}",
                task_id=task_id,
                current=task.status.value,
                requested=status.value,
            )

        if progress < task.progress:
            raise ValidationError(
                f"progress of task {task_id} cannot go back from {task.progress} to {progress}"
            )

        written = self.task_store.update_progress(
            task_id,
            progress,
            status,
            expected_status=task.status,
            completed_count=completed_count,
        )
        if not written:
            raise StateError(f"task {task_id} changed state concurrently", task_id=task_id)
        return self.task_store.get_by_id(task_id)

    def complete_task(self, task_id: str, result: EvaluationResult) -> EvaluationTask:
        """
        Attach the final result and mark the task completed.

        Raises:
            StateError: If the task is not running anymore
        """
        task = self.task_store.get_by_id(task_id)
        lifecycle.ensure_transition(task_id, task.status, COMPLETED)

        if not self.task_store.update_result(task_id, result, expected_status=RUNNING):
            current = self.task_store.get_by_id(task_id).status
            raise StateError(
                f"task {task_id} is no longer running ({current.value})",
                task_id=task_id,
                current=current.value,
                requested=COMPLETED.value,
            )
        logger.info(f"Completed evaluation task {task_id}")
        return self.task_store.get_by_id(task_id)

    # ─────────────────────────────────────────────────────────────────────
    # Supervision
    # ─────────────────────────────────────────────────────────────────────

    def wait(self, task_id: str, timeout: Optional[float] = None) -> EvaluationTask:
        """
        Block until the task's pipeline in this process stops.

        Returns the current record straight away when no pipeline is active.
        Raises ``concurrent.futures.TimeoutError`` when ``timeout`` elapses.
        """
        with self._lock:
            future = self._active.get(task_id)
        if future is not None:
            final = future.result(timeout=timeout)
            if final is not None:
                return final
        return self.task_store.get_by_id(task_id)

    def is_active(self, task_id: str) -> bool:
        """Whether a pipeline for this task is running in this process."""
        with self._lock:
            future = self._active.get(task_id)
        return future is not None and not future.done()

    def shutdown(self, wait: bool = True) -> None:
        """Signal every active pipeline to stop and release the executor."""
        with self._lock:
            events = list(self._cancel_events.values())
        for event in events:
            event.set()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> "EvaluationOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.shutdown()

    def _release(self, task_id: str, future: Future) -> None:
        with self._lock:
            if self._active.get(task_id) is future:
                del self._active[task_id]
                self._cancel_events.pop(task_id, None)

    # ─────────────────────────────────────────────────────────────────────
    # Scoring Pipeline
    # ─────────────────────────────────────────────────────────────────────

    def _run_pipeline(
        self,
        task: EvaluationTask,
        cancel_event: threading.Event,
    ) -> Optional[EvaluationTask]:
        """Score every QA pair of the task's dataset; never leaves it running."""
        task_id = task.id
        start_time = time.time()
        finished = False
        failure: Optional[str] = None

        try:
            dataset = self.dataset_lookup.get_by_id(task.dataset_id)
            outcomes = self._score_dataset(task, dataset.qa_pairs, cancel_event)

            result = aggregate(outcomes, self.settings.evaluation.aggregation)
            self.complete_task(task_id, result)
            finished = True

            logger.info(
                f"Evaluation task {task_id} finished in {time.time() - start_time:.1f}s: "
                f"P={result.precision:.3f} R={result.recall:.3f} F1={result.f1_score:.3f}"
            )
        except PipelineCancelled:
            logger.info(f"Evaluation task {task_id} stopped after cancellation")
            failure = CANCELLED_MESSAGE
        except StateError as e:
            # Another path (cancel, delete) already moved the task on
            logger.info(f"Evaluation task {task_id} stopped: {e}")
            failure = str(e)
        except NotFoundError as e:
            logger.warning(f"Evaluation task {task_id} stopped: {e}")
            failure = str(e)
        except Exception as e:
            logger.exception(f"Evaluation task {task_id} failed: {e}")
            failure = f"{type(e).__name__}: {e}"
        finally:
            if not finished:
                self._mark_failed(task_id, failure or "interrupted")

        try:
            return self.task_store.get_by_id(task_id)
        except NotFoundError:
            return None

    def _score_dataset(
        self,
        task: EvaluationTask,
        pairs: list[QAPair],
        cancel_event: threading.Event,
    ) -> list[QueryOutcome]:
        total = len(pairs)
        step = self.settings.evaluation.progress_step
        last_reported = 0
        outcomes: list[QueryOutcome] = []

        for done, pair in enumerate(pairs, 1):
            if cancel_event.is_set():
                raise PipelineCancelled(task.id)

            outcomes.append(self._evaluate_pair(task, pair, cancel_event))

            # 100 is reserved for completion
            progress = min(99, done * 100 // total)
            if progress - last_reported >= step or done == total:
                self.update_task_progress(task.id, progress, RUNNING, completed_count=done)
                last_reported = progress

        return outcomes

    def _evaluate_pair(
        self,
        task: EvaluationTask,
        pair: QAPair,
        cancel_event: threading.Event,
    ) -> QueryOutcome:
        config = self.settings.evaluation

        start = time.perf_counter()
        response = self._retrieve(task, pair.question, cancel_event)
        measured_ms = (time.perf_counter() - start) * 1000

        metric_input = MetricInput(
            ground_truth=tuple(tuple(group) for group in pair.ground_truth()),
            retrieved_ids=tuple(response.retrieved_ids),
        )
        scores = compute_all(metric_input, self._metrics)

        outcome = QueryOutcome(
            qa_pair_id=pair.id,
            question=pair.question,
            metric_input=metric_input,
            scores=scores,
            latency_ms=response.latency_ms or measured_ms,
            correct=judge_correct(scores, config.correctness_metric, config.correctness_threshold),
        )
        logger.debug(f"[{task.id}] {pair.id}: {scores} correct={outcome.correct}")
        return outcome

    def _retrieve(
        self,
        task: EvaluationTask,
        question: str,
        cancel_event: threading.Event,
    ) -> RetrievalResponse:
        config = self.settings.retrieval

        @retry(
            retry=retry_if_not_exception_type((EvaluationError, PipelineCancelled)),
            stop=stop_after_attempt(config.max_attempts) | stop_when_event_set(cancel_event),
            wait=wait_exponential(min=config.retry_min_wait, max=config.retry_max_wait),
            sleep=cancel_event.wait,
            before_sleep=lambda retry_state: logger.warning(
                f"Retry {retry_state.attempt_number}/{config.max_attempts} "
                f"for task {task.id}: {retry_state.outcome.exception()}"
            ),
            reraise=True,
        )
        def _retrieve_with_retry() -> RetrievalResponse:
            if cancel_event.is_set():
                raise PipelineCancelled(task.id)
            return self.retriever.retrieve(
                task.knowledge_base_id,
                question,
                rerank_model_id=task.rerank_model_id,
                cancel_event=cancel_event,
            )

        response = _retrieve_with_retry()
        if cancel_event.is_set():
            raise PipelineCancelled(task.id)
        return response

    def _mark_failed(self, task_id: str, message: str) -> None:
        """Move a still-running task to failed; no-op if it already left running."""
        try:
            moved = self.task_store.update_progress(
                task_id, 0, FAILED, expected_status=RUNNING, error_msg=message
            )
        except NotFoundError:
            logger.warning(f"Evaluation task {task_id} was deleted while running")
            return
        if moved:
            logger.info(f"Marked evaluation task {task_id} failed: {message}")


def _transfer(source: Future, target: Future) -> None:
    """Copy the outcome of an executor future onto a run handle."""
    if source.cancelled():
        target.set_exception(CancelledError())
    elif source.exception() is not None:
        target.set_exception(source.exception())
    else:
        target.set_result(source.result())


def _parse_status(status: EvaluationTaskStatus | str) -> EvaluationTaskStatus:
    try:
        return EvaluationTaskStatus(status)
    except ValueError as e:
        raise ValidationError(f"Unknown task status: {status}") from e
