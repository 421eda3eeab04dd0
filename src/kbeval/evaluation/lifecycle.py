"""
Lifecycle Module - Evaluation task state machine.
=================================================

    pending ──run──▶ running ──success──▶ completed
                        │
                        └──failure / cancel──▶ failed

``completed`` and ``failed`` are terminal. Any other transition is
rejected with StateError before anything is written.
"""

from kbeval.shared.errors import StateError
from kbeval.shared.schemas import EvaluationTaskStatus

PENDING = EvaluationTaskStatus.PENDING
RUNNING = EvaluationTaskStatus.RUNNING
COMPLETED = EvaluationTaskStatus.COMPLETED
FAILED = EvaluationTaskStatus.FAILED

TERMINAL_STATES = frozenset({COMPLETED, FAILED})

TRANSITIONS: dict[EvaluationTaskStatus, frozenset[EvaluationTaskStatus]] = {
    PENDING: frozenset({RUNNING}),
    RUNNING: frozenset({COMPLETED, FAILED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
}


def is_terminal(status: EvaluationTaskStatus | str) -> bool:
    return EvaluationTaskStatus(status) in TERMINAL_STATES


def can_transition(current: EvaluationTaskStatus | str, target: EvaluationTaskStatus | str) -> bool:
    """Whether ``current -> target`` is a legal lifecycle transition."""
    return EvaluationTaskStatus(target) in TRANSITIONS[EvaluationTaskStatus(current)]


def ensure_transition(
    task_id: str,
    current: EvaluationTaskStatus | str,
    target: EvaluationTaskStatus | str,
) -> None:
    """
    Validate a transition.

    Raises:
        StateError: If the transition is not allowed
    """
    current = EvaluationTaskStatus(current)
    target = EvaluationTaskStatus(target)

    if can_transition(current, target):
        return

    if current in TERMINAL_STATES or current == target:
        reason = f"task {task_id} is already {current.value}"
    else:
        reason = f"task {task_id} cannot move from {current.value} to {target.value}"

    raise StateError(reason, task_id=task_id, current=current.value, requested=target.value)
