"""
Errors Module - Exception types raised by the evaluator.
========================================================

- NotFoundError: a referenced dataset, knowledge base or task is absent
- ValidationError: malformed input (progress out of range, empty ids, ...)
- StateError: an illegal task lifecycle transition

All derive from EvaluationError, and also from the closest builtin so
callers that only know ``LookupError``/``ValueError`` still catch them.
"""

from typing import Optional


class EvaluationError(Exception):
    """Base class for evaluator errors."""


class NotFoundError(EvaluationError, LookupError):
    """A referenced entity does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class ValidationError(EvaluationError, ValueError):
    """Input failed validation before any mutation took place."""


class StateError(EvaluationError, RuntimeError):
    """Requested lifecycle transition is not allowed from the current state."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        current: Optional[str] = None,
        requested: Optional[str] = None,
    ):
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(message)
