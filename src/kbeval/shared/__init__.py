"""
Shared Module - Common utilities, configuration, schemas, and logging.
======================================================================

This module provides foundational components used across all other modules:

- config: Configuration loading and management
- logging: Structured logging setup
- errors: Exception types
- schemas: Pydantic data models
- utils: Utility functions (ids, timestamps, file I/O)
"""

from kbeval.shared.config import AggregationPolicy, Settings, get_settings
from kbeval.shared.errors import EvaluationError, NotFoundError, StateError, ValidationError
from kbeval.shared.logging import get_logger, setup_logging
from kbeval.shared.schemas import (
    CreateEvaluationRequest,
    Dataset,
    EvaluationResult,
    EvaluationTask,
    EvaluationTaskStatus,
    KnowledgeBase,
    QAPair,
    RetrievalResponse,
)
from kbeval.shared.utils import (
    ensure_directory,
    generate_id,
    load_json,
    load_jsonl,
    save_json,
)

__all__ = [
    # Config
    "get_settings",
    "Settings",
    "AggregationPolicy",
    # Errors
    "EvaluationError",
    "NotFoundError",
    "StateError",
    "ValidationError",
    # Logging
    "get_logger",
    "setup_logging",
    # Schemas
    "CreateEvaluationRequest",
    "Dataset",
    "EvaluationResult",
    "EvaluationTask",
    "EvaluationTaskStatus",
    "KnowledgeBase",
    "QAPair",
    "RetrievalResponse",
    # Utils
    "ensure_directory",
    "generate_id",
    "load_json",
    "load_jsonl",
    "save_json",
]
