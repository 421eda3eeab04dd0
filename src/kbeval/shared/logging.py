"""
Logging Module - Structured logging setup with Rich console support.
====================================================================

Centralized logging configuration for the evaluator. Pipeline threads,
the orchestrator and the CLI all log through named loggers obtained from
``get_logger``; output goes to a Rich console handler (or a plain stream
handler) plus an optional log file.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_logging_configured = False
_console = Console()

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
THREADED_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"


def setup_logging(
    level: str = "INFO",
    use_rich: bool = True,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_rich: Whether to use Rich console handler for pretty output
        log_file: Optional path to log file
        log_format: Optional custom log format string
        force: Reconfigure even if logging was already set up

    Note:
        Subsequent calls are ignored unless ``force`` is set, so that
        handlers are never duplicated.
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if log_format is None:
        log_format = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if use_rich:
        rich_handler = RichHandler(
            console=_console,
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
        )
        rich_handler.setLevel(numeric_level)
        rich_handler.setFormatter(logging.Formatter("[%(threadName)s] %(message)s"))
        root_logger.addHandler(rich_handler)
    else:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(numeric_level)
        stream_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Files always carry the thread name: pipelines run on worker threads
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(THREADED_FORMAT))
        root_logger.addHandler(file_handler)

    _logging_configured = True

    logger = get_logger(__name__)
    logger.debug(f"Logging configured: level={level}, rich={use_rich}, file={log_file}")


def setup_logging_from_settings(settings=None, force: bool = False) -> None:
    """Configure logging from the ``logging`` section of the settings."""
    if settings is None:
        from kbeval.shared.config import get_settings

        settings = get_settings()

    setup_logging(
        level=settings.get_effective_log_level(),
        use_rich=settings.logging.rich_console,
        log_file=settings.logging.file or None,
        log_format=settings.logging.format,
        force=force,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Evaluation started")
    """
    if not _logging_configured:
        setup_logging()

    return logging.getLogger(name)


def get_console() -> Console:
    """Get the shared Rich console instance for direct console output."""
    return _console


class LogContext:
    """
    Context manager for temporary log level changes.

    Example:
        >>> with LogContext("DEBUG", "kbeval.evaluation"):
        ...     orchestrator.wait(task.id)
    """

    def __init__(self, level: str, logger_name: Optional[str] = None):
        self.level = getattr(logging, level.upper(), logging.INFO)
        self.logger_name = logger_name
        self.original_level: Optional[int] = None

    def __enter__(self) -> "LogContext":
        logger = logging.getLogger(self.logger_name)
        self.original_level = logger.level
        logger.setLevel(self.level)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        if self.original_level is not None:
            logger = logging.getLogger(self.logger_name)
            logger.setLevel(self.original_level)
