"""
Utilities Module - Common helper functions.
==========================================

Provides utility functions for:
- ID generation and timestamps
- File I/O (JSON, JSONL, YAML)
- Directory management
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import yaml

from kbeval.shared.logging import get_logger

logger = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Identity & Time
# ─────────────────────────────────────────────────────────────────────────────


def generate_id() -> str:
    """Generate a random UUID4 string for new records."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Directory Management
# ─────────────────────────────────────────────────────────────────────────────


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        The same path, for chaining
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_parent_directory(file_path: Path) -> Path:
    """Ensure the parent directory of a file exists."""
    file_path = Path(file_path)
    ensure_directory(file_path.parent)
    return file_path


# ─────────────────────────────────────────────────────────────────────────────
# File I/O
# ─────────────────────────────────────────────────────────────────────────────


def load_json(file_path: Path) -> Any:
    """
    Load data from a JSON file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file is not valid JSON
    """
    with open(Path(file_path), "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(file_path: Path, data: Any, indent: int = 2) -> None:
    """
    Save data to a JSON file, creating parent directories.

    Args:
        file_path: Path to JSON file
        data: Data to save (must be JSON serializable)
        indent: Indentation level (default: 2)
    """
    file_path = ensure_parent_directory(Path(file_path))

    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=str)

    logger.debug(f"Saved JSON to {file_path}")


def load_jsonl(file_path: Path) -> Iterator[dict[str, Any]]:
    """
    Load records from a JSONL (JSON Lines) file one at a time.

    Blank lines are skipped; malformed lines are logged and skipped.
    """
    file_path = Path(file_path)

    with open(file_path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON at line {line_num} in {file_path}: {e}")
                continue


def load_yaml(file_path: Path) -> Any:
    """Load data from a YAML file (empty file yields an empty dict)."""
    with open(Path(file_path), "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if data is not None else {}


def load_structured_file(file_path: Path) -> Any:
    """Load JSON, JSONL (as a list) or YAML based on the file suffix."""
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()

    if suffix == ".jsonl":
        return list(load_jsonl(file_path))
    if suffix in (".yaml", ".yml"):
        return load_yaml(file_path)
    return load_json(file_path)


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate text to a maximum length, appending ``suffix`` when cut."""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix
