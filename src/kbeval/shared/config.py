"""
Configuration Module - Load and validate application settings.
==============================================================

Loads configuration from:
1. config/settings.yaml (defaults)
2. Environment variables from .env file
3. Environment variables from system

Environment variables override YAML defaults. Nested sections are
overridden with a double underscore, e.g. ``EVALUATION__NDCG_K=5``.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file early
load_dotenv()


def _find_project_root() -> Path:
    """Find the project root directory by looking for pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


PROJECT_ROOT = _find_project_root()
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Nested Configuration Models
# ─────────────────────────────────────────────────────────────────────────────


class AggregationPolicy(str, Enum):
    """How per-query scores are folded into a task-level result."""

    MACRO = "macro"  # mean of per-query scores
    MICRO = "micro"  # scores over the pooled retrieval outcome


class EvaluationConfig(BaseModel):
    """Scoring pipeline settings."""

    ndcg_k: int = 10
    aggregation: AggregationPolicy = AggregationPolicy.MACRO
    correctness_metric: str = "mrr"
    correctness_threshold: float = 0.0
    progress_step: int = Field(default=5, ge=1, le=100)
    max_workers: int = Field(default=4, ge=1)
    output_dir: str = "evaluation/results"

    @field_validator("correctness_metric")
    @classmethod
    def validate_correctness_metric(cls, v: str) -> str:
        """Only the five built-in metric names can judge correctness."""
        name = v.lower()
        if name not in {"precision", "recall", "f1", "mrr", "ndcg"}:
            raise ValueError(f"Unknown correctness metric: {v}")
        return name


class RetrievalConfig(BaseModel):
    """Retrieval collaborator call settings."""

    max_attempts: int = Field(default=1, ge=1)
    retry_min_wait: float = 1.0
    retry_max_wait: float = 10.0


class TasksConfig(BaseModel):
    """Task listing settings."""

    default_page_limit: int = 20


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    rich_console: bool = True
    file: str = ""


# ─────────────────────────────────────────────────────────────────────────────
# Main Settings Class
# ─────────────────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """
    Main application settings.

    Loads from:
    1. config/settings.yaml (defaults)
    2. Environment variables

    Environment variables override YAML settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: Optional[str] = Field(default=None, validation_alias="LOG_LEVEL")

    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    _project_root: Path = PROJECT_ROOT

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment must win over them
        return (env_settings, dotenv_settings, init_settings, file_secret_settings)

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return self._project_root

    @property
    def output_dir(self) -> Path:
        """Resolved directory for saved evaluation reports."""
        return self._project_root / self.evaluation.output_dir

    def get_effective_log_level(self) -> str:
        """Get the effective log level (env override or config)."""
        if self.log_level:
            return self.log_level.upper()
        return self.logging.level.upper()


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        return data if data else {}


def _create_settings(config_path: Optional[Path] = None) -> Settings:
    """Create settings instance by merging YAML defaults with environment."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    yaml_config = _load_yaml_config(config_path)
    return Settings(**yaml_config)


def load_settings(config_path: Path) -> Settings:
    """Build settings from an explicit YAML file (bypasses the cache)."""
    return _create_settings(Path(config_path))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the singleton settings instance.

    Returns:
        Settings instance with merged configuration

    Example:
        >>> settings = get_settings()
        >>> print(settings.evaluation.ndcg_k)
        10
    """
    return _create_settings()


def reload_settings() -> Settings:
    """
    Force reload of settings (clears cache).

    Returns:
        Fresh Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
