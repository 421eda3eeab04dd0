"""
Tests for Shared Module.
========================

Tests for:
- Settings loading from YAML and environment
- Logging helpers
- Schema validation
"""

import logging
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from kbeval.shared.config import AggregationPolicy, Settings, get_settings, load_settings, reload_settings
from kbeval.shared.logging import LogContext, get_logger, setup_logging
from kbeval.shared.schemas import CreateEvaluationRequest, EvaluationTask, QAPair


class TestSettings:
    """Tests for configuration loading."""

    def test_defaults(self):
        settings = Settings()

        assert settings.evaluation.ndcg_k == 10
        assert settings.evaluation.aggregation == AggregationPolicy.MACRO
        assert settings.evaluation.correctness_metric == "mrr"
        assert settings.retrieval.max_attempts == 1
        assert settings.tasks.default_page_limit == 20

    def test_project_config_file(self, config_path: Path):
        settings = load_settings(config_path)

        assert config_path.exists()
        assert settings.evaluation.progress_step == 5

    def test_yaml_values(self, temp_dir: Path):
        path = temp_dir / "settings.yaml"
        path.write_text(
            yaml.safe_dump({"evaluation": {"ndcg_k": 3, "aggregation": "micro"}}),
            encoding="utf-8",
        )

        settings = load_settings(path)

        assert settings.evaluation.ndcg_k == 3
        assert settings.evaluation.aggregation == AggregationPolicy.MICRO

    def test_env_overrides_yaml(self, temp_dir: Path, monkeypatch):
        path = temp_dir / "settings.yaml"
        path.write_text(
            yaml.safe_dump({"evaluation": {"ndcg_k": 3, "progress_step": 10}}),
            encoding="utf-8",
        )
        monkeypatch.setenv("EVALUATION__NDCG_K", "7")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = load_settings(path)

        assert settings.evaluation.ndcg_k == 7
        assert settings.evaluation.progress_step == 10
        assert settings.get_effective_log_level() == "DEBUG"

    def test_missing_file_uses_defaults(self, temp_dir: Path):
        assert load_settings(temp_dir / "absent.yaml").evaluation.ndcg_k == 10

    def test_invalid_correctness_metric(self):
        with pytest.raises(PydanticValidationError):
            Settings(evaluation={"correctness_metric": "map"})

    def test_correctness_metric_normalized(self):
        assert Settings(evaluation={"correctness_metric": "NDCG"}).evaluation.correctness_metric == "ndcg"

    def test_invalid_progress_step(self):
        with pytest.raises(PydanticValidationError):
            Settings(evaluation={"progress_step": 0})

    def test_singleton(self):
        assert get_settings() is get_settings()
        assert reload_settings() is get_settings()


class TestLogging:
    """Tests for logging helpers."""

    def test_get_logger(self):
        assert get_logger("kbeval.test").name == "kbeval.test"

    def test_log_context_restores_level(self):
        logger = logging.getLogger("kbeval.test.context")
        logger.setLevel(logging.WARNING)

        with LogContext("DEBUG", "kbeval.test.context"):
            assert logger.level == logging.DEBUG

        assert logger.level == logging.WARNING

    def test_setup_leaves_other_loggers_alone(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        other = logging.getLogger("asyncio")
        other.setLevel(logging.NOTSET)

        try:
            setup_logging(level="DEBUG", use_rich=False, force=True)
            assert root.level == logging.DEBUG
            assert other.level == logging.NOTSET
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestSchemas:
    """Tests for schema validation."""

    def test_request_requires_ids(self):
        with pytest.raises(PydanticValidationError):
            CreateEvaluationRequest(dataset_id="", knowledge_base_id="kb-1")

    def test_task_progress_bounds(self):
        with pytest.raises(PydanticValidationError):
            EvaluationTask(dataset_id="ds", knowledge_base_id="kb", progress=101)

    def test_task_terminal(self):
        assert EvaluationTask(dataset_id="ds", knowledge_base_id="kb", status="failed").is_terminal
        assert not EvaluationTask(dataset_id="ds", knowledge_base_id="kb").is_terminal

    def test_ground_truth_drops_empty_groups(self):
        pair = QAPair(question="Q?", passage_ids=[], extra_judgments=[[1], []])

        assert pair.ground_truth() == [[1]]
