"""
Pytest Configuration and Fixtures.
===================================

Shared fixtures for all test modules:
- Sample datasets and knowledge bases
- In-memory collaborators and stub retrievers
- Orchestrators wired with an inline or threaded executor
- Temporary directories
"""

import tempfile
import threading
from pathlib import Path
from typing import Generator, Optional

import pytest

from kbeval.collaborators.memory import (
    InMemoryDatasetRepository,
    InMemoryKnowledgeBaseRepository,
    InMemoryTaskStore,
)
from kbeval.evaluation.executors import InlineExecutor
from kbeval.evaluation.orchestrator import EvaluationOrchestrator
from kbeval.shared.config import Settings
from kbeval.shared.schemas import Dataset, KnowledgeBase, QAPair, RetrievalResponse


# ─────────────────────────────────────────────────────────────────────────────
# Stub Retrievers
# ─────────────────────────────────────────────────────────────────────────────


class StaticRetriever:
    """Answers each question with a fixed id list; unknown questions get nothing."""

    def __init__(self, answers: dict[str, list], latency_ms: float = 5.0):
        self.answers = answers
        self.latency_ms = latency_ms
        self.calls: list[str] = []

    def retrieve(
        self,
        knowledge_base_id: str,
        question: str,
        *,
        rerank_model_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResponse:
        self.calls.append(question)
        return RetrievalResponse(
            retrieved_ids=self.answers.get(question, []),
            latency_ms=self.latency_ms,
        )


class GatedRetriever(StaticRetriever):
    """
    Blocks inside ``retrieve`` until released.

    ``entered`` is set as soon as the first call arrives, so tests can
    act while a pipeline is known to be running.
    """

    def __init__(self, answers: dict[str, list]):
        super().__init__(answers)
        self.entered = threading.Event()
        self.release = threading.Event()

    def retrieve(self, knowledge_base_id, question, *, rerank_model_id=None, cancel_event=None):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().retrieve(
            knowledge_base_id,
            question,
            rerank_model_id=rerank_model_id,
            cancel_event=cancel_event,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Path Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_path(project_root: Path) -> Path:
    """Get the config file path."""
    return project_root / "config" / "settings.yaml"


# ─────────────────────────────────────────────────────────────────────────────
# Sample Data Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def sample_qa_pairs() -> list[QAPair]:
    """Three questions: one perfect hit, one partial, one miss."""
    return [
        QAPair(id="q1", question="What is the refund window?", passage_ids=[1, 3, 5]),
        QAPair(id="q2", question="Who approves travel?", passage_ids=[1, 2, 3]),
        QAPair(id="q3", question="Where is the VPN guide?", passage_ids=[1, 2, 3]),
    ]


@pytest.fixture
def sample_answers() -> dict[str, list]:
    """Retrieved ids per question matching ``sample_qa_pairs``."""
    return {
        "What is the refund window?": [1, 3, 5],
        "Who approves travel?": [1, 4, 2],
        "Where is the VPN guide?": [4, 5, 6],
    }


@pytest.fixture
def sample_dataset(sample_qa_pairs: list[QAPair]) -> Dataset:
    return Dataset(id="ds-1", name="Support FAQ", qa_pairs=sample_qa_pairs)


@pytest.fixture
def sample_knowledge_base() -> KnowledgeBase:
    return KnowledgeBase(id="kb-1", name="Support")


@pytest.fixture
def sample_dataset_data() -> dict:
    """Dataset file content in the JSON layout."""
    return {
        "id": "ds-file",
        "name": "From File",
        "qa_pairs": [
            {"id": "q1", "question": "What is the refund window?", "passage_ids": [1, 3, 5]},
            {"id": "q2", "query": "Who approves travel?", "ground_truth": [[1, 2], [3]]},
        ],
    }


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def dataset_repo(sample_dataset: Dataset) -> InMemoryDatasetRepository:
    return InMemoryDatasetRepository([sample_dataset])


@pytest.fixture
def kb_repo(sample_knowledge_base: KnowledgeBase) -> InMemoryKnowledgeBaseRepository:
    return InMemoryKnowledgeBaseRepository([sample_knowledge_base])


@pytest.fixture
def retriever(sample_answers: dict[str, list]) -> StaticRetriever:
    return StaticRetriever(sample_answers)


@pytest.fixture
def eval_settings() -> Settings:
    """Settings independent of the YAML file and environment."""
    return Settings(
        evaluation={"ndcg_k": 10, "progress_step": 1, "max_workers": 2},
        retrieval={"max_attempts": 1, "retry_min_wait": 0, "retry_max_wait": 0},
    )


# ─────────────────────────────────────────────────────────────────────────────
# Orchestrator Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def orchestrator(task_store, dataset_repo, kb_repo, retriever, eval_settings):
    """Orchestrator whose pipelines run synchronously inside run_evaluation."""
    orch = EvaluationOrchestrator(
        task_store=task_store,
        dataset_lookup=dataset_repo,
        knowledge_base_lookup=kb_repo,
        retriever=retriever,
        executor=InlineExecutor(),
        settings=eval_settings,
    )
    yield orch
    orch.shutdown()


@pytest.fixture
def make_orchestrator(task_store, dataset_repo, kb_repo, eval_settings):
    """Factory for orchestrators with a custom retriever, executor or settings."""
    created: list[EvaluationOrchestrator] = []

    def _make(retriever, executor=None, settings=None) -> EvaluationOrchestrator:
        orch = EvaluationOrchestrator(
            task_store=task_store,
            dataset_lookup=dataset_repo,
            knowledge_base_lookup=kb_repo,
            retriever=retriever,
            executor=executor,
            settings=settings or eval_settings,
        )
        created.append(orch)
        return orch

    yield _make

    for orch in created:
        orch.shutdown(wait=True)


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "concurrency: marks tests that run pipelines on worker threads"
    )


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the cached settings singleton between tests."""
    from kbeval.shared.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
