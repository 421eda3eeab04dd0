"""
Replay Retriever - Serve recorded retrieval output as a collaborator.
=====================================================================

Lets a retrieval run that was captured elsewhere be scored offline: the
retriever answers each question with the ids recorded for it.
"""

import threading
import time
from pathlib import Path
from typing import Optional

from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import Dataset, RetrievalResponse
from kbeval.shared.utils import truncate_text

logger = get_logger(__name__)


class ReplayRetriever:
    """
    Retrieval collaborator backed by a question → response mapping.

    Questions with no recording yield an empty result.
    """

    def __init__(self, responses: dict[str, RetrievalResponse]):
        self._responses = dict(responses)

    @classmethod
    def from_file(cls, path: str | Path, dataset: Optional[Dataset] = None) -> "ReplayRetriever":
        """
        Load a run file.

        Keys matching a QA-pair id of ``dataset`` are translated to that
        pair's question text; other keys are taken as question text.
        """
        from kbeval.evaluation.datasets import load_run

        run = load_run(path)
        if dataset is not None:
            questions_by_id = {pair.id: pair.question for pair in dataset.qa_pairs}
            run = {questions_by_id.get(key, key): response for key, response in run.items()}
        return cls(run)

    def retrieve(
        self,
        knowledge_base_id: str,
        question: str,
        *,
        rerank_model_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResponse:
        start = time.perf_counter()
        response = self._responses.get(question)

        if response is None:
            logger.warning(f"No recorded retrieval for question: {truncate_text(question, 80)!r}")
            response = RetrievalResponse()

        if response.latency_ms == 0:
            elapsed_ms = (time.perf_counter() - start) * 1000
            response = response.model_copy(update={"latency_ms": elapsed_ms})
        return response

    def __len__(self) -> int:
        return len(self._responses)
