"""
Datasets Module - Load evaluation datasets and recorded retrieval runs.
=======================================================================

Dataset files:
- JSON: ``{"id": ..., "name": ..., "qa_pairs": [...]}`` or a bare list
  of QA pairs
- JSONL: one QA pair per line
- YAML: same shape as JSON

For bare lists and JSONL the dataset id is the file stem. QA pairs accept
``query`` as an alias of ``question`` and ``relevant_ids`` as an alias of
``passage_ids``; ``ground_truth`` (a list of groups) fills ``passage_ids``
from its first group and ``extra_judgments`` from the rest. When
``passage_ids`` is also given, every group goes to ``extra_judgments``.

Run files map a QA-pair id or question text to either a list of ids or
``{"retrieved_ids": [...], "latency_ms": n}``.
"""

from pathlib import Path
from typing import Any

from kbeval.shared.errors import ValidationError
from kbeval.shared.logging import get_logger
from kbeval.shared.schemas import Dataset, QAPair, RetrievalResponse
from kbeval.shared.utils import load_structured_file

logger = get_logger(__name__)


def _map_qa_pair(item: dict[str, Any]) -> dict[str, Any]:
    """Normalize field names of one QA pair record."""
    mapped = dict(item)

    if "question" not in mapped and "query" in mapped:
        mapped["question"] = mapped.pop("query")
    if "passage_ids" not in mapped and "relevant_ids" in mapped:
        mapped["passage_ids"] = mapped.pop("relevant_ids")

    groups = mapped.pop("ground_truth", None)
    if groups:
        if not all(isinstance(g, list) for g in groups):
            raise ValidationError("ground_truth must be a list of id lists")
        extra = list(mapped.get("extra_judgments") or [])
        if "passage_ids" in mapped:
            extra.extend(groups)
        else:
            mapped["passage_ids"] = groups[0]
            extra.extend(groups[1:])
        mapped["extra_judgments"] = extra

    return mapped


def load_dataset(path: str | Path) -> Dataset:
    """
    Load a dataset from a JSON, JSONL or YAML file.

    Args:
        path: Dataset file

    Returns:
        Dataset with its QA pairs

    Raises:
        ValidationError: If the file content has an unsupported shape
    """
    path = Path(path)
    data = load_structured_file(path)

    if isinstance(data, list):
        data = {"id": path.stem, "name": path.stem, "qa_pairs": data}
    elif not isinstance(data, dict):
        raise ValidationError(f"Unsupported dataset layout in {path}")

    data = dict(data)
    data.setdefault("id", path.stem)
    data.setdefault("name", data["id"])
    pairs = data.pop("qa_pairs", data.pop("questions", []))
    data["qa_pairs"] = [QAPair(**_map_qa_pair(item)) for item in pairs]

    dataset = Dataset(**data)
    logger.info(f"Loaded dataset {dataset.id} with {dataset.record_count} QA pairs from {path}")
    return dataset


def load_run(path: str | Path) -> dict[str, RetrievalResponse]:
    """
    Load recorded retrieval output keyed by QA-pair id or question text.

    Raises:
        ValidationError: If the file is not a JSON/YAML object
    """
    path = Path(path)
    data = load_structured_file(path)
    if not isinstance(data, dict):
        raise ValidationError(f"Run file {path} must map ids or questions to results")

    run: dict[str, RetrievalResponse] = {}
    for key, value in data.items():
        if isinstance(value, list):
            run[str(key)] = RetrievalResponse(retrieved_ids=value)
        elif isinstance(value, dict):
            run[str(key)] = RetrievalResponse(**value)
        else:
            raise ValidationError(f"Invalid run entry for {key!r} in {path}")

    logger.info(f"Loaded {len(run)} recorded retrievals from {path}")
    return run
