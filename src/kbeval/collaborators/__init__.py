"""
Collaborators Module - Interfaces and in-process implementations.
=================================================================

- base: Protocols for dataset/KB lookup, retrieval and task storage
- memory: Thread-safe in-memory repositories and task store
- replay: Retriever that serves recorded retrieval output
"""

from kbeval.collaborators.base import (
    DatasetLookup,
    KnowledgeBaseLookup,
    RetrievalCollaborator,
    TaskStore,
)
from kbeval.collaborators.memory import (
    InMemoryDatasetRepository,
    InMemoryKnowledgeBaseRepository,
    InMemoryTaskStore,
)
from kbeval.collaborators.replay import ReplayRetriever

__all__ = [
    "DatasetLookup",
    "KnowledgeBaseLookup",
    "RetrievalCollaborator",
    "TaskStore",
    "InMemoryDatasetRepository",
    "InMemoryKnowledgeBaseRepository",
    "InMemoryTaskStore",
    "ReplayRetriever",
]
