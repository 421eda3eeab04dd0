"""
kbeval - Retrieval Quality Evaluation for Knowledge Bases
=========================================================

Scores the retrieval step of a knowledge-base question answering system
against datasets of questions annotated with their relevant documents.

For every question the system retrieves a ranked list of document ids,
which is scored with five standard metrics:

- Precision, Recall and F1 (set overlap)
- MRR (rank of the first relevant document)
- NDCG@k (graded ranking quality)

Evaluation runs are tracked as tasks (pending → running → completed or
failed) that execute in the background, report progress, and can be
cancelled, listed and deleted.
"""

__version__ = "0.1.0"
__author__ = "kbeval Team"
__license__ = "MIT"

# Public API - lazy imports to avoid circular dependencies and speed up startup
__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Main modules (imported on demand)
    "shared",
    "evaluation",
    "collaborators",
    "cli",
]
