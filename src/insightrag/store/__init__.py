"""InsightRAG record store and vector index."""

from insightrag.store.models import CustomerFeedback, Embedding, ScoredRecord
from insightrag.store.records import RecordStore, derive_summary, load
from insightrag.store.vectors import METRICS, VectorIndex, resolve_metric

__all__ = [
    "CustomerFeedback",
    "Embedding",
    "ScoredRecord",
    "RecordStore",
    "derive_summary",
    "load",
    "METRICS",
    "VectorIndex",
    "resolve_metric",
]
