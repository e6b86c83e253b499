"""InsightRAG ingest pipeline — fixed-size batching and batch embedding."""

from insightrag.ingest.batch_embedder import (
    BatchEmbedder,
    BatchFailure,
    BatchFailurePolicy,
    EmbeddingReport,
    partition,
)

__all__ = [
    "BatchEmbedder",
    "BatchFailure",
    "BatchFailurePolicy",
    "EmbeddingReport",
    "partition",
]
