"""Exception taxonomy shared by every pipeline stage.

Each error names the stage it originates from so the CLI can report
*where* a run failed as well as *why*.
"""

from __future__ import annotations


class InsightRagError(Exception):
    """Base class for all InsightRAG errors."""

    stage: str = "pipeline"


class IngestionError(InsightRagError):
    """The record source is malformed or a required attribute is missing/untypeable."""

    stage = "ingestion"


class ConfigError(InsightRagError, ValueError):
    """Invalid configuration value (batch size, k, policy, metric, config file)."""

    stage = "configuration"


class EmbeddingError(InsightRagError):
    """One embedding batch failed.

    Attributes:
        batch_index: 0-based index of the failed batch (None outside batching).
        record_ids: Identifiers of every record in the failed batch.
    """

    stage = "embedding"

    def __init__(
        self,
        message: str,
        *,
        batch_index: int | None = None,
        record_ids: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.batch_index = batch_index
        self.record_ids = list(record_ids or [])


class QueryError(InsightRagError):
    """Invalid retrieval parameters (negative k, wrong vector dimensionality)."""

    stage = "retrieval"


class RetrievalError(InsightRagError):
    """The query text could not be embedded."""

    stage = "retrieval"


class GenerationError(InsightRagError):
    """The downstream text-generation call failed."""

    stage = "generation"
