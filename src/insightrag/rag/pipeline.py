"""Retrieval-augmented query pipeline.

Stages, in order:
  1. embed_query   query text → vector              (retriever.embed_query)
  2. retrieve      vector → top-k ScoredRecords     (VectorIndex.query)
  3. build_prompt  query + hits → prompt string     (templates.build_prompt, pure)
  4. generate      prompt → response                (TextGenerator, external I/O)

Stages 1-3 are exposed separately (``prepare``) so they can be tested
without a generator; only stage 4 talks to the chat provider.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from insightrag.errors import ConfigError
from insightrag.ingest.batch_embedder import BatchEmbedder, EmbeddingReport
from insightrag.rag.llm_client import EmbeddingProvider, TextGenerator
from insightrag.rag.retriever import retrieve
from insightrag.rag.templates import build_prompt
from insightrag.store.models import CustomerFeedback, ScoredRecord
from insightrag.store.vectors import VectorIndex

log = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


@dataclass
class PreparedQuery:
    query: str
    hits: list[ScoredRecord]
    prompt: str


def build_index(
    records: Sequence[CustomerFeedback],
    embedder: BatchEmbedder,
    index: VectorIndex,
) -> EmbeddingReport:
    """Embed *records* and insert the successful embeddings into *index*.

    Returns the embedding report so partial success can be surfaced.
    Under fail-fast nothing is inserted when a batch fails. Batches whose
    vectors do not match the index dimensionality are batch failures.
    """
    report = embedder.embed_batches(records, dimensions=index.dimensions)
    added = index.insert(report.embeddings)
    log.info("Indexed %d entr%s (index size %d)", added, "y" if added == 1 else "ies", len(index))
    return report


class QueryPipeline:
    """Answer analysis queries from indexed customer profiles.

    Args:
        provider: Embedding provider used for the query (same as the index).
        index: Populated vector index.
        generator: Text generator receiving the assembled prompt.
        top_k: Default number of profiles to retrieve.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        index: VectorIndex,
        generator: TextGenerator,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        _check_k(top_k)
        self.provider = provider
        self.index = index
        self.generator = generator
        self.top_k = top_k

    def prepare(self, query: str, k: int | None = None) -> PreparedQuery:
        """Run stages 1-3 and return the prompt without calling the generator."""
        k = self.top_k if k is None else k
        _check_k(k)
        if not query or not query.strip():
            raise ConfigError("Query must not be empty.")
        hits = retrieve(query, self.provider, self.index, k)
        return PreparedQuery(query=query, hits=hits, prompt=build_prompt(query, hits))

    def run(self, query: str, k: int | None = None) -> str:
        """Return the generator's response for *query*, unmodified.

        Raises:
            ConfigError: Empty query or ``k < 1``.
            RetrievalError: The query could not be embedded.
            QueryError: The query vector does not fit the index.
            GenerationError: The generator failed (propagated as-is).
        """
        prepared = self.prepare(query, k)
        return self.generator.generate(prepared.prompt)


def _check_k(k: int) -> None:
    if not isinstance(k, int) or isinstance(k, bool) or k < 1:
        raise ConfigError(f"top_k must be a positive integer, got {k!r}")
