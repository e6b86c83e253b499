"""Dense retriever: embed the query, then look it up in the vector index.

The query is embedded with the same provider (and therefore the same
dimensionality) that produced the indexed vectors.
"""

from __future__ import annotations

import logging

from insightrag.errors import RetrievalError
from insightrag.rag.llm_client import EmbeddingProvider
from insightrag.store.models import ScoredRecord
from insightrag.store.vectors import VectorIndex

log = logging.getLogger(__name__)


def embed_query(query: str, provider: EmbeddingProvider) -> list[float]:
    """Embed *query* with *provider*.

    Raises:
        RetrievalError: If the provider fails or returns no vector.
    """
    try:
        vectors = provider.embed([query])
    except Exception as exc:
        raise RetrievalError(f"Could not embed query: {exc}") from exc
    if len(vectors) != 1:
        raise RetrievalError(
            f"Could not embed query: provider returned {len(vectors)} vectors for 1 input"
        )
    return list(vectors[0])


def retrieve(
    query: str,
    provider: EmbeddingProvider,
    index: VectorIndex,
    k: int,
) -> list[ScoredRecord]:
    """Return the top-*k* records for *query*, best first.

    Raises:
        RetrievalError: If the query cannot be embedded.
        QueryError: If *k* is negative or the vector does not fit the index.
    """
    hits = index.query(embed_query(query, provider), k)
    top = f"{hits[0].score:.3f}" if hits else "n/a"
    log.info("Retrieved %d profile(s) (top score %s)", len(hits), top)
    return hits
