"""Prompt template for retrieval-augmented analysis.

Layout:
  Analysis Query: {query}

  Relevant Customer Profiles for Context:
  * Similarity Score: {score:.2f}
  {summary}
  ...one block per retrieved profile, best first

The system preamble lives with the generator (llm_client.ANALYST_PREAMBLE).
"""

from __future__ import annotations

from collections.abc import Sequence

from insightrag.store.models import ScoredRecord


def format_profile(hit: ScoredRecord) -> str:
    return f"* Similarity Score: {hit.score:.2f}\n{hit.record.summary}\n"


def build_prompt(query: str, hits: Sequence[ScoredRecord]) -> str:
    """Combine *query* with the summaries of *hits* into one prompt string."""
    profiles = "".join(format_profile(hit) for hit in hits)
    return (
        f"Analysis Query: {query}\n\n"
        f"Relevant Customer Profiles for Context:\n{profiles}"
    )
