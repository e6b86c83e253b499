"""Domain models for the record store and vector index."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class CustomerFeedback:
    """One customer feedback row.

    Equality and ordering use ``customer_id`` only; ``summary`` is filled by
    :func:`insightrag.store.records.derive_summary`.
    """

    customer_id: str
    age: int = field(compare=False)
    gender: str = field(compare=False)
    country: str = field(compare=False)
    income: float = field(compare=False)
    product_quality: int = field(compare=False)
    service_quality: int = field(compare=False)
    purchase_frequency: int = field(compare=False)
    feedback_score: str = field(compare=False)
    loyalty_level: str = field(compare=False)
    satisfaction_score: float = field(compare=False)
    summary: str = field(default="", compare=False)


@dataclass(frozen=True)
class Embedding:
    """A record paired with the vector of its summary."""

    record: CustomerFeedback
    vector: tuple[float, ...]

    @property
    def dimensions(self) -> int:
        return len(self.vector)


@dataclass(frozen=True)
class ScoredRecord:
    """A retrieved record with its similarity score (higher = more similar)."""

    record: CustomerFeedback
    score: float
