"""In-memory vector index with brute-force k-nearest-neighbour search.

Scores are similarities, higher is more similar for every metric:
  cosine     dot(a, b) / (|a| |b|)     0.0 when either vector is zero
  dot        dot(a, b)
  euclidean  -|a - b|

Duplicate policy: by default the same record inserted twice yields two
entries. With ``dedupe=True`` an entry whose ``customer_id`` is already
indexed is ignored, so re-inserting a retried batch is a no-op.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Callable, Union

import numpy as np

from insightrag.errors import ConfigError, EmbeddingError, QueryError
from insightrag.store.models import CustomerFeedback, Embedding, ScoredRecord

MetricFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


def cosine_similarity(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    safe = np.where(norms > 0, norms, 1.0)
    return np.where(norms > 0, (matrix @ vector) / safe, 0.0)


def dot_similarity(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    return matrix @ vector


def euclidean_similarity(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    return -np.linalg.norm(matrix - vector, axis=1)


METRICS: dict[str, MetricFn] = {
    "cosine": cosine_similarity,
    "dot": dot_similarity,
    "euclidean": euclidean_similarity,
}


def resolve_metric(metric: Union[str, MetricFn]) -> MetricFn:
    """Return the scoring function for *metric* (name or callable)."""
    if callable(metric):
        return metric
    try:
        return METRICS[metric]
    except KeyError:
        raise ConfigError(
            f"Unknown similarity metric '{metric}'. "
            f"Choose one of: {', '.join(sorted(METRICS))}"
        ) from None


class VectorIndex:
    """Thread-safe in-memory store of (vector, record) entries.

    Args:
        metric: Metric name (``cosine``, ``dot``, ``euclidean``) or a callable
            ``(matrix, vector) -> scores``.
        dedupe: Ignore entries whose record id is already indexed.
    """

    def __init__(self, metric: Union[str, MetricFn] = "cosine", dedupe: bool = False) -> None:
        self._score = resolve_metric(metric)
        self.dedupe = dedupe
        self._lock = threading.Lock()
        self._records: list[CustomerFeedback] = []
        self._rows: list[np.ndarray] = []
        self._matrix: np.ndarray | None = None  # rebuilt lazily after inserts
        self._ids: set[str] = set()
        self._dimensions: int | None = None

    @property
    def dimensions(self) -> int | None:
        """Vector length fixed by the first insert; None while empty."""
        return self._dimensions

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, customer_id: object) -> bool:
        return customer_id in self._ids

    def insert(self, entries: Sequence[Embedding]) -> int:
        """Add *entries* in order. Returns the number of entries actually added.

        Raises:
            EmbeddingError: If a vector's length differs from the index
                dimensionality. Nothing from *entries* is added in that case.
        """
        with self._lock:
            dims = self._dimensions
            pending: list[tuple[CustomerFeedback, np.ndarray]] = []
            pending_ids: set[str] = set()
            for entry in entries:
                cid = entry.record.customer_id
                vec = np.asarray(entry.vector, dtype=np.float64)
                if vec.ndim != 1 or vec.size == 0:
                    raise EmbeddingError(
                        f"Embedding for '{cid}' is not a 1-D vector",
                        record_ids=[cid],
                    )
                if dims is None:
                    dims = vec.size
                elif vec.size != dims:
                    raise EmbeddingError(
                        f"Embedding for '{cid}' has {vec.size} dimensions, index expects {dims}",
                        record_ids=[cid],
                    )
                if self.dedupe and (cid in self._ids or cid in pending_ids):
                    continue
                pending.append((entry.record, vec))
                pending_ids.add(cid)

            for record, vec in pending:
                self._records.append(record)
                self._rows.append(vec)
                self._ids.add(record.customer_id)
            if pending:
                self._dimensions = dims
                self._matrix = None
            return len(pending)

    def query(self, vector: Sequence[float], k: int) -> list[ScoredRecord]:
        """Return the ``min(k, len(self))`` most similar records, best first.

        Ties keep insertion order. ``k == 0`` or an empty index yields ``[]``.

        Raises:
            QueryError: If ``k < 0`` or *vector* has the wrong dimensionality.
        """
        if k < 0:
            raise QueryError(f"k must be >= 0, got {k}")
        if k == 0:
            return []

        with self._lock:
            if not self._records:
                return []
            vec = np.asarray(vector, dtype=np.float64)
            if vec.ndim != 1 or vec.size != self._dimensions:
                raise QueryError(
                    f"Query vector has {vec.size} dimensions, index expects {self._dimensions}"
                )
            if self._matrix is None:
                self._matrix = np.vstack(self._rows)
            scores = np.asarray(self._score(self._matrix, vec), dtype=np.float64)
            order = np.argsort(-scores, kind="stable")[:k]
            return [
                ScoredRecord(record=self._records[i], score=float(scores[i]))
                for i in order
            ]
