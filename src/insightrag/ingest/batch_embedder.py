"""Batch embedder — fixed-size batching of record summaries.

For N records and chunk size c the records are split into ceil(N / c)
contiguous batches (the last may be smaller) and the provider is called
exactly once per batch. Vectors map back to records by position.

Batch failure policy:
  fail-fast  the first failing batch aborts the run with EmbeddingError
             carrying the batch index and record ids
  skip       the failure is logged and recorded in the report; every
             record of that batch is left out, never part of it

Output order always equals input order minus skipped batches, also when
batches run on a thread pool.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from insightrag.errors import ConfigError, EmbeddingError
from insightrag.rag.llm_client import EmbeddingProvider
from insightrag.store.models import CustomerFeedback, Embedding

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_BATCH_DELAY = 0.2


class BatchFailurePolicy(str, enum.Enum):
    FAIL_FAST = "fail-fast"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: "str | BatchFailurePolicy") -> "BatchFailurePolicy":
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(
                f"Unknown batch failure policy '{value}'. Use 'fail-fast' or 'skip'."
            ) from None


@dataclass
class BatchFailure:
    """A batch that could not be embedded."""

    batch_index: int
    records: list[CustomerFeedback]
    cause: BaseException

    @property
    def record_ids(self) -> list[str]:
        return [r.customer_id for r in self.records]


@dataclass
class EmbeddingReport:
    """Result of one embedding run: ordered embeddings plus skipped batches."""

    embeddings: list[Embedding] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    batch_count: int = 0

    @property
    def skipped_records(self) -> int:
        return sum(len(f.records) for f in self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


def partition(records: Sequence[CustomerFeedback], chunk_size: int) -> list[list[CustomerFeedback]]:
    """Split *records* into contiguous batches of at most *chunk_size*.

    Raises:
        ConfigError: If ``chunk_size <= 0``.
    """
    _check_chunk_size(chunk_size)
    return [list(records[i:i + chunk_size]) for i in range(0, len(records), chunk_size)]


class BatchEmbedder:
    """Embed record summaries batch by batch through an EmbeddingProvider.

    Args:
        provider: Embedding provider (one ``embed()`` call per batch).
        chunk_size: Maximum records per batch (> 0).
        policy: ``fail-fast`` or ``skip`` (see module docstring).
        max_workers: Threads used for batches; 1 = sequential.
        batch_timeout: Seconds to wait for each batch on the thread pool;
            a timeout is a batch failure. Ignored when sequential.
        batch_delay: Pause between sequential batches (rate-limit courtesy).
        sleep: Injectable sleep function (tests pass a no-op).
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        policy: BatchFailurePolicy | str = BatchFailurePolicy.SKIP,
        max_workers: int = 1,
        batch_timeout: float | None = None,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        _check_chunk_size(chunk_size)
        if max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {max_workers}")
        self.provider = provider
        self.chunk_size = chunk_size
        self.policy = BatchFailurePolicy.parse(policy)
        self.max_workers = max_workers
        self.batch_timeout = batch_timeout
        self.batch_delay = batch_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed_all(
        self, records: Sequence[CustomerFeedback], chunk_size: int | None = None
    ) -> list[Embedding]:
        """Embed *records* and return embeddings in input order."""
        return self.embed_batches(records, chunk_size).embeddings

    def embed_batches(
        self,
        records: Sequence[CustomerFeedback],
        chunk_size: int | None = None,
        dimensions: int | None = None,
    ) -> EmbeddingReport:
        """Embed *records* batch by batch and return the full report.

        All embeddings of one run share a dimensionality: *dimensions* when
        given (e.g. ``index.dimensions``), otherwise that of the first
        successful batch. A batch of any other size is a batch failure.

        Raises:
            ConfigError: If the chunk size is not positive.
            EmbeddingError: Under fail-fast, on the first failing batch.
        """
        size = self.chunk_size if chunk_size is None else chunk_size
        batches = partition(records, size)
        log.info(
            "Embedding %d records in %d batch(es) of up to %d",
            len(records), len(batches), size,
        )
        return self._run(list(enumerate(batches)), dimensions)

    def retry_failures(
        self, report: EmbeddingReport, dimensions: int | None = None
    ) -> EmbeddingReport:
        """Re-embed only the failed batches of *report*, keeping their indices."""
        if dimensions is None and report.embeddings:
            dimensions = report.embeddings[0].dimensions
        return self._run([(f.batch_index, f.records) for f in report.failures], dimensions)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(
        self, batches: list[tuple[int, list[CustomerFeedback]]], dimensions: int | None
    ) -> EmbeddingReport:
        if self.max_workers > 1 and len(batches) > 1:
            outcomes = self._run_parallel(batches, dimensions)
        else:
            outcomes = self._run_sequential(batches, dimensions)

        report = EmbeddingReport(batch_count=len(batches))
        for (index, batch), outcome in zip(batches, outcomes):
            if isinstance(outcome, BaseException):
                report.failures.append(BatchFailure(index, batch, outcome))
            else:
                report.embeddings.extend(outcome)

        log.info(
            "Embedded %d record(s); %d batch(es) skipped (%d record(s))",
            len(report.embeddings), len(report.failures), report.skipped_records,
        )
        return report

    def _run_sequential(self, batches, dimensions):
        outcomes: list[list[Embedding] | BaseException] = []
        for n, (index, batch) in enumerate(batches):
            if n and self.batch_delay > 0:
                self._sleep(self.batch_delay)
            try:
                embeddings = self._embed_batch(index, batch)
                dimensions = _check_dimensions(index, batch, embeddings, dimensions)
            except Exception as exc:
                outcomes.append(self._handle_failure(index, batch, exc))
            else:
                outcomes.append(embeddings)
        return outcomes

    def _run_parallel(self, batches, dimensions):
        outcomes: list[list[Embedding] | BaseException | None] = [None] * len(batches)
        started: dict[int, float] = {}

        def work(pos: int, index: int, batch: list[CustomerFeedback]) -> list[Embedding]:
            started[pos] = time.monotonic()
            return self._embed_batch(index, batch)

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="embed")
        try:
            futures = [
                pool.submit(work, pos, index, batch)
                for pos, (index, batch) in enumerate(batches)
            ]
            # Results are taken in submission order so the dimensionality
            # lock and fail-fast both see batches in input order.
            for pos, ((index, batch), future) in enumerate(zip(batches, futures)):
                try:
                    if not self._await(future, pos, started):
                        future.cancel()
                        raise TimeoutError(
                            f"batch did not finish within {self.batch_timeout}s"
                        )
                    embeddings = future.result()
                    dimensions = _check_dimensions(index, batch, embeddings, dimensions)
                except Exception as exc:
                    outcomes[pos] = self._handle_failure(index, batch, exc)
                else:
                    outcomes[pos] = embeddings
        finally:
            # Timed-out or cancelled batches never reach the report.
            pool.shutdown(wait=False, cancel_futures=True)
        return outcomes

    def _await(self, future: Future, pos: int, started: dict[int, float]) -> bool:
        """Wait for *future* until ``batch_timeout`` after its batch started.

        The clock starts when a worker picks the batch up, not at submission,
        so batches queued behind busy workers get their full allowance. A
        batch that no worker picks up within ``batch_timeout`` of being
        awaited times out as well. Returns False on timeout.
        """
        if self.batch_timeout is None:
            wait([future])
            return True
        queued_deadline = time.monotonic() + self.batch_timeout
        while not future.done():
            began = started.get(pos)
            deadline = queued_deadline if began is None else began + self.batch_timeout
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return future.done()
            wait([future], timeout=remaining)
        return True

    def _embed_batch(self, index: int, batch: list[CustomerFeedback]) -> list[Embedding]:
        log.debug("Batch %d: embedding %d record(s)", index, len(batch))
        vectors = self.provider.embed([r.summary for r in batch])
        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"provider returned {len(vectors)} vectors for {len(batch)} records",
                batch_index=index,
                record_ids=[r.customer_id for r in batch],
            )
        dims = {len(v) for v in vectors}
        if len(dims) > 1:
            raise EmbeddingError(
                f"provider returned vectors of mixed dimensionality {sorted(dims)}",
                batch_index=index,
                record_ids=[r.customer_id for r in batch],
            )
        log.debug("Batch %d: done", index)
        return [
            Embedding(record=r, vector=tuple(float(x) for x in v))
            for r, v in zip(batch, vectors)
        ]

    def _handle_failure(
        self, index: int, batch: list[CustomerFeedback], exc: BaseException
    ) -> BaseException:
        ids = [r.customer_id for r in batch]
        if self.policy is BatchFailurePolicy.FAIL_FAST:
            log.error("Batch %d failed, aborting: %s", index, exc)
            raise EmbeddingError(
                f"Batch {index} failed ({len(batch)} records): {exc}",
                batch_index=index,
                record_ids=ids,
            ) from exc
        log.warning(
            "Batch %d failed, skipping %d record(s) [%s]: %s",
            index, len(batch), _preview_ids(ids), exc,
        )
        return exc


def _check_chunk_size(chunk_size: int) -> None:
    if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size <= 0:
        raise ConfigError(f"chunk_size must be a positive integer, got {chunk_size!r}")


def _preview_ids(ids: list[str], limit: int = 5) -> str:
    head = ", ".join(ids[:limit])
    return head if len(ids) <= limit else f"{head}, … +{len(ids) - limit}"


def _check_dimensions(
    index: int,
    batch: list[CustomerFeedback],
    embeddings: list[Embedding],
    expected: int | None,
) -> int | None:
    """Return the run's dimensionality, raising if *embeddings* disagree with it."""
    if not embeddings:
        return expected
    dims = embeddings[0].dimensions
    if expected is not None and dims != expected:
        raise EmbeddingError(
            f"provider returned {dims}-dimensional vectors, expected {expected}",
            batch_index=index,
            record_ids=[r.customer_id for r in batch],
        )
    return dims
