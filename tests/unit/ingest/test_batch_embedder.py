"""Tests for the batch embedder (partitioning + failure policies)."""

from __future__ import annotations

import math
import threading
import time

import pytest

from insightrag.errors import ConfigError, EmbeddingError
from insightrag.ingest.batch_embedder import (
    BatchEmbedder,
    BatchFailurePolicy,
    partition,
)
from insightrag.store.vectors import VectorIndex
from stubs import StubEmbedder, make_record


def _no_sleep(_: float) -> None:
    pass


def _embedder(provider, **kwargs) -> BatchEmbedder:
    kwargs.setdefault("sleep", _no_sleep)
    return BatchEmbedder(provider, **kwargs)


def _ids(embeddings) -> list[str]:
    return [e.record.customer_id for e in embeddings]


# ------------------------------------------------------------------
# partition()
# ------------------------------------------------------------------


def test_partition_sizes(records):
    assert [len(b) for b in partition(records, 2)] == [2, 2, 1]


def test_partition_preserves_order(records):
    flat = [r for batch in partition(records, 2) for r in batch]
    assert flat == records


def test_partition_empty():
    assert partition([], 3) == []


@pytest.mark.parametrize("bad", [0, -1])
def test_partition_rejects_non_positive_chunk_size(records, bad):
    with pytest.raises(ConfigError):
        partition(records, bad)


def test_constructor_rejects_zero_chunk_size():
    with pytest.raises(ConfigError):
        BatchEmbedder(StubEmbedder(), chunk_size=0)


def test_unknown_policy_rejected():
    with pytest.raises(ConfigError, match="retry-forever"):
        BatchEmbedder(StubEmbedder(), policy="retry-forever")


# ------------------------------------------------------------------
# Provider call count + ordering
# ------------------------------------------------------------------


@pytest.mark.parametrize("n,chunk", [(1, 1), (5, 2), (5, 5), (7, 3), (10, 100), (0, 4)])
def test_one_provider_call_per_batch(n, chunk):
    provider = StubEmbedder()
    recs = [make_record(str(i)) for i in range(n)]
    _embedder(provider, chunk_size=chunk).embed_all(recs)
    assert len(provider.calls) == math.ceil(n / chunk)


def test_output_preserves_input_order(records):
    out = _embedder(StubEmbedder(), chunk_size=2).embed_all(records)
    assert _ids(out) == [r.customer_id for r in records]


def test_vectors_map_back_by_position(records):
    vectors = {r.summary: (float(i), 1.0) for i, r in enumerate(records)}
    out = _embedder(StubEmbedder(vectors=vectors), chunk_size=2).embed_all(records)
    assert [e.vector for e in out] == [(float(i), 1.0) for i in range(5)]


def test_summaries_are_sent_to_provider(records):
    provider = StubEmbedder()
    _embedder(provider, chunk_size=3).embed_all(records)
    assert provider.calls[0] == [r.summary for r in records[:3]]


def test_chunk_size_override_per_call(records):
    provider = StubEmbedder()
    _embedder(provider, chunk_size=100).embed_all(records, chunk_size=1)
    assert len(provider.calls) == 5


def test_delay_between_sequential_batches(records):
    pauses: list[float] = []
    BatchEmbedder(StubEmbedder(), chunk_size=2, batch_delay=0.2, sleep=pauses.append).embed_all(records)
    assert pauses == [0.2, 0.2]


# ------------------------------------------------------------------
# Failure policies
# ------------------------------------------------------------------


def test_fail_fast_reports_failed_batch_index(records):
    provider = StubEmbedder(fail_on_calls={1})
    embedder = _embedder(provider, chunk_size=2, policy=BatchFailurePolicy.FAIL_FAST)
    with pytest.raises(EmbeddingError) as exc_info:
        embedder.embed_all(records)
    assert exc_info.value.batch_index == 1
    assert exc_info.value.record_ids == ["2", "3"]
    assert len(provider.calls) == 2  # batch 2 never attempted


def test_skip_drops_whole_failed_batch(records):
    embedder = _embedder(StubEmbedder(fail_on_calls={1}), chunk_size=2, policy="skip")
    report = embedder.embed_batches(records)
    assert _ids(report.embeddings) == ["0", "1", "4"]
    assert report.batch_count == 3
    assert [f.batch_index for f in report.failures] == [1]
    assert report.failures[0].record_ids == ["2", "3"]
    assert report.skipped_records == 2
    assert not report.ok


def test_wrong_vector_count_is_a_batch_failure(records):
    class ShortProvider:
        def embed(self, texts):
            return [[1.0, 0.0]] * (len(texts) - 1)

    report = _embedder(ShortProvider(), chunk_size=2, policy="skip").embed_batches(records)
    # the last batch has one record → zero vectors returned, also a failure
    assert report.embeddings == []
    assert len(report.failures) == 3


def test_retry_failures_reembeds_only_failed_batches(records):
    provider = StubEmbedder(fail_on_calls={1})
    embedder = _embedder(provider, chunk_size=2, policy="skip")
    first = embedder.embed_batches(records)

    retried = embedder.retry_failures(first)
    assert retried.ok
    assert _ids(retried.embeddings) == ["2", "3"]
    assert provider.calls[-1] == [records[2].summary, records[3].summary]


def test_retry_into_dedupe_index_never_duplicates(records):
    embedder = _embedder(StubEmbedder(fail_on_calls={1}), chunk_size=2, policy="skip")
    index = VectorIndex(dedupe=True)
    first = embedder.embed_batches(records)
    index.insert(first.embeddings)

    retried = embedder.retry_failures(first)
    index.insert(retried.embeddings)
    index.insert(retried.embeddings)  # repeated retry is a no-op
    assert len(index) == 5


# ------------------------------------------------------------------
# Parallel execution
# ------------------------------------------------------------------


class _SlowReverseProvider:
    """Later batches finish first; exercises ordered assembly."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.calls = 0

    def embed(self, texts):
        with self.lock:
            self.calls += 1
        age = int(texts[0].split(" year old")[0].rsplit(" ", 1)[-1])
        time.sleep(max(0.0, (30 - age) * 0.01))
        return [[1.0, float(len(t))] for t in texts]


def test_parallel_output_keeps_input_order(records):
    provider = _SlowReverseProvider()
    out = _embedder(provider, chunk_size=1, max_workers=4).embed_all(records)
    assert _ids(out) == ["0", "1", "2", "3", "4"]
    assert provider.calls == 5


def test_parallel_skip_drops_failed_batch(records):
    class FailSecond:
        def embed(self, texts):
            if texts[0] == records[2].summary:
                raise RuntimeError("rate limited")
            return [[1.0, 0.0] for _ in texts]

    report = _embedder(FailSecond(), chunk_size=2, max_workers=3, policy="skip").embed_batches(records)
    assert _ids(report.embeddings) == ["0", "1", "4"]
    assert [f.batch_index for f in report.failures] == [1]


def test_parallel_fail_fast_raises_lowest_failed_batch(records):
    class FailSecond:
        def embed(self, texts):
            if texts[0] == records[2].summary:
                raise RuntimeError("boom")
            return [[1.0, 0.0] for _ in texts]

    embedder = _embedder(FailSecond(), chunk_size=2, max_workers=3, policy="fail-fast")
    with pytest.raises(EmbeddingError) as exc_info:
        embedder.embed_all(records)
    assert exc_info.value.batch_index == 1


def test_parallel_batch_timeout_counts_as_failure(records):
    release = threading.Event()

    class Hang:
        def embed(self, texts):
            if texts[0] == records[0].summary:
                release.wait(2.0)
            return [[1.0, 0.0] for _ in texts]

    embedder = _embedder(Hang(), chunk_size=1, max_workers=5, policy="skip", batch_timeout=0.1)
    try:
        report = embedder.embed_batches(records)
    finally:
        release.set()
    assert [f.batch_index for f in report.failures] == [0]
    assert isinstance(report.failures[0].cause, TimeoutError)
    assert _ids(report.embeddings) == ["1", "2", "3", "4"]


def test_parallel_queued_batches_get_full_timeout_from_start(records):
    class Steady:
        def embed(self, texts):
            time.sleep(0.2)
            return [[1.0, 0.0] for _ in texts]

    # Two workers, five batches: the last batch starts ~0.4s after submission.
    embedder = _embedder(Steady(), chunk_size=1, max_workers=2, policy="skip", batch_timeout=0.5)
    report = embedder.embed_batches(records)
    assert report.ok
    assert _ids(report.embeddings) == ["0", "1", "2", "3", "4"]


def test_parallel_batch_never_started_times_out(records):
    release = threading.Event()

    class HangAll:
        def embed(self, texts):
            release.wait(2.0)
            return [[1.0, 0.0] for _ in texts]

    embedder = _embedder(HangAll(), chunk_size=1, max_workers=2, policy="skip", batch_timeout=0.1)
    began = time.monotonic()
    try:
        report = embedder.embed_batches(records)
    finally:
        release.set()
    assert time.monotonic() - began < 1.5
    assert [f.batch_index for f in report.failures] == [0, 1, 2, 3, 4]
    assert all(isinstance(f.cause, TimeoutError) for f in report.failures)


# ------------------------------------------------------------------
# Dimensionality
# ------------------------------------------------------------------


class _OddBatchProvider:
    """Returns 3-dim vectors for the batch starting with *odd_text*, 2-dim otherwise."""

    def __init__(self, odd_text: str) -> None:
        self.odd_text = odd_text

    def embed(self, texts):
        width = 3 if texts[0] == self.odd_text else 2
        return [[1.0] * width for _ in texts]


def test_batch_with_other_dimensionality_is_skipped(records):
    provider = _OddBatchProvider(records[2].summary)
    report = _embedder(provider, chunk_size=2, policy="skip").embed_batches(records)
    assert _ids(report.embeddings) == ["0", "1", "4"]
    assert [f.batch_index for f in report.failures] == [1]
    assert isinstance(report.failures[0].cause, EmbeddingError)
    assert "expected 2" in str(report.failures[0].cause)


def test_batch_with_other_dimensionality_fails_fast(records):
    provider = _OddBatchProvider(records[2].summary)
    embedder = _embedder(provider, chunk_size=2, policy="fail-fast")
    with pytest.raises(EmbeddingError) as exc_info:
        embedder.embed_batches(records)
    assert exc_info.value.batch_index == 1
    assert exc_info.value.record_ids == ["2", "3"]


def test_parallel_dimensionality_follows_input_order(records):
    provider = _OddBatchProvider(records[2].summary)
    report = _embedder(provider, chunk_size=2, max_workers=3, policy="skip").embed_batches(records)
    assert _ids(report.embeddings) == ["0", "1", "4"]
    assert [f.batch_index for f in report.failures] == [1]


def test_explicit_dimensions_reject_every_other_size(records):
    report = _embedder(StubEmbedder(), chunk_size=2, policy="skip").embed_batches(
        records, dimensions=3
    )
    assert report.embeddings == []
    assert [f.batch_index for f in report.failures] == [0, 1, 2]


def test_retry_keeps_dimensionality_of_first_run(records):
    class ThreeDimOnRetry:
        def __init__(self):
            self.calls = 0

        def embed(self, texts):
            self.calls += 1
            if self.calls == 2:
                raise RuntimeError("flaky")
            width = 3 if self.calls > 3 else 2
            return [[1.0] * width for _ in texts]

    embedder = _embedder(ThreeDimOnRetry(), chunk_size=2, policy="skip")
    first = embedder.embed_batches(records)
    retried = embedder.retry_failures(first)
    assert [f.batch_index for f in retried.failures] == [1]
    assert "expected 2" in str(retried.failures[0].cause)
