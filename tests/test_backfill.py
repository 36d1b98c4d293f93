"""Tests for the embedding backfill orchestrator."""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

import pytest

from qbank_search.errors import ConfigurationError
from qbank_search.indexing import BackfillConfig, BackfillOrchestrator, BatchReport

from .conftest import FakeProvider, FakeStore, make_records


def _orchestrator(
    store: FakeStore, provider: FakeProvider, sleeps: list[float]
) -> BackfillOrchestrator:
    return BackfillOrchestrator(store, provider, sleep=sleeps.append)


# ---------------------------------------------------------------------------
# Batch cycles
# ---------------------------------------------------------------------------


def test_hundred_rows_in_batches_of_64_and_groups_of_32() -> None:
    store = FakeStore(make_records(100))
    provider = FakeProvider()
    sleeps: list[float] = []
    reports: list[BatchReport] = []

    summary = _orchestrator(store, provider, sleeps).run(
        BackfillConfig(batch_size=64, group_size=32, delay_ms=200),
        on_batch=reports.append,
    )

    assert [size for _, _, size in store.fetch_calls] == [64, 36, 0]
    assert [len(call) for call in provider.embed_calls] == [32, 32, 32, 4]
    assert summary.missing_at_start == 100
    assert summary.embedded == 100
    assert summary.processed == 100
    assert summary.batches == 2
    assert summary.missing_at_end == 0
    assert summary.skipped_groups == 0
    assert summary.failed_writes == 0
    assert [r.remaining for r in reports] == [36, 0]
    assert [r.cumulative for r in reports] == [64, 100]
    assert sleeps == [0.2, 0.2]


def test_inputs_are_normalized_records() -> None:
    store = FakeStore(make_records(1))
    provider = FakeProvider()

    _orchestrator(store, provider, []).run(BackfillConfig(delay_ms=0))

    assert provider.embed_calls == [
        ["[Category: networking]\n[Exam: N10-008]\n[Level: easy]\nQ: Question number 1?"]
    ]


def test_rerun_after_completion_does_nothing() -> None:
    store = FakeStore(make_records(10))
    provider = FakeProvider()
    orchestrator = _orchestrator(store, provider, [])
    orchestrator.run(BackfillConfig(delay_ms=0))
    first_vectors = dict(store.embeddings)
    provider.embed_calls.clear()

    summary = orchestrator.run(BackfillConfig(delay_ms=0))

    assert summary.embedded == 0
    assert summary.batches == 0
    assert provider.embed_calls == []
    assert store.embeddings == first_vectors


def test_already_embedded_rows_are_never_fetched() -> None:
    records = make_records(4)
    embedded = replace(records[1], embedding=[9.0] * 4)
    store = FakeStore([records[0], embedded, records[2], records[3]])
    provider = FakeProvider()

    summary = _orchestrator(store, provider, []).run(BackfillConfig(delay_ms=0))

    assert summary.embedded == 3
    assert store.embeddings[2] == [9.0] * 4
    assert 2 not in store.write_calls


def test_no_sleep_when_delay_is_zero() -> None:
    sleeps: list[float] = []

    _orchestrator(FakeStore(make_records(5)), FakeProvider(), sleeps).run(
        BackfillConfig(batch_size=2, delay_ms=0)
    )

    assert sleeps == []


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


def test_dry_run_makes_no_provider_calls_and_no_writes() -> None:
    store = FakeStore(make_records(100))
    provider = FakeProvider()
    sleeps: list[float] = []

    summary = _orchestrator(store, provider, sleeps).run(
        BackfillConfig(batch_size=64, dry_run=True)
    )

    assert provider.embed_calls == []
    assert store.write_calls == []
    assert len(store.fetch_calls) == 1
    assert summary.dry_run is True
    assert summary.processed == 64
    assert summary.embedded == 0
    assert summary.missing_at_end == 100


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


def test_failed_group_is_skipped_and_left_for_next_run() -> None:
    store = FakeStore(make_records(100))
    provider = FakeProvider(failing_calls=[2])
    orchestrator = _orchestrator(store, provider, [])

    summary = orchestrator.run(BackfillConfig(batch_size=64, group_size=32, delay_ms=0))

    assert summary.skipped_groups == 1
    assert summary.embedded == 68
    assert summary.missing_at_end == 32
    assert all(rid not in store.embeddings for rid in range(33, 65))
    # cursor moved past the skipped ids within the run
    assert [size for _, _, size in store.fetch_calls] == [64, 36, 0]

    retry = orchestrator.run(BackfillConfig(batch_size=64, group_size=32, delay_ms=0))

    assert retry.embedded == 32
    assert retry.missing_at_end == 0


def test_wrong_vector_count_skips_the_group() -> None:
    store = FakeStore(make_records(4))
    provider = FakeProvider(short_calls=[1])

    summary = _orchestrator(store, provider, []).run(
        BackfillConfig(group_size=2, delay_ms=0)
    )

    assert summary.skipped_groups == 1
    assert summary.embedded == 2
    assert sorted(store.embeddings) == [3, 4]


def test_row_write_failure_does_not_abort_the_group() -> None:
    store = FakeStore(make_records(10), failing_writes=[5])
    provider = FakeProvider()

    summary = _orchestrator(store, provider, []).run(BackfillConfig(delay_ms=0))

    assert summary.failed_writes == 1
    assert summary.embedded == 9
    assert summary.missing_at_end == 1
    assert store.write_calls == list(range(1, 11))


def test_row_deleted_mid_run_counts_as_failed_write() -> None:
    class _VanishingStore(FakeStore):
        def update_embedding(self, question_id: int, embedding: Sequence[float]) -> bool:
            if question_id == 2:
                self.records.pop(question_id)
            return super().update_embedding(question_id, embedding)

    store = _VanishingStore(make_records(3))

    summary = _orchestrator(store, FakeProvider(), []).run(BackfillConfig(delay_ms=0))

    assert summary.failed_writes == 1
    assert summary.embedded == 2
    assert summary.missing_at_end == 0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_dimension_mismatch_fails_before_any_fetch() -> None:
    store = FakeStore(make_records(3), embedding_dim=4)
    provider = FakeProvider(dim=8)

    with pytest.raises(ConfigurationError, match="dimension"):
        _orchestrator(store, provider, []).run()

    assert store.fetch_calls == []


@pytest.mark.parametrize(
    "config",
    [
        BackfillConfig(batch_size=0),
        BackfillConfig(group_size=0),
        BackfillConfig(delay_ms=-1),
    ],
)
def test_invalid_config_is_rejected(config: BackfillConfig) -> None:
    store = FakeStore(make_records(1))

    with pytest.raises(ConfigurationError):
        _orchestrator(store, FakeProvider(), []).run(config)

    assert store.fetch_calls == []
