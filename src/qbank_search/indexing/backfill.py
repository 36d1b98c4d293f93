"""
Embedding backfill for the question corpus.

Repeats fetch -> embed -> write-back cycles over rows whose embedding is NULL
until a fetch comes back empty. Safe to interrupt and re-run: only rows still
missing an embedding are ever read.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

from ..errors import (
    ConfigurationError,
    GroupFailure,
    RowWriteFailure,
    StoreError,
    TransientProviderError,
)
from ..logging_utils import get_logger
from ..storage import QuestionRecord, StorageBackend
from .normalizer import build_embedding_input


class GroupEmbedder(Protocol):
    def embed(self, texts: list[str], *, model: str | None = None) -> list[list[float]]:
        ...


@dataclass(frozen=True)
class BackfillConfig:
    """Options of one backfill invocation."""

    batch_size: int = 64
    group_size: int = 32
    delay_ms: int = 200
    dry_run: bool = False
    model: str | None = None

    def validate(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1")
        if self.group_size < 1:
            raise ConfigurationError("group_size must be >= 1")
        if self.delay_ms < 0:
            raise ConfigurationError("delay_ms must be >= 0")


@dataclass(frozen=True)
class BatchReport:
    """Counters emitted after each non-empty batch."""

    batch_number: int
    processed: int
    embedded: int
    remaining: int
    cumulative: int


@dataclass(frozen=True)
class BackfillSummary:
    """Run-level accounting. Lives only for the duration of one run."""

    missing_at_start: int
    processed: int
    embedded: int
    batches: int
    skipped_groups: int
    failed_writes: int
    missing_at_end: int
    dry_run: bool = False


class BackfillOrchestrator:
    """Drive batch cycles of the embedding backfill."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: GroupEmbedder,
        *,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self._sleep = sleep
        self._logger = logger or get_logger(__name__)

    def run(
        self,
        config: BackfillConfig | None = None,
        *,
        on_batch: Callable[[BatchReport], None] | None = None,
    ) -> BackfillSummary:
        config = config or BackfillConfig()
        config.validate()
        self._check_dimensions()

        self._logger.info(
            "Backfill start: batch=%d group=%d sleep=%dms dry_run=%s model=%s",
            config.batch_size,
            config.group_size,
            config.delay_ms,
            config.dry_run,
            config.model or getattr(self.embedding_provider, "model", None),
        )
        missing_at_start = self.storage.count_missing_embeddings()
        self._logger.info("Missing embeddings (start): %d", missing_at_start)

        processed = 0
        embedded = 0
        batches = 0
        skipped_groups = 0
        failed_writes = 0
        cursor: int | None = None

        while True:
            rows = self.storage.fetch_missing_embedding_batch(
                config.batch_size, after_id=cursor
            )
            if not rows:
                break

            batches += 1
            if config.dry_run:
                processed += len(rows)
                self._logger.info(
                    "[dry run] Would embed %d rows (batch=%d, group=%d)",
                    len(rows),
                    config.batch_size,
                    config.group_size,
                )
                self._report(on_batch, batches, len(rows), 0, processed)
                break

            batch_embedded = 0
            for group in _groups(rows, config.group_size):
                try:
                    vectors = self._embed_group(group, model=config.model)
                except GroupFailure as exc:
                    skipped_groups += 1
                    self._logger.warning("Skipping group: %s", exc)
                    continue

                for record, vector in zip(group, vectors):
                    try:
                        self._write_row(record, vector)
                    except RowWriteFailure as exc:
                        failed_writes += 1
                        self._logger.warning("%s", exc)
                        continue
                    batch_embedded += 1
                    self._logger.debug("Embedded question id=%s", record.id)

            processed += len(rows)
            embedded += batch_embedded
            cursor = rows[-1].id
            self._report(on_batch, batches, len(rows), batch_embedded, processed)

            if config.delay_ms:
                self._sleep(config.delay_ms / 1000.0)

        missing_at_end = self.storage.count_missing_embeddings()
        self._logger.info(
            "Done. Total embedded this run: %d. Remaining NULL: %d", embedded, missing_at_end
        )
        return BackfillSummary(
            missing_at_start=missing_at_start,
            processed=processed,
            embedded=embedded,
            batches=batches,
            skipped_groups=skipped_groups,
            failed_writes=failed_writes,
            missing_at_end=missing_at_end,
            dry_run=config.dry_run,
        )

    def _check_dimensions(self) -> None:
        provider_dim = getattr(self.embedding_provider, "dim", None)
        store_dim = getattr(self.storage, "embedding_dim", None)
        if provider_dim is not None and store_dim is not None and provider_dim != store_dim:
            raise ConfigurationError(
                f"Embedding dimension {provider_dim} does not match the store's "
                f"vector column width {store_dim}."
            )

    def _embed_group(
        self,
        group: Sequence[QuestionRecord],
        *,
        model: str | None,
    ) -> list[list[float]]:
        inputs = [build_embedding_input(record) for record in group]
        ids = f"{group[0].id}..{group[-1].id}"
        try:
            vectors = self.embedding_provider.embed(inputs, model=model)
        except TransientProviderError as exc:
            raise GroupFailure(f"group ids {ids} ({len(group)} rows) failed: {exc}") from exc
        if len(vectors) != len(group):
            raise GroupFailure(
                f"group ids {ids} returned {len(vectors)} vectors for {len(group)} rows"
            )
        return vectors

    def _write_row(self, record: QuestionRecord, vector: Sequence[float]) -> None:
        try:
            written = self.storage.update_embedding(record.id, vector)
        except StoreError as exc:
            raise RowWriteFailure(f"Update failed for id={record.id}: {exc}") from exc
        if not written:
            raise RowWriteFailure(f"Update failed for id={record.id}: row no longer exists")

    def _report(
        self,
        on_batch: Callable[[BatchReport], None] | None,
        batch_number: int,
        processed: int,
        embedded: int,
        cumulative: int,
    ) -> None:
        remaining = self.storage.count_missing_embeddings()
        report = BatchReport(
            batch_number=batch_number,
            processed=processed,
            embedded=embedded,
            remaining=remaining,
            cumulative=cumulative,
        )
        self._logger.info(
            "Batch #%d: processed=%d, embedded=%d, remaining=%d, total=%d",
            batch_number,
            processed,
            embedded,
            remaining,
            cumulative,
        )
        if on_batch is not None:
            on_batch(report)


def _groups(rows: Sequence[QuestionRecord], size: int) -> list[Sequence[QuestionRecord]]:
    return [rows[start : start + size] for start in range(0, len(rows), size)]
