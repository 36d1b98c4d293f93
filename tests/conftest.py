"""Shared fakes for the provider client, the embedding provider and the store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from qbank_search.errors import StoreError, TransientProviderError
from qbank_search.storage import FusionWeights, QuestionRecord


# ---------------------------------------------------------------------------
# GenAI client fakes
# ---------------------------------------------------------------------------


@dataclass
class FakeEmbedding:
    values: list[float]


@dataclass
class FakeEmbedResult:
    embeddings: list[FakeEmbedding]


class FakeModels:
    """Records calls; fails the first ``failures`` calls, then embeds deterministically."""

    def __init__(self, failures: int = 0) -> None:
        self.calls: list[dict[str, Any]] = []
        self.failures = failures

    def embed_content(
        self, *, model: str, contents: list[str], config: dict
    ) -> FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("503 UNAVAILABLE")
        dim = config.get("output_dimensionality", 4)
        return FakeEmbedResult(
            embeddings=[
                FakeEmbedding(values=[float(i + 1)] * dim) for i in range(len(contents))
            ]
        )


class FakeGenAIClient:
    def __init__(self, failures: int = 0) -> None:
        self.models = FakeModels(failures=failures)


# ---------------------------------------------------------------------------
# Provider fake
# ---------------------------------------------------------------------------


class FakeProvider:
    """Stands in for ``EmbeddingProvider``; every call is recorded."""

    def __init__(
        self,
        dim: int = 4,
        *,
        failing_calls: Sequence[int] = (),
        query_error: Exception | None = None,
        short_calls: Sequence[int] = (),
    ) -> None:
        self.dim = dim
        self.model = "fake-embedding"
        self.embed_calls: list[list[str]] = []
        self.query_calls: list[str] = []
        self._failing_calls = set(failing_calls)
        self._short_calls = set(short_calls)
        self._query_error = query_error

    def embed(self, texts: list[str], *, model: str | None = None) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        call_number = len(self.embed_calls)
        if call_number in self._failing_calls:
            raise TransientProviderError(f"call {call_number} failed after 6 attempts")
        vectors = [[0.1 * (i + 1)] * self.dim for i in range(len(texts))]
        if call_number in self._short_calls:
            return vectors[:-1]
        return vectors

    def embed_query(self, query: str) -> list[float]:
        self.query_calls.append(query)
        if self._query_error is not None:
            raise self._query_error
        return [1.0] + [0.0] * (self.dim - 1)


# ---------------------------------------------------------------------------
# Store fake
# ---------------------------------------------------------------------------


def make_records(count: int, start: int = 1) -> list[QuestionRecord]:
    return [
        QuestionRecord(
            id=start + offset,
            question=f"Question number {start + offset}?",
            category="networking",
            exam_code="N10-008",
            level="easy",
        )
        for offset in range(count)
    ]


class FakeStore:
    """In-memory store implementing the backfill and search primitives."""

    def __init__(
        self,
        records: Sequence[QuestionRecord] = (),
        *,
        embedding_dim: int = 4,
        failing_writes: Sequence[int] = (),
        vector_rows: Sequence[dict[str, Any]] = (),
        hybrid_rows: Sequence[dict[str, Any]] = (),
        hybrid_error: Exception | None = None,
        vanished_ids: Sequence[int] = (),
        hydrate_extra: Mapping[str, Any] | None = None,
    ) -> None:
        self.embedding_dim = embedding_dim
        self.records = {record.id: record for record in records}
        self.embeddings: dict[int, list[float]] = {
            record.id: record.embedding for record in records if record.embedding is not None
        }
        self.fetch_calls: list[tuple[int, int | None, int]] = []
        self.write_calls: list[int] = []
        self.vector_calls: list[dict[str, Any]] = []
        self.hybrid_calls: list[dict[str, Any]] = []
        self.hydrate_calls: list[list[int]] = []
        self.vector_rows = list(vector_rows)
        self.hybrid_rows = list(hybrid_rows)
        self._failing_writes = set(failing_writes)
        self._hybrid_error = hybrid_error
        self._vanished = set(vanished_ids)
        self.hydrate_extra = dict(hydrate_extra or {})

    def count_missing_embeddings(self) -> int:
        return sum(1 for rid in self.records if rid not in self.embeddings)

    def fetch_missing_embedding_batch(
        self, limit: int, *, after_id: int | None = None
    ) -> list[QuestionRecord]:
        ids = sorted(
            rid
            for rid in self.records
            if rid not in self.embeddings and (after_id is None or rid > after_id)
        )[:limit]
        self.fetch_calls.append((limit, after_id, len(ids)))
        return [self.records[rid] for rid in ids]

    def update_embedding(self, question_id: int, embedding: Sequence[float]) -> bool:
        self.write_calls.append(question_id)
        if question_id in self._failing_writes:
            raise StoreError(f"disk full writing id={question_id}")
        if question_id not in self.records:
            return False
        self.embeddings[question_id] = list(embedding)
        return True

    def fetch_by_ids(self, ids: Sequence[int]) -> list[dict[str, Any]]:
        self.hydrate_calls.append(list(ids))
        rows = []
        for rid in ids:
            if rid in self._vanished:
                continue
            record = self.records.get(rid)
            if record is None:
                continue
            rows.append(
                {
                    "id": record.id,
                    "question": record.question,
                    "answers": [],
                    "explanation": record.explanation,
                    "category": record.category,
                    "exam_code": record.exam_code,
                    "level": record.level,
                    "inactive": record.inactive,
                    **self.hydrate_extra,
                }
            )
        return rows

    def score_vector(
        self,
        embedding: Sequence[float],
        *,
        limit: int,
        threshold: float,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        self.vector_calls.append({"limit": limit, "threshold": threshold, "filters": filters})
        return list(self.vector_rows[:limit])

    def score_hybrid(
        self,
        query_text: str,
        embedding: Sequence[float],
        *,
        weights: FusionWeights,
        limit: int,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        self.hybrid_calls.append(
            {"query": query_text, "weights": weights, "limit": limit, "filters": filters}
        )
        if self._hybrid_error is not None:
            raise self._hybrid_error
        return list(self.hybrid_rows[:limit])

