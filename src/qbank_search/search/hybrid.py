"""
Hybrid semantic search over the question bank.

A query is embedded once, scored either by the store's fused primitive
(vector + full-text + trigram) or by vector similarity alone, filtered, and
hydrated into full question rows. When the fused primitive is missing the
engine falls back to vector scoring and reports the mode it actually used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Sequence

from ..embeddings import EmbeddingProvider
from ..errors import (
    SearchFailure,
    StoreError,
    TransientProviderError,
    ValidationError,
    is_capability_missing,
)
from ..logging_utils import get_logger
from ..storage import FusionWeights, StorageBackend
from .filters import QuestionFilters

SearchMode = Literal["hybrid", "vector"]
SEARCH_MODES: tuple[str, ...] = ("hybrid", "vector")


@dataclass(frozen=True)
class SearchQuery:
    """One search request."""

    query: str
    limit: int = 25
    threshold: float = 0.6
    filters: QuestionFilters = field(default_factory=QuestionFilters)
    mode: SearchMode = "hybrid"
    weights: FusionWeights = field(default_factory=FusionWeights)


@dataclass(frozen=True)
class SearchResponse:
    """Echoed query, effective mode and hydrated results in scoring order."""

    query: str
    mode: SearchMode
    results: list[dict[str, Any]]

    @property
    def count(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "mode": self.mode,
            "count": self.count,
            "results": self.results,
        }


class HybridSearchEngine:
    """Embed a query, score it against the corpus and hydrate the hits."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_provider: EmbeddingProvider,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.storage = storage
        self.embedding_provider = embedding_provider
        self._logger = logger or get_logger(__name__)

    def search(self, query: SearchQuery) -> SearchResponse:
        text = self._validate(query)

        try:
            embedding = self.embedding_provider.embed_query(text)
        except TransientProviderError as exc:
            raise SearchFailure(f"embedding failed: {exc}") from exc

        if query.mode == "vector":
            rows = self._vector_rows(embedding, query)
            mode: SearchMode = "vector"
        else:
            rows, mode = self._hybrid_rows(text, embedding, query)

        results = self._hydrate(rows)
        self._logger.info(
            "Search %r: mode=%s scored=%d returned=%d", text, mode, len(rows), len(results)
        )
        return SearchResponse(query=query.query, mode=mode, results=results)

    @staticmethod
    def _validate(query: SearchQuery) -> str:
        text = query.query.strip() if isinstance(query.query, str) else ""
        if not text:
            raise ValidationError("query required")
        if query.mode not in SEARCH_MODES:
            raise ValidationError(f"mode must be one of {', '.join(SEARCH_MODES)}")
        if query.limit < 1:
            raise ValidationError("limit must be >= 1")
        if not 0.0 <= query.threshold <= 1.0:
            raise ValidationError("threshold must be between 0 and 1")
        return text

    def _vector_rows(
        self,
        embedding: Sequence[float],
        query: SearchQuery,
    ) -> list[dict[str, Any]]:
        scored = self.storage.score_vector(
            embedding,
            limit=query.limit,
            threshold=query.threshold,
            filters=query.filters.to_storage_dict(),
        )
        rows = [{**row, "score": row.get("similarity")} for row in scored]
        # threshold and filters hold even if the store did not apply them
        return [
            row
            for row in rows
            if _score(row) >= query.threshold and query.filters.matches(row)
        ]

    def _hybrid_rows(
        self,
        text: str,
        embedding: Sequence[float],
        query: SearchQuery,
    ) -> tuple[list[dict[str, Any]], SearchMode]:
        try:
            raw = self.storage.score_hybrid(
                text,
                embedding,
                weights=query.weights,
                limit=query.limit,
                filters=query.filters.to_storage_dict(),
            )
        except StoreError as exc:
            if not is_capability_missing(exc):
                raise
            self._logger.warning("Hybrid scoring unavailable, falling back to vector search: %s", exc)
            return self._vector_rows(embedding, query), "vector"

        rows = [row for row in raw if _score(row) >= query.threshold]
        if not rows and raw:
            self._logger.info(
                "All %d hybrid results below threshold %.2f (highest score %.4f)",
                len(raw),
                query.threshold,
                max(_score(row) for row in raw),
            )
        return rows, ("hybrid" if rows else "vector")

    def _hydrate(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        ids = [row["id"] for row in rows if row.get("id") is not None]
        if not ids:
            return []
        full_rows = {row["id"]: row for row in self.storage.fetch_by_ids(ids)}
        results: list[dict[str, Any]] = []
        for row in rows:
            full = full_rows.get(row.get("id"))
            if full is None:
                self._logger.debug("Dropping id=%s: row vanished before hydration", row.get("id"))
                continue
            results.append({**full, **row})
        return results


def _score(row: dict[str, Any]) -> float:
    value = row.get("score")
    return float(value) if value is not None else 0.0
