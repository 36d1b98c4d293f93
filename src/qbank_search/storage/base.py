"""
Storage interfaces and record types for the question corpus.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence


@dataclass(frozen=True)
class Answer:
    """One answer option of a question."""

    text: str
    is_correct: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "isCorrect": self.is_correct}


def _answer_from_item(item: Any) -> Answer:
    if isinstance(item, Answer):
        return item
    if isinstance(item, Mapping):
        text = item.get("text")
        correct = item.get("isCorrect", item.get("is_correct", False))
        return Answer(text="" if text is None else str(text), is_correct=bool(correct))
    return Answer(text=str(item))


def parse_answers(raw: Any) -> list[Answer] | str:
    """
    Convert a stored answers payload into ``Answer`` objects.

    Serialized payloads are JSON-decoded. Anything that does not decode to a
    list is returned as its raw string form instead of raising, so callers can
    still render it. Empty or null payloads decode to no answers.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return raw
        if not decoded:
            return []
        if not isinstance(decoded, list):
            return raw
        return [_answer_from_item(item) for item in decoded]
    if isinstance(raw, (list, tuple)):
        return [_answer_from_item(item) for item in raw]
    return str(raw)


def serialize_answers(answers: list[Answer] | str) -> str:
    if isinstance(answers, str):
        return answers
    return json.dumps([answer.to_dict() for answer in answers], ensure_ascii=False)


@dataclass(frozen=True)
class QuestionRecord:
    """A question row of the corpus."""

    id: int | None
    question: str
    answers: list[Answer] | str = field(default_factory=list)
    explanation: str | None = None
    category: str | None = None
    exam_code: str | None = None
    level: str | None = None
    inactive: bool = False
    embedding: list[float] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "QuestionRecord":
        """Build a record from an API/JSON shaped mapping."""
        question = data.get("question")
        if not isinstance(question, str) or not question.strip():
            raise ValueError("question text is required")
        raw_id = data.get("id")
        return cls(
            id=int(raw_id) if raw_id is not None else None,
            question=question,
            answers=parse_answers(data.get("answers")),
            explanation=_optional_str(data.get("explanation")),
            category=_optional_str(data.get("category")),
            exam_code=_optional_str(data.get("exam_code")),
            level=_optional_str(data.get("level")),
            inactive=bool(data.get("inactive", False)),
        )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class FusionWeights:
    """Per-signal weights for the fused hybrid score. Need not sum to 1."""

    vector: float = 0.7
    full_text: float = 0.25
    trigram: float = 0.05


class StorageBackend(Protocol):
    """Protocol for the corpus operations used by backfill and search."""

    def count_missing_embeddings(self) -> int:
        """Count rows whose embedding is NULL."""

    def fetch_missing_embedding_batch(
        self,
        limit: int,
        *,
        after_id: int | None = None,
    ) -> list[QuestionRecord]:
        """Return up to *limit* unembedded rows with id > *after_id*, ordered by id."""

    def update_embedding(self, question_id: int, embedding: Sequence[float]) -> bool:
        """Write one row's embedding. Return False when the row no longer exists."""

    def fetch_by_ids(self, ids: Sequence[int]) -> list[dict[str, Any]]:
        """Return full rows for the given ids (missing ids are omitted)."""

    def score_vector(
        self,
        embedding: Sequence[float],
        *,
        limit: int,
        threshold: float,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        """Rank rows by vector similarity: ``{id, similarity, exam_code, category, level}``."""

    def score_hybrid(
        self,
        query_text: str,
        embedding: Sequence[float],
        *,
        weights: FusionWeights,
        limit: int,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        """Rank rows by fused score: ``{id, score, exam_code, category, level, ...}``."""
