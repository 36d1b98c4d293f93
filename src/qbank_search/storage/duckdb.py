"""
DuckDB storage backend for the question corpus.

Exposes the scoring primitives the search engine consumes: cosine similarity
over the ``embedding`` array column, BM25 relevance from the DuckDB ``fts``
extension, and a pg_trgm style ``trigram_similarity`` scalar function.
"""

from __future__ import annotations

import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

import duckdb

from ..errors import CapabilityMissingError, ConfigurationError, StoreError
from ..logging_utils import get_logger
from .base import FusionWeights, QuestionRecord, parse_answers, serialize_answers

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)
_ARRAY_WIDTH_RE = re.compile(r"\[(\d+)\]\s*$")

_FILTER_COLUMNS: tuple[str, ...] = ("exam_code", "category", "level")

_RECORD_COLUMNS = "id, question, answers, explanation, category, exam_code, level, inactive"
_FULL_COLUMNS = _RECORD_COLUMNS + ", created_at, updated_at, embedding IS NOT NULL AS has_embedding"


def _trigrams(text: str) -> set[str]:
    grams: set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i : i + 3])
    return grams


def trigram_similarity(left: str, right: str) -> float:
    """Share of trigrams two strings have in common, as pg_trgm computes it."""
    a = _trigrams(left)
    b = _trigrams(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _filter_clause(
    filters: Mapping[str, str | None] | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for column in _FILTER_COLUMNS:
        value = (filters or {}).get(column)
        if value is None or value == "":
            continue
        clauses.append(f"{column} = ?")
        params.append(value)
    if not clauses:
        return "", []
    return " AND " + " AND ".join(clauses), params


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class DuckDBQuestionStore:
    """DuckDB-backed persistence for questions and their embeddings."""

    # one positional parameter: the query text
    bm25_expression = "fts_main_questions.match_bm25(id, ?)"

    def __init__(
        self,
        db_path: str,
        *,
        embedding_dim: int = 1536,
        read_only: bool = False,
        initialize: bool = True,
    ) -> None:
        self.db_path = str(Path(db_path).expanduser().resolve())
        self.embedding_dim = embedding_dim
        self.read_only = read_only
        self._logger = get_logger(__name__)
        self._lock = threading.Lock()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = duckdb.connect(self.db_path, read_only=read_only)
            self._conn.create_function(
                "trigram_similarity",
                trigram_similarity,
                ["VARCHAR", "VARCHAR"],
                "DOUBLE",
            )
        except duckdb.Error as exc:
            raise StoreError(f"Cannot open {self.db_path}: {exc}") from exc
        if initialize and not read_only:
            self.initialize()
        self._check_embedding_width()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def initialize(self) -> None:
        self._execute(
            f"""
            CREATE TABLE IF NOT EXISTS questions (
                id BIGINT PRIMARY KEY,
                question VARCHAR NOT NULL,
                answers VARCHAR NOT NULL DEFAULT '[]',
                explanation VARCHAR,
                category VARCHAR,
                exam_code VARCHAR,
                level VARCHAR,
                inactive BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                embedding FLOAT[{self.embedding_dim}]
            );
            """
        )

    def _check_embedding_width(self) -> None:
        row = self._fetchone(
            """
            SELECT data_type
            FROM information_schema.columns
            WHERE table_name = 'questions' AND column_name = 'embedding'
            """
        )
        if row is None:
            return
        match = _ARRAY_WIDTH_RE.search(str(row[0]))
        if match is None:
            return
        if int(match.group(1)) != self.embedding_dim:
            raise ConfigurationError(
                f"questions.embedding is {row[0]} but the configured dimension is "
                f"{self.embedding_dim}; the column width must match the model."
            )

    def _execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        try:
            with self._lock:
                self._conn.execute(sql, list(params or []))
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    def _fetchone(self, sql: str, params: Sequence[Any] | None = None) -> tuple[Any, ...] | None:
        try:
            with self._lock:
                return self._conn.execute(sql, list(params or [])).fetchone()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    def _fetchall(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple[Any, ...]]:
        try:
            with self._lock:
                return self._conn.execute(sql, list(params or [])).fetchall()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Corpus maintenance
    # ------------------------------------------------------------------

    def upsert_questions(self, records: Sequence[QuestionRecord]) -> list[int]:
        """
        Insert or replace questions and return their ids in input order.

        Replacing an existing row clears its embedding so the next backfill
        re-embeds the new content.
        """
        ids: list[int] = []
        for record in records:
            values = [
                record.question,
                serialize_answers(record.answers),
                record.explanation,
                record.category,
                record.exam_code,
                record.level,
                record.inactive,
            ]
            if record.id is None:
                row = self._fetchall(
                    """
                    INSERT INTO questions (
                        id, question, answers, explanation, category, exam_code, level, inactive
                    )
                    SELECT
                        coalesce(max(id), 0) + 1,
                        ?::VARCHAR, ?::VARCHAR, ?::VARCHAR, ?::VARCHAR,
                        ?::VARCHAR, ?::VARCHAR, ?::BOOLEAN
                    FROM questions
                    RETURNING id
                    """,
                    values,
                )
            else:
                row = self._fetchall(
                    """
                    INSERT INTO questions (
                        id, question, answers, explanation, category, exam_code, level, inactive
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        question = excluded.question,
                        answers = excluded.answers,
                        explanation = excluded.explanation,
                        category = excluded.category,
                        exam_code = excluded.exam_code,
                        level = excluded.level,
                        inactive = excluded.inactive,
                        updated_at = now(),
                        embedding = NULL
                    RETURNING id
                    """,
                    [record.id, *values],
                )
            ids.append(int(row[0][0]))
        return ids

    def clear_embeddings(self, ids: Sequence[int] | None = None) -> int:
        """NULL the embedding of the given rows (all rows when *ids* is None)."""
        if ids is None:
            rows = self._fetchall(
                "UPDATE questions SET embedding = NULL WHERE embedding IS NOT NULL RETURNING id"
            )
            return len(rows)
        if not ids:
            return 0
        placeholders = ", ".join(["?"] * len(ids))
        rows = self._fetchall(
            f"UPDATE questions SET embedding = NULL WHERE id IN ({placeholders}) RETURNING id",
            [int(i) for i in ids],
        )
        return len(rows)

    def count_questions(self) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM questions")
        return int(row[0]) if row else 0

    def rebuild_text_index(self) -> None:
        """
        (Re)build the BM25 index used by hybrid scoring.

        DuckDB full-text indexes are not maintained on write, so this has to
        run after the corpus changes. Installing the ``fts`` extension is only
        attempted when DUCKDB_ALLOW_INSTALL=1.
        """
        allow_install = os.getenv("DUCKDB_ALLOW_INSTALL", "0") == "1"
        try:
            self._execute("LOAD fts")
        except StoreError:
            if not allow_install:
                raise
            self._execute("INSTALL fts")
            self._execute("LOAD fts")
        self._execute(
            """
            PRAGMA create_fts_index(
                'questions', 'id', 'question', 'explanation', 'answers', overwrite=1
            )
            """
        )
        self._logger.info("Rebuilt full-text index over %d questions", self.count_questions())

    # ------------------------------------------------------------------
    # Backfill primitives
    # ------------------------------------------------------------------

    def count_missing_embeddings(self) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM questions WHERE embedding IS NULL")
        return int(row[0]) if row else 0

    def fetch_missing_embedding_batch(
        self,
        limit: int,
        *,
        after_id: int | None = None,
    ) -> list[QuestionRecord]:
        sql = f"SELECT {_RECORD_COLUMNS} FROM questions WHERE embedding IS NULL"
        params: list[Any] = []
        if after_id is not None:
            sql += " AND id > ?"
            params.append(after_id)
        sql += " ORDER BY id ASC LIMIT ?"
        params.append(limit)
        return [self._row_to_record(row) for row in self._fetchall(sql, params)]

    def update_embedding(self, question_id: int, embedding: Sequence[float]) -> bool:
        rows = self._fetchall(
            f"""
            UPDATE questions
            SET embedding = ?::FLOAT[{self.embedding_dim}]
            WHERE id = ?
            RETURNING id
            """,
            [list(embedding), question_id],
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Search primitives
    # ------------------------------------------------------------------

    def fetch_by_ids(self, ids: Sequence[int]) -> list[dict[str, Any]]:
        if not ids:
            return []
        placeholders = ", ".join(["?"] * len(ids))
        rows = self._fetchall(
            f"SELECT {_FULL_COLUMNS} FROM questions WHERE id IN ({placeholders})",
            list(ids),
        )
        results: list[dict[str, Any]] = []
        for row in rows:
            answers = parse_answers(row[2])
            results.append(
                {
                    "id": int(row[0]),
                    "question": str(row[1]),
                    "answers": (
                        answers
                        if isinstance(answers, str)
                        else [answer.to_dict() for answer in answers]
                    ),
                    "explanation": row[3],
                    "category": row[4],
                    "exam_code": row[5],
                    "level": row[6],
                    "inactive": bool(row[7]),
                    "created_at": _iso(row[8]),
                    "updated_at": _iso(row[9]),
                    "has_embedding": bool(row[10]),
                }
            )
        return results

    def score_vector(
        self,
        embedding: Sequence[float],
        *,
        limit: int,
        threshold: float,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        filter_sql, filter_params = _filter_clause(filters)
        sql = f"""
            SELECT * FROM (
                SELECT
                    id,
                    exam_code,
                    category,
                    level,
                    array_cosine_similarity(
                        embedding, ?::FLOAT[{self.embedding_dim}]
                    ) AS similarity
                FROM questions
                WHERE embedding IS NOT NULL{filter_sql}
            ) scored
            WHERE similarity >= ?
            ORDER BY similarity DESC, id ASC
            LIMIT ?
        """
        rows = self._fetchall(sql, [list(embedding), *filter_params, threshold, limit])
        return [
            {
                "id": int(row[0]),
                "exam_code": row[1],
                "category": row[2],
                "level": row[3],
                "similarity": float(row[4]),
            }
            for row in rows
        ]

    def score_hybrid(
        self,
        query_text: str,
        embedding: Sequence[float],
        *,
        weights: FusionWeights,
        limit: int,
        filters: Mapping[str, str | None] | None = None,
    ) -> list[dict[str, Any]]:
        filter_sql, filter_params = _filter_clause(filters)
        sql = f"""
            WITH signals AS (
                SELECT
                    id,
                    exam_code,
                    category,
                    level,
                    coalesce(
                        array_cosine_similarity(embedding, ?::FLOAT[{self.embedding_dim}]),
                        0
                    ) AS vector_score,
                    coalesce({self.bm25_expression}, 0) AS bm25,
                    coalesce(trigram_similarity(question, ?), 0) AS trigram_score
                FROM questions
                WHERE TRUE{filter_sql}
            ),
            normalized AS (
                SELECT
                    *,
                    CASE WHEN bm25 > 0 THEN bm25 / (bm25 + 1) ELSE 0 END AS text_score
                FROM signals
            )
            SELECT
                id,
                exam_code,
                category,
                level,
                vector_score,
                text_score,
                trigram_score,
                ? * vector_score + ? * text_score + ? * trigram_score AS score
            FROM normalized
            ORDER BY score DESC, id ASC
            LIMIT ?
        """
        params = [
            list(embedding),
            query_text,
            query_text,
            *filter_params,
            weights.vector,
            weights.full_text,
            weights.trigram,
            limit,
        ]
        try:
            rows = self._fetchall(sql, params)
        except StoreError as exc:
            if "does not exist" in str(exc).lower():
                raise CapabilityMissingError(
                    f"hybrid scoring unavailable, full-text index does not exist: {exc}"
                ) from exc
            raise
        return [
            {
                "id": int(row[0]),
                "exam_code": row[1],
                "category": row[2],
                "level": row[3],
                "vector_score": float(row[4]),
                "text_score": float(row[5]),
                "trigram_score": float(row[6]),
                "score": float(row[7]),
            }
            for row in rows
        ]

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> QuestionRecord:
        return QuestionRecord(
            id=int(row[0]),
            question=str(row[1]),
            answers=parse_answers(row[2]),
            explanation=row[3],
            category=row[4],
            exam_code=row[5],
            level=row[6],
            inactive=bool(row[7]),
        )
