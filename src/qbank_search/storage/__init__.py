"""Storage backends for the question corpus."""

from .base import (
    Answer,
    FusionWeights,
    QuestionRecord,
    StorageBackend,
    parse_answers,
    serialize_answers,
)
from .duckdb import DuckDBQuestionStore, trigram_similarity

__all__ = [
    "Answer",
    "FusionWeights",
    "QuestionRecord",
    "StorageBackend",
    "parse_answers",
    "serialize_answers",
    "DuckDBQuestionStore",
    "trigram_similarity",
]
