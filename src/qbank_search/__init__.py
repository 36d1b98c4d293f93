"""
qbank-search - embedding backfill and hybrid semantic search for an exam
question bank.

Questions live in DuckDB. A resumable backfill job fills in missing
embeddings through Google GenAI, and the search engine fuses vector,
full-text and trigram signals, falling back to vector similarity when the
full-text index is unavailable.

Example usage:
    >>> from qbank_search import DuckDBQuestionStore, EmbeddingProvider, HybridSearchEngine, SearchQuery
    >>> store = DuckDBQuestionStore("questions.duckdb")
    >>> engine = HybridSearchEngine(store, EmbeddingProvider())
    >>> response = engine.search(SearchQuery(query="subnet mask for /26"))
"""

from .embeddings import EmbeddingProvider
from .errors import (
    CapabilityMissingError,
    ConfigurationError,
    QBankError,
    SearchFailure,
    StoreError,
    TransientProviderError,
    ValidationError,
)
from .indexing import BackfillConfig, BackfillOrchestrator, BackfillSummary
from .search import HybridSearchEngine, QuestionFilters, SearchQuery, SearchResponse
from .storage import DuckDBQuestionStore, FusionWeights, QuestionRecord

__all__ = [
    # Provider
    "EmbeddingProvider",
    # Errors
    "CapabilityMissingError",
    "ConfigurationError",
    "QBankError",
    "SearchFailure",
    "StoreError",
    "TransientProviderError",
    "ValidationError",
    # Backfill
    "BackfillConfig",
    "BackfillOrchestrator",
    "BackfillSummary",
    # Search
    "HybridSearchEngine",
    "QuestionFilters",
    "SearchQuery",
    "SearchResponse",
    # Storage
    "DuckDBQuestionStore",
    "FusionWeights",
    "QuestionRecord",
]
