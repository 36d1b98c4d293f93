"""Search over the question bank."""

from .filters import QuestionFilters
from .hybrid import (
    SEARCH_MODES,
    HybridSearchEngine,
    SearchMode,
    SearchQuery,
    SearchResponse,
)

__all__ = [
    "QuestionFilters",
    "SEARCH_MODES",
    "HybridSearchEngine",
    "SearchMode",
    "SearchQuery",
    "SearchResponse",
]
