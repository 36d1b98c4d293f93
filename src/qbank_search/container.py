"""
Application wiring: builds the store, provider and services once per process.
"""

from __future__ import annotations

from functools import cached_property

from .config import Settings
from .embeddings import EmbeddingProvider
from .indexing import BackfillOrchestrator
from .search import HybridSearchEngine
from .storage import DuckDBQuestionStore


class AppContainer:
    """
    Owns heavy object instantiation.

    The embedding provider is created on first use so that commands which never
    embed (status, import) run without an API key.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self.settings = settings
        if provider is not None:
            self.__dict__["provider"] = provider

    @cached_property
    def store(self) -> DuckDBQuestionStore:
        return DuckDBQuestionStore(
            self.settings.db_path,
            embedding_dim=self.settings.embedding_dim,
        )

    @cached_property
    def provider(self) -> EmbeddingProvider:
        return EmbeddingProvider(
            model=self.settings.embedding_model,
            dim=self.settings.embedding_dim,
            policy=self.settings.backoff_policy(),
        )

    @cached_property
    def search_engine(self) -> HybridSearchEngine:
        return HybridSearchEngine(self.store, self.provider)

    @cached_property
    def backfill(self) -> BackfillOrchestrator:
        return BackfillOrchestrator(self.store, self.provider)

    def close(self) -> None:
        if "store" in self.__dict__:
            self.store.close()
