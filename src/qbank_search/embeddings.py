"""
Embedding provider for question vectors and search queries.

Wraps the Google GenAI embedding API. Each call embeds one group of texts in a
single request; transient failures retry the whole group under a
``BackoffPolicy``.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from google.genai import Client as GenAIClient

from .config import (
    DEFAULT_EMBEDDING_DIM,
    DEFAULT_EMBEDDING_MODEL,
    ENV_API_KEY,
    env_int,
    env_str,
    require_env,
)
from .logging_utils import get_logger
from .retry import BackoffPolicy, call_with_retry


class EmbeddingProvider:
    """Generate text embeddings via Google GenAI."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        dim: int | None = None,
        policy: BackoffPolicy | None = None,
        client: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.model = model or env_str("QBANK_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL)
        self.dim = dim or env_int("QBANK_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIM)
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._logger = get_logger(__name__)

        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or require_env(ENV_API_KEY)
            self._client = GenAIClient(api_key=resolved_key)

    def embed(self, texts: list[str], *, model: str | None = None) -> list[list[float]]:
        """Embed one group of texts with a single (retried) request.

        Returns one vector per input, in input order. Empty strings are sent
        as-is. The caller owns group sizing.
        """
        if not texts:
            return []
        return call_with_retry(
            lambda: self._embed_content(
                list(texts), task_type="RETRIEVAL_DOCUMENT", model=model
            ),
            self.policy,
            sleep=self._sleep,
            logger=self._logger,
            description=f"embedding group of {len(texts)}",
        )

    def embed_query(self, query: str) -> list[float]:
        """Embed a single query text for retrieval."""
        vectors = call_with_retry(
            lambda: self._embed_content([query], task_type="RETRIEVAL_QUERY"),
            self.policy,
            sleep=self._sleep,
            logger=self._logger,
            description="query embedding",
        )
        return vectors[0]

    def _embed_content(
        self,
        contents: list[str],
        *,
        task_type: str,
        model: str | None = None,
    ) -> list[list[float]]:
        result = self._client.models.embed_content(
            model=model or self.model,
            contents=contents,
            config={
                "task_type": task_type,
                "output_dimensionality": self.dim,
            },
        )
        embeddings = result.embeddings or []
        if len(embeddings) != len(contents):
            raise ValueError(
                f"provider returned {len(embeddings)} embeddings for {len(contents)} inputs"
            )
        return [[float(v) for v in emb.values] for emb in embeddings]
