"""
FastAPI server exposing semantic search over the question bank.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Literal

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings
from .container import AppContainer
from .errors import QBankError, ValidationError
from .logging_utils import get_logger
from .search import HybridSearchEngine, QuestionFilters, SearchQuery
from .storage import DuckDBQuestionStore, FusionWeights

logger = get_logger(__name__)


@lru_cache
def get_container() -> AppContainer:
    return AppContainer(Settings.from_env())


def check_startup() -> AppContainer:
    """Build the store and provider once. Raises ConfigurationError when credentials are missing."""
    container = get_container()
    try:
        # credentials are checked before the database is opened
        container.provider
        container.store
    except QBankError:
        container.close()
        get_container.cache_clear()
        raise
    logger.info("Search API ready: %s", container.settings.summary())
    return container


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    container = check_startup()
    try:
        yield
    finally:
        container.close()
        get_container.cache_clear()


app = FastAPI(
    title="qbank-search",
    description="Hybrid semantic search over exam questions",
    lifespan=lifespan,
)


class SemanticSearchRequest(BaseModel):
    """Request model for semantic search."""

    query: str | None = None
    limit: int = Field(25, ge=1, le=200)
    threshold: float = Field(0.6, ge=0.0, le=1.0)
    exam_code: str | None = None
    category: str | None = None
    level: str | None = None
    mode: Literal["hybrid", "vector"] = "hybrid"
    weight_vector: float = 0.7
    weight_fts: float = 0.25
    weight_trgm: float = 0.05

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            query=self.query or "",
            limit=self.limit,
            threshold=self.threshold,
            filters=QuestionFilters(
                exam_code=self.exam_code,
                category=self.category,
                level=self.level,
            ),
            mode=self.mode,
            weights=FusionWeights(
                vector=self.weight_vector,
                full_text=self.weight_fts,
                trigram=self.weight_trgm,
            ),
        )


def get_search_engine() -> HybridSearchEngine:
    return get_container().search_engine


def get_store() -> DuckDBQuestionStore:
    return get_container().store


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', '')}"
        for error in exc.errors()
    )
    return JSONResponse({"error": f"invalid request: {details}"}, status_code=400)


@app.exception_handler(QBankError)
async def _qbank_error(request: Request, exc: QBankError) -> JSONResponse:
    logger.error("Request failed: %s", exc)
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.post("/api/semantic-search")
async def semantic_search(
    request: SemanticSearchRequest,
    engine: HybridSearchEngine = Depends(get_search_engine),
) -> dict[str, Any]:
    """Embed the query, score it and return hydrated, ranked questions."""
    response = await asyncio.to_thread(engine.search, request.to_query())
    return response.to_dict()


@app.get("/api/embeddings/status")
async def embeddings_status(
    store: DuckDBQuestionStore = Depends(get_store),
) -> dict[str, Any]:
    """Report how many questions still lack an embedding."""
    total = await asyncio.to_thread(store.count_questions)
    missing = await asyncio.to_thread(store.count_missing_embeddings)
    return {
        "questions": total,
        "missing_embeddings": missing,
        "embedded": total - missing,
        "embedding_dim": store.embedding_dim,
    }


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
