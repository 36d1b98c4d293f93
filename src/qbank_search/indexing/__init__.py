"""Embedding backfill components."""

from .backfill import (
    BackfillConfig,
    BackfillOrchestrator,
    BackfillSummary,
    BatchReport,
)
from .normalizer import build_embedding_input, render_answers, strip_markup

__all__ = [
    "BackfillConfig",
    "BackfillOrchestrator",
    "BackfillSummary",
    "BatchReport",
    "build_embedding_input",
    "render_answers",
    "strip_markup",
]
