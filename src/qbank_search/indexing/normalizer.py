"""
Canonical embedding input for a question record.

The layout is fixed so that re-running the backfill on unchanged content
produces byte-identical inputs.
"""

from __future__ import annotations

import re

from ..storage.base import Answer, QuestionRecord, parse_answers

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def strip_markup(text: str) -> str:
    """Replace markup tags with spaces, collapse whitespace and trim."""
    return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", text)).strip()


def render_answers(answers: list[Answer] | str) -> str:
    if isinstance(answers, str):
        return answers
    return "\n".join(
        f"- {answer.text}{' (correct)' if answer.is_correct else ''}" for answer in answers
    )


def build_embedding_input(record: QuestionRecord) -> str:
    """
    Build the text embedded for *record*.

    Lines, in order, each dropped when empty::

        [Category: ...]
        [Exam: ...]
        [Level: ...]
        Q: <question>
        Answers:
        - <text> (correct)
        Explanation: <explanation without markup>
    """
    answers = record.answers
    if isinstance(answers, str):
        answers = parse_answers(answers)
    answers_text = render_answers(answers)

    segments = [
        f"[Category: {record.category}]" if record.category else "",
        f"[Exam: {record.exam_code}]" if record.exam_code else "",
        f"[Level: {record.level}]" if record.level else "",
        f"Q: {record.question}",
        f"Answers:\n{answers_text}" if answers_text else "",
        f"Explanation: {strip_markup(record.explanation)}" if record.explanation else "",
    ]
    return "\n".join(segment for segment in segments if segment)
