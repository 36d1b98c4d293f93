"""
Equality filters over question classification tags.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class QuestionFilters:
    """Optional exact-match filters on exam code, category and level."""

    exam_code: str | None = None
    category: str | None = None
    level: str | None = None

    def to_storage_dict(self) -> dict[str, str | None]:
        return {
            "exam_code": self.exam_code or None,
            "category": self.category or None,
            "level": self.level or None,
        }

    def matches(self, row: Mapping[str, Any]) -> bool:
        """True when every set filter equals the row's value for that tag."""
        for field, expected in self.to_storage_dict().items():
            if expected is not None and row.get(field) != expected:
                return False
        return True
