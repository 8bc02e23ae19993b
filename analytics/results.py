"""
Best-effort section results.

Each analytics section is computed independently. A DatabaseError inside
a section rolls back to a savepoint, is logged, and leaves the section at
its empty default with the reason recorded, so the rest of the response
still renders.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from django.db import DatabaseError, transaction

logger = logging.getLogger(__name__)


@dataclass
class Section:
    name: str
    value: Any
    degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


def best_effort(name: str, compute: Callable[[], Any], default: Any) -> Section:
    try:
        with transaction.atomic():
            return Section(name=name, value=compute())
    except DatabaseError as exc:
        logger.warning("Analytics section %r degraded: %s", name, exc, exc_info=True)
        return Section(name=name, value=default, degraded_reason=str(exc) or type(exc).__name__)


class SectionSet:
    """Collects sections and renders them into one payload."""

    def __init__(self):
        self._sections: List[Section] = []

    def add(self, name: str, compute: Callable[[], Any], default: Any) -> Any:
        section = best_effort(name, compute, default)
        self._sections.append(section)
        return section.value

    @property
    def degraded(self) -> List[Dict[str, str]]:
        return [
            {"section": s.name, "reason": s.degraded_reason}
            for s in self._sections
            if s.degraded
        ]

    def __iter__(self):
        return iter(self._sections)
