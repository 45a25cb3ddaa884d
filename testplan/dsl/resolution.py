"""Data structures describing resolved elements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .models import LocatorCandidate


@dataclass(slots=True)
class CandidateAttempt:
    """Outcome of trying a single locator candidate."""

    candidate: LocatorCandidate
    selector: str
    matched: bool
    error: Optional[str] = None


@dataclass(slots=True)
class ResolvedElement:
    """Handle to a live element found through one of its candidates."""

    page_id: str
    element_id: str
    candidate: LocatorCandidate
    selector: str
    locator: Any = field(default=None, repr=False)
    handle: Any = field(default=None, repr=False)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def strategy(self) -> str:
        return self.candidate.strategy

    @property
    def ordinal(self) -> int:
        return self.candidate.ordinal
