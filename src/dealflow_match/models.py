from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SOURCE_TYPES = frozenset(
    {"solicitation", "forecast", "grant", "sources-sought", "award-notice"}
)


@dataclass(slots=True, frozen=True)
class Signal:
    id: str
    source_type: str
    title: str
    description: str = ""
    agency: str | None = None
    category_codes: tuple[str, ...] = ()
    published_at: datetime | None = None
    response_due_at: datetime | None = None
    url: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(part for part in (self.title, self.description) if part)

    def is_expired(self, as_of: datetime) -> bool:
        return self.response_due_at is not None and self.response_due_at < as_of


@dataclass(slots=True, frozen=True)
class MatchFilters:
    agencies: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    source_types: tuple[str, ...] = ()
    include_expired: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.agencies or self.categories or self.source_types)


@dataclass(slots=True, frozen=True)
class ScoreBreakdown:
    semantic: float
    keyword: float
    metadata_fit: float
    total: float
    shared_terms: tuple[str, ...] = ()
    shared_categories: tuple[str, ...] = ()
    shared_agency: str | None = None


@dataclass(slots=True)
class MatchResult:
    signal: Signal
    score: float
    reasoning: str
    breakdown: ScoreBreakdown | None = None

    @property
    def signal_id(self) -> str:
        return self.signal.id


@dataclass(slots=True)
class IngestReport:
    accepted: list[str] = field(default_factory=list)
    rejected: list[dict] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
