from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import numpy as np

from .config import ScoringConfig, validate_scoring
from .extractor import cosine
from .models import ScoreBreakdown, Signal
from .store import StoredSignal
from .taxonomy import Taxonomy, default_taxonomy
from .text import normalize

CATEGORY_FIT = 1.0
AGENCY_FIT = 0.5


@dataclass(slots=True, frozen=True)
class QueryContext:
    categories: frozenset[str] = frozenset()
    agencies: frozenset[str] = frozenset()
    normalized_text: str = ""

    def mentions_agency(self, agency: str | None) -> bool:
        if not agency:
            return False
        if agency.upper() in self.agencies:
            return True
        name = normalize(agency)
        return bool(name) and f" {name} " in f" {self.normalized_text} "


class Scorer:
    def __init__(
        self, config: ScoringConfig | None = None, taxonomy: Taxonomy | None = None
    ) -> None:
        self.config = config or ScoringConfig()
        validate_scoring(self.config)
        self.taxonomy = taxonomy or default_taxonomy()

    def score(
        self,
        query_terms: frozenset[str],
        query_vector: np.ndarray,
        candidate: StoredSignal,
        context: QueryContext | None = None,
    ) -> ScoreBreakdown:
        context = context or QueryContext(
            categories=frozenset(term for term in query_terms if term in self.taxonomy.entries)
        )
        semantic = max(0.0, min(1.0, cosine(query_vector, candidate.vector)))
        keyword = jaccard(query_terms, candidate.terms)

        overlap = query_terms & candidate.terms
        overlap_codes = {term for term in overlap if term in self.taxonomy.entries}
        signal = candidate.signal
        candidate_codes = {self.taxonomy.canonical(code) for code in signal.category_codes}
        category_match = context.categories & candidate_codes
        agency_match = context.mentions_agency(signal.agency)

        if category_match:
            fit = CATEGORY_FIT
        elif agency_match:
            fit = AGENCY_FIT
        else:
            fit = 0.0

        total = (
            self.config.semantic_weight * semantic
            + self.config.keyword_weight * keyword
            + self.config.metadata_weight * fit
        )
        return ScoreBreakdown(
            semantic=semantic,
            keyword=keyword,
            metadata_fit=fit,
            total=max(0.0, min(1.0, total)),
            shared_terms=tuple(sorted(overlap - overlap_codes)),
            shared_categories=tuple(sorted(category_match | overlap_codes)),
            shared_agency=signal.agency if agency_match else None,
        )

    def is_eligible(self, signal: Signal, as_of: datetime, include_expired: bool = False) -> bool:
        return include_expired or not signal.is_expired(as_of)


def jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    if not left or not right:
        return 0.0
    union = left | right
    return len(left & right) / len(union)
