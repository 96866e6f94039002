from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from .config import ScoringConfig
from .errors import ExtractionError, InvalidInputError, MatchServiceUnavailable
from .extractor import FeatureExtractor
from .index import IndexMetadata, SearchFilter, VectorIndex
from .models import MatchFilters, MatchResult, ScoreBreakdown, Signal
from .reasoning import Explainer
from .scoring import QueryContext, Scorer
from .store import SignalStore, StoredSignal
from .taxonomy import Taxonomy
from .text import normalize

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchService:
    """Ranks stored signals against a startup description.

    ``top_n == 0`` is a valid request and yields no results; the index is
    never queried with a non-positive ``k``.
    """

    def __init__(
        self,
        store: SignalStore,
        index: VectorIndex,
        extractor: FeatureExtractor,
        config: ScoringConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.index = index
        self.extractor = extractor
        self.config = config or ScoringConfig()
        self.scorer = Scorer(self.config, extractor.taxonomy)
        self.explainer = Explainer(self.config, extractor.taxonomy)
        self.clock = clock

    def match(
        self,
        description: str,
        top_n: int = 10,
        filters: MatchFilters | None = None,
        as_of: datetime | None = None,
    ) -> list[MatchResult]:
        if not isinstance(description, str) or not description.strip():
            raise InvalidInputError("startup_description must be a non-empty string")
        if isinstance(top_n, bool) or not isinstance(top_n, int) or top_n < 0:
            raise InvalidInputError(f"top_n must be a non-negative integer, got {top_n!r}")
        if top_n == 0:
            return []

        filters = filters or MatchFilters()
        as_of = as_of or self.clock()

        try:
            features = self.extractor.extract(description)
        except ExtractionError as exc:
            logger.warning("Query feature extraction failed: %s", exc)
            raise MatchServiceUnavailable("Feature extraction is temporarily unavailable") from exc

        taxonomy = self.extractor.taxonomy
        requested_categories = frozenset(taxonomy.canonical(code) for code in filters.categories)
        search_filter = SearchFilter(
            agencies=frozenset(agency.upper() for agency in filters.agencies),
            categories=requested_categories | frozenset(filters.categories),
            source_types=frozenset(filters.source_types),
            include_expired=filters.include_expired,
            as_of=as_of,
        )
        context = QueryContext(
            categories=features.categories | requested_categories,
            agencies=search_filter.agencies,
            normalized_text=normalize(description),
        )

        k = max(top_n * self.config.candidate_multiplier, self.config.min_candidates)
        hits = self.index.search(features.vector, k, search_filter)

        scored: list[tuple[StoredSignal, ScoreBreakdown]] = []
        for signal_id, _similarity in hits:
            candidate = self.store.get(signal_id)
            if candidate is None:
                continue
            # the store may already hold a newer version than the index snapshot
            metadata = signal_metadata(candidate.signal, self.extractor.taxonomy)
            if not search_filter.matches(metadata):
                continue
            if not self.scorer.is_eligible(candidate.signal, as_of, filters.include_expired):
                continue
            breakdown = self.scorer.score(features.terms, features.vector, candidate, context)
            if breakdown.total < self.config.relevance_floor:
                continue
            scored.append((candidate, breakdown))

        scored.sort(key=lambda item: (-item[1].total, item[0].id))
        results = [
            MatchResult(
                signal=candidate.signal,
                score=breakdown.total,
                reasoning=self.explainer.explain(features.terms, candidate, breakdown),
                breakdown=breakdown,
            )
            for candidate, breakdown in scored[:top_n]
        ]
        logger.debug(
            "Matched query against %d candidates; returning %d of %d above floor",
            len(hits),
            len(results),
            len(scored),
        )
        return results


def signal_metadata(signal: Signal, taxonomy: Taxonomy) -> IndexMetadata:
    """Filterable fields of ``signal`` with declared categories canonicalized."""
    return IndexMetadata.from_signal(
        signal, categories=(taxonomy.canonical(code) for code in signal.category_codes)
    )
