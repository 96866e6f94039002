"""Tests for relevance scoring."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_stored
from dealflow_match.config import ScoringConfig
from dealflow_match.extractor import FeatureExtractor
from dealflow_match.scoring import QueryContext, Scorer, jaccard

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)


class TestScorer:
    def test_total_is_weighted_sum_in_unit_range(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        query = extractor.extract("Battery analytics software for the power grid")
        candidate = make_stored(extractor)

        breakdown = scorer.score(query.terms, query.vector, candidate)

        expected = (
            0.6 * breakdown.semantic + 0.25 * breakdown.keyword + 0.15 * breakdown.metadata_fit
        )
        assert breakdown.total == pytest.approx(expected)
        assert 0.0 <= breakdown.total <= 1.0
        assert breakdown.metadata_fit == 1.0

    def test_deterministic(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        query = extractor.extract("Battery analytics software for the power grid")
        candidate = make_stored(extractor)
        assert scorer.score(query.terms, query.vector, candidate) == scorer.score(
            query.terms, query.vector, candidate
        )

    def test_empty_query_terms_contribute_nothing(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        query = extractor.extract("Battery analytics")
        candidate = make_stored(extractor)

        breakdown = scorer.score(frozenset(), query.vector, candidate)

        assert breakdown.keyword == 0.0
        assert breakdown.shared_terms == ()

    def test_category_match(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        candidate = make_stored(extractor, category_codes=("221114",))
        query = extractor.extract("Hydrogen fuel cells")
        context = QueryContext(categories=frozenset({"energy"}))

        breakdown = scorer.score(query.terms, query.vector, candidate, context)

        assert breakdown.metadata_fit == 1.0
        assert "energy" in breakdown.shared_categories

    def test_agency_match_without_category(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        candidate = make_stored(extractor, agency="DOE", category_codes=("energy",))
        query = extractor.extract("Wastewater treatment sensors")
        context = QueryContext(agencies=frozenset({"DOE"}))

        breakdown = scorer.score(query.terms, query.vector, candidate, context)

        assert breakdown.metadata_fit == 0.5
        assert breakdown.shared_agency == "DOE"

    def test_agency_named_in_query_text(self, extractor: FeatureExtractor) -> None:
        context = QueryContext(normalized_text="we sell to the department of energy")
        assert context.mentions_agency("Department of Energy")
        assert not context.mentions_agency("Department of Defense")
        assert not context.mentions_agency(None)

    def test_no_metadata_fit(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        candidate = make_stored(extractor, agency="DOE", category_codes=("energy",))
        query = extractor.extract("Rapid diagnostics for emerging pathogens")

        breakdown = scorer.score(query.terms, query.vector, candidate, QueryContext())

        assert breakdown.metadata_fit == 0.0

    def test_custom_weights(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer(ScoringConfig(semantic_weight=1.0, keyword_weight=0.0, metadata_weight=0.0))
        query = extractor.extract("Battery analytics software for the power grid")
        candidate = make_stored(extractor)

        breakdown = scorer.score(query.terms, query.vector, candidate)

        assert breakdown.total == pytest.approx(breakdown.semantic)

    @pytest.mark.parametrize(
        "weights",
        [(0.7, 0.25, 0.15), (1.2, -0.1, -0.1), (0.5, 0.25, 0.2)],
    )
    def test_invalid_weights(self, weights: tuple[float, float, float]) -> None:
        semantic, keyword, metadata = weights
        with pytest.raises(ValueError):
            Scorer(
                ScoringConfig(
                    semantic_weight=semantic, keyword_weight=keyword, metadata_weight=metadata
                )
            )

    def test_expired_signals_ineligible(self, extractor: FeatureExtractor) -> None:
        scorer = Scorer()
        expired = make_stored(extractor, response_due_at=NOW - timedelta(hours=1)).signal
        open_ = make_stored(extractor, response_due_at=NOW + timedelta(days=3)).signal
        undated = make_stored(extractor).signal

        assert not scorer.is_eligible(expired, NOW)
        assert scorer.is_eligible(expired, NOW, include_expired=True)
        assert scorer.is_eligible(open_, NOW)
        assert scorer.is_eligible(undated, NOW)


def test_jaccard() -> None:
    assert jaccard(frozenset({"a", "b"}), frozenset({"b", "c"})) == pytest.approx(1 / 3)
    assert jaccard(frozenset(), frozenset({"a"})) == 0.0
