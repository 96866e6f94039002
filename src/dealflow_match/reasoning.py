from __future__ import annotations

from .config import ScoringConfig
from .models import ScoreBreakdown, Signal
from .store import StoredSignal
from .taxonomy import Taxonomy, default_taxonomy
from .text import keywords

MAX_QUOTED_TERMS = 4
STRONG_SCORE = 0.6
MODERATE_SCORE = 0.35

SOURCE_LABELS = {
    "solicitation": "solicitation",
    "forecast": "procurement forecast",
    "grant": "grant notice",
    "sources-sought": "sources-sought notice",
    "award-notice": "award notice",
}


class Explainer:
    def __init__(
        self, config: ScoringConfig | None = None, taxonomy: Taxonomy | None = None
    ) -> None:
        self.config = config or ScoringConfig()
        self.taxonomy = taxonomy or default_taxonomy()

    def explain(
        self,
        query_terms: frozenset[str],
        candidate: StoredSignal,
        breakdown: ScoreBreakdown,
    ) -> str:
        signal = candidate.signal
        shared_terms = [
            term
            for term in breakdown.shared_terms
            if term in query_terms and term in candidate.terms
        ]
        shared_categories = tuple(
            code
            for code in breakdown.shared_categories
            if code in query_terms and code in candidate.terms
        )
        has_basis = bool(shared_terms or shared_categories or breakdown.shared_agency)
        if breakdown.total < self.config.explain_threshold or not has_basis:
            return (
                f"Low-confidence match: this {_source_label(signal)} is only loosely related "
                "to your description and shares no specific terms with it."
            )

        sentences = [f"{_strength(breakdown.total)}: {self._lead(signal, shared_terms)}"]
        if shared_categories:
            sentences.append(self._categories(shared_categories))
        if breakdown.shared_agency:
            sentences.append(
                f'It is issued by "{breakdown.shared_agency}", an agency you named.'
            )
        if signal.response_due_at:
            sentences.append(f"Responses are due {signal.response_due_at.date().isoformat()}.")
        return " ".join(sentences)

    def _lead(self, signal: Signal, shared_terms: list[str]) -> str:
        subject = f"this {signal.agency + ' ' if signal.agency else ''}{_source_label(signal)}"
        if not shared_terms:
            return f"{subject} aligns with your focus area."
        quoted = _join([f'"{term}"' for term in _rank_terms(signal, shared_terms)])
        return f"{subject} overlaps with your description on {quoted}."

    def _categories(self, codes: tuple[str, ...]) -> str:
        described = [f'"{code}" ({self.taxonomy.label(code)})' for code in codes[:2]]
        noun = "category" if len(described) == 1 else "categories"
        return f"Both fall under the {_join(described)} {noun}."


def _rank_terms(signal: Signal, terms: list[str]) -> list[str]:
    in_title = set(keywords(signal.title))
    ranked = sorted(terms, key=lambda term: (term not in in_title, -len(term), term))
    return ranked[:MAX_QUOTED_TERMS]


def _strength(score: float) -> str:
    if score >= STRONG_SCORE:
        return "Strong match"
    if score >= MODERATE_SCORE:
        return "Moderate match"
    return "Possible match"


def _source_label(signal: Signal) -> str:
    return SOURCE_LABELS.get(signal.source_type, signal.source_type)


def _join(items: list[str]) -> str:
    if len(items) <= 1:
        return "".join(items)
    return ", ".join(items[:-1]) + " and " + items[-1]
