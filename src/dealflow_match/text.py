from __future__ import annotations

import re

STOPWORDS = frozenset(
    """
    a about above across after again against all almost also although always am among an and
    any are around as at be because been before being below between both but by can could
    did do does doing done down during each either else enough etc even ever every few for
    from further get gets had has have having he her here hers him his how however i if in
    including into is it its itself just least less like made make makes many may me might
    more most much must my near need needs neither no nor not now of off often on once one
    only onto or other others our ours ourselves out over own per rather same she should
    since so some such than that the their theirs them themselves then there these they this
    those though through thus to too toward under until up upon us use used uses using very
    via was we well were what whatever when where whether which while who whom whose why
    will with within without would yet you your yours
    company companies startup startups business businesses team provide provides providing
    offer offers help helps based new solution solutions product products service services
    """.split()
)

SHORT_TERMS = frozenset({"ai", "ml", "ar", "vr", "5g", "6g", "3d", "uv", "ev"})

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

_PLURALS = (("ies", "y"), ("sses", "ss"), ("es", ""), ("s", ""))
_SUFFIXES = (
    "izations",
    "ization",
    "ications",
    "ication",
    "ational",
    "ations",
    "ation",
    "ements",
    "ement",
    "ments",
    "ment",
    "ities",
    "ity",
    "ness",
    "ings",
    "ing",
    "ical",
    "ics",
    "ion",
    "ery",
    "ers",
    "er",
    "ed",
    "ic",
    "al",
    "ly",
)
_MIN_STEM = 3


def normalize(text: str) -> str:
    lowered = text.lower()
    stripped = _PUNCTUATION.sub(" ", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def tokenize(text: str) -> list[str]:
    normalized = normalize(text)
    return normalized.split(" ") if normalized else []


def is_keyword(token: str) -> bool:
    if token in STOPWORDS or token.isdigit():
        return False
    return len(token) >= 3 or token in SHORT_TERMS


def keywords(text: str) -> list[str]:
    return [token for token in tokenize(text) if is_keyword(token)]


def stem(word: str) -> str:
    if word in SHORT_TERMS or len(word) <= _MIN_STEM:
        return word

    for suffix, replacement in _PLURALS:
        if not word.endswith(suffix):
            continue
        if suffix == "s" and word.endswith(("ss", "us", "is")):
            break
        candidate = word[: -len(suffix)] + replacement
        if len(candidate) >= _MIN_STEM:
            word = candidate
        break

    for suffix in _SUFFIXES:
        if word.endswith(suffix):
            candidate = word[: -len(suffix)]
            if len(candidate) >= _MIN_STEM:
                word = candidate
            break

    if word.endswith("e") and len(word) > _MIN_STEM:
        word = word[:-1]
    return word
