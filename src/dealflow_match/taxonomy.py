"""Category taxonomy used to infer classification codes from free text."""

from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .text import keywords, stem, tokenize

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaxonomyEntry:
    code: str
    label: str
    keywords: tuple[str, ...]
    aliases: tuple[str, ...] = ()


DEFAULT_ENTRIES: tuple[TaxonomyEntry, ...] = (
    TaxonomyEntry(
        code="earth-observation",
        label="Earth observation and remote sensing",
        keywords=(
            "satellite", "imagery", "image", "remote sensing", "geospatial", "earth observation",
            "flood", "wildfire", "hurricane", "disaster", "weather", "climate", "ocean", "lidar",
            "hyperspectral", "radar", "mapping",
        ),
        aliases=("541370", "541360"),
    ),
    TaxonomyEntry(
        code="artificial-intelligence",
        label="Artificial intelligence and data analytics",
        keywords=(
            "ai", "ml", "artificial intelligence", "machine learning", "deep learning", "neural",
            "computer vision", "natural language", "analytics", "prediction", "model",
            "automation", "algorithm",
        ),
        aliases=("541715",),
    ),
    TaxonomyEntry(
        code="cybersecurity",
        label="Cybersecurity",
        keywords=(
            "cybersecurity", "cyber", "encryption", "zero trust", "intrusion", "malware",
            "vulnerability", "threat", "authentication", "cryptography",
        ),
        aliases=("541519", "541512"),
    ),
    TaxonomyEntry(
        code="space",
        label="Space systems",
        keywords=(
            "space", "spacecraft", "satellite", "launch", "orbit", "orbital", "rocket",
            "propulsion", "lunar", "constellation",
        ),
        aliases=("336414", "336415", "927110"),
    ),
    TaxonomyEntry(
        code="biotechnology",
        label="Biotechnology and life sciences",
        keywords=(
            "biotechnology", "biotech", "genomics", "protein", "drug", "therapeutic",
            "vaccine", "diagnostic", "biomedical", "pathogen", "assay",
        ),
        aliases=("541714", "325414"),
    ),
    TaxonomyEntry(
        code="health",
        label="Health care delivery and health IT",
        keywords=(
            "health", "healthcare", "medical", "patient", "telehealth", "hospital", "clinical",
            "clinician", "veteran",
        ),
        aliases=("621999", "621111"),
    ),
    TaxonomyEntry(
        code="energy",
        label="Energy and power",
        keywords=(
            "energy", "battery", "solar", "grid", "renewable", "hydrogen", "nuclear", "fusion",
            "power", "microgrid", "wind turbine",
        ),
        aliases=("221114", "221118", "335911"),
    ),
    TaxonomyEntry(
        code="advanced-manufacturing",
        label="Advanced manufacturing and materials",
        keywords=(
            "manufacturing", "additive", "3d printing", "robotics", "robot", "factory",
            "materials", "composite", "semiconductor", "fabrication",
        ),
        aliases=("333249", "332710"),
    ),
    TaxonomyEntry(
        code="communications",
        label="Communications and networking",
        keywords=(
            "wireless", "5g", "6g", "spectrum", "network", "telecommunications", "radio",
            "antenna", "broadband",
        ),
        aliases=("517111", "517112"),
    ),
    TaxonomyEntry(
        code="transportation",
        label="Transportation and autonomy",
        keywords=(
            "transportation", "autonomous", "vehicle", "aviation", "drone", "uav", "logistics",
            "traffic", "rail", "maritime", "aircraft",
        ),
        aliases=("488190", "336411"),
    ),
    TaxonomyEntry(
        code="agriculture",
        label="Agriculture and food systems",
        keywords=(
            "agriculture", "farm", "crop", "soil", "livestock", "food", "irrigation",
            "precision agriculture",
        ),
        aliases=("111998", "115112"),
    ),
    TaxonomyEntry(
        code="environment",
        label="Environmental remediation and water",
        keywords=(
            "water", "pollution", "emissions", "carbon", "environmental", "recycling", "waste",
            "remediation", "wastewater",
        ),
        aliases=("562910", "924110"),
    ),
    TaxonomyEntry(
        code="defense",
        label="Defense systems",
        keywords=(
            "defense", "military", "warfighter", "munitions", "weapon", "soldier", "army",
            "navy", "missile", "hypersonic", "battlefield",
        ),
        aliases=("336992", "928110"),
    ),
    TaxonomyEntry(
        code="education",
        label="Education and workforce",
        keywords=(
            "education", "learning", "student", "teacher", "training", "workforce",
            "curriculum", "classroom",
        ),
        aliases=("611710",),
    ),
    TaxonomyEntry(
        code="quantum",
        label="Quantum information science",
        keywords=("quantum", "qubit", "entanglement", "quantum sensing"),
    ),
)


class Taxonomy:
    def __init__(self, entries: Iterable[TaxonomyEntry]) -> None:
        self.entries: dict[str, TaxonomyEntry] = {}
        self._aliases: dict[str, str] = {}
        self._phrases: dict[tuple[str, ...], set[str]] = {}
        for entry in entries:
            code = normalize_code(entry.code)
            self.entries[code] = entry
            self._aliases[code] = code
            for alias in entry.aliases:
                self._aliases[normalize_code(alias)] = code
            for keyword in entry.keywords:
                phrase = tuple(stem(token) for token in tokenize(keyword))
                if phrase:
                    self._phrases.setdefault(phrase, set()).add(code)
        self._max_phrase = max((len(phrase) for phrase in self._phrases), default=1)
        self.digest = _digest(self.entries)

    def __contains__(self, code: str) -> bool:
        return normalize_code(code) in self._aliases

    def canonical(self, code: str) -> str:
        normalized = normalize_code(code)
        return self._aliases.get(normalized, normalized)

    def label(self, code: str) -> str:
        entry = self.entries.get(self.canonical(code))
        return entry.label if entry else code

    def concept_hits(self, stems: list[str]) -> Counter[str]:
        hits: Counter[str] = Counter()
        for start in range(len(stems)):
            for size in range(1, self._max_phrase + 1):
                phrase = tuple(stems[start : start + size])
                if len(phrase) < size:
                    break
                for code in self._phrases.get(phrase, ()):
                    hits[code] += 1
        return hits

    def infer(self, text: str) -> frozenset[str]:
        stems = [stem(token) for token in keywords(text)]
        return frozenset(self.concept_hits(stems))


def _digest(entries: dict[str, TaxonomyEntry]) -> str:
    """Fingerprint of everything that changes extracted features (labels excluded)."""
    payload = [
        [code, sorted(entry.keywords), sorted(normalize_code(alias) for alias in entry.aliases)]
        for code, entry in sorted(entries.items())
    ]
    return hashlib.sha256(json.dumps(payload).encode("utf-8")).hexdigest()[:16]


def normalize_code(code: str) -> str:
    return "-".join(code.strip().lower().split())


def default_taxonomy() -> Taxonomy:
    return Taxonomy(DEFAULT_ENTRIES)


def load_taxonomy(path: Path | None) -> Taxonomy:
    if path is None:
        return default_taxonomy()

    import tomllib

    with path.open("rb") as handle:
        data: dict[str, Any] = tomllib.load(handle)

    entries: list[TaxonomyEntry] = []
    for item in data.get("category", []):
        if not isinstance(item, dict) or not item.get("code"):
            logger.warning("Skipping taxonomy entry without a code in %s", path)
            continue
        entries.append(
            TaxonomyEntry(
                code=str(item["code"]),
                label=str(item.get("label") or item["code"]),
                keywords=tuple(str(keyword) for keyword in item.get("keywords", [])),
                aliases=tuple(str(alias) for alias in item.get("aliases", [])),
            )
        )
    if not entries:
        raise ValueError(f"Taxonomy file {path} defines no categories")
    logger.info("Loaded %d taxonomy categories from %s", len(entries), path)
    return Taxonomy(entries)
