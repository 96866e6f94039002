"""Pytest configuration and fixtures."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

import pytest

from dealflow_match.config import AppConfig
from dealflow_match.engine import Engine, build_engine
from dealflow_match.extractor import FeatureExtractor, HashingEmbedder
from dealflow_match.models import Signal
from dealflow_match.store import StoredSignal, fingerprint

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)

SATELLITE_SIGNAL: dict[str, Any] = {
    "id": "noaa-sat-1",
    "source_type": "solicitation",
    "agency": "NOAA",
    "category_codes": ["earth-observation"],
    "title": "Satellite imagery analytics for disaster response",
    "description": (
        "NOAA seeks satellite imagery analytics to support flood and hurricane disaster response."
    ),
    "published_at": "2026-09-01",
    "response_due_at": "2026-12-15",
}

SAMPLE_RECORDS: list[dict[str, Any]] = [
    SATELLITE_SIGNAL,
    {
        "id": "nasa-earth-2",
        "source_type": "forecast",
        "agency": "NASA",
        "category_codes": ["earth-observation", "space"],
        "title": "Commercial smallsat data buy for Earth science",
        "description": (
            "NASA plans to purchase commercial satellite imagery and radar data for land cover "
            "and flood mapping."
        ),
        "response_due_at": "2027-02-01",
    },
    {
        "id": "dhs-cyber-3",
        "source_type": "solicitation",
        "agency": "DHS",
        "category_codes": ["cybersecurity"],
        "title": "Zero trust architecture for federal networks",
        "description": "Intrusion detection and identity tooling for civilian agencies.",
        "response_due_at": "2026-11-20",
    },
    {
        "id": "nih-bio-4",
        "source_type": "grant",
        "agency": "NIH",
        "category_codes": ["biotechnology"],
        "title": "Rapid diagnostics for emerging pathogens",
        "description": "Point-of-care diagnostic assays that detect novel pathogens in hours.",
        "response_due_at": "2027-01-10",
    },
    {
        "id": "fema-expired-5",
        "source_type": "solicitation",
        "agency": "FEMA",
        "category_codes": ["earth-observation"],
        "title": "Flood inundation mapping from satellite imagery",
        "description": "Near real-time flood extent maps derived from satellite imagery.",
        "response_due_at": "2026-09-01",
    },
    {
        "id": "doe-grid-6",
        "source_type": "sources-sought",
        "agency": "DOE",
        "category_codes": ["energy"],
        "title": "Grid-scale battery storage analytics",
        "description": "Market research on software forecasting battery degradation on the grid.",
    },
    {
        "id": "noaa-ocean-7",
        "source_type": "award-notice",
        "agency": "NOAA",
        "category_codes": ["earth-observation"],
        "title": "Ocean observing buoy network modernization",
        "description": "Award for ocean sensors and weather data telemetry.",
    },
]

QUOTED = re.compile(r'"([^"]+)"')


def quoted_terms(reasoning: str) -> list[str]:
    return QUOTED.findall(reasoning)


def make_stored(extractor: FeatureExtractor, **overrides: Any) -> StoredSignal:
    fields: dict[str, Any] = {
        "id": "sig-1",
        "source_type": "solicitation",
        "title": "Grid-scale battery storage analytics",
        "description": "",
        "agency": "DOE",
        "category_codes": ("energy",),
    }
    fields.update(overrides)
    signal = Signal(**fields)
    features = extractor.extract(signal.text, signal.category_codes)
    return StoredSignal(signal=signal, features=features, fingerprint=fingerprint(signal))


@pytest.fixture
def extractor() -> FeatureExtractor:
    return FeatureExtractor(HashingEmbedder())


@pytest.fixture
def config(tmp_path) -> AppConfig:
    config = AppConfig()
    config.extractor.embedder = "hashing"
    config.store.data_dir = str(tmp_path / "data")
    return config


@pytest.fixture
def engine(config: AppConfig) -> Engine:
    engine = build_engine(config)
    engine.service.clock = lambda: NOW
    return engine


@pytest.fixture
def loaded_engine(engine: Engine) -> Engine:
    report = engine.ingest(SAMPLE_RECORDS)
    assert not report.rejected
    return engine
