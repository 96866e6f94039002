from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

EMBEDDERS = ("sentence-transformers", "hashing")


@dataclass(slots=True)
class ExtractorConfig:
    embedder: str = "sentence-transformers"
    model: str = "all-MiniLM-L6-v2"
    dimensions: int = 512
    provider_url: str | None = None
    provider_model: str = "text-embedding-3-small"
    provider_api_key: str | None = None
    timeout_seconds: float = 10.0
    retry_max: int = 2
    retry_backoff_seconds: float = 0.5
    cache_dir: str | None = None
    taxonomy_path: str | None = None

    @property
    def uses_provider(self) -> bool:
        return bool(self.provider_url)


@dataclass(slots=True)
class ScoringConfig:
    semantic_weight: float = 0.6
    keyword_weight: float = 0.25
    metadata_weight: float = 0.15
    relevance_floor: float = 0.1
    explain_threshold: float = 0.2
    candidate_multiplier: int = 5
    min_candidates: int = 25
    max_top_n: int = 100


@dataclass(slots=True)
class StoreConfig:
    data_dir: str = ".dealflow-match"


@dataclass(slots=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass(slots=True)
class AppConfig:
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    user_agent: str = "dealflow-match/0.1"
    log_level: str = "INFO"


def _merge(default: Any, override: Any) -> Any:
    if isinstance(default, dict) and isinstance(override, dict):
        merged: dict[str, Any] = {**default}
        for key, value in override.items():
            merged[key] = _merge(default.get(key), value)
        return merged
    return override if override is not None else default


def load_config(path: Path) -> AppConfig:
    data: dict[str, Any] = {}
    if path.exists():
        data = _read_toml(path)

    defaults = AppConfig()
    merged = _merge(_as_dict(defaults), data)

    config = AppConfig(
        extractor=ExtractorConfig(**merged.get("extractor", {})),
        scoring=ScoringConfig(**merged.get("scoring", {})),
        store=StoreConfig(**merged.get("store", {})),
        server=ServerConfig(**merged.get("server", {})),
        user_agent=merged.get("user_agent", "dealflow-match/0.1"),
        log_level=merged.get("log_level", "INFO"),
    )

    if env_url := os.getenv("EMBEDDING_API_URL"):
        config.extractor.provider_url = env_url
    if env_key := os.getenv("EMBEDDING_API_KEY"):
        config.extractor.provider_api_key = env_key.strip()
    if env_data_dir := os.getenv("DEALFLOW_MATCH_DATA_DIR"):
        config.store.data_dir = env_data_dir
    if env_level := os.getenv("LOG_LEVEL"):
        config.log_level = env_level

    config.log_level = config.log_level.upper()
    if config.extractor.embedder not in EMBEDDERS:
        raise ValueError(
            f"Unknown extractor.embedder {config.extractor.embedder!r}; "
            f"expected one of {', '.join(EMBEDDERS)}"
        )
    validate_scoring(config.scoring)
    return config


def validate_scoring(scoring: ScoringConfig) -> None:
    weights = (scoring.semantic_weight, scoring.keyword_weight, scoring.metadata_weight)
    if any(weight < 0 for weight in weights):
        raise ValueError(f"Scoring weights must be non-negative, got {weights}")
    if not math.isclose(sum(weights), 1.0, abs_tol=1e-6):
        raise ValueError(f"Scoring weights must sum to 1, got {sum(weights):.6f}")
    for name in ("relevance_floor", "explain_threshold"):
        value = getattr(scoring, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be within [0, 1], got {value}")
    if scoring.candidate_multiplier < 1:
        raise ValueError("candidate_multiplier must be at least 1")


def config_path(cli_path: str | None) -> Path:
    if cli_path:
        return Path(cli_path).expanduser()
    if env_path := os.getenv("DEALFLOW_MATCH_CONFIG"):
        return Path(env_path).expanduser()
    return Path("config.toml")


def _read_toml(path: Path) -> dict[str, Any]:
    import tomllib

    with path.open("rb") as handle:
        return tomllib.load(handle)


def _as_dict(config: AppConfig) -> dict[str, Any]:
    return {
        "user_agent": config.user_agent,
        "log_level": config.log_level,
        "extractor": {
            "embedder": config.extractor.embedder,
            "model": config.extractor.model,
            "dimensions": config.extractor.dimensions,
            "provider_url": config.extractor.provider_url,
            "provider_model": config.extractor.provider_model,
            "provider_api_key": config.extractor.provider_api_key,
            "timeout_seconds": config.extractor.timeout_seconds,
            "retry_max": config.extractor.retry_max,
            "retry_backoff_seconds": config.extractor.retry_backoff_seconds,
            "cache_dir": config.extractor.cache_dir,
            "taxonomy_path": config.extractor.taxonomy_path,
        },
        "scoring": {
            "semantic_weight": config.scoring.semantic_weight,
            "keyword_weight": config.scoring.keyword_weight,
            "metadata_weight": config.scoring.metadata_weight,
            "relevance_floor": config.scoring.relevance_floor,
            "explain_threshold": config.scoring.explain_threshold,
            "candidate_multiplier": config.scoring.candidate_multiplier,
            "min_candidates": config.scoring.min_candidates,
            "max_top_n": config.scoring.max_top_n,
        },
        "store": {
            "data_dir": config.store.data_dir,
        },
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "allowed_origins": config.server.allowed_origins,
        },
    }
