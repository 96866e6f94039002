from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any, Callable

import httpx
import numpy as np

from .config import AppConfig
from .errors import ExtractionError
from .extractor import unit

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class EmbeddingCache:
    def __init__(self, cache_dir: Path | None = None) -> None:
        self.cache_dir = cache_dir
        self._memory: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()
        if cache_dir is not None:
            cache_dir.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> np.ndarray | None:
        with self._lock:
            cached = self._memory.get(key)
        if cached is not None:
            return cached
        path = self._path(key)
        if path is None or not path.exists():
            return None
        vector = np.load(path)
        with self._lock:
            self._memory[key] = vector
        return vector

    def put(self, key: str, vector: np.ndarray) -> None:
        with self._lock:
            self._memory[key] = vector
        path = self._path(key)
        if path is not None:
            np.save(path, vector)

    def _path(self, key: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f"{key}.npy"


class HttpEmbeddingProvider:
    def __init__(
        self,
        config: AppConfig,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        extractor = config.extractor
        if not extractor.provider_url:
            raise ValueError("Embedding provider URL not configured (set EMBEDDING_API_URL)")
        self.url = extractor.provider_url
        self.model = extractor.provider_model
        self.dimensions = extractor.dimensions
        self.name = f"provider/{self.model}/{self.dimensions}"
        self.timeout = extractor.timeout_seconds
        self.retries = max(0, extractor.retry_max)
        self.backoff = max(0.05, extractor.retry_backoff_seconds)
        self.headers = {"User-Agent": config.user_agent}
        if extractor.provider_api_key:
            self.headers["Authorization"] = f"Bearer {extractor.provider_api_key}"
        cache_dir = Path(extractor.cache_dir).expanduser() if extractor.cache_dir else None
        self.cache = EmbeddingCache(cache_dir)
        self._transport = transport
        self._sleep = sleep

    def embed(self, normalized: str, stems: list[str], concepts: Counter[str]) -> np.ndarray:
        key = self._cache_key(normalized)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        vector = unit(np.asarray(self._request(normalized), dtype=np.float64))
        self.cache.put(key, vector)
        return vector

    def _cache_key(self, normalized: str) -> str:
        payload = f"{self.model}\n{self.dimensions}\n{normalized}".encode("utf-8")
        return hashlib.sha256(payload).hexdigest()

    def _request(self, normalized: str) -> list[float]:
        payload = {"model": self.model, "input": normalized, "dimensions": self.dimensions}
        last_error: Exception | None = None

        for attempt in range(self.retries + 1):
            try:
                with httpx.Client(
                    timeout=self.timeout, headers=self.headers, transport=self._transport
                ) as client:
                    resp = client.post(self.url, json=payload)
                    resp.raise_for_status()
                    data = resp.json()
                return self._extract_embedding(data)
            except httpx.HTTPStatusError as exc:
                last_error = exc
                status = exc.response.status_code
                if status not in RETRYABLE_STATUS:
                    raise ExtractionError(f"Embedding provider rejected request: {status}") from exc
            except httpx.RequestError as exc:
                last_error = exc
            except ValueError as exc:
                raise ExtractionError(f"Embedding provider returned invalid JSON: {exc}") from exc

            if attempt < self.retries:
                delay = self.backoff * (2**attempt)
                logger.warning(
                    "Embedding request failed (attempt %d/%d): %s; retrying in %.2fs",
                    attempt + 1,
                    self.retries + 1,
                    last_error,
                    delay,
                )
                self._sleep(delay)

        raise ExtractionError(
            f"Embedding provider unavailable after {self.retries + 1} attempts: {last_error}"
        ) from last_error

    def _extract_embedding(self, data: Any) -> list[float]:
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            raise ExtractionError("Embedding provider response has no data")
        embedding = items[0].get("embedding")
        size = len(embedding) if isinstance(embedding, list) else 0
        if size != self.dimensions:
            raise ExtractionError(
                f"Embedding provider returned {size} dimensions, expected {self.dimensions}"
            )
        return embedding
