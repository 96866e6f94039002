"""Tests for the HTTP embedding provider."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

import httpx
import numpy as np
import pytest

from dealflow_match.config import AppConfig
from dealflow_match.errors import ExtractionError, MatchServiceUnavailable
from dealflow_match.extractor import FeatureExtractor
from dealflow_match.index import IndexManifest, VectorIndex
from dealflow_match.provider import HttpEmbeddingProvider
from dealflow_match.service import MatchService
from dealflow_match.store import SignalStore

URL = "https://embeddings.test/v1/embeddings"
DIMENSIONS = 16


def _config(cache_dir: Path | None = None) -> AppConfig:
    config = AppConfig()
    config.extractor.provider_url = URL
    config.extractor.provider_api_key = "secret"
    config.extractor.dimensions = DIMENSIONS
    config.extractor.retry_max = 2
    config.extractor.cache_dir = str(cache_dir) if cache_dir else None
    return config


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"embedding": [1.0] + [0.0] * (DIMENSIONS - 1)}]})


class Recorder:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )


def _provider(handler, cache_dir: Path | None = None, sleeps: list | None = None):
    sleeps = sleeps if sleeps is not None else []
    return HttpEmbeddingProvider(
        _config(cache_dir), transport=httpx.MockTransport(handler), sleep=sleeps.append
    )


def _embed(provider: HttpEmbeddingProvider, text: str = "satellite imagery") -> np.ndarray:
    return provider.embed(text, text.split(), Counter())


class TestHttpEmbeddingProvider:
    def test_request_shape_and_auth(self) -> None:
        recorder = Recorder(_ok)
        provider = _provider(recorder)

        vector = _embed(provider)

        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "model": "text-embedding-3-small",
            "input": "satellite imagery",
            "dimensions": DIMENSIONS,
        }
        assert vector.shape == (DIMENSIONS,)
        assert vector.dtype == np.float32
        assert provider.name == f"provider/text-embedding-3-small/{DIMENSIONS}"

    def test_results_are_cached_in_memory(self) -> None:
        recorder = Recorder(_ok)
        provider = _provider(recorder)

        first = _embed(provider)
        second = _embed(provider)

        assert len(recorder.requests) == 1
        assert np.array_equal(first, second)

    def test_results_are_cached_on_disk(self, tmp_path: Path) -> None:
        recorder = Recorder(_ok)
        _embed(_provider(recorder, cache_dir=tmp_path))

        offline = Recorder(httpx.Response(500))
        vector = _embed(_provider(offline, cache_dir=tmp_path))

        assert offline.requests == []
        assert vector[0] == pytest.approx(1.0)
        assert list(tmp_path.glob("*.npy"))

    def test_retries_then_succeeds(self) -> None:
        recorder = Recorder(httpx.Response(503), httpx.Response(429), _ok)
        sleeps: list[float] = []

        vector = _embed(_provider(recorder, sleeps=sleeps))

        assert len(recorder.requests) == 3
        assert sleeps == [0.5, 1.0]
        assert vector[0] == pytest.approx(1.0)

    def test_timeouts_are_retried(self) -> None:
        recorder = Recorder(httpx.ReadTimeout("timed out"), _ok)
        _embed(_provider(recorder))
        assert len(recorder.requests) == 2

    def test_gives_up_after_retries(self) -> None:
        recorder = Recorder(httpx.Response(502))
        sleeps: list[float] = []

        with pytest.raises(ExtractionError, match="after 3 attempts"):
            _embed(_provider(recorder, sleeps=sleeps))

        assert len(recorder.requests) == 3
        assert len(sleeps) == 2

    def test_client_errors_are_not_retried(self) -> None:
        recorder = Recorder(httpx.Response(401))

        with pytest.raises(ExtractionError, match="401"):
            _embed(_provider(recorder))

        assert len(recorder.requests) == 1

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]}),
            httpx.Response(200, json={"data": []}),
            httpx.Response(200, json={"unexpected": True}),
            httpx.Response(200, content=b"not json"),
        ],
    )
    def test_malformed_responses(self, response: httpx.Response) -> None:
        with pytest.raises(ExtractionError):
            _embed(_provider(Recorder(response)))

    def test_requires_url(self) -> None:
        with pytest.raises(ValueError):
            HttpEmbeddingProvider(AppConfig())


def test_provider_outage_surfaces_as_unavailable() -> None:
    provider = _provider(Recorder(httpx.Response(503)))
    extractor = FeatureExtractor(embedder=provider)
    manifest = IndexManifest(embedder=provider.name, dimensions=DIMENSIONS)
    service = MatchService(SignalStore(manifest), VectorIndex(manifest), extractor)

    with pytest.raises(MatchServiceUnavailable):
        service.match("We analyze satellite images for flood detection", top_n=3)
