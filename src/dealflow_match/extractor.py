from __future__ import annotations

import hashlib
import logging
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

import numpy as np

from .errors import ExtractionError, InvalidInputError
from .taxonomy import Taxonomy, default_taxonomy
from .text import keywords, normalize, stem

logger = logging.getLogger(__name__)

DECLARED_CATEGORY_HITS = 2
BIGRAM_WEIGHT = 0.5


@dataclass(slots=True, frozen=True)
class Features:
    vector: np.ndarray
    terms: frozenset[str]
    categories: frozenset[str]


class Embedder(Protocol):
    name: str
    dimensions: int

    def embed(self, normalized: str, stems: list[str], concepts: Counter[str]) -> np.ndarray: ...


class HashingEmbedder:
    """Signed feature hashing over stems, stem bigrams and taxonomy concepts.

    Buckets come from BLAKE2b digests so vectors are stable across processes
    and interpreter restarts.
    """

    def __init__(self, dimensions: int = 512, concept_weight: float = 1.0) -> None:
        if dimensions < 16:
            raise ValueError("HashingEmbedder needs at least 16 dimensions")
        self.dimensions = dimensions
        self.concept_weight = concept_weight
        self.name = f"hashing-v1/{dimensions}"

    def embed(self, normalized: str, stems: list[str], concepts: Counter[str]) -> np.ndarray:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        for token in stems:
            self._add(vector, f"t:{token}", 1.0)
        for left, right in zip(stems, stems[1:]):
            self._add(vector, f"b:{left} {right}", BIGRAM_WEIGHT)
        for code in sorted(concepts):
            self._add(vector, f"c:{code}", self.concept_weight * concepts[code])
        return unit(vector)

    def _add(self, vector: np.ndarray, feature: str, weight: float) -> None:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "big")
        sign = -1.0 if value >> 63 else 1.0
        vector[value % self.dimensions] += sign * weight


SENTENCE_MODELS = {
    "all-MiniLM-L6-v2": {"dim": 384, "max_tokens": 256},
    "all-mpnet-base-v2": {"dim": 768, "max_tokens": 384},
}
DEFAULT_MAX_TOKENS = 256


class SentenceTransformerEmbedder:
    """Embeds normalized text with a sentence-transformers model.

    The model is loaded on first use. Long texts are split into chunks and
    mean-pooled.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", model: Any | None = None) -> None:
        self.model_name = model_name
        self._model = model
        self._lock = threading.Lock()
        info = SENTENCE_MODELS.get(model_name, {})
        self._dimensions: int | None = info.get("dim")
        self.max_chars = info.get("max_tokens", DEFAULT_MAX_TOKENS) * 4

    @property
    def dimensions(self) -> int:
        if self._dimensions is None:
            self._dimensions = int(self.model.get_sentence_embedding_dimension())
        return self._dimensions

    @property
    def name(self) -> str:
        return f"st/{self.model_name}/{self.dimensions}"

    @property
    def model(self) -> Any:
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model: %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, normalized: str, stems: list[str], concepts: Counter[str]) -> np.ndarray:
        if not normalized:
            return np.zeros(self.dimensions, dtype=np.float32)
        if len(normalized) <= self.max_chars:
            chunks = [normalized]
        else:
            step = self.max_chars - 100
            chunks = [
                normalized[start : start + self.max_chars]
                for start in range(0, len(normalized), step)
            ]
        embeddings = self.model.encode(chunks, convert_to_numpy=True, show_progress_bar=False)
        vector = np.mean(np.asarray(embeddings, dtype=np.float64), axis=0)
        if vector.shape != (self.dimensions,):
            raise ExtractionError(
                f"Model {self.model_name} returned shape {vector.shape}, "
                f"expected ({self.dimensions},)"
            )
        return unit(vector)


class FeatureExtractor:
    def __init__(self, embedder: Embedder, taxonomy: Taxonomy | None = None) -> None:
        self.embedder = embedder
        self.taxonomy = taxonomy or default_taxonomy()

    @property
    def embedder_name(self) -> str:
        return self.embedder.name

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    def extract(self, text: str, categories: Iterable[str] = ()) -> Features:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Text to extract features from must be a non-empty string")

        normalized = normalize(text)
        words = keywords(normalized)
        stems = [stem(word) for word in words]

        concepts = self.taxonomy.concept_hits(stems)
        declared = {self.taxonomy.canonical(code) for code in categories if code and code.strip()}
        for code in declared:
            concepts[code] += DECLARED_CATEGORY_HITS

        vector = self.embedder.embed(normalized, stems, concepts)
        codes = frozenset(concepts)
        return Features(vector=vector, terms=frozenset(words) | codes, categories=codes)


def unit(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector.astype(np.float32)
    return (vector / norm).astype(np.float32)


def cosine(left: np.ndarray, right: np.ndarray) -> float:
    left_norm = float(np.linalg.norm(left))
    right_norm = float(np.linalg.norm(right))
    if left_norm == 0.0 or right_norm == 0.0:
        return 0.0
    return float(np.dot(left, right) / (left_norm * right_norm))
