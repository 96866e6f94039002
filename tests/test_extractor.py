"""Tests for feature extraction."""

from collections import Counter

import numpy as np
import pytest

from dealflow_match.config import AppConfig
from dealflow_match.engine import make_extractor
from dealflow_match.errors import ExtractionError, InvalidInputError
from dealflow_match.extractor import (
    FeatureExtractor,
    HashingEmbedder,
    SentenceTransformerEmbedder,
    cosine,
)
from dealflow_match.provider import HttpEmbeddingProvider


class TestFeatureExtractor:
    def test_extract_is_pure(self, extractor: FeatureExtractor) -> None:
        """Same text always yields the same vector and terms."""
        text = "We analyze satellite images for flood detection"
        first = extractor.extract(text)
        second = FeatureExtractor(HashingEmbedder()).extract(text)

        assert np.array_equal(first.vector, second.vector)
        assert first.terms == second.terms
        assert first.categories == second.categories

    def test_vector_shape_and_norm(self, extractor: FeatureExtractor) -> None:
        features = extractor.extract("Zero trust architecture for federal networks")
        assert features.vector.shape == (512,)
        assert features.vector.dtype == np.float32
        assert np.linalg.norm(features.vector) == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_text_rejected(self, extractor: FeatureExtractor, text: str) -> None:
        with pytest.raises(InvalidInputError):
            extractor.extract(text)

    def test_non_string_rejected(self, extractor: FeatureExtractor) -> None:
        with pytest.raises(InvalidInputError):
            extractor.extract(None)  # type: ignore[arg-type]

    def test_terms_include_keywords_and_inferred_categories(
        self, extractor: FeatureExtractor
    ) -> None:
        features = extractor.extract("We analyze satellite images for flood detection")
        assert {"analyze", "satellite", "images", "flood", "detection"} <= features.terms
        assert "earth-observation" in features.categories
        assert "earth-observation" in features.terms
        assert "we" not in features.terms

    def test_declared_categories_are_canonicalized(self, extractor: FeatureExtractor) -> None:
        features = extractor.extract("Battery research", categories=["221114"])
        assert "energy" in features.categories
        assert "energy" in features.terms

    def test_stopword_only_text_has_no_terms(self, extractor: FeatureExtractor) -> None:
        features = extractor.extract("we are in it for them")
        assert features.terms == frozenset()
        assert not features.vector.any()

    def test_related_texts_are_closer_than_unrelated(self, extractor: FeatureExtractor) -> None:
        query = extractor.extract("We analyze satellite images for flood detection")
        related = extractor.extract("Satellite imagery analytics for disaster response")
        unrelated = extractor.extract("Rapid diagnostics for emerging pathogens")

        assert cosine(query.vector, related.vector) > cosine(query.vector, unrelated.vector)


class TestHashingEmbedder:
    def test_name_tracks_dimensions(self) -> None:
        assert HashingEmbedder(256).name == "hashing-v1/256"

    def test_too_few_dimensions(self) -> None:
        with pytest.raises(ValueError):
            HashingEmbedder(4)

    def test_dimensions_respected(self) -> None:
        extractor = FeatureExtractor(embedder=HashingEmbedder(64))
        assert extractor.extract("quantum sensing").vector.shape == (64,)


def test_cosine_handles_zero_vectors() -> None:
    assert cosine(np.zeros(4), np.ones(4)) == 0.0
    assert cosine(np.ones(4), np.ones(4)) == pytest.approx(1.0)


class FakeSentenceModel:
    """Stands in for a SentenceTransformer; maps each text to a fixed direction."""

    def __init__(self, dimensions: int = 8) -> None:
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    def get_sentence_embedding_dimension(self) -> int:
        return self.dimensions

    def encode(self, texts, convert_to_numpy: bool = True, show_progress_bar: bool = True):
        self.calls.append(list(texts))
        rows = []
        for text in texts:
            row = np.zeros(self.dimensions)
            row[0] = 1.0
            row[1] = 1.0 if "drone" in text else 0.0
            rows.append(row)
        return np.array(rows)


class TestSentenceTransformerEmbedder:
    def test_known_model_does_not_load_for_manifest(self) -> None:
        embedder = SentenceTransformerEmbedder("all-MiniLM-L6-v2")
        assert embedder.name == "st/all-MiniLM-L6-v2/384"
        assert embedder._model is None

    def test_unknown_model_reads_dimension_from_model(self) -> None:
        embedder = SentenceTransformerEmbedder("custom-model", model=FakeSentenceModel(12))
        assert embedder.dimensions == 12
        assert embedder.name == "st/custom-model/12"

    def test_encodes_normalized_text(self) -> None:
        model = FakeSentenceModel()
        extractor = FeatureExtractor(SentenceTransformerEmbedder("custom", model=model))

        features = extractor.extract("We build Drones that patrol borders")

        assert model.calls == [["we build drones that patrol borders"]]
        assert features.vector.dtype == np.float32
        assert np.linalg.norm(features.vector) == pytest.approx(1.0, abs=1e-5)
        assert "drones" in features.terms

    def test_long_text_is_chunked_and_pooled(self) -> None:
        model = FakeSentenceModel()
        embedder = SentenceTransformerEmbedder("custom", model=model)
        text = "satellite " * 200

        vector = embedder.embed(text.strip(), [], Counter())

        assert len(model.calls[0]) > 1
        assert all(len(chunk) <= embedder.max_chars for chunk in model.calls[0])
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_wrong_shape_is_extraction_error(self) -> None:
        model = FakeSentenceModel(8)
        embedder = SentenceTransformerEmbedder("all-MiniLM-L6-v2", model=model)
        with pytest.raises(ExtractionError):
            embedder.embed("satellite imagery", [], Counter())


class TestMakeExtractor:
    def test_sentence_transformers_is_the_default(self) -> None:
        extractor = make_extractor(AppConfig())
        assert isinstance(extractor.embedder, SentenceTransformerEmbedder)
        assert extractor.embedder_name == "st/all-MiniLM-L6-v2/384"

    def test_hashing_when_configured(self) -> None:
        config = AppConfig()
        config.extractor.embedder = "hashing"
        config.extractor.dimensions = 128
        assert make_extractor(config).embedder_name == "hashing-v1/128"

    def test_provider_url_selects_provider(self) -> None:
        config = AppConfig()
        config.extractor.provider_url = "https://embeddings.test/v1/embeddings"
        assert isinstance(make_extractor(config).embedder, HttpEmbeddingProvider)
