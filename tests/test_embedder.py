"""
Tests for the embedding step and vector helpers
"""

import numpy as np
import pytest

from pulseboard.nlp.embedder import (
    TextEmbedder, bytes_to_embedding, calculate_centroid, cosine_similarity,
    embedding_to_bytes, update_centroid,
)
from fakes import FailingEmbeddingClient, FakeEmbeddingClient


def test_truncates_input_to_prefix():
    """Only the first max_chars characters are sent."""
    client = FakeEmbeddingClient()
    embedder = TextEmbedder(client, model='text-embedding-3-small', dimensions=3)

    result = embedder.embed_text("a" * 8000 + "b" * 500)

    assert result.success is True
    assert client.calls[0] == "a" * 8000


def test_feedback_text_is_title_and_description():
    client = FakeEmbeddingClient()
    embedder = TextEmbedder(client, model='text-embedding-3-small', dimensions=3)

    embedder.embed_feedback("Dark mode", "Needed for night use")
    embedder.embed_feedback("Dark mode", "")

    assert client.calls == ["Dark mode\n\nNeeded for night use", "Dark mode"]


def test_failure_returns_no_vector():
    embedder = TextEmbedder(FailingEmbeddingClient(), model='text-embedding-3-small', dimensions=3)
    result = embedder.embed_text("Dark mode")

    assert result.success is False
    assert result.vector is None
    assert "unavailable" in result.error


def test_wrong_dimension_is_a_failure():
    client = FakeEmbeddingClient(default=(1.0, 0.0))
    result = TextEmbedder(client, model='text-embedding-3-small', dimensions=3).embed_text("Dark mode")
    assert result.success is False


def test_bytes_round_trip_is_lossless():
    vector = np.array([0.1, -0.2, 1e-12, 3.14159265358979])
    assert np.array_equal(bytes_to_embedding(embedding_to_bytes(vector)), vector)


def test_cosine_similarity():
    assert cosine_similarity([1, 0, 0], [1, 0, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0, 0], [0, 1, 0]) == pytest.approx(0.0)
    assert cosine_similarity([0, 0, 0], [1, 0, 0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1, 0], [1, 0, 0])


def test_running_centroid_equals_mean():
    """Folding vectors in one at a time matches the arithmetic mean."""
    rng = np.random.default_rng(7)
    vectors = rng.normal(size=(25, 8))

    centroid = vectors[0]
    for count, vector in enumerate(vectors[1:], start=1):
        centroid = update_centroid(centroid, vector, count)

    assert np.allclose(centroid, vectors.mean(axis=0), rtol=0, atol=1e-9)
    assert np.allclose(calculate_centroid(list(vectors)), vectors.mean(axis=0), rtol=0, atol=1e-9)


def test_centroid_of_nothing_is_an_error():
    with pytest.raises(ValueError):
        calculate_centroid([])
