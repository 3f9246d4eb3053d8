import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import openai
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from pulseboard.errors import LimitError, TransportError
from .costs import estimate_cost_cents

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 8000


@dataclass
class EmbeddingResult:
    success: bool
    model: str
    vector: Optional[np.ndarray] = None
    tokens: int = 0
    cost_cents: float = 0.0
    latency_ms: int = 0
    error: Optional[str] = None


class OpenAIEmbeddingClient:
    """Remote embedding provider: ``embed(text, dims) -> (vector, tokens)``."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", timeout: float = 30.0):
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model

    def embed(self, text: str, dims: int) -> Tuple[List[float], int]:
        try:
            response = self.client.embeddings.create(model=self.model, input=text, dimensions=dims)
        except openai.RateLimitError as e:
            raise LimitError(f"Embedding provider rate limited: {e}") from e
        except openai.APIError as e:
            raise TransportError(f"Embedding provider call failed: {e}") from e

        tokens = response.usage.total_tokens if response.usage else 0
        return response.data[0].embedding, tokens


class SentenceTransformerClient:
    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """
        Local embedding provider backed by sentence-transformers.
        The output size is fixed by the model, so ``dims`` must match it.
        """
        try:
            self.model = SentenceTransformer(model_name)
            logger.info(f"Loaded embedding model: {model_name}")
        except Exception as e:
            logger.error(f"Failed to load model {model_name}: {e}")
            raise

    def embed(self, text: str, dims: int) -> Tuple[List[float], int]:
        dimension = self.model.get_sentence_embedding_dimension()
        if dimension != dims:
            raise TransportError(f"Model produces {dimension}-d vectors, expected {dims}")
        try:
            vector = self.model.encode(text, convert_to_numpy=True)
        except Exception as e:
            raise TransportError(f"Local embedding failed: {e}") from e

        tokens = len(self.model.tokenizer.tokenize(text)) if getattr(self.model, "tokenizer", None) else 0
        return vector.tolist(), tokens


class TextEmbedder:
    def __init__(self, client, model: str, dimensions: int, max_chars: int = DEFAULT_MAX_CHARS):
        """
        Initialize the text embedder.

        ``client`` is any object with ``embed(text, dims) -> (vector, tokens)``.
        Input longer than ``max_chars`` is cut to its prefix before the call.
        """
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.max_chars = max_chars

    def embed_text(self, text: str) -> EmbeddingResult:
        """Generate an embedding for a single text. Never raises except ``LimitError``."""
        start_time = time.monotonic()
        truncated = (text or "")[:self.max_chars]

        try:
            if not truncated.strip():
                raise TransportError("Cannot embed empty text")
            values, tokens = self.client.embed(truncated, self.dimensions)
            vector = np.asarray(values, dtype=np.float64)
            if vector.shape != (self.dimensions,):
                raise TransportError(f"Expected {self.dimensions}-d embedding, got shape {vector.shape}")
        except TransportError as e:
            logger.warning(f"Failed to embed text: {e}")
            return EmbeddingResult(
                success=False,
                model=self.model,
                latency_ms=int((time.monotonic() - start_time) * 1000),
                error=str(e),
            )

        return EmbeddingResult(
            success=True,
            model=self.model,
            vector=vector,
            tokens=tokens,
            cost_cents=estimate_cost_cents(self.model, tokens),
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )

    def embed_feedback(self, title: str, description: Optional[str] = None) -> EmbeddingResult:
        """Embed a feedback item as its title followed by its description."""
        text = f"{title}\n\n{description}" if description else title
        return self.embed_text(text)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; zero when either has no magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError("Embeddings must have the same dimensions")
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    return float(np.dot(a, b) / denominator)


def calculate_centroid(embeddings: Sequence[np.ndarray]) -> np.ndarray:
    """Arithmetic mean of a non-empty list of embeddings."""
    if len(embeddings) == 0:
        raise ValueError("Cannot calculate centroid of empty list")
    return np.mean(np.vstack(embeddings), axis=0)


def update_centroid(centroid: np.ndarray, embedding: np.ndarray, count: int) -> np.ndarray:
    """Fold one embedding into a running mean over ``count`` members."""
    return (centroid * count + embedding) / (count + 1)


def embedding_to_bytes(embedding: np.ndarray) -> bytes:
    """Convert a vector to bytes for database storage."""
    return np.asarray(embedding, dtype=np.float64).tobytes()


def bytes_to_embedding(embedding_bytes: bytes) -> np.ndarray:
    """Convert bytes back to a vector from the database."""
    return np.frombuffer(embedding_bytes, dtype=np.float64).copy()
