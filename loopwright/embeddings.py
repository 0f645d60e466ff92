"""Embedding providers used by the memory index."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Iterable, Protocol

import httpx

from loopwright.exceptions import ConfigurationError, EmbeddingError
from loopwright.logging import get_logger


log = get_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_BASE_URL = "http://127.0.0.1:11434"


class EmbeddingProvider(Protocol):
    provider_id: str
    model: str

    def embed(self, text: str) -> list[float]:
        """Return one embedding vector for ``text``."""


def normalize_embedding(values: Iterable[float]) -> list[float]:
    vector = [float(v) if isinstance(v, (float, int)) and math.isfinite(float(v)) else 0.0 for v in values]
    norm = math.sqrt(sum(v * v for v in vector))
    if norm <= 1e-12:
        return vector
    return [v / norm for v in vector]


def _tokenize(text: str) -> list[str]:
    return [token for token in re.findall(r"[\w]+", text.lower()) if token]


class LocalHashEmbeddingProvider:
    """Offline hashed bag-of-words embeddings; identical text yields identical vectors."""

    provider_id = "local_hash"
    model = "sha1-bow"

    def __init__(self, dimensions: int = 256):
        self.dimensions = max(16, int(dimensions))

    def embed(self, text: str) -> list[float]:
        bucket = [0.0] * self.dimensions
        tokens = _tokenize(text or "")
        if not tokens:
            return bucket
        for token in tokens:
            digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
            idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self.dimensions
            sign = -1.0 if digest[4] % 2 else 1.0
            bucket[idx] += sign
        return normalize_embedding(bucket)


class OpenAIEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` endpoint."""

    provider_id = "openai"

    def __init__(
        self,
        model: str = "text-embedding-ada-002",
        api_key: str = "",
        base_url: str = OPENAI_BASE_URL,
        timeout_seconds: float = 30.0,
    ):
        self.model = str(model).strip() or "text-embedding-ada-002"
        self._api_key = str(api_key or "").strip()
        self._base_url = str(base_url or OPENAI_BASE_URL).rstrip("/")
        self._timeout = max(3.0, float(timeout_seconds))
        if not self._api_key:
            raise ConfigurationError("OpenAI embeddings require embeddings.api_key")

    def embed(self, text: str) -> list[float]:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(
                    f"{self._base_url}/embeddings",
                    json={"input": text, "model": self.model},
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Failed to get embeddings: {e}") from e
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data:
            raise EmbeddingError("Embeddings response missing data")
        embedding = data[0].get("embedding") if isinstance(data[0], dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingError("Embeddings response row missing list 'embedding'")
        return [float(v) for v in embedding]


class OllamaEmbeddingProvider:
    """Ollama ``/api/embeddings`` endpoint."""

    provider_id = "ollama"

    def __init__(self, model: str = "nomic-embed-text", base_url: str = OLLAMA_BASE_URL, timeout_seconds: float = 30.0):
        self.model = str(model).strip() or "nomic-embed-text"
        self._base_url = str(base_url or OLLAMA_BASE_URL).rstrip("/")
        self._timeout = max(3.0, float(timeout_seconds))

    def embed(self, text: str) -> list[float]:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(
                    f"{self._base_url}/api/embeddings",
                    json={"model": self.model, "prompt": text},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Ollama embeddings failed: {e}") from e
        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingError("Ollama embeddings response missing list 'embedding'")
        return [float(v) for v in embedding]


def create_embedding_provider(embeddings_cfg: Any) -> EmbeddingProvider:
    """Create an embedding provider from the ``embeddings`` config section."""
    provider = str(getattr(embeddings_cfg, "provider", "local_hash")).strip().lower()
    timeout = float(getattr(embeddings_cfg, "request_timeout_seconds", 30.0))
    if provider == "openai":
        return OpenAIEmbeddingProvider(
            model=getattr(embeddings_cfg, "model", ""),
            api_key=getattr(embeddings_cfg, "api_key", ""),
            base_url=getattr(embeddings_cfg, "base_url", "") or OPENAI_BASE_URL,
            timeout_seconds=timeout,
        )
    if provider == "ollama":
        return OllamaEmbeddingProvider(
            model=getattr(embeddings_cfg, "model", "") or "nomic-embed-text",
            base_url=getattr(embeddings_cfg, "base_url", "") or OLLAMA_BASE_URL,
            timeout_seconds=timeout,
        )
    if provider == "local_hash":
        return LocalHashEmbeddingProvider(dimensions=int(getattr(embeddings_cfg, "dimensions", None) or 256))
    raise ConfigurationError(f"Unsupported embeddings provider: {provider}")
