"""Append-only vector memory for long-term agent recall."""

from __future__ import annotations

from dataclasses import dataclass
import math
import threading
from typing import Literal

from loopwright.embeddings import EmbeddingProvider
from loopwright.exceptions import EmbeddingError
from loopwright.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class MemoryRecord:
    """One stored document and its embedding."""

    document: str
    embedding: tuple[float, ...]


def dot_product(a: tuple[float, ...] | list[float], b: tuple[float, ...] | list[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


def cosine_similarity(a: tuple[float, ...] | list[float], b: tuple[float, ...] | list[float]) -> float:
    norm = math.sqrt(dot_product(a, a)) * math.sqrt(dot_product(b, b))
    if norm <= 1e-12:
        return 0.0
    return dot_product(a, b) / norm


class MemoryIndex:
    """Ordered store of ``(document, embedding)`` records with similarity lookup.

    Insertion order is kept, but ``get`` ranks by similarity to the query; equal
    scores resolve to the earlier record. Records are only ever appended as a
    complete pair, so documents and embeddings stay aligned.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        *,
        dimensions: int | None = None,
        similarity: Literal["dot", "cosine"] = "dot",
    ):
        self.embedding_provider = embedding_provider
        self.dimensions = int(dimensions) if dimensions else None
        self.similarity = similarity
        self._records: list[MemoryRecord] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def documents(self) -> list[str]:
        return [record.document for record in self._records]

    def _expected_dimensions(self) -> int | None:
        if self.dimensions:
            return self.dimensions
        if self._records:
            return len(self._records[0].embedding)
        return None

    def _embed(self, text: str) -> tuple[float, ...]:
        vector = tuple(float(v) for v in self.embedding_provider.embed(text))
        expected = self._expected_dimensions()
        if expected is not None and len(vector) != expected:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {expected}"
            )
        return vector

    def add(self, document: str, key: str | None = None) -> None:
        """Embed ``key`` (or the document itself) and append the record."""
        embedding = self._embed(key if key else document)
        with self._lock:
            self._records.append(MemoryRecord(document=document, embedding=embedding))
        log.debug("Memory record added", records=len(self._records), chars=len(document))

    def get(self, query: str, k: int) -> list[str]:
        """Return documents of the ``k`` best-scoring records, best first."""
        if not self._records or k <= 0:
            return []
        query_embedding = self._embed(query)
        score = cosine_similarity if self.similarity == "cosine" else dot_product
        records = list(self._records)
        ranked = sorted(
            range(len(records)),
            key=lambda idx: (-score(records[idx].embedding, query_embedding), idx),
        )
        return [records[idx].document for idx in ranked[:k]]

    def clear(self) -> None:
        with self._lock:
            self._records = []
