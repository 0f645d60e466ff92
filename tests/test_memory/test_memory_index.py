import pytest

from loopwright.embeddings import LocalHashEmbeddingProvider
from loopwright.exceptions import EmbeddingError
from loopwright.memory import MemoryIndex, cosine_similarity, dot_product


class TableEmbeddingProvider:
    provider_id = "table"
    model = "table"

    def __init__(self, table: dict[str, list[float]], fail_on: str | None = None):
        self.table = table
        self.fail_on = fail_on
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text == self.fail_on:
            raise EmbeddingError("embedding transport down")
        return list(self.table[text])


def _ten_docs() -> tuple[MemoryIndex, dict[str, list[float]]]:
    table = {f"doc{idx}": [float(idx), 1.0] for idx in range(10)}
    table["query"] = [1.0, 0.0]
    index = MemoryIndex(TableEmbeddingProvider(table))
    for idx in range(10):
        index.add(f"doc{idx}")
    return index, table


def test_get_returns_top_k_by_dot_product_descending():
    index, _ = _ten_docs()

    assert index.get("query", 3) == ["doc9", "doc8", "doc7"]


def test_get_with_k_above_size_returns_everything():
    index, _ = _ten_docs()

    result = index.get("query", 100)

    assert len(result) == 10
    assert result[0] == "doc9"
    assert result[-1] == "doc0"


def test_empty_index_and_non_positive_k_return_nothing():
    provider = TableEmbeddingProvider({"query": [1.0, 0.0]})
    index = MemoryIndex(provider)

    assert index.get("query", 5) == []
    assert provider.calls == []

    index, _ = _ten_docs()
    assert index.get("query", 0) == []


def test_ties_resolve_to_earlier_record():
    table = {"first": [1.0, 0.0], "second": [1.0, 0.0], "third": [0.5, 0.0], "query": [1.0, 0.0]}
    index = MemoryIndex(TableEmbeddingProvider(table))
    for document in ("third", "first", "second"):
        index.add(document)

    assert index.get("query", 2) == ["first", "second"]


def test_identical_text_retrieves_itself():
    index = MemoryIndex(LocalHashEmbeddingProvider(dimensions=128))
    index.add("doc1")
    index.add("doc2")

    assert index.get("doc1", 1) == ["doc1"]


def test_add_embeds_key_when_given():
    provider = TableEmbeddingProvider({"short key": [1.0], "query": [1.0]})
    index = MemoryIndex(provider)

    index.add("a much longer document body", key="short key")

    assert provider.calls == ["short key"]
    assert index.documents == ["a much longer document body"]


def test_failed_embedding_leaves_index_unchanged():
    provider = TableEmbeddingProvider({"ok": [1.0, 0.0]}, fail_on="broken")
    index = MemoryIndex(provider)
    index.add("ok")

    with pytest.raises(EmbeddingError):
        index.add("broken")

    assert len(index) == 1
    assert index.documents == ["ok"]


def test_dimension_mismatch_is_rejected():
    provider = TableEmbeddingProvider({"a": [1.0, 0.0], "b": [1.0, 0.0, 0.0]})
    index = MemoryIndex(provider)
    index.add("a")

    with pytest.raises(EmbeddingError):
        index.add("b")
    assert len(index) == 1


def test_configured_dimensions_are_enforced_from_first_record():
    index = MemoryIndex(TableEmbeddingProvider({"a": [1.0, 0.0]}), dimensions=3)

    with pytest.raises(EmbeddingError):
        index.add("a")
    assert len(index) == 0


def test_cosine_similarity_ignores_magnitude():
    table = {"big": [10.0, 1.0], "aligned": [1.0, 0.0], "query": [1.0, 0.0]}
    index = MemoryIndex(TableEmbeddingProvider(table), similarity="cosine")
    index.add("big")
    index.add("aligned")

    assert index.get("query", 1) == ["aligned"]


def test_clear_removes_all_records():
    index, _ = _ten_docs()

    index.clear()

    assert len(index) == 0
    assert index.get("query", 3) == []


def test_similarity_helpers():
    assert dot_product([1.0, 2.0], [3.0, 4.0]) == 11.0
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
