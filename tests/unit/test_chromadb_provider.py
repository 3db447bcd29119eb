"""Unit tests for the ChromaDB vector store provider.

Runs against a real ChromaDB PersistentClient in a temp directory with
small hand-made vectors, plus a few mocked-collection failure cases.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.models.rag import VectorEntry, VectorMetadata, vector_id
from src.providers.vector_store.chromadb_provider import ChromaDBProvider
from src.utils.errors import RAGError

_DIM = 4


def _entry(
    kb: str = "kb1",
    filename: str = "notes.txt",
    index: int = 0,
    vector: list[float] | None = None,
    text: str = "chunk text",
) -> VectorEntry:
    return VectorEntry(
        id=vector_id(kb, filename, index),
        vector=vector or [1.0, 0.0, 0.0, 0.0],
        metadata=VectorMetadata(
            knowledge_base_id=kb,
            knowledge_base_name=f"{kb} name",
            educational_board="AQA",
            subject="Mathematics",
            level="GCSE",
            filename=filename,
            chunk_index=index,
            token_count=3,
            text=text,
        ),
    )


@pytest.fixture
def provider(tmp_path) -> ChromaDBProvider:
    return ChromaDBProvider(
        dimension=_DIM,
        persist_directory=str(tmp_path / "chroma"),
        collection_name="test_collection",
    )


class TestChromaDBProvider:
    def test_identity(self, provider: ChromaDBProvider) -> None:
        assert provider.get_provider_name() == "chromadb"
        assert provider.get_dimension() == _DIM
        assert provider.is_available() is True

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, provider: ChromaDBProvider) -> None:
        entry = _entry()
        assert await provider.upsert([entry]) == 1
        assert await provider.upsert([entry]) == 1
        assert await provider.count() == 1

    @pytest.mark.asyncio
    async def test_upsert_overwrites_by_id(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(text="old")])
        await provider.upsert([_entry(text="new", vector=[0.0, 1.0, 0.0, 0.0])])
        matches = await provider.query([0.0, 1.0, 0.0, 0.0], top_k=5)
        assert len(matches) == 1
        assert matches[0].metadata.text == "new"
        assert matches[0].score == pytest.approx(1.0, abs=1e-4)

    @pytest.mark.asyncio
    async def test_upsert_rejects_wrong_dimension(self, provider: ChromaDBProvider) -> None:
        with pytest.raises(RAGError, match="dimension 2"):
            await provider.upsert([_entry(vector=[1.0, 0.0])])
        assert await provider.count() == 0

    @pytest.mark.asyncio
    async def test_query_empty_collection(self, provider: ChromaDBProvider) -> None:
        assert await provider.query([1.0, 0.0, 0.0, 0.0]) == []

    @pytest.mark.asyncio
    async def test_query_ranks_by_cosine_similarity(self, provider: ChromaDBProvider) -> None:
        await provider.upsert(
            [
                _entry(index=0, vector=[0.0, 1.0, 0.0, 0.0]),
                _entry(index=1, vector=[1.0, 0.0, 0.0, 0.0]),
                _entry(index=2, vector=[0.7, 0.7, 0.0, 0.0]),
            ]
        )
        matches = await provider.query([1.0, 0.0, 0.0, 0.0], top_k=3)
        assert [m.metadata.chunk_index for m in matches] == [1, 2, 0]
        assert matches[0].score > matches[1].score > matches[2].score

    @pytest.mark.asyncio
    async def test_query_ties_break_by_chunk_index(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(index=i) for i in (2, 0, 1)])
        matches = await provider.query([1.0, 0.0, 0.0, 0.0], top_k=3)
        assert [m.metadata.chunk_index for m in matches] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_query_filters_by_knowledge_base(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(kb="kb1"), _entry(kb="kb2")])
        matches = await provider.query(
            [1.0, 0.0, 0.0, 0.0], top_k=5, filters={"knowledge_base_id": "kb2"}
        )
        assert [m.metadata.knowledge_base_id for m in matches] == ["kb2"]

    @pytest.mark.asyncio
    async def test_metadata_round_trip_restores_text(self, provider: ChromaDBProvider) -> None:
        original = _entry(text="Differentiate x^2 to get 2x.")
        await provider.upsert([original])
        match = (await provider.query(original.vector, top_k=1))[0]
        assert match.id == original.id
        assert match.metadata == original.metadata

    @pytest.mark.asyncio
    async def test_existing_ids(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(index=0)])
        ids = [vector_id("kb1", "notes.txt", 0), vector_id("kb1", "notes.txt", 1)]
        assert await provider.existing_ids(ids) == {ids[0]}
        assert await provider.existing_ids([]) == set()

    @pytest.mark.asyncio
    async def test_delete_ids_counts_only_present(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(index=0), _entry(index=1)])
        deleted = await provider.delete_ids(
            [vector_id("kb1", "notes.txt", 1), vector_id("kb1", "notes.txt", 9)]
        )
        assert deleted == 1
        assert await provider.count() == 1

    @pytest.mark.asyncio
    async def test_delete_by_knowledge_base(self, provider: ChromaDBProvider) -> None:
        await provider.upsert([_entry(kb="kb1", index=0), _entry(kb="kb1", index=1), _entry(kb="kb2")])
        assert await provider.delete_by_knowledge_base("kb1") == 2
        assert await provider.count({"knowledge_base_id": "kb1"}) == 0
        assert await provider.count({"knowledge_base_id": "kb2"}) == 1

    @pytest.mark.asyncio
    async def test_delete_by_file(self, provider: ChromaDBProvider) -> None:
        await provider.upsert(
            [
                _entry(filename="a.txt", index=0),
                _entry(filename="a.txt", index=1),
                _entry(filename="b.txt", index=0),
            ]
        )
        assert await provider.delete_by_file("kb1", "a.txt") == 2
        assert await provider.count() == 1
        assert await provider.delete_by_file("kb1", "missing.txt") == 0

    def test_dimension_mismatch_on_reopen(self, tmp_path) -> None:
        path = str(tmp_path / "chroma")
        first = ChromaDBProvider(dimension=_DIM, persist_directory=path, collection_name="c")
        first._collection.upsert(
            ids=["x"], embeddings=[[1.0, 0.0, 0.0, 0.0]], documents=["t"],
            metadatas=[{"knowledge_base_id": "kb"}],
        )
        with pytest.raises(RAGError, match="dimension mismatch"):
            ChromaDBProvider(dimension=8, persist_directory=path, collection_name="c")

    @pytest.mark.asyncio
    async def test_collection_errors_become_rag_error(self, provider: ChromaDBProvider) -> None:
        provider._collection = MagicMock()
        provider._collection.count.return_value = 1
        provider._collection.query.side_effect = RuntimeError("disk gone")
        with pytest.raises(RAGError, match="query failed"):
            await provider.query([1.0, 0.0, 0.0, 0.0])

    def test_unavailable_when_collection_fails(self, provider: ChromaDBProvider) -> None:
        provider._collection = MagicMock()
        provider._collection.count.side_effect = RuntimeError("locked")
        assert provider.is_available() is False


class TestTranslateFilters:
    def test_none_and_empty(self) -> None:
        assert ChromaDBProvider._translate_filters(None) is None
        assert ChromaDBProvider._translate_filters({}) is None

    def test_single_key(self) -> None:
        assert ChromaDBProvider._translate_filters({"knowledge_base_id": "kb"}) == {
            "knowledge_base_id": "kb"
        }

    def test_multiple_keys_use_and(self) -> None:
        assert ChromaDBProvider._translate_filters({"a": 1, "b": "x"}) == {
            "$and": [{"a": 1}, {"b": "x"}]
        }
