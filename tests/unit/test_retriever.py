"""Unit tests for VectorRetriever and the retrieval scope."""

import uuid
from unittest.mock import patch

import pytest

from app.domains.chat.retriever import DocumentChunk, RetrievalScope, VectorRetriever, open_collection
from app.exceptions.ai import RetrievalError
from tests.doubles import FakeCollection, InMemoryCollection


CHAT_ID = uuid.uuid4()
USER_ID = uuid.uuid4()
SCOPE = RetrievalScope(chat_id=CHAT_ID, user_id=USER_ID)


def _meta(chat_id=CHAT_ID, user_id=USER_ID, **extra):
    return {"chat_id": str(chat_id), "user_id": str(user_id), "file_name": "report.pdf", **extra}


class TestRetrievalScope:
    def test_filter(self):
        assert SCOPE.as_filter() == {"$and": [{"chat_id": str(CHAT_ID)}, {"user_id": str(USER_ID)}]}

    def test_matches(self):
        assert SCOPE.matches(_meta())
        assert not SCOPE.matches(_meta(chat_id=uuid.uuid4()))
        assert not SCOPE.matches(_meta(user_id=uuid.uuid4()))
        assert not SCOPE.matches({})
        assert not SCOPE.matches(None)

    def test_document_filter(self):
        assert SCOPE.document_filter("a.pdf") == {
            "$and": [{"chat_id": str(CHAT_ID)}, {"user_id": str(USER_ID)}, {"file_name": "a.pdf"}]
        }


class TestVectorRetriever:
    """Test cases for VectorRetriever."""

    @pytest.mark.asyncio
    async def test_retrieve_sends_scope_filter_and_ranks(self):
        collection = FakeCollection(
            result={
                "documents": [["best", "next"]],
                "metadatas": [[_meta(page=1), _meta(page=2)]],
                "distances": [[0.1, 0.4]],
            }
        )
        retriever = VectorRetriever(collection)

        chunks = await retriever.retrieve("revenue", SCOPE, 4)

        query = collection.queries[0]
        assert query["query_texts"] == ["revenue"]
        assert query["n_results"] == 4
        assert query["where"] == SCOPE.as_filter()
        assert [c.text for c in chunks] == ["best", "next"]
        assert [c.rank for c in chunks] == [0, 1]
        assert chunks[0].document == "report.pdf"
        assert chunks[1].distance == 0.4

    @pytest.mark.asyncio
    async def test_out_of_scope_rows_are_dropped(self):
        collection = FakeCollection(
            result={
                "documents": [["foreign", "mine"]],
                "metadatas": [[_meta(chat_id=uuid.uuid4()), _meta()]],
                "distances": [[0.05, 0.2]],
            }
        )

        chunks = await VectorRetriever(collection).retrieve("revenue", SCOPE, 4)

        assert [c.text for c in chunks] == ["mine"]
        assert chunks[0].rank == 0

    @pytest.mark.asyncio
    async def test_empty_results(self):
        assert await VectorRetriever(FakeCollection()).retrieve("revenue", SCOPE, 4) == []

    @pytest.mark.asyncio
    async def test_blank_query_or_zero_k_skips_index(self):
        collection = FakeCollection()
        retriever = VectorRetriever(collection)

        assert await retriever.retrieve("   ", SCOPE, 4) == []
        assert await retriever.retrieve("revenue", SCOPE, 0) == []
        assert collection.queries == []

    @pytest.mark.asyncio
    async def test_query_failure_raises_retrieval_error(self):
        retriever = VectorRetriever(FakeCollection(error=ConnectionError("chroma down")))

        with pytest.raises(RetrievalError, match="chroma down"):
            await retriever.retrieve("revenue", SCOPE, 4)

    @pytest.mark.asyncio
    async def test_add_chunks_tags_scope(self):
        collection = FakeCollection()
        retriever = VectorRetriever(collection)

        count = await retriever.add_chunks(
            [DocumentChunk("page one", page=1), DocumentChunk("page two")], SCOPE, "report.pdf"
        )

        assert count == 2
        upsert = collection.upserts[0]
        assert upsert["ids"] == [f"{CHAT_ID}:report.pdf:0", f"{CHAT_ID}:report.pdf:1"]
        assert upsert["documents"] == ["page one", "page two"]
        first, second = upsert["metadatas"]
        assert first == _meta(chunk_index=0, total_chunks=2, page=1)
        assert "page" not in second
        assert collection.deletes == [{"where": SCOPE.document_filter("report.pdf")}]

    @pytest.mark.asyncio
    async def test_reindexing_a_file_replaces_its_chunks(self):
        collection = InMemoryCollection()
        retriever = VectorRetriever(collection)
        other_file = [DocumentChunk("other file")]

        await retriever.add_chunks(
            [DocumentChunk("old A"), DocumentChunk("old B"), DocumentChunk("old C")], SCOPE, "a.pdf"
        )
        await retriever.add_chunks(other_file, SCOPE, "b.pdf")
        await retriever.add_chunks([DocumentChunk("new A")], SCOPE, "a.pdf")

        chunks = await retriever.retrieve("anything", SCOPE, 10)

        assert sorted(chunk.text for chunk in chunks) == ["new A", "other file"]
        new_a = next(chunk for chunk in chunks if chunk.document == "a.pdf")
        assert new_a.metadata["total_chunks"] == 1

    @pytest.mark.asyncio
    async def test_reindexing_leaves_other_scopes_alone(self):
        collection = InMemoryCollection()
        retriever = VectorRetriever(collection)
        other_scope = RetrievalScope(chat_id=uuid.uuid4(), user_id=USER_ID)

        await retriever.add_chunks([DocumentChunk("other chat")], other_scope, "a.pdf")
        await retriever.add_chunks([DocumentChunk("this chat")], SCOPE, "a.pdf")

        assert [c.text for c in await retriever.retrieve("q", other_scope, 10)] == ["other chat"]
        assert [c.text for c in await retriever.retrieve("q", SCOPE, 10)] == ["this chat"]

    @pytest.mark.asyncio
    async def test_add_no_chunks(self):
        collection = FakeCollection()
        assert await VectorRetriever(collection).add_chunks([], SCOPE, "report.pdf") == 0
        assert collection.upserts == []

    @pytest.mark.asyncio
    async def test_delete_scope(self):
        collection = FakeCollection()
        await VectorRetriever(collection).delete_scope(SCOPE)
        assert collection.deletes == [{"where": SCOPE.as_filter()}]

    def test_collection_opened_lazily(self):
        with patch("app.domains.chat.retriever.open_collection") as mock_open:
            retriever = VectorRetriever()
            mock_open.assert_not_called()

            assert retriever.collection is mock_open.return_value
            assert retriever.collection is mock_open.return_value
            mock_open.assert_called_once()

    def test_open_collection_failure(self):
        with patch("app.domains.chat.retriever.chromadb") as mock_chromadb:
            mock_chromadb.HttpClient.side_effect = Exception("connection refused")

            with pytest.raises(RetrievalError, match="connection refused"):
                open_collection()
