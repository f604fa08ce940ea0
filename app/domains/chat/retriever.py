"""Vector retriever backed by a Chroma collection.

Every query is scoped to one ``(chat_id, user_id)`` pair. The scope is sent
to Chroma as a metadata filter and re-checked on the returned rows, so a chunk
indexed for another chat or user is never returned.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import chromadb
from chromadb.utils import embedding_functions

from app.core.config import settings
from app.exceptions.ai import RetrievalError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalScope:
    """The hard filter applied to every retrieval."""

    chat_id: UUID
    user_id: UUID

    def as_filter(self) -> dict[str, Any]:
        return {"$and": [{"chat_id": str(self.chat_id)}, {"user_id": str(self.user_id)}]}

    def document_filter(self, file_name: str) -> dict[str, Any]:
        """Filter for the chunks of one file inside the scope."""
        return {"$and": [*self.as_filter()["$and"], {"file_name": file_name}]}

    def matches(self, metadata: dict[str, Any] | None) -> bool:
        if not metadata:
            return False
        return metadata.get("chat_id") == str(self.chat_id) and metadata.get("user_id") == str(self.user_id)


@dataclass(frozen=True)
class RetrievedChunk:
    """A document passage returned for one turn. Rank 0 is the best match."""

    text: str
    document: str
    rank: int
    distance: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DocumentChunk:
    """A passage to index, with the page it was extracted from."""

    text: str
    page: int | None = None


def open_collection() -> Any:
    """Connect to the configured Chroma server and open the collection."""
    try:
        client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port,
            ssl=settings.chroma_ssl,
        )
        embedding_function = embedding_functions.GoogleGenerativeAiEmbeddingFunction(
            api_key=settings.gemini_api_key or "",
            model_name=settings.gemini_embedding_model,
        )
        collection = client.get_or_create_collection(
            name=settings.chroma_collection,
            embedding_function=embedding_function,
            metadata={"hnsw:space": "cosine"},
        )
    except Exception as e:
        logger.error(f"Failed to connect to vector index at {settings.chroma_url}: {str(e)}")
        raise RetrievalError(f"Vector index unavailable: {str(e)}") from e

    logger.info(f"Vector index ready: {settings.chroma_url} collection={settings.chroma_collection}")
    return collection


class VectorRetriever:
    """Adapter over a Chroma collection.

    The collection is opened on first use. The Chroma client is synchronous,
    so calls run in the default executor.
    """

    def __init__(self, collection: Any | None = None):
        self._collection = collection

    @property
    def collection(self) -> Any:
        if self._collection is None:
            self._collection = open_collection()
        return self._collection

    async def retrieve(self, query: str, scope: RetrievalScope, k: int) -> list[RetrievedChunk]:
        """Return up to ``k`` chunks in the scope, most relevant first."""
        if k <= 0 or not query.strip():
            return []

        try:
            loop = asyncio.get_running_loop()
            raw = await loop.run_in_executor(
                None,
                lambda: self.collection.query(
                    query_texts=[query],
                    n_results=k,
                    where=scope.as_filter(),
                    include=["documents", "metadatas", "distances"],
                ),
            )
        except Exception as e:
            logger.error(f"Vector query failed for chat {scope.chat_id}: {str(e)}")
            raise RetrievalError(f"Vector query failed: {str(e)}") from e

        docs = (raw.get("documents") or [[]])[0] or []
        metas = (raw.get("metadatas") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []

        chunks: list[RetrievedChunk] = []
        for index, doc in enumerate(docs):
            meta = dict(metas[index]) if index < len(metas) and metas[index] else {}
            if not scope.matches(meta):
                logger.warning(f"Dropping out-of-scope chunk returned for chat {scope.chat_id}")
                continue
            dist = distances[index] if index < len(distances) else None
            chunks.append(
                RetrievedChunk(
                    text=str(doc),
                    document=str(meta.get("file_name", "")),
                    rank=len(chunks),
                    distance=float(dist) if dist is not None else None,
                    metadata=meta,
                )
            )
        return chunks[:k]

    async def add_chunks(self, chunks: Sequence[DocumentChunk], scope: RetrievalScope, document_name: str) -> int:
        """Index chunks of one document under the scope; returns the count.

        Chunks previously indexed under the same file name in the scope are
        removed first, so a re-upload replaces the earlier version.
        """
        if not chunks:
            return 0

        total = len(chunks)
        ids = [f"{scope.chat_id}:{document_name}:{index}" for index in range(total)]
        documents = [chunk.text for chunk in chunks]
        metadatas = []
        for index, chunk in enumerate(chunks):
            meta: dict[str, Any] = {
                "chat_id": str(scope.chat_id),
                "user_id": str(scope.user_id),
                "file_name": document_name,
                "chunk_index": index,
                "total_chunks": total,
            }
            if chunk.page is not None:
                meta["page"] = chunk.page
            metadatas.append(meta)

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None, lambda: self.collection.delete(where=scope.document_filter(document_name))
            )
            await loop.run_in_executor(
                None,
                lambda: self.collection.upsert(ids=ids, documents=documents, metadatas=metadatas),
            )
        except Exception as e:
            logger.error(f"Failed to index {document_name} for chat {scope.chat_id}: {str(e)}")
            raise RetrievalError(f"Failed to index document: {str(e)}") from e

        logger.info(f"Indexed {total} chunks of {document_name} for chat {scope.chat_id}")
        return total

    async def delete_scope(self, scope: RetrievalScope) -> None:
        """Remove every chunk indexed under the scope."""
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self.collection.delete(where=scope.as_filter()))
        except Exception as e:
            raise RetrievalError(f"Failed to delete indexed chunks: {str(e)}") from e
