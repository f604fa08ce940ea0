"""Chat service layer: conversation management around the history store."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.domains.chat.history import HistoryStore
from app.domains.chat.retriever import RetrievalScope, VectorRetriever
from app.exceptions.base import NotFoundError
from app.exceptions.chat import ChatNotFoundError
from app.schemas.chat import ChatDetailResponse, ChatListResponse, ChatResponse, MessageResponse
from app.shared.pagination import PaginationParams, paginate
from models.chat import Chat


logger = logging.getLogger(__name__)


class ChatService:
    """Service class for listing, sharing and deleting chats."""

    def __init__(self, db: AsyncSession, retriever: VectorRetriever | None = None):
        """Initialize chat service.

        Args:
            db: Async database session for data operations.
            retriever: Vector index adapter; when given, indexed document
                chunks are removed together with their chat.
        """
        self.db = db
        self.store = HistoryStore(db)
        self.retriever = retriever

    async def list_chats(self, user_id: UUID, pagination: PaginationParams | None = None) -> ChatListResponse:
        """Get the user's chats, most recently updated first."""
        pagination = pagination or PaginationParams()
        page = await paginate(self.db, self.store.user_chats_query(user_id), pagination)

        return ChatListResponse(
            chats=[self._to_response(chat) for chat in page.items],
            total=page.total,
            page=page.page,
            size=page.size,
            has_next=page.has_next,
            has_prev=page.has_prev,
            total_pages=page.total_pages,
        )

    async def recent_chats(self, user_id: UUID, limit: int = 10) -> list[ChatResponse]:
        chats = await self.store.list_by_user(user_id, limit=limit)
        return [self._to_response(chat) for chat in chats]

    async def search_chats(self, user_id: UUID, text: str) -> list[ChatResponse]:
        chats = await self.store.search_by_title(user_id, text)
        return [self._to_response(chat) for chat in chats]

    async def get_chat(self, chat_id: UUID, user_id: UUID) -> ChatDetailResponse:
        """Get a chat with all of its messages, oldest first."""
        chat = await self.store.get_chat_with_messages(chat_id, user_id)
        return self._to_detail(chat)

    async def update_chat(
        self, chat_id: UUID, user_id: UUID, title: str, metadata: dict[str, Any] | None = None
    ) -> ChatResponse:
        chat = await self.store.get_chat(chat_id, user_id)
        chat = await self.store.update_chat(chat, title=title, metadata=metadata)
        return self._to_response(chat)

    async def delete_chat(self, chat_id: UUID, user_id: UUID) -> bool:
        """Delete a chat and its messages."""
        await self.store.remove(chat_id, user_id)
        await self._drop_index(chat_id, user_id)
        logger.info(f"Deleted chat {chat_id} for user {user_id}")
        return True

    async def clear_chats(self, user_id: UUID) -> int:
        """Delete every chat of the user.

        Raises:
            NotFoundError: If the user has no chats.
        """
        chat_ids = [chat.id for chat in await self.store.list_by_user(user_id)]
        if not chat_ids:
            raise NotFoundError("No chats found")

        removed = await self.store.clear_all(user_id)
        for chat_id in chat_ids:
            await self._drop_index(chat_id, user_id)
        logger.info(f"Cleared {removed} chats for user {user_id}")
        return removed

    async def share_chat(self, chat_id: UUID, user_id: UUID) -> ChatResponse:
        """Publish a chat under ``/share/{chat_id}``."""
        chat = await self.store.get_chat(chat_id, user_id)
        chat = await self.store.update_chat(chat, metadata={"share_path": f"/share/{chat.id}"})
        return self._to_response(chat)

    async def unshare_chat(self, chat_id: UUID, user_id: UUID) -> ChatResponse:
        chat = await self.store.get_chat(chat_id, user_id)
        metadata = dict(chat.chat_metadata or {})
        metadata.pop("share_path", None)
        chat.chat_metadata = metadata
        chat = await self.store.update_chat(chat)
        return self._to_response(chat)

    async def get_shared_chat(self, chat_id: UUID) -> ChatDetailResponse:
        """Get a shared chat by id, regardless of owner."""
        chat = await self.store.get_chat_with_messages(chat_id)
        if not chat.is_shared:
            raise ChatNotFoundError("Shared chat not found")
        return self._to_detail(chat)

    async def _drop_index(self, chat_id: UUID, user_id: UUID) -> None:
        if self.retriever is None:
            return
        try:
            await self.retriever.delete_scope(RetrievalScope(chat_id=chat_id, user_id=user_id))
        except Exception as e:
            logger.warning(f"Failed to remove indexed documents of chat {chat_id}: {str(e)}")

    @staticmethod
    def _to_response(chat: Chat) -> ChatResponse:
        return ChatResponse.model_validate(chat)

    @staticmethod
    def _to_detail(chat: Chat) -> ChatDetailResponse:
        return ChatDetailResponse(
            id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            metadata=chat.chat_metadata,
            share_path=chat.share_path,
            messages=[MessageResponse.model_validate(message) for message in chat.messages],
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )
