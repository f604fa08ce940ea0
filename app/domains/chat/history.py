"""History store: durable, append-only chat and message persistence."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy.sql import Select

from app.exceptions.chat import ChatNotFoundError, PersistenceFailureError
from models.base import utcnow
from models.chat import Chat
from models.message import Message, MessageRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """Detached view of a message, safe to hold across awaits."""

    role: str
    content: str

    @classmethod
    def from_message(cls, message: Message) -> "HistoryEntry":
        role = message.role.value if isinstance(message.role, MessageRole) else str(message.role)
        return cls(role=role, content=message.content)


class HistoryStore:
    """Chat and message persistence over one async session.

    Message writes are append-only. Every append bumps the owning chat's
    ``updated_at`` in the same transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # Chats

    async def find_chat(self, chat_id: UUID) -> Chat | None:
        """Look up a chat regardless of owner."""
        result = await self.db.execute(select(Chat).where(Chat.id == chat_id))
        return result.scalar_one_or_none()

    async def get_chat(self, chat_id: UUID, user_id: UUID) -> Chat:
        """Get a chat owned by the user or raise ``ChatNotFoundError``."""
        result = await self.db.execute(select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id))
        chat = result.scalar_one_or_none()
        if not chat:
            raise ChatNotFoundError()
        return chat

    async def get_chat_with_messages(self, chat_id: UUID, user_id: UUID | None = None) -> Chat:
        """Get a chat with its messages loaded; ``user_id=None`` skips the owner check."""
        query = select(Chat).options(selectinload(Chat.messages)).where(Chat.id == chat_id)
        if user_id is not None:
            query = query.where(Chat.user_id == user_id)
        result = await self.db.execute(query)
        chat = result.scalar_one_or_none()
        if not chat:
            raise ChatNotFoundError()
        return chat

    async def create_chat(
        self,
        user_id: UUID,
        title: str,
        metadata: dict[str, Any] | None = None,
        chat_id: UUID | None = None,
    ) -> Chat:
        """Create a chat and commit it."""
        chat = Chat(user_id=user_id, title=title, chat_metadata=metadata or {})
        if chat_id is not None:
            chat.id = chat_id
        self.db.add(chat)
        await self._commit("create chat")
        return chat

    async def update_chat(
        self, chat: Chat, title: str | None = None, metadata: dict[str, Any] | None = None
    ) -> Chat:
        """Rename a chat and/or merge keys into its metadata."""
        if title is not None:
            chat.title = title
        if metadata is not None:
            # Reassign so the JSON column is flagged dirty
            chat.chat_metadata = {**(chat.chat_metadata or {}), **metadata}
        chat.updated_at = utcnow()
        await self._commit("update chat")
        return chat

    async def touch_chat(self, chat_id: UUID) -> None:
        """Bump a chat's ``updated_at`` without committing."""
        await self.db.execute(update(Chat).where(Chat.id == chat_id).values(updated_at=utcnow()))

    def user_chats_query(self, user_id: UUID) -> Select:
        return select(Chat).where(Chat.user_id == user_id).order_by(Chat.updated_at.desc())

    async def list_by_user(self, user_id: UUID, limit: int | None = None) -> list[Chat]:
        """Chats owned by the user, most recently updated first."""
        query = self.user_chats_query(user_id)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def search_by_title(self, user_id: UUID, text: str) -> list[Chat]:
        """Case-insensitive title search within the user's chats."""
        pattern = f"%{text.strip().lower()}%"
        query = self.user_chats_query(user_id).where(func.lower(Chat.title).like(pattern))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_by_user(self, user_id: UUID) -> int:
        result = await self.db.execute(select(func.count(Chat.id)).where(Chat.user_id == user_id))
        return result.scalar() or 0

    async def remove(self, chat_id: UUID, user_id: UUID) -> None:
        """Delete a chat and, through the cascade, all of its messages."""
        chat = await self.get_chat(chat_id, user_id)
        await self.db.delete(chat)
        await self._commit("remove chat")

    async def clear_all(self, user_id: UUID) -> int:
        """Delete every chat of the user and their messages in one transaction.

        Returns:
            Number of chats removed.
        """
        owned = select(Chat.id).where(Chat.user_id == user_id)
        try:
            await self.db.execute(
                delete(Message)
                .where(Message.chat_id.in_(owned))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(
                delete(Chat).where(Chat.user_id == user_id).execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailureError(f"Failed to clear chats: {str(e)}") from e
        await self._commit("clear chats")
        return result.rowcount or 0

    # Messages

    async def append(
        self,
        chat_id: UUID,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message to a chat and commit."""
        message = Message(chat_id=chat_id, role=role, content=content, message_metadata=metadata or {})
        return await self.persist(message)

    async def persist(self, message: Message) -> Message:
        """Commit a message built elsewhere (e.g. a streamed placeholder).

        ``created_at`` is always later than the chat's newest message, even
        when the clock has not advanced between two writes.
        """
        try:
            latest = await self.db.scalar(
                select(func.max(Message.created_at)).where(Message.chat_id == message.chat_id)
            )
            now = utcnow()
            if latest is not None and now <= latest:
                now = latest + timedelta(microseconds=1)
            message.created_at = now
            message.updated_at = now
            self.db.add(message)
            await self.touch_chat(message.chat_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceFailureError(f"Failed to update chat: {str(e)}") from e
        await self._commit("append message")
        return message

    async def read_last_k(self, chat_id: UUID, k: int) -> list[Message]:
        """The ``k`` most recent messages of a chat, oldest to newest."""
        if k <= 0:
            return []
        query = (
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc())
            .limit(k)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read history for chat {chat_id}: {str(e)}")
            raise PersistenceFailureError("Failed to read chat history") from e
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to {action}: {str(e)}")
            raise PersistenceFailureError(f"Failed to {action}") from e
