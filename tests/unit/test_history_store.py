"""
Unit tests for HistoryStore.

Covers chat lookup and ownership, append-only message writes, windowed
history reads and bulk removal.
"""

import uuid
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.future import select

from app.domains.chat.history import HistoryEntry, HistoryStore
from app.exceptions.chat import ChatNotFoundError, PersistenceFailureError
from models import Chat, Message, MessageRole
from tests.factories import create_chat, create_chat_with_messages


class TestHistoryStoreChats:
    """Chat-level operations."""

    @pytest.mark.asyncio
    async def test_create_and_get_chat(self, test_db, test_user):
        store = HistoryStore(test_db)
        chat_id = uuid.uuid4()

        chat = await store.create_chat(test_user.id, "Quarterly report", {"share_path": "/chat/x"}, chat_id)

        assert chat.id == chat_id
        fetched = await store.get_chat(chat_id, test_user.id)
        assert fetched.title == "Quarterly report"
        assert fetched.share_path == "/chat/x"

    @pytest.mark.asyncio
    async def test_get_chat_of_other_user(self, test_db, test_user, test_user_2):
        chat = await create_chat(test_db, test_user.id)
        store = HistoryStore(test_db)

        with pytest.raises(ChatNotFoundError):
            await store.get_chat(chat.id, test_user_2.id)

        assert (await store.find_chat(chat.id)).user_id == test_user.id

    @pytest.mark.asyncio
    async def test_update_chat_merges_metadata(self, test_db, test_user):
        chat = await create_chat(test_db, test_user.id, chat_metadata={"share_path": "/chat/1", "a": 1})
        before = chat.updated_at
        store = HistoryStore(test_db)

        updated = await store.update_chat(chat, title="Renamed", metadata={"b": 2})

        assert updated.title == "Renamed"
        assert updated.chat_metadata == {"share_path": "/chat/1", "a": 1, "b": 2}
        assert updated.updated_at >= before

    @pytest.mark.asyncio
    async def test_list_by_user_most_recent_first(self, test_db, test_user, test_user_2):
        older, _ = await create_chat_with_messages(test_db, test_user.id, ["old question"])
        newer, _ = await create_chat_with_messages(test_db, test_user.id, ["new question", "answer"])
        await create_chat(test_db, test_user_2.id)
        store = HistoryStore(test_db)

        chats = await store.list_by_user(test_user.id)

        assert [c.id for c in chats] == [newer.id, older.id]
        assert await store.count_by_user(test_user.id) == 2
        assert len(await store.list_by_user(test_user.id, limit=1)) == 1

    @pytest.mark.asyncio
    async def test_search_by_title(self, test_db, test_user):
        await create_chat(test_db, test_user.id, title="Revenue Forecast")
        await create_chat(test_db, test_user.id, title="Holiday plans")
        store = HistoryStore(test_db)

        results = await store.search_by_title(test_user.id, "  revenue ")

        assert [c.title for c in results] == ["Revenue Forecast"]

    @pytest.mark.asyncio
    async def test_remove_deletes_messages(self, test_db, test_user):
        chat, _ = await create_chat_with_messages(test_db, test_user.id, ["q", "a"])
        store = HistoryStore(test_db)

        await store.remove(chat.id, test_user.id)

        remaining = await test_db.execute(select(Message).where(Message.chat_id == chat.id))
        assert remaining.scalars().all() == []
        assert await store.find_chat(chat.id) is None

    @pytest.mark.asyncio
    async def test_remove_missing_chat(self, test_db, test_user):
        with pytest.raises(ChatNotFoundError):
            await HistoryStore(test_db).remove(uuid.uuid4(), test_user.id)

    @pytest.mark.asyncio
    async def test_clear_all_only_touches_owner(self, test_db, test_user, test_user_2):
        await create_chat_with_messages(test_db, test_user.id, ["q1", "a1"])
        await create_chat_with_messages(test_db, test_user.id, ["q2"])
        other, _ = await create_chat_with_messages(test_db, test_user_2.id, ["q3", "a3"])
        store = HistoryStore(test_db)

        removed = await store.clear_all(test_user.id)

        assert removed == 2
        assert await store.count_by_user(test_user.id) == 0
        chats = (await test_db.execute(select(Chat))).scalars().all()
        assert [c.id for c in chats] == [other.id]
        messages = (await test_db.execute(select(Message))).scalars().all()
        assert {m.chat_id for m in messages} == {other.id}


class TestHistoryStoreMessages:
    """Message-level operations."""

    @pytest.mark.asyncio
    async def test_append_bumps_chat(self, test_db, test_user):
        chat, _ = await create_chat_with_messages(test_db, test_user.id, ["q"])
        before = chat.updated_at
        store = HistoryStore(test_db)

        message = await store.append(chat.id, MessageRole.ASSISTANT, "an answer", {"model": "m"})

        assert message.id is not None
        assert message.message_metadata == {"model": "m"}
        await test_db.refresh(chat)
        assert chat.updated_at > before

    @pytest.mark.asyncio
    async def test_append_orders_messages_when_clock_stalls(self, test_db, test_user):
        chat = await create_chat(test_db, test_user.id)
        store = HistoryStore(test_db)
        frozen = datetime(2026, 1, 1, 12, 0, 0)

        with patch("app.domains.chat.history.utcnow", return_value=frozen):
            question = await store.append(chat.id, MessageRole.USER, "question")
            answer = await store.append(chat.id, MessageRole.ASSISTANT, "answer")
            follow_up = await store.append(chat.id, MessageRole.USER, "follow-up")

        assert question.created_at == frozen
        assert question.created_at < answer.created_at < follow_up.created_at
        assert [m.content for m in await store.read_last_k(chat.id, 3)] == ["question", "answer", "follow-up"]

    @pytest.mark.asyncio
    async def test_append_after_clock_moves_back(self, test_db, test_user):
        chat = await create_chat(test_db, test_user.id)
        store = HistoryStore(test_db)

        with patch("app.domains.chat.history.utcnow", return_value=datetime(2026, 1, 1, 12, 0, 0)):
            first = await store.append(chat.id, MessageRole.USER, "question")
        with patch("app.domains.chat.history.utcnow", return_value=datetime(2026, 1, 1, 11, 59, 0)):
            second = await store.append(chat.id, MessageRole.ASSISTANT, "answer")

        assert second.created_at > first.created_at

    @pytest.mark.asyncio
    async def test_read_last_k_oldest_first(self, test_db, test_user):
        chat, messages = await create_chat_with_messages(
            test_db, test_user.id, ["q1", "a1", "q2", "a2", "q3"]
        )
        store = HistoryStore(test_db)

        last = await store.read_last_k(chat.id, 3)

        assert [m.content for m in last] == ["q2", "a2", "q3"]
        assert [m.content for m in await store.read_last_k(chat.id, 10)] == [m.content for m in messages]
        assert await store.read_last_k(chat.id, 0) == []

    @pytest.mark.asyncio
    async def test_read_failure_is_persistence_failure(self, test_db):
        test_db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("disk I/O error")))

        with pytest.raises(PersistenceFailureError):
            await HistoryStore(test_db).read_last_k(uuid.uuid4(), 5)

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back(self, test_db, test_user):
        chat = await create_chat(test_db, test_user.id)
        test_db.commit = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        test_db.rollback = AsyncMock()

        with pytest.raises(PersistenceFailureError):
            await HistoryStore(test_db).append(chat.id, MessageRole.USER, "question")

        test_db.rollback.assert_awaited_once()

    def test_history_entry_from_message(self):
        message = Message(role=MessageRole.ASSISTANT, content="hello")
        assert HistoryEntry.from_message(message) == HistoryEntry("assistant", "hello")
