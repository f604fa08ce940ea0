"""
Unit tests for UserService.
"""

import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from app.domains.user.service import UserService
from app.exceptions.chat import PersistenceFailureError


class TestUserService:
    """Test cases for UserService."""

    @pytest.mark.asyncio
    async def test_get_user_by_clerk_id(self, test_db, test_user):
        service = UserService(test_db)

        assert (await service.get_user_by_clerk_id(test_user.clerk_user_id)).id == test_user.id
        assert await service.get_user_by_clerk_id("clerk_user_missing") is None

    @pytest.mark.asyncio
    async def test_get_user_by_id(self, test_db, test_user):
        service = UserService(test_db)

        assert (await service.get_user_by_id(test_user.id)).email == test_user.email
        assert await service.get_user_by_id(uuid.uuid4()) is None

    @pytest.mark.asyncio
    async def test_get_or_create_creates_once(self, test_db):
        service = UserService(test_db)
        clerk_id = f"clerk_user_{uuid.uuid4()}"
        payload = {"sub": clerk_id, "email": "new@example.com", "username": "newbie"}

        created = await service.get_or_create_user(clerk_id, payload)
        again = await service.get_or_create_user(clerk_id, payload)

        assert created.id == again.id
        assert created.email == "new@example.com"
        assert created.username == "newbie"
        assert created.is_active is True

    @pytest.mark.asyncio
    async def test_missing_email_gets_placeholder(self, test_db):
        clerk_id = f"clerk_user_{uuid.uuid4()}"

        user = await UserService(test_db).get_or_create_user(clerk_id, {"sub": clerk_id})

        assert user.email == f"{clerk_id}@users.clerk.local"

    @pytest.mark.asyncio
    async def test_create_user_failure(self, test_db):
        test_db.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate")))
        test_db.rollback = AsyncMock()

        with pytest.raises(PersistenceFailureError):
            await UserService(test_db).create_user("clerk_user_x", "x@example.com")

        test_db.rollback.assert_awaited_once()
