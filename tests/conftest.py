# tests/conftest.py
import os

# Set up test environment variables BEFORE any other imports
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("AI_RETRY_MIN_WAIT", "0")
os.environ.setdefault("AI_RETRY_MAX_WAIT", "0")
os.environ.setdefault("LOG_FORMAT", "simple")

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.dependencies import (
    get_condenser,
    get_current_user,
    get_generator,
    get_retriever,
    get_turn_registry,
    validate_token,
)
from app.database import enable_sqlite_foreign_keys, get_db, get_session_factory
from app.domains.chat.orchestrator import InFlightRegistry, TurnOrchestrator
from app.main import app
from models import Base, User
from tests.doubles import FakeCondenser, FakeGenerator, FakeRetriever


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """A fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


# User fixtures
@pytest_asyncio.fixture
async def test_user(test_db):
    """Create a test user."""
    user = User(
        clerk_user_id=f"clerk_user_{uuid.uuid4()}",
        email="test@example.com",
        username="testuser",
        is_active=True,
    )
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user_2(test_db):
    """Create a second test user."""
    user = User(
        clerk_user_id=f"clerk_user_{uuid.uuid4()}",
        email="test2@example.com",
        username="testuser2",
        is_active=True,
    )
    test_db.add(user)
    await test_db.commit()
    await test_db.refresh(user)
    return user


# Pipeline doubles
@pytest.fixture
def fake_condenser():
    return FakeCondenser()


@pytest.fixture
def fake_retriever():
    return FakeRetriever()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def turn_registry():
    return InFlightRegistry()


@pytest.fixture
def orchestrator(session_factory, fake_condenser, fake_retriever, fake_generator, turn_registry):
    return TurnOrchestrator(
        session_factory=session_factory,
        condenser=fake_condenser,
        retriever=fake_retriever,
        generator=fake_generator,
        registry=turn_registry,
        history_window=5,
        top_k=4,
    )


# HTTP clients
@pytest_asyncio.fixture
async def client(test_db):
    """Create a test client with database dependency override."""
    app.dependency_overrides[get_db] = lambda: test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(
    test_db,
    test_user,
    session_factory,
    fake_condenser,
    fake_retriever,
    fake_generator,
    turn_registry,
):
    """Create an authenticated test client with the pipeline replaced by doubles."""

    def override_get_current_user():
        return test_user

    def override_validate_token():
        return {"sub": test_user.clerk_user_id, "email": test_user.email}

    app.dependency_overrides[get_db] = lambda: test_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[validate_token] = override_validate_token
    app.dependency_overrides[get_condenser] = lambda: fake_condenser
    app.dependency_overrides[get_retriever] = lambda: fake_retriever
    app.dependency_overrides[get_generator] = lambda: fake_generator
    app.dependency_overrides[get_turn_registry] = lambda: turn_registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
