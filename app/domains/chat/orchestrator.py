"""Turn orchestration: condense, retrieve, generate and persist one chat turn.

A turn is started with :meth:`TurnOrchestrator.start_turn`, which validates the
request, resolves or creates the chat and commits the user message before any
streaming happens. It returns a :class:`TurnStream` that drives the rest of the
pipeline lazily while the caller consumes events.
"""

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import PromptProfileEnum, settings
from app.domains.chat.condenser import QuestionCondenser
from app.domains.chat.events import EndMarker, ErrorMarker, TextDelta, TurnEvent
from app.domains.chat.generator import AnswerGenerator
from app.domains.chat.history import HistoryEntry, HistoryStore
from app.domains.chat.prompts import build_answer_prompt, build_context, get_prompt_profile
from app.domains.chat.retriever import RetrievalScope, RetrievedChunk, VectorRetriever
from app.exceptions.chat import (
    ChatNotFoundError,
    InvalidTurnInputError,
    InvalidTurnTransitionError,
    PersistenceFailureError,
    TurnConflictError,
    TurnErrorKind,
)
from app.schemas.chat import TurnMessage
from models.message import Message, MessageRole


logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    CREATED = "created"
    HISTORY_LOADED = "history_loaded"
    CONDENSED = "condensed"
    RETRIEVED = "retrieved"
    GENERATING = "generating"
    PERSISTED = "persisted"
    FAILED = "failed"
    CANCELED = "canceled"


_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.CREATED: frozenset({TurnState.HISTORY_LOADED, TurnState.FAILED, TurnState.CANCELED}),
    TurnState.HISTORY_LOADED: frozenset({TurnState.CONDENSED, TurnState.FAILED, TurnState.CANCELED}),
    TurnState.CONDENSED: frozenset({TurnState.RETRIEVED, TurnState.FAILED, TurnState.CANCELED}),
    TurnState.RETRIEVED: frozenset({TurnState.GENERATING, TurnState.FAILED, TurnState.CANCELED}),
    TurnState.GENERATING: frozenset({TurnState.PERSISTED, TurnState.FAILED, TurnState.CANCELED}),
    TurnState.PERSISTED: frozenset(),
    TurnState.FAILED: frozenset(),
    TurnState.CANCELED: frozenset(),
}

TERMINAL_STATES = frozenset({TurnState.PERSISTED, TurnState.FAILED, TurnState.CANCELED})


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Turn:
    """Ephemeral state of one turn. Holds ids, never live ORM rows."""

    chat_id: UUID
    user_id: UUID
    question: str
    user_message_id: UUID | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    condensed_question: str | None = None
    chunks: list[RetrievedChunk] = field(default_factory=list)
    context: str | None = None
    answer: Message | None = None
    state: TurnState = TurnState.CREATED
    finished: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def answer_text(self) -> str:
        return self.answer.content if self.answer is not None else ""

    def advance(self, target: TurnState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTurnTransitionError(self.state.value, target.value)
        logger.debug(f"Turn {self.chat_id}: {self.state.value} -> {target.value}")
        self.state = target


class InFlightRegistry:
    """Process-wide set of chats with a turn in progress."""

    def __init__(self):
        self._active: set[UUID] = set()

    def acquire(self, chat_id: UUID) -> None:
        if chat_id in self._active:
            raise TurnConflictError(details={"chat_id": str(chat_id)})
        self._active.add(chat_id)

    def release(self, chat_id: UUID) -> None:
        self._active.discard(chat_id)

    def is_active(self, chat_id: UUID) -> bool:
        return chat_id in self._active

    def __len__(self) -> int:
        return len(self._active)


class TurnStream:
    """Async iterator over the events of a started turn.

    ``aclose()`` cancels the turn: generation stops, nothing more is
    persisted and the chat is released for the next turn.
    """

    def __init__(
        self,
        turn: Turn,
        events: AsyncIterator[TurnEvent],
        on_close: Callable[[], Awaitable[None]],
    ):
        self.turn = turn
        self._events = events
        self._on_close = on_close
        self._closed = False

    @property
    def chat_id(self) -> UUID:
        return self.turn.chat_id

    @property
    def state(self) -> TurnState:
        return self.turn.state

    def __aiter__(self) -> "TurnStream":
        return self

    async def __anext__(self) -> TurnEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._events.__anext__()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._events.aclose()
        finally:
            # Covers streams closed before their first event
            await self._on_close()


def validate_turn_messages(messages: Sequence[TurnMessage]) -> tuple[str, str]:
    """Check the request transcript.

    Returns:
        The question (last user message) and the text of the first user
        message, used as the chat title for new chats.
    """
    if not messages:
        raise InvalidTurnInputError("At least one message is required")

    last = messages[-1]
    if last.role != MessageRole.USER:
        raise InvalidTurnInputError("Invalid message format: the last message must come from the user")

    question = last.content.strip()
    if not question:
        raise InvalidTurnInputError("Question must not be empty")

    first_user = next((m.content.strip() for m in messages if m.role == MessageRole.USER and m.content.strip()), "")
    return question, first_user or question


class TurnOrchestrator:
    """Runs chat turns against injected collaborators.

    The orchestrator opens its own database session per turn because the
    stream outlives the HTTP request that started it.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        condenser: QuestionCondenser,
        retriever: VectorRetriever,
        generator: AnswerGenerator,
        registry: InFlightRegistry,
        history_window: int | None = None,
        top_k: int | None = None,
        title_length: int | None = None,
        prompt_profile: str | PromptProfileEnum | None = None,
    ):
        self.session_factory = session_factory
        self.condenser = condenser
        self.retriever = retriever
        self.generator = generator
        self.registry = registry
        self.history_window = settings.chat_history_window if history_window is None else history_window
        self.top_k = settings.retrieval_top_k if top_k is None else top_k
        self.title_length = settings.chat_title_length if title_length is None else title_length
        self.profile = get_prompt_profile(prompt_profile or settings.prompt_profile)

    async def run_turn(self, chat_id: UUID | None, user_id: UUID, question: str) -> AsyncIterator[TurnEvent]:
        """Run a turn for a single question and yield its events."""
        stream = await self.start_turn(chat_id, user_id, [TurnMessage(role=MessageRole.USER, content=question)])
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()

    async def start_turn(
        self,
        chat_id: UUID | None,
        user_id: UUID,
        messages: Sequence[TurnMessage],
    ) -> TurnStream:
        """Validate, resolve the chat and persist the user message.

        Raises:
            InvalidTurnInputError: Malformed transcript.
            ChatNotFoundError: The chat belongs to another user.
            TurnConflictError: A turn for this chat is already running.
            PersistenceFailureError: The chat or user message could not be written.
        """
        question, first_user = validate_turn_messages(messages)

        session = self.session_factory()
        store = HistoryStore(session)
        acquired: UUID | None = None
        started = False
        try:
            chat = None
            if chat_id is not None:
                chat = await store.find_chat(chat_id)
                if chat is not None and chat.user_id != user_id:
                    raise ChatNotFoundError()

            resolved_id = chat_id or uuid4()
            self.registry.acquire(resolved_id)
            acquired = resolved_id

            if chat is None:
                await store.create_chat(
                    user_id=user_id,
                    title=first_user[: self.title_length],
                    metadata={"share_path": f"/chat/{resolved_id}"},
                    chat_id=resolved_id,
                )
                logger.info(f"Created chat {resolved_id} for user {user_id}")

            user_message = await store.append(
                resolved_id, MessageRole.USER, question, metadata={"timestamp": _now_ms()}
            )
            started = True
        finally:
            if not started:
                if acquired is not None:
                    self.registry.release(acquired)
                await session.close()

        turn = Turn(chat_id=resolved_id, user_id=user_id, question=question, user_message_id=user_message.id)

        async def close() -> None:
            await self._finish(turn, session)

        return TurnStream(turn, self._drive(turn, store), close)

    async def _drive(self, turn: Turn, store: HistoryStore) -> AsyncIterator[TurnEvent]:
        answer_stream = None
        try:
            try:
                turn.history = await self._load_history(turn, store)
                turn.advance(TurnState.HISTORY_LOADED)

                turn.condensed_question = await self._condense(turn)
                turn.advance(TurnState.CONDENSED)

                turn.chunks = await self._retrieve(turn)
                turn.context = build_context(turn.chunks)
                turn.advance(TurnState.RETRIEVED)
            except PersistenceFailureError as e:
                logger.error(f"Failed to load history for chat {turn.chat_id}: {e.message}")
                turn.advance(TurnState.FAILED)
                yield ErrorMarker(TurnErrorKind.PERSISTENCE_FAILURE)
                yield EndMarker()
                return

            prompt = build_answer_prompt(turn.condensed_question, turn.context, turn.history, self.profile)
            turn.advance(TurnState.GENERATING)
            answer_stream = self.generator.generate(prompt)

            try:
                async for delta in answer_stream:
                    if not delta:
                        continue
                    if turn.answer is None:
                        turn.answer = Message(chat_id=turn.chat_id, role=MessageRole.ASSISTANT, content="")
                    turn.answer.content += delta
                    yield TextDelta(delta)
            except Exception as e:
                logger.error(f"Answer generation failed for chat {turn.chat_id}: {str(e)}")
                turn.advance(TurnState.FAILED)
                yield ErrorMarker(TurnErrorKind.UPSTREAM_FAILURE)
                yield EndMarker()
                return

            if not turn.answer_text.strip():
                logger.error(f"Model returned an empty answer for chat {turn.chat_id}")
                turn.advance(TurnState.FAILED)
                yield ErrorMarker(TurnErrorKind.UPSTREAM_FAILURE)
                yield EndMarker()
                return

            await self._persist_answer(turn, store)
            yield EndMarker()
        finally:
            if answer_stream is not None:
                await answer_stream.aclose()
            await self._finish(turn, store.db)

    async def _load_history(self, turn: Turn, store: HistoryStore) -> list[HistoryEntry]:
        if self.history_window <= 0:
            return []
        # One extra row because the current question is already stored
        messages = await store.read_last_k(turn.chat_id, self.history_window + 1)
        entries = [HistoryEntry.from_message(m) for m in messages if m.id != turn.user_message_id]
        return entries[-self.history_window :]

    async def _condense(self, turn: Turn) -> str:
        try:
            return await self.condenser.condense(turn.question, turn.history)
        except Exception as e:
            logger.warning(f"Condenser failed for chat {turn.chat_id}, using the raw question: {str(e)}")
            return turn.question

    async def _retrieve(self, turn: Turn) -> list[RetrievedChunk]:
        scope = RetrievalScope(chat_id=turn.chat_id, user_id=turn.user_id)
        try:
            return await self.retriever.retrieve(turn.condensed_question, scope, self.top_k)
        except Exception as e:
            logger.warning(f"Retrieval failed for chat {turn.chat_id}, answering without documents: {str(e)}")
            return []

    async def _persist_answer(self, turn: Turn, store: HistoryStore) -> None:
        answer = turn.answer
        answer.message_metadata = {
            "model": self.generator.model_name,
            "timestamp": _now_ms(),
            "sources": _sources(turn.chunks),
        }
        try:
            await store.persist(answer)
        except PersistenceFailureError as e:
            logger.error(
                f"{TurnErrorKind.PERSISTENCE_FAILURE.value}: answer for chat {turn.chat_id} not saved: {e.message}"
            )
            turn.advance(TurnState.FAILED)
            return
        turn.advance(TurnState.PERSISTED)
        logger.info(f"Turn completed for chat {turn.chat_id} ({len(answer.content)} chars)")

    async def _finish(self, turn: Turn, session: AsyncSession) -> None:
        if turn.finished:
            return
        turn.finished = True
        if not turn.is_terminal:
            turn.advance(TurnState.CANCELED)
            logger.info(f"Turn canceled for chat {turn.chat_id}")
        self.registry.release(turn.chat_id)
        await session.close()


def _sources(chunks: Sequence[RetrievedChunk]) -> list[dict[str, Any]]:
    sources = []
    for chunk in chunks:
        source: dict[str, Any] = {"document": chunk.document, "rank": chunk.rank}
        if "page" in chunk.metadata:
            source["page"] = chunk.metadata["page"]
        sources.append(source)
    return sources
