"""Answer generator: streams model output as text deltas."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from app.core.config import settings
from app.domains.chat.llm import map_gemini_error


logger = logging.getLogger(__name__)


class AnswerStream:
    """Single-consumer async iterator over answer deltas.

    The stream can be iterated once. ``aclose()`` stops pulling from the model
    and is safe to call more than once.
    """

    def __init__(self, source: AsyncIterator[str]):
        self._source = source
        self._consumed = False
        self._closed = False

    def __aiter__(self) -> "AnswerStream":
        if self._consumed:
            raise RuntimeError("Answer stream has already been consumed")
        self._consumed = True
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        return await self._source.__anext__()

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        if aclose is not None:
            await aclose()


def _chunk_text(chunk: Any) -> str:
    # Chunks without parts (e.g. a trailing finish-reason chunk) raise on .text
    try:
        return chunk.text or ""
    except ValueError:
        logger.debug("Skipping stream chunk without text parts")
        return ""


class AnswerGenerator:
    """Streams answers from Gemini."""

    def __init__(self, model: Any, model_name: str | None = None, timeout: float | None = None):
        self.model = model
        self.model_name = model_name or settings.gemini_model
        self.timeout = timeout or settings.ai_request_timeout

    def generate(self, prompt: str) -> AnswerStream:
        """Start generation lazily; nothing is sent until the stream is iterated."""
        return AnswerStream(self._stream(prompt))

    async def _stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            response = await asyncio.wait_for(
                self.model.generate_content_async(prompt, stream=True),
                timeout=self.timeout,
            )
        except Exception as e:
            raise map_gemini_error(e) from e

        chunks = response.__aiter__()
        while True:
            try:
                chunk = await asyncio.wait_for(chunks.__anext__(), timeout=self.timeout)
            except StopAsyncIteration:
                return
            except Exception as e:
                raise map_gemini_error(e) from e

            text = _chunk_text(chunk)
            if text:
                yield text
