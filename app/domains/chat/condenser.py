"""Question condenser: rewrites a follow-up into a standalone question."""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.domains.chat.history import HistoryEntry
from app.domains.chat.llm import map_gemini_error
from app.domains.chat.prompts import PromptProfile, build_condense_prompt, get_prompt_profile
from app.exceptions.ai import AIQuotaExceededError, AIRateLimitError


logger = logging.getLogger(__name__)


class QuestionCondenser:
    """Stateless wrapper around one model call per turn."""

    def __init__(self, model: Any, timeout: float | None = None, profile: PromptProfile | None = None):
        """Initialize the condenser.

        Args:
            model: A Gemini ``GenerativeModel`` or anything exposing
                ``generate_content_async(prompt)``.
            timeout: Seconds allowed for one model call.
            profile: Prompt profile providing the condense template.
        """
        self.model = model
        self.timeout = timeout or settings.ai_request_timeout
        self.profile = profile or get_prompt_profile(settings.prompt_profile)

    async def condense(self, question: str, history: Sequence[HistoryEntry]) -> str:
        """Return a standalone version of ``question``.

        Empty history short-circuits to the question itself. Errors propagate
        to the caller, which decides whether to fall back.
        """
        if not history:
            return question

        prompt = build_condense_prompt(question, history, self.profile)
        condensed = (await self._generate(prompt)).strip()
        if not condensed:
            logger.warning("Condenser returned empty output, using the raw question")
            return question
        return condensed

    @retry(
        retry=retry_if_exception_type((AIRateLimitError, AIQuotaExceededError)),
        stop=stop_after_attempt(settings.ai_max_retry_attempts),
        wait=wait_exponential(min=settings.ai_retry_min_wait, max=settings.ai_retry_max_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _generate(self, prompt: str) -> str:
        try:
            response = await asyncio.wait_for(self.model.generate_content_async(prompt), timeout=self.timeout)
            return response.text or ""
        except Exception as e:
            raise map_gemini_error(e) from e
