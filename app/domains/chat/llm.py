"""Gemini client construction and error translation."""

import logging
import re

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from app.core.config import settings
from app.exceptions.ai import (
    AIConfigurationError,
    AIContentFilterError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIServiceError,
    AITimeoutError,
)


logger = logging.getLogger(__name__)

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


def create_gemini_model(
    api_key: str | None = None,
    model_name: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> genai.GenerativeModel:
    """Configure the Gemini SDK and build a generative model.

    Raises:
        AIConfigurationError: If no API key is configured or the SDK rejects it.
    """
    api_key = api_key or settings.gemini_api_key
    if not api_key:
        raise AIConfigurationError("Gemini API key not configured")

    model_name = model_name or settings.gemini_model
    try:
        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(
            model_name=model_name,
            safety_settings=SAFETY_SETTINGS,
            generation_config=genai.types.GenerationConfig(
                candidate_count=1,
                max_output_tokens=max_tokens or settings.gemini_max_tokens,
                temperature=settings.gemini_temperature if temperature is None else temperature,
            ),
        )
    except Exception as e:
        logger.error(f"Failed to initialize Gemini client: {str(e)}")
        raise AIConfigurationError(f"Failed to initialize AI service: {str(e)}") from e

    logger.info(f"Gemini model initialized: {model_name}")
    return model


def extract_retry_delay(error_message: str) -> int:
    """Extract the retry delay from a Gemini error message, in seconds."""
    # Pattern: "Please retry in 32.984803332s"
    match = re.search(r"retry in (\d+(?:\.\d+)?)s", error_message)
    if match:
        return int(float(match.group(1))) + 1
    return int(settings.ai_retry_min_wait)


def map_gemini_error(error: Exception) -> AIServiceError:
    """Translate an SDK exception into the AI exception hierarchy."""
    if isinstance(error, AIServiceError):
        return error
    if isinstance(error, TimeoutError):
        return AITimeoutError("AI request timed out")

    full_error_msg = str(error)
    error_msg = full_error_msg.lower()
    retry_delay = extract_retry_delay(full_error_msg)

    # Quota errors often carry a 429 too, so check them first
    if "quota" in error_msg:
        logger.error(f"Quota exceeded. Retry after {retry_delay}s. Error: {full_error_msg}")
        return AIQuotaExceededError(
            f"API quota exceeded. Please try again in {retry_delay} seconds",
            details={"retry_after": retry_delay},
        )
    if "429" in full_error_msg or ("rate" in error_msg and "limit" in error_msg):
        logger.warning(f"Rate limit hit. Retry after {retry_delay}s")
        return AIRateLimitError(f"Rate limit exceeded. Retry after {retry_delay} seconds", retry_after=retry_delay)
    if "safety" in error_msg or "blocked" in error_msg:
        return AIContentFilterError("Content blocked by safety filters")

    logger.error(f"Gemini API call failed: {full_error_msg}")
    return AIServiceError(f"AI generation failed: {full_error_msg}")
