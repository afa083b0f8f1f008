"""
Tutor LLM Client

Completion-generation collaborator. Turns (system prompt, user prompt)
into tutor reply text and maps provider failures onto ProviderError
subclasses. No automatic retries: the caller decides what to do with
RateLimited and Timeout.
"""

import asyncio
import logging
import os
from typing import Optional, Protocol

import openai
from openai import AsyncOpenAI
from dotenv import load_dotenv

from socratic_math_tutor.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderQuotaExceeded,
    ProviderRateLimited,
    ProviderTimeout,
    ProviderUnknown,
)

load_dotenv()

logger = logging.getLogger(__name__)

MIN_REPLY_LENGTH = 5


class TutorLLMClient(Protocol):
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str: ...


def map_provider_error(error: Exception) -> ProviderError:
    """Translate an OpenAI SDK (or asyncio) failure into the engine's taxonomy."""
    if isinstance(error, ProviderError):
        return error

    status = getattr(error, "status_code", None)
    message = str(error)
    lowered = message.lower()

    if isinstance(error, (openai.APITimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ProviderTimeout(status=status)
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(status=status)
    if getattr(error, "code", None) == "insufficient_quota" or "insufficient_quota" in lowered:
        return ProviderQuotaExceeded(status=status)
    if isinstance(error, openai.RateLimitError):
        return ProviderRateLimited(status=status)
    if status == 401 or "unauthorized" in lowered or "invalid api key" in lowered:
        return ProviderAuthError(status=status)
    if status == 429 or "rate limit" in lowered:
        return ProviderRateLimited(status=status)
    if "timeout" in lowered or "timed out" in lowered:
        return ProviderTimeout(status=status)
    return ProviderUnknown(f"OpenAI API error: {message}", status=status)


class OpenAITutorClient:
    """
    OpenAI chat-completions backed tutor.

    The API key comes from the constructor or OPENAI_API_KEY. A missing key
    is reported as ProviderAuthError at call time, not at construction.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o")
        self.timeout_seconds = timeout_seconds
        self.llm_client: Optional[AsyncOpenAI] = None

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if api_key:
            self.llm_client = AsyncOpenAI(
                api_key=api_key,
                timeout=timeout_seconds,
                max_retries=0,
            )
        else:
            logger.warning("⚠️ [OpenAITutorClient] OPENAI_API_KEY is not set - tutor replies unavailable")

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 250,
    ) -> str:
        """
        Generate one tutor reply.

        Raises:
            ProviderError subclass on any failure
        """
        if self.llm_client is None:
            raise ProviderAuthError("OPENAI_API_KEY is not set")

        try:
            completion = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception as e:
            mapped = map_provider_error(e)
            logger.error(f"❌ [OpenAITutorClient] OpenAI call failed ({mapped.kind}): {e}")
            raise mapped from e

        content = ""
        if completion.choices:
            content = (completion.choices[0].message.content or "").strip()

        if not content:
            raise ProviderUnknown("Received empty response from OpenAI. Please try again.")
        if len(content) < MIN_REPLY_LENGTH:
            raise ProviderUnknown("Received invalid response from tutor. Please try again.")

        return content
