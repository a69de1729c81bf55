"""
Text completion service used by the team chat.

Gemini 2.5 Flash answers every specialist turn. One request per call, no
streaming, no automatic retry: a failed call is mapped to a typed
CompletionServiceError and the client decides whether to re-send.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from core.config import settings
from core.exceptions import (
    CompletionRateLimitedError,
    CompletionServiceError,
    CompletionTimeoutError,
    CompletionUnavailableError,
)

logger = logging.getLogger(__name__)


class CompletionClient(ABC):
    """complete(system_prompt, user_prompt) -> text"""

    model: str = "unknown"

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the completion text or raise CompletionServiceError."""


class GeminiCompletionClient(CompletionClient):
    """google-genai backed completion with a hard per-call timeout."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        client: Optional["genai.Client"] = None,
    ):
        self.model = model or settings.CHAT_COMPLETION_MODEL
        self.timeout_s = timeout_s or settings.CHAT_COMPLETION_TIMEOUT_S
        self.temperature = settings.CHAT_COMPLETION_TEMPERATURE if temperature is None else temperature
        self.max_output_tokens = max_output_tokens or settings.CHAT_MAX_OUTPUT_TOKENS

        if client is not None:
            self._client = client
        else:
            key = api_key or settings.GOOGLE_AI_API_KEY
            self._client = genai.Client(api_key=key) if key else None
            if self._client:
                logger.info(f"Gemini client initialized for team chat ({self.model})")
            else:
                logger.warning("GOOGLE_AI_API_KEY not set - team chat completions are disabled")

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        if self._client is None:
            raise CompletionUnavailableError("Completion service is not configured")

        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model,
                    contents=user_prompt,
                    config=config,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Gemini completion timed out after {self.timeout_s}s")
            raise CompletionTimeoutError(self.timeout_s) from e
        except genai_errors.APIError as e:
            if getattr(e, "code", None) == 429:
                logger.warning(f"Gemini completion rate limited: {e}")
                raise CompletionRateLimitedError() from e
            logger.error(f"Gemini completion failed ({getattr(e, 'code', None)}): {e}")
            raise CompletionUnavailableError(f"Completion request failed with status {getattr(e, 'code', 'unknown')}") from e
        except CompletionServiceError:
            raise
        except Exception as e:
            logger.error(f"Gemini completion failed: {e}")
            raise CompletionUnavailableError(f"Completion request failed: {type(e).__name__}") from e

        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise CompletionUnavailableError("Completion service returned an empty reply")

        logger.info(
            f"Gemini completion finished in {round((time.monotonic() - started) * 1000)}ms",
            extra={"extra_fields": {"model": self.model, "chars": len(text)}},
        )
        return text
