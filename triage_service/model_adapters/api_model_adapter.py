"""
API Model Adapter

Adapter for an OpenAI-compatible chat completions endpoint.

Failures are raised as typed FallbackError subclasses so callers can tell
"not configured" from "rate limited" from "bad output".
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import aiohttp

from triage_service import config

logger = logging.getLogger(__name__)


class FallbackError(Exception):
    """Base class for remote model failures."""
    retryable = False


class NotConfiguredError(FallbackError):
    """No API key is configured."""


class UnauthorizedError(FallbackError):
    """The API rejected the credentials (401/403)."""


class RateLimitedError(FallbackError):
    """The API returned 429."""
    retryable = True


class FallbackTimeoutError(FallbackError):
    """The request did not complete in time."""
    retryable = True


class UpstreamError(FallbackError):
    """Other non-2xx status or a connection problem."""
    retryable = True


class MalformedResponseError(FallbackError):
    """The response body was not usable."""


class APIAdapter(ABC):
    """Base class for API adapters."""

    @abstractmethod
    async def generate(self, messages: List[Dict[str, str]], model: str, **kwargs) -> str:
        """Return the assistant message content for a chat request."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if API is configured."""
        pass


class OpenAIAdapter(APIAdapter):
    """
    Adapter for the OpenAI chat completions API.

    Bearer-token authenticated HTTPS POST with a JSON body.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or config.OPENAI_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.2,
        **kwargs
    ) -> str:
        """
        Send one chat completion request.

        Args:
            messages: Chat messages ({role, content})
            model: Model identifier
            temperature: Sampling temperature

        Returns:
            Content of the first choice
        """
        if not self.api_key:
            raise NotConfiguredError("OpenAI API key not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": model,
            "temperature": temperature,
            "messages": messages,
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status >= 400:
                        body = (await response.text())[:300]
                        raise self._error_for_status(response.status, model, body)

                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise MalformedResponseError(f"model={model} non-JSON body: {e}")

        except asyncio.TimeoutError:
            raise FallbackTimeoutError(f"model={model} timed out after {self.timeout_seconds}s")
        except aiohttp.ClientError as e:
            raise UpstreamError(f"model={model} connection error: {e}")

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise MalformedResponseError(f"model={model} response missing choices")

    @staticmethod
    def _error_for_status(status: int, model: str, body: str) -> FallbackError:
        message = f"model={model} status={status} body={body}"
        if status in (401, 403):
            return UnauthorizedError(message)
        if status == 429:
            return RateLimitedError(message)
        return UpstreamError(message)
