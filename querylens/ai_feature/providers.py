"""
PROVIDER MODULE - HTTP access to the OpenAI-compatible API

Shared by the embedding and generation clients:
    - bearer auth from settings (missing key fails before any request)
    - status code -> error mapping
    - rate-limit retry with exponential backoff

Retry Strategy:
    - 401: ProviderAuthError, never retried
    - 429: retried up to `max_retries` times, sleeping 2s, 4s, 8s ... first,
           then RateLimitExceeded
    - anything else non-2xx, transport errors, bad JSON: ProviderError at once
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from querylens.core.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimited,
    RateLimitExceeded,
)

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class ProviderClient:
    """
    Thin JSON-over-HTTP client for one provider account.

    Example:
        client = ProviderClient(api_key="sk-...", base_url="https://api.openai.com/v1")
        data = await client.post_json("/embeddings", {"model": "...", "input": ["hi"]})
    """

    DEFAULT_TIMEOUT = 60.0
    MAX_RETRIES = 3

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def post_json(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST `payload` to `path` with the rate-limit retry policy.

        Raises:
            ConfigurationError: no API key configured (nothing is sent)
            ProviderAuthError: 401
            RateLimitExceeded: still 429 after every retry
            ProviderError: any other failure
        """
        if not self.is_configured():
            raise ConfigurationError("OpenAI API key is not configured")

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ProviderRateLimited),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=2, exp_base=2),  # 2s, 4s, 8s
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._post_once(path, payload)
        except RetryError as e:
            raise RateLimitExceeded(
                "Rate limit exceeded. Please wait a minute and try again.",
                status_code=429,
            ) from e.last_attempt.exception()

        # Unreachable, AsyncRetrying either returns or raises
        raise ProviderError(f"Request to {path} produced no attempt")

    async def _post_once(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"Request to {path} failed: {e}") from e

        if response.status_code == 401:
            raise ProviderAuthError(
                "OpenAI API key is invalid or not configured", status_code=401
            )
        if response.status_code == 429:
            raise ProviderRateLimited("Rate limited by provider", status_code=429)
        if response.is_error:
            raise ProviderError(
                f"Provider returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Provider returned invalid JSON for {path}") from e
