"""
Rate-limited JSON HTTP client shared by the capability adapters.
"""
import asyncio
from typing import Any, Dict, Optional

from aiohttp import ClientError, ClientResponseError, ClientSession, ClientTimeout
from aiolimiter import AsyncLimiter
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from parcel_locator.config import HTTP_CONCURRENCY, HTTP_TIMEOUT_SECONDS


class HttpClient:
    """
    Thin aiohttp wrapper with a token-bucket rate limiter.

    One instance is created per pipeline (or per tenant) and injected into
    the adapters that need it, so tests can swap it and rate limits stay
    isolated between callers.
    """

    def __init__(
        self,
        max_rate: int = HTTP_CONCURRENCY,
        time_period: float = 1.0,
        timeout_seconds: float = HTTP_TIMEOUT_SECONDS,
        attempts: int = 3,
    ):
        self.rate_limiter = AsyncLimiter(max_rate=max_rate, time_period=time_period)
        self.timeout = ClientTimeout(total=timeout_seconds)
        self.attempts = attempts
        self._session: Optional[ClientSession] = None

    async def _get_session(self) -> ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self.timeout)
        return self._session

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send a GET request and return the parsed JSON body.

        Connection errors and 5xx responses are retried with exponential
        backoff; timeouts, 4xx responses and non-JSON bodies are raised
        immediately.

        Args:
            url: Target URL.
            params: Query-string parameters.
            headers: Optional HTTP headers.

        Returns:
            Parsed JSON body.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(_RetryableHttpError),
            reraise=True,
        ):
            with attempt:
                return await self._get_once(url, params, headers)

    async def _get_once(self, url: str, params, headers) -> Any:
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                async with session.get(url, params=params, headers=headers) as resp:
                    if resp.status >= 500:
                        raise _RetryableHttpError(f"{url} answered {resp.status}")
                    resp.raise_for_status()
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as e:
                        raise MalformedPayloadError(f"{url} answered a non-JSON body") from e
            except (ClientResponseError, _RetryableHttpError, MalformedPayloadError):
                raise
            except asyncio.TimeoutError:
                logger.debug(f"⏱️ HTTP GET timed out: {url}")
                raise
            except ClientError as e:
                logger.debug(f"⚠️ HTTP GET failed for {url}: {e}")
                raise _RetryableHttpError(str(e)) from e

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class _RetryableHttpError(ClientError):
    """Transient transport failure worth another attempt."""


class MalformedPayloadError(ClientError):
    """The response body is not valid JSON. Not retried."""
