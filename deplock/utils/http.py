"""
HTTP client utilities for deplock.

Asynchronous ``httpx`` wrapper used by the PyPI registry backend. It adds
retries with exponential backoff, ``429`` handling, an optional minimum
spacing between requests and a bound on concurrent connections.
"""

from __future__ import annotations

import time
import httpx
import random
import asyncio
from typing import Any, Dict, Optional, cast

from deplock.utils.logger import get_logger
from deplock.__version__ import __version__
from deplock.exceptions import NetworkError
from deplock.constants import (
    DEFAULT_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    USER_AGENT_TEMPLATE,
)

logger = get_logger("http")

__all__ = ["HTTPClient"]


class HTTPClient:
    """Asynchronous HTTP client with retries and rate limiting.

    A ``404`` is reported immediately as :class:`NetworkError` with
    ``status_code=404`` so callers can tell "does not exist" apart from
    transient failures. Other ``4xx`` responses are not retried; ``5xx``,
    timeouts and connection errors are retried up to ``max_retries`` times.
    ``429`` responses wait for ``Retry-After`` and do not use up retries.

    Args:
        timeout: Request timeout in seconds.
        max_retries: Maximum number of retry attempts.
        rate_limit_delay: Minimum delay (seconds) between requests.
        verify_ssl: Whether to verify SSL certificates.
        user_agent: Custom User-Agent header value.
        max_concurrency: Maximum number of concurrent requests.

    Example:
        >>> async with HTTPClient() as client:
        ...     data = await client.get_json("https://pypi.org/pypi/attrs/json")
    """

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        rate_limit_delay: float = 0.0,
        verify_ssl: bool = True,
        user_agent: Optional[str] = None,
        max_concurrency: int = 10,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limit_delay = rate_limit_delay
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent or USER_AGENT_TEMPLATE.format(version=__version__)
        self.max_concurrency = max_concurrency

        self._client: Optional[httpx.AsyncClient] = None
        self._last_request_time: float = 0.0
        self._rate_limit_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_429_retries: int = 5

    async def __aenter__(self) -> "HTTPClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                http2=True,
                verify=self.verify_ssl,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rate_limit(self) -> None:
        if self.rate_limit_delay <= 0:
            return

        async with self._rate_limit_lock:
            now = time.time()
            elapsed = now - self._last_request_time
            if elapsed < self.rate_limit_delay:
                delay = self.rate_limit_delay - elapsed
                self._last_request_time = now + delay
                await asyncio.sleep(delay)
            else:
                self._last_request_time = now

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform a GET request with retry and backoff.

        Raises:
            NetworkError: The resource does not exist, the server rejected
                the request, or every attempt failed.
        """
        await self._ensure_client()
        assert self._client is not None

        last_exc: Optional[Exception] = None
        retry_429_count = 0

        attempt = 0
        while attempt <= self.max_retries:
            try:
                await self._rate_limit()
                async with self._semaphore:
                    response = await self._client.get(url, **kwargs)

                if response.status_code == 429:
                    retry_429_count += 1
                    if retry_429_count > self._max_429_retries:
                        raise NetworkError(
                            f"Rate limit exceeded after {self._max_429_retries} retries",
                            url=url,
                            status_code=429,
                        )
                    retry_after = int(response.headers.get("Retry-After", "1"))
                    logger.warning(
                        "Rate limited (429), retrying after %ds (%d/%d)",
                        retry_after,
                        retry_429_count,
                        self._max_429_retries,
                    )
                    await asyncio.sleep(retry_after)
                    continue

                if response.status_code == 404:
                    raise NetworkError(
                        f"Resource not found: {url}",
                        url=url,
                        status_code=404,
                    )
                response.raise_for_status()
                return response

            except httpx.TimeoutException as exc:
                last_exc = exc
                logger.warning(
                    "Request timeout (%d/%d): %s", attempt + 1, self.max_retries + 1, url
                )
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "Network error (%d/%d): %s", attempt + 1, self.max_retries + 1, exc
                )
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status < 500:
                    raise NetworkError(
                        f"HTTP {status} error for {url}",
                        url=url,
                        status_code=status,
                        response_body=exc.response.text,
                    ) from exc
                last_exc = exc
                logger.warning(
                    "HTTP %d error (%d/%d): %s",
                    status,
                    attempt + 1,
                    self.max_retries + 1,
                    url,
                )

            if attempt < self.max_retries:
                delay = (2**attempt) + random.uniform(0.0, 0.3)
                logger.debug("Retrying in %.2fs", delay)
                await asyncio.sleep(delay)
            attempt += 1

        raise NetworkError(
            f"Request failed after {self.max_retries + 1} attempts: {url}",
            url=url,
        ) from last_exc

    async def get_json(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Fetch *url* and parse the body as a JSON object.

        Raises:
            NetworkError: The request failed or the body is not a JSON
                object (``status_code`` is ``None`` in that case).
        """
        response = await self.get(url, **kwargs)
        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON response from {url}",
                url=url,
                response_body=response.text,
            ) from exc

        if not isinstance(data, dict):
            raise NetworkError(
                f"Expected JSON object from {url}",
                url=url,
                response_body=response.text,
            )
        return cast(Dict[str, Any], data)
