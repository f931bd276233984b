"""
Generic async HTTP client wrapper using aiohttp.
Retries connection failures, timeouts and 5xx responses with exponential backoff.
"""

import asyncio
from typing import Optional, Dict, Any
import aiohttp
import logging

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Async HTTP client wrapper using aiohttp.
    Provides get/post methods with retry/backoff support.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Optional base URL for all requests
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts per request
            retry_delay: Initial delay between retries in seconds
        """
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        return endpoint

    @staticmethod
    def _is_retryable(exc: Exception) -> bool:
        if isinstance(exc, aiohttp.ClientResponseError):
            return exc.status >= 500
        return True

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        max_retries: Optional[int] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make HTTP request with retry logic.

        Args:
            method: HTTP method
            url: Request URL
            max_retries: Attempts for this call, overriding the client default
            **kwargs: Additional arguments for aiohttp request

        Returns:
            Decoded JSON body
        """
        session = await self._get_session()
        attempts = max(1, max_retries if max_retries is not None else self.max_retries)
        last_exception: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                async with session.request(method, url, **kwargs) as response:
                    response.raise_for_status()
                    return await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                if not self._is_retryable(e):
                    raise
                if attempt < attempts - 1:
                    delay = self.retry_delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{attempts}): {e}. Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Request failed after {attempts} attempts: {e}")

        raise last_exception

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make GET request.

        Args:
            endpoint: API endpoint
            params: Query parameters
            headers: Request headers

        Returns:
            JSON response
        """
        url = self._build_url(endpoint)
        return await self._request_with_retry("GET", url, params=params, headers=headers)

    async def post(
        self,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Make POST request.

        Args:
            endpoint: API endpoint
            json: JSON data
            headers: Request headers
            max_retries: Attempts for this call; 1 disables retrying

        Returns:
            JSON response
        """
        url = self._build_url(endpoint)
        return await self._request_with_retry(
            "POST", url, max_retries=max_retries, json=json, headers=headers
        )
