"""HTTP downloader for gallery photos."""

import asyncio
from typing import Awaitable, Callable, Optional

import aiohttp

from .error_handling import RetryPolicy, call_with_retry, linear_backoff
from .exceptions import FetchFailedError
from .logging_config import get_logger
from .models import IndexingConfig

# Client errors that another attempt will not fix
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 410})


class EmptyResponseError(ValueError):
    """The photo URL answered with an empty body."""


def is_retryable_download_error(exc: BaseException) -> bool:
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status not in NON_RETRYABLE_STATUSES
    return True


class PhotoFetcher:
    """Timeout-bounded, retrying photo downloader.

    Can be used as an async context manager, in which case it owns an
    ``aiohttp.ClientSession`` for its lifetime. A session may also be
    injected, and is then left open on close().
    """

    def __init__(
        self,
        config: Optional[IndexingConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or IndexingConfig()
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._logger = get_logger("face-indexer.fetcher")
        self.retry_policy = RetryPolicy(
            max_attempts=self._config.fetch_attempts,
            backoff=linear_backoff(self._config.fetch_backoff),
            retry_on=(aiohttp.ClientError, asyncio.TimeoutError, EmptyResponseError),
            should_retry=is_retryable_download_error,
        )

    async def __aenter__(self) -> "PhotoFetcher":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self._config.user_agent}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _download(self, url: str) -> bytes:
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self._config.fetch_timeout)
        async with session.get(
            url,
            headers={"User-Agent": self._config.user_agent},
            timeout=timeout,
            allow_redirects=True,
        ) as response:
            response.raise_for_status()
            body = await response.read()
        if not body:
            raise EmptyResponseError(f"Empty response body from {url}")
        return body

    async def fetch(self, url: str) -> bytes:
        """
        Download a photo.

        Args:
            url: Source URL of the photo

        Returns:
            The raw image bytes

        Raises:
            FetchFailedError: When every attempt failed
        """
        self._logger.debug(f"Fetching {url}")
        try:
            data = await call_with_retry(
                self._download, url, policy=self.retry_policy, sleep=self._sleep
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, EmptyResponseError) as e:
            reason = str(e) or type(e).__name__
            raise FetchFailedError(f"Could not download {url}: {reason}") from e
        self._logger.debug(f"Fetched {len(data)} bytes from {url}")
        return data
