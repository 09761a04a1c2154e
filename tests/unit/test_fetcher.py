"""Tests for the HTTP photo fetcher."""

import asyncio

import aiohttp
import pytest

from face_indexer.core.exceptions import FetchFailedError
from face_indexer.core.fetcher import PhotoFetcher, is_retryable_download_error
from face_indexer.core.models import IndexingConfig
from face_indexer.testing.fakes import FakeHTTPSession, FakeSleep, make_request_info

URL = "https://photos.example.com/wedding-42/0.jpg"


def _fetcher(session, **config_overrides):
    sleep = FakeSleep()
    config = IndexingConfig(user_agent="face-indexer-tests", **config_overrides)
    return PhotoFetcher(config, session=session, sleep=sleep), sleep


class TestPhotoFetcher:
    """Tests for PhotoFetcher."""

    def test_fetch_returns_body(self):
        """Test a 200 response returns the photo bytes."""
        session = FakeHTTPSession()
        session.add_response(URL, 200, b"jpeg-bytes")
        fetcher, sleep = _fetcher(session)

        data = asyncio.run(fetcher.fetch(URL))

        assert data == b"jpeg-bytes"
        assert sleep.delays == []

    def test_fetch_sends_user_agent_and_timeout(self):
        """Test requests carry the configured User-Agent and total timeout."""
        session = FakeHTTPSession()
        session.add_response(URL, 200, b"jpeg-bytes")
        fetcher, _ = _fetcher(session, fetch_timeout=15)

        asyncio.run(fetcher.fetch(URL))

        request = session.requests[0]
        assert request["headers"]["User-Agent"] == "face-indexer-tests"
        assert request["timeout"].total == 15
        assert request["allow_redirects"] is True

    def test_server_error_is_retried(self):
        """Test a 5xx response is retried with linear backoff."""
        session = FakeHTTPSession()
        session.add_response(URL, 503)
        session.add_response(URL, 200, b"jpeg-bytes")
        fetcher, sleep = _fetcher(session)

        assert asyncio.run(fetcher.fetch(URL)) == b"jpeg-bytes"
        assert len(session.requests) == 2
        assert sleep.delays == [2.0]

    def test_gives_up_after_three_attempts(self):
        """Test exhausting retries raises FetchFailedError."""
        session = FakeHTTPSession()
        session.add_response(URL, 500)
        fetcher, sleep = _fetcher(session)

        with pytest.raises(FetchFailedError, match="Could not download"):
            asyncio.run(fetcher.fetch(URL))

        assert len(session.requests) == 3
        assert sleep.delays == [2.0, 4.0]

    def test_not_found_is_not_retried(self):
        """Test a 404 fails on the first attempt."""
        session = FakeHTTPSession()
        session.add_response(URL, 404)
        fetcher, sleep = _fetcher(session)

        with pytest.raises(FetchFailedError):
            asyncio.run(fetcher.fetch(URL))

        assert len(session.requests) == 1
        assert sleep.delays == []

    def test_empty_body_is_a_failure(self):
        """Test an empty 200 response counts as a failed attempt."""
        session = FakeHTTPSession()
        session.add_response(URL, 200, b"")
        fetcher, _ = _fetcher(session)

        with pytest.raises(FetchFailedError, match="Empty response"):
            asyncio.run(fetcher.fetch(URL))
        assert len(session.requests) == 3

    @pytest.mark.parametrize(
        "error",
        [aiohttp.ClientConnectionError("connection refused"), asyncio.TimeoutError()],
    )
    def test_network_errors_are_retried(self, error):
        """Test connection errors and timeouts are retried."""
        session = FakeHTTPSession()
        session.add_error(URL, error)
        session.add_response(URL, 200, b"jpeg-bytes")
        fetcher, sleep = _fetcher(session)

        assert asyncio.run(fetcher.fetch(URL)) == b"jpeg-bytes"
        assert sleep.delays == [2.0]

    def test_injected_session_is_left_open(self):
        """Test closing the fetcher does not close a session it does not own."""
        session = FakeHTTPSession()
        fetcher, _ = _fetcher(session)

        async def use_and_close():
            async with fetcher:
                pass

        asyncio.run(use_and_close())
        assert session.closed is False

    def test_owned_session_is_closed(self):
        """Test the fetcher closes the aiohttp session it created."""

        async def use_and_close():
            async with PhotoFetcher(IndexingConfig()) as fetcher:
                session = fetcher._session
                assert isinstance(session, aiohttp.ClientSession)
            return session

        session = asyncio.run(use_and_close())
        assert session.closed


class TestIsRetryableDownloadError:
    """Tests for is_retryable_download_error."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 410])
    def test_client_errors_are_final(self, status):
        error = aiohttp.ClientResponseError(make_request_info(URL), (), status=status)
        assert not is_retryable_download_error(error)

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
    def test_transient_statuses_are_retried(self, status):
        error = aiohttp.ClientResponseError(make_request_info(URL), (), status=status)
        assert is_retryable_download_error(error)
