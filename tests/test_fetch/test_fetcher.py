"""Tests for the Playwright page fetcher and error page detection."""

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from noticeflow.config.settings import FetchConfig
from noticeflow.errors import TransportError, TransportErrorKind
from noticeflow.fetch.error_page import is_error_page
from noticeflow.fetch.fetcher import PlaywrightFetcher


class _Response:
    status = 503
    url = "https://neco.navy.mil/final"

    async def text(self):
        return "<html></html>"


class _RequestContext:
    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.disposed = False

    async def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return _Response()

    async def dispose(self):
        self.disposed = True


def fetcher_with(context):
    fetcher = PlaywrightFetcher(FetchConfig(user_agents=["agent-1"]))
    fetcher._request = context
    return fetcher


class TestPlaywrightFetcher:
    def test_policy_headers_override_base(self):
        fetcher = PlaywrightFetcher(FetchConfig(user_agents=["agent-1"]))
        headers = fetcher.build_headers({"Accept-Language": "de-DE"})
        assert headers["User-Agent"] == "agent-1"
        assert headers["Accept-Language"] == "de-DE"
        assert "Accept" in headers

    @pytest.mark.asyncio
    async def test_any_status_is_returned(self):
        context = _RequestContext()
        response = await fetcher_with(context).fetch("https://neco.navy.mil/x", timeout_ms=1500)

        assert (response.status_code, response.url) == (503, "https://neco.navy.mil/final")
        url, kwargs = context.calls[0]
        assert url == "https://neco.navy.mil/x"
        assert kwargs["timeout"] == 1500
        assert kwargs["fail_on_status_code"] is False

    @pytest.mark.asyncio
    async def test_timeout_translated(self):
        fetcher = fetcher_with(_RequestContext(PlaywrightTimeoutError("Timeout 1500ms exceeded")))
        with pytest.raises(TransportError) as excinfo:
            await fetcher.fetch("https://neco.navy.mil/x", timeout_ms=1500)
        assert excinfo.value.kind == TransportErrorKind.TIMEOUT
        assert excinfo.value.retryable

    @pytest.mark.asyncio
    async def test_other_failures_are_generic(self):
        fetcher = fetcher_with(_RequestContext(PlaywrightError("net::ERR_CONNECTION_RESET")))
        with pytest.raises(TransportError) as excinfo:
            await fetcher.fetch("https://neco.navy.mil/x", timeout_ms=1500)
        assert excinfo.value.kind == TransportErrorKind.GENERIC

    @pytest.mark.asyncio
    async def test_stop_disposes_context(self):
        context = _RequestContext()
        fetcher = fetcher_with(context)
        await fetcher.stop()
        assert context.disposed


class TestErrorPageDetection:
    def test_title_marker(self, error_page):
        assert is_error_page(error_page)

    def test_body_marker_either_spelling(self):
        assert is_error_page("<html><body>Sorry. An Error Has Occurred</body></html>")

    def test_normal_page(self, two_item_page):
        assert not is_error_page(two_item_page)
