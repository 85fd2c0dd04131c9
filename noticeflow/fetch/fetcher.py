"""Page fetcher: Playwright request context with a rotating client identity.

The fetcher has no decision-making authority. It performs one GET and
returns the status and body, or raises ``TransportError`` for conditions
that never produced a response. Classification belongs to the orchestrator.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Protocol

from playwright.async_api import APIRequestContext, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from noticeflow.config.settings import FetchConfig
from noticeflow.errors import TransportError, TransportErrorKind
from noticeflow.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]


@dataclass
class FetchResponse:
    """A response that reached us, whatever its status code."""

    status_code: int
    html: str
    url: str


class PageFetcher(Protocol):
    async def fetch(self, url: str, *, timeout_ms: int, headers: dict[str, str] | None = None) -> FetchResponse: ...


class PlaywrightFetcher:
    """``PageFetcher`` over a Playwright ``APIRequestContext``.

    Contract:
    - A fresh ``User-Agent`` is chosen for every request
    - Policy headers are merged over the base headers
    - Timeouts raise ``TransportError(TIMEOUT)``; other transport failures
      raise ``TransportError(GENERIC)``
    """

    def __init__(self, config: FetchConfig | None = None) -> None:
        self._config = config or FetchConfig()
        self._user_agents = self._config.user_agents or DEFAULT_USER_AGENTS
        self._playwright: Any = None
        self._request: APIRequestContext | None = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._request = await self._playwright.request.new_context(
            ignore_https_errors=self._config.ignore_https_errors,
        )

    async def stop(self) -> None:
        try:
            if self._request:
                await self._request.dispose()
        except PlaywrightError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.FETCHER_CLEANUP_FAILED,
                message=str(exc),
                suppressed=True,
            )
        finally:
            self._request = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None

    def build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = dict(self._config.base_headers)
        headers["User-Agent"] = random.choice(self._user_agents)
        headers.update(extra or {})
        return headers

    async def fetch(self, url: str, *, timeout_ms: int, headers: dict[str, str] | None = None) -> FetchResponse:
        if self._request is None:
            await self.start()
        try:
            response = await self._request.get(
                url,
                headers=self.build_headers(headers),
                timeout=timeout_ms,
                fail_on_status_code=False,
            )
            body = await response.text()
        except PlaywrightTimeoutError as exc:
            raise TransportError(TransportErrorKind.TIMEOUT, f"Timeout after {timeout_ms}ms: {exc}") from exc
        except PlaywrightError as exc:
            message = str(exc)
            if "timeout" in message.lower():
                raise TransportError(TransportErrorKind.TIMEOUT, message) from exc
            raise TransportError(TransportErrorKind.GENERIC, message) from exc
        return FetchResponse(status_code=response.status, html=body, url=response.url)
