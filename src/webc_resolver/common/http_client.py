"""Transport capability handed to resolvers on every call.

Resolvers never own a transport; callers pass an ``HttpClient`` into
``resolve_package``. Two implementations are provided: an aiohttp session
for async callers and a requests session driven from a worker thread for
environments that already configure requests (proxies, CA bundles).
"""
from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp
import requests

from ..constants import Constants
from .logging_utils import Timer, extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The request could not be completed (DNS, connect, timeout, TLS)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


@dataclass(frozen=True)
class HttpRequest:
    """A single outbound request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass(frozen=True)
class HttpResponse:
    """A fully buffered response."""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self.status < 300

    def is_not_found(self) -> bool:
        """True for 404 and 410."""
        return self.status in (404, 410)


class HttpClient(abc.ABC):
    """Abstract async HTTP client.

    Non-2xx responses are returned, not raised; only failures to obtain a
    response at all raise ``TransportError``.
    """

    @abc.abstractmethod
    async def request(self, request: HttpRequest) -> HttpResponse:
        """Perform ``request`` and buffer the whole response."""

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
        """Shorthand for a GET request."""
        return await self.request(HttpRequest(url=url, headers=dict(headers or {})))

    def _log_request(self, request: HttpRequest) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action=request.method,
                    target=safe_url(request.url),
                ),
            )

    def _log_response(self, request: HttpRequest, response: HttpResponse, timer: Timer) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action=request.method,
                    outcome="success" if response.ok else "http_error",
                    status_code=response.status,
                    duration_ms=timer.duration_ms(),
                    target=safe_url(request.url),
                ),
            )


def _default_headers(headers: Dict[str, str], user_agent: str) -> Dict[str, str]:
    merged = dict(headers)
    merged.setdefault("User-Agent", user_agent)
    merged.setdefault("Accept", "*/*")
    return merged


class AiohttpClient(HttpClient):
    """HttpClient backed by a lazily created ``aiohttp.ClientSession``."""

    def __init__(
        self,
        timeout: int = Constants.REQUEST_TIMEOUT,
        user_agent: str = Constants.USER_AGENT,
    ):
        """Initialize the client.

        Args:
            timeout: Total request timeout in seconds.
            user_agent: Default User-Agent header.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def request(self, request: HttpRequest) -> HttpResponse:
        if self._session is None:
            await self.start()
        assert self._session is not None

        self._log_request(request)
        with Timer() as timer:
            try:
                async with self._session.request(
                    request.method,
                    request.url,
                    headers=_default_headers(request.headers, self._user_agent),
                    data=request.body,
                ) as resp:
                    body = await resp.read()
                    response = HttpResponse(
                        status=resp.status,
                        headers={k: v for k, v in resp.headers.items()},
                        body=body,
                    )
            except asyncio.TimeoutError as exc:
                logger.error("Request to %s timed out", safe_url(request.url))
                raise TransportError(
                    f"Request timed out after {self._timeout.total} seconds", url=request.url
                ) from exc
            except aiohttp.ClientError as exc:
                logger.error("Connection error for %s: %s", safe_url(request.url), exc)
                raise TransportError(str(exc) or exc.__class__.__name__, url=request.url) from exc

        self._log_response(request, response, timer)
        return response

    async def __aenter__(self) -> "AiohttpClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()


class RequestsHttpClient(HttpClient):
    """HttpClient running a ``requests.Session`` in a worker thread."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = Constants.REQUEST_TIMEOUT,
        user_agent: str = Constants.USER_AGENT,
    ):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._user_agent = user_agent

    def _send(self, request: HttpRequest) -> HttpResponse:
        res = self._session.request(
            request.method,
            request.url,
            headers=_default_headers(request.headers, self._user_agent),
            data=request.body,
            timeout=self._timeout,
        )
        return HttpResponse(status=res.status_code, headers=dict(res.headers), body=res.content)

    async def request(self, request: HttpRequest) -> HttpResponse:
        self._log_request(request)
        with Timer() as timer:
            try:
                response = await asyncio.to_thread(self._send, request)
            except requests.Timeout as exc:
                logger.error("Request to %s timed out", safe_url(request.url))
                raise TransportError(
                    f"Request timed out after {self._timeout} seconds", url=request.url
                ) from exc
            except requests.RequestException as exc:  # includes ConnectionError
                logger.error("Connection error for %s: %s", safe_url(request.url), exc)
                raise TransportError(str(exc), url=request.url) from exc

        self._log_response(request, response, timer)
        return response

    def close(self) -> None:
        """Close the underlying session."""
        self._session.close()
