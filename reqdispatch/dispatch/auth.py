"""Authenticator: pauses and resumes outbound traffic.

The dispatcher implements ``RequestFlowControl``; an authenticator is
handed that capability and decides on its own when traffic should stop,
typically while refreshing an expired credential:

    async with authenticator.refreshing():
        token = await fetch_new_token()

The dispatcher never inspects credentials itself. Authenticators are also
transport interceptors, so they can stamp credentials on every attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

if TYPE_CHECKING:
    from reqdispatch.dispatch.request import Request

logger = logging.getLogger(__name__)


@runtime_checkable
class RequestFlowControl(Protocol):
    """Receiving side of pause/resume, implemented by the dispatcher."""

    def pause_requests(self) -> None: ...

    def resume_requests(self) -> None: ...


class Authenticator:
    """Base authenticator holding the flow-control capability."""

    def __init__(self, control: RequestFlowControl | None = None):
        self._control = control

    def bind(self, control: RequestFlowControl) -> None:
        """Attach the capability when the dispatcher is built after the authenticator."""
        self._control = control

    @property
    def is_bound(self) -> bool:
        return self._control is not None

    def pause(self) -> None:
        if self._control is None:
            raise RuntimeError("Authenticator is not bound to a dispatcher")
        self._control.pause_requests()

    def resume(self) -> None:
        if self._control is None:
            raise RuntimeError("Authenticator is not bound to a dispatcher")
        self._control.resume_requests()

    @asynccontextmanager
    async def refreshing(self) -> AsyncIterator[None]:
        """Hold new requests back for the duration of the block."""
        self.pause()
        try:
            yield
        finally:
            self.resume()

    # -- interceptor hooks ------------------------------------------------

    async def adapt(self, request: Request, http_request: httpx.Request) -> httpx.Request:
        return http_request

    async def retry(
        self,
        request: Request,
        http_request: httpx.Request,
        response: httpx.Response | None,
        error: Exception,
        attempt: int,
    ) -> float | None:
        return None


class BearerTokenAuthenticator(Authenticator):
    """Adds ``Authorization: Bearer <token>`` and refreshes it on 401.

    The refresh runs with traffic paused; requests already in flight are
    left alone. Concurrent 401s trigger a single refresh.
    """

    def __init__(
        self,
        token: str,
        refresh: Callable[[], Awaitable[str]] | None = None,
        control: RequestFlowControl | None = None,
    ):
        super().__init__(control)
        self.token = token
        self._refresh = refresh
        self._refresh_lock = asyncio.Lock()

    async def adapt(self, request: Request, http_request: httpx.Request) -> httpx.Request:
        http_request.headers["Authorization"] = f"Bearer {self.token}"
        return http_request

    async def retry(
        self,
        request: Request,
        http_request: httpx.Request,
        response: httpx.Response | None,
        error: Exception,
        attempt: int,
    ) -> float | None:
        if response is None or response.status_code != 401 or self._refresh is None:
            return None

        sent_token = http_request.headers.get("Authorization", "").removeprefix("Bearer ")
        async with self._refresh_lock:
            if sent_token != self.token:
                # Someone refreshed while this request was in flight
                return 0.0
            if attempt > 0:
                return None
            await self.refresh_token()
        return 0.0

    async def refresh_token(self) -> None:
        if self._refresh is None:
            raise RuntimeError("No refresh callable configured")
        async with self.refreshing():
            logger.info("Refreshing bearer token")
            self.token = await self._refresh()
