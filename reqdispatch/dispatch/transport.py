"""Transport: the network exchange behind the dispatcher.

The dispatcher only needs something matching ``Transport``: given a
fully-addressed request, produce an ``httpx.Response`` or raise
``TransportFailure``, and stop when its task is cancelled.

``HttpTransport`` is the default implementation on ``httpx.AsyncClient``.
Interceptors plug into it to rewrite outgoing requests (``adapt``) and to
decide on retries after a failed attempt (``retry``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from reqdispatch.dispatch.errors import TransportFailure

if TYPE_CHECKING:
    from reqdispatch.dispatch.request import Request

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """What the execution queue needs from a transport."""

    async def send(self, request: Request) -> httpx.Response: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class Interceptor(Protocol):
    """Hook into every attempt the HTTP transport makes."""

    async def adapt(self, request: Request, http_request: httpx.Request) -> httpx.Request: ...

    async def retry(
        self,
        request: Request,
        http_request: httpx.Request,
        response: httpx.Response | None,
        error: Exception,
        attempt: int,
    ) -> float | None: ...


class HttpTransport:
    """httpx-backed transport with pluggable interceptors.

    Usage:
        transport = HttpTransport(interceptors=[RetryPolicy()], timeout=30.0)
        response = await transport.send(request)
        await transport.aclose()
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        interceptors: Iterable[Interceptor] = (),
        timeout: float = 60.0,
        validate: bool = True,
    ):
        """
        Args:
            client: Shared client; when omitted the transport creates and owns one
            interceptors: Applied in order for ``adapt``; first non-None ``retry`` wins
            timeout: Per-attempt timeout for a client created here
            validate: Treat 4xx/5xx responses as failures
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.interceptors: list[Interceptor] = list(interceptors)
        self.validate = validate

    def add_interceptor(self, interceptor: Interceptor, first: bool = False) -> None:
        if first:
            self.interceptors.insert(0, interceptor)
        else:
            self.interceptors.append(interceptor)

    def build_request(self, request: Request) -> httpx.Request:
        return self.client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            json=request.json,
        )

    async def send(self, request: Request) -> httpx.Response:
        attempt = 0

        while True:
            # Cancellation checkpoint before every attempt
            if request.is_cancelled:
                raise asyncio.CancelledError()

            http_request = self.build_request(request)
            for interceptor in self.interceptors:
                http_request = await interceptor.adapt(request, http_request)

            response: httpx.Response | None = None
            try:
                response = await self.client.send(http_request)
                if self.validate:
                    response.raise_for_status()
                return response
            except httpx.HTTPStatusError as exc:
                error: Exception = exc
            except httpx.HTTPError as exc:
                error = exc
                response = None

            delay = await self._retry_delay(request, http_request, response, error, attempt)
            if delay is None:
                raise self._failure(request, response, error) from error

            attempt += 1
            logger.debug("Attempt %d for %s %s in %.2fs", attempt + 1, request.kind, request.request_id, delay)
            await asyncio.sleep(delay)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _retry_delay(
        self,
        request: Request,
        http_request: httpx.Request,
        response: httpx.Response | None,
        error: Exception,
        attempt: int,
    ) -> float | None:
        for interceptor in self.interceptors:
            delay = await interceptor.retry(request, http_request, response, error, attempt)
            if delay is not None:
                return delay
        return None

    @staticmethod
    def _failure(request: Request, response: httpx.Response | None, error: Exception) -> TransportFailure:
        if response is not None:
            return TransportFailure(
                f"{request.kind} got HTTP {response.status_code}",
                status_code=response.status_code,
                response=response,
            )
        if isinstance(error, httpx.TimeoutException):
            return TransportFailure(f"{request.kind} timed out: {error}")
        return TransportFailure(f"{request.kind} failed: {error}")
