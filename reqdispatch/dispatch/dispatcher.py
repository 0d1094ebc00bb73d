"""Dispatcher: entry point tying the dispatch components together.

Main flow for every request:
  1. ``prepare_request``: merge default addressing, attach dispatcher/transport
  2. Admission policy against the execution queue (reject / evict / admit)
  3. Execution queue runs the request against the transport
  4. The finished request is handed to the response queue
  5. Response decoding and the completion callback run there, in order

Usage:
    dispatcher = Dispatcher(host="api.example.com", port=443)

    request = FetchFeed(completion=on_feed)
    await dispatcher.enqueue(request)
    outcome = await request.wait()

    # Authentication collaborator
    auth = BearerTokenAuthenticator(token, refresh=get_token, control=dispatcher)
"""

from __future__ import annotations

import asyncio
import logging

from reqdispatch.core.config import Settings
from reqdispatch.core.metrics import ADMISSION_DECISIONS, EVICTIONS, PAUSED
from reqdispatch.dispatch.admission import evaluate
from reqdispatch.dispatch.auth import Authenticator
from reqdispatch.dispatch.errors import CancelledInFlight, RejectedByPolicy, RequestReuseError
from reqdispatch.dispatch.execution_queue import ExecutionQueue
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.response_queue import ResponseQueue
from reqdispatch.dispatch.retry import RetryPolicy
from reqdispatch.dispatch.transport import HttpTransport, Transport
from reqdispatch.dispatch.types import FlowState, RequestOutcome, RequestState

logger = logging.getLogger(__name__)


class Dispatcher:
    """Owns the execution and response queues for one backend.

    Integrates:
      - ExecutionQueue: bounded, suspendable request execution
      - ResponseQueue: serialized response handling on its own thread
      - Admission policy: per-request de-duplication and eviction
      - Transport: the network exchange (``HttpTransport`` by default)
      - Authenticator: optional, drives pause/resume
    """

    def __init__(
        self,
        scheme: str | None = None,
        host: str | None = None,
        port: int | None = None,
        authenticator: Authenticator | None = None,
        transport: Transport | None = None,
        max_concurrent: int = 6,
        name: str | None = None,
    ):
        """
        Args:
            scheme: Default scheme for requests without their own scheme/host
            host: Default host, same rule
            port: Default port, same rule
            authenticator: Bound to this dispatcher and installed as the first interceptor
            transport: Override the default ``HttpTransport`` with a ``RetryPolicy``
            max_concurrent: Execution queue width
            name: Label for metrics and status; defaults to the host
        """
        self.name = name or host or "default"
        self._scheme = scheme
        self._host = host
        self._port = port

        # Guards admission and reconfiguration
        self._lock = asyncio.Lock()

        self._owns_transport = transport is None
        self.transport: Transport = transport or HttpTransport(interceptors=[RetryPolicy()])
        self.execution_queue = ExecutionQueue(on_finished=self._hand_off, max_concurrent=max_concurrent)
        self.response_queue = ResponseQueue()
        self._closed = False

        self.authenticator: Authenticator | None = None
        if authenticator is not None:
            self.set_authenticator(authenticator)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        authenticator: Authenticator | None = None,
        transport: Transport | None = None,
    ) -> Dispatcher:
        owns_transport = transport is None
        if transport is None:
            transport = HttpTransport(
                interceptors=[
                    RetryPolicy(
                        retry_limit=settings.retry_limit,
                        base_delay=settings.retry_base_delay,
                        max_delay=settings.retry_max_delay,
                    )
                ],
                timeout=settings.request_timeout_seconds,
            )
        dispatcher = cls(
            scheme=settings.default_scheme,
            host=settings.default_host,
            port=settings.default_port,
            authenticator=authenticator,
            transport=transport,
            max_concurrent=settings.max_concurrent_requests,
        )
        dispatcher._owns_transport = owns_transport
        return dispatcher

    # -- configuration ----------------------------------------------------

    @property
    def scheme(self) -> str | None:
        return self._scheme

    @property
    def host(self) -> str | None:
        return self._host

    @property
    def port(self) -> int | None:
        return self._port

    async def configure(
        self,
        scheme: str | None = None,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        """Replace the default addressing. Takes effect for requests enqueued afterwards."""
        async with self._lock:
            self._scheme = scheme
            self._host = host
            self._port = port
        logger.info("Default addressing now scheme=%s host=%s port=%s", scheme, host, port)

    def set_authenticator(self, authenticator: Authenticator) -> None:
        authenticator.bind(self)
        self.authenticator = authenticator
        add_interceptor = getattr(self.transport, "add_interceptor", None)
        if add_interceptor is not None:
            add_interceptor(authenticator, first=True)

    # -- enqueue ----------------------------------------------------------

    async def enqueue(self, request: Request) -> Request:
        """Submit a request.

        Never raises for dispatch outcomes: a rejected or cancelled request
        resolves with a cancelled ``RequestOutcome`` via the response queue.
        """
        if request.state not in (RequestState.PENDING, RequestState.CANCELLED) or request.dispatcher is not None:
            raise RequestReuseError(f"{request!r} was already enqueued")

        async with self._lock:
            if self._closed:
                request.cancel(CancelledInFlight("Dispatcher is closed", reason="closed"))
                logger.warning("%s %s enqueued after close", request.kind, request.request_id)
                # The response thread is gone, so no handlers run
                request.resolve(RequestOutcome.cancellation(request.cancel_error))
                return request

            self.prepare_request(request)

            if request.is_cancelled:
                logger.debug("%r cancelled before admission", request)
                self._deliver_cancelled(request)
                return request

            admission = evaluate(request, self.execution_queue.operations)

            if not admission.admitted:
                request.cancel(RejectedByPolicy(request.kind))
                ADMISSION_DECISIONS.labels(kind=request.kind, decision=admission.decision.value).inc()
                logger.info("Rejected %s %s: same kind already queued", request.kind, request.request_id)
                self._deliver_cancelled(request)
                return request

            for existing in admission.evict:
                if existing.cancel(
                    CancelledInFlight(f"Superseded by {request.kind} {request.request_id}", reason="evicted")
                ):
                    EVICTIONS.labels(kind=existing.kind).inc()
            if admission.evict:
                logger.info(
                    "Evicted %d request(s) in favour of %s %s",
                    len(admission.evict),
                    request.kind,
                    request.request_id,
                )

            self.execution_queue.add(request)
            ADMISSION_DECISIONS.labels(kind=request.kind, decision=admission.decision.value).inc()

        return request

    def prepare_request(self, request: Request) -> None:
        """Runs once per request, before the admission policy."""
        self.add_base_url(request)
        request.dispatcher = self
        request.transport = self.transport

    def add_base_url(self, request: Request) -> None:
        """Copy default scheme/host/port onto requests that have neither scheme nor host."""
        if request.scheme is not None or request.host is not None:
            return
        request.scheme = self._scheme
        request.host = self._host
        request.port = self._port

    # -- cancellation -----------------------------------------------------

    def cancel_all_requests(self) -> int:
        """Cancel queued and running requests; response handling is untouched."""
        return self.execution_queue.cancel_all()

    def cancel_all_operations(self) -> int:
        """Cancel queued and running requests and discard pending response handling."""
        cancelled = self.cancel_all_requests()
        return cancelled + self.response_queue.cancel_all()

    # -- pause / resume (RequestFlowControl) ------------------------------

    def pause_requests(self) -> None:
        if not self.execution_queue.is_suspended:
            logger.info("Pausing outbound requests")
        self.execution_queue.suspend()
        PAUSED.labels(dispatcher=self.name).set(1)

    def resume_requests(self) -> None:
        if self.execution_queue.is_suspended:
            logger.info("Resuming outbound requests")
        self.execution_queue.resume()
        PAUSED.labels(dispatcher=self.name).set(0)

    @property
    def flow_state(self) -> FlowState:
        return FlowState.PAUSED if self.execution_queue.is_suspended else FlowState.RUNNING

    # -- lifecycle --------------------------------------------------------

    async def join(self) -> None:
        """Wait until every admitted request has run and its response was handled."""
        await self.execution_queue.join()
        await self.response_queue.join()

    async def aclose(self) -> None:
        """Cancel everything, drain both queues and release owned resources.

        Requests enqueued afterwards resolve as cancelled with reason "closed".
        """
        async with self._lock:
            if self._closed:
                return
            self._closed = True
        self.cancel_all_operations()
        await self.execution_queue.join()
        await self.response_queue.join()
        self.response_queue.shutdown()
        if self._owns_transport:
            await self.transport.aclose()

    async def __aenter__(self) -> Dispatcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def get_status(self) -> dict:
        """Get dispatcher status."""
        return {
            "name": self.name,
            "closed": self._closed,
            "flow_state": self.flow_state.value,
            "execution": self.execution_queue.get_stats(),
            "pending_responses": len(self.response_queue),
            "defaults": {"scheme": self._scheme, "host": self._host, "port": self._port},
            "authenticator": type(self.authenticator).__name__ if self.authenticator else None,
        }

    # -- internals --------------------------------------------------------

    def _hand_off(self, request: Request, outcome: RequestOutcome) -> None:
        self.response_queue.submit(request, outcome)

    def _deliver_cancelled(self, request: Request) -> None:
        self.response_queue.submit(request, RequestOutcome.cancellation(request.cancel_error))
