"""Request: one outbound call and its lifecycle.

A request carries:
  - a ``kind`` tag used for same-kind admission checks (defaults to the
    subclass name, never compared by runtime type identity)
  - structural equality used by ``CANCEL_EXISTING_EQUAL``
  - optional scheme/host/port overrides
  - a cooperative cancellation state
  - the dispatcher/transport back-references, set at admission

Subclass it to declare a request variant:

    class FetchFeed(Request):
        method = "GET"
        path = "/v1/feed"
        queuing_behaviour = QueuingBehaviour.CANCEL_EXISTING_OF_SAME_KIND

        def process_response(self, response):
            return [Item(**raw) for raw in response.json()["items"]]
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from reqdispatch.dispatch.errors import CancelledInFlight, DispatchError
from reqdispatch.dispatch.types import QueuingBehaviour, RequestOutcome, RequestState

if TYPE_CHECKING:
    from reqdispatch.dispatch.dispatcher import Dispatcher
    from reqdispatch.dispatch.transport import Transport

logger = logging.getLogger(__name__)

Completion = Callable[["Request", RequestOutcome], None]
CancelHook = Callable[["Request"], None]


class Request:
    """Base class for all dispatchable requests."""

    kind: ClassVar[str] = "Request"
    method: str = "GET"
    path: str = "/"
    queuing_behaviour: QueuingBehaviour = QueuingBehaviour.PLAIN

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "kind" not in cls.__dict__:
            cls.kind = cls.__name__

    def __init__(
        self,
        path: str | None = None,
        *,
        method: str | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
        scheme: str | None = None,
        host: str | None = None,
        port: int | None = None,
        queuing_behaviour: QueuingBehaviour | None = None,
        completion: Completion | None = None,
    ):
        self.request_id = uuid.uuid4().hex[:16]
        if path is not None:
            self.path = path
        if method is not None:
            self.method = method
        if queuing_behaviour is not None:
            self.queuing_behaviour = queuing_behaviour
        self.params = dict(params or {})
        self.headers = dict(headers or {})
        self.json = json
        self.scheme = scheme
        self.host = host
        self.port = port
        self.completion = completion

        # Assigned by the dispatcher at admission
        self.dispatcher: Dispatcher | None = None
        self.transport: Transport | None = None

        self._state = RequestState.PENDING
        self._cancel_error: DispatchError | None = None
        self._cancel_hooks: list[CancelHook] = []
        self._outcome: RequestOutcome | None = None
        self._waiter: asyncio.Future | None = None
        self._waiter_loop: asyncio.AbstractEventLoop | None = None
        # State is read and written from the event loop and the response thread
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<{self.kind} {self.method} {self.path} id={self.request_id} state={self._state.value}>"

    # -- identity ---------------------------------------------------------

    def _identity(self) -> tuple:
        return (
            self.kind,
            self.method.upper(),
            self.scheme,
            self.host,
            self.port,
            self.path,
            httpx.QueryParams(self.params),
            httpx.Headers(self.headers),
            self.json,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Request):
            return NotImplemented
        return self._identity() == other._identity()

    # Requests are tracked in sets and dicts by identity, not by value
    __hash__ = object.__hash__

    def is_same_kind(self, other: Request) -> bool:
        return self.kind == other.kind

    # -- addressing -------------------------------------------------------

    @property
    def url(self) -> httpx.URL:
        """Fully-addressed URL, available once scheme and host are known."""
        if not self.host:
            raise ValueError(f"{self.kind} has no host; set one or configure a dispatcher default")
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return httpx.URL(
            scheme=self.scheme or "https",
            host=self.host,
            port=self.port,
            path=path,
            params=self.params,
        )

    # -- lifecycle --------------------------------------------------------

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def is_cancelled(self) -> bool:
        return self._state == RequestState.CANCELLED

    @property
    def cancel_error(self) -> DispatchError:
        return self._cancel_error or CancelledInFlight()

    @property
    def outcome(self) -> RequestOutcome | None:
        return self._outcome

    def cancel(self, error: DispatchError | None = None) -> bool:
        """Cancel the request cooperatively.

        Returns False when the request already left the execution queue
        (its outcome is being processed or is final) or was already cancelled.
        """
        with self._lock:
            if self._state not in (RequestState.PENDING, RequestState.QUEUED, RequestState.RUNNING):
                return False
            self._state = RequestState.CANCELLED
            self._cancel_error = error or CancelledInFlight()
            hooks = list(self._cancel_hooks)

        logger.debug("Cancelled %s: %s", self, self._cancel_error)
        for hook in hooks:
            hook(self)
        return True

    def add_cancel_hook(self, hook: CancelHook) -> None:
        """Register a callback run once if the request gets cancelled."""
        with self._lock:
            if self._state != RequestState.CANCELLED:
                self._cancel_hooks.append(hook)
                return
        hook(self)

    def _transition(self, expected: tuple[RequestState, ...], new: RequestState) -> bool:
        with self._lock:
            if self._state not in expected:
                return False
            self._state = new
            return True

    def mark_queued(self) -> bool:
        return self._transition((RequestState.PENDING,), RequestState.QUEUED)

    def mark_running(self) -> bool:
        return self._transition((RequestState.QUEUED,), RequestState.RUNNING)

    def mark_processing(self) -> bool:
        """Leave the execution queue. Fails if a cancel got there first."""
        return self._transition((RequestState.RUNNING,), RequestState.PROCESSING)

    # -- response handling ------------------------------------------------

    def process_response(self, response: httpx.Response) -> Any:
        """Decode a successful response. Runs on the response-processing thread."""
        content_type = response.headers.get("content-type", "")
        if "json" in content_type and response.content:
            return response.json()
        return response.content

    def resolve(self, outcome: RequestOutcome) -> None:
        """Record the final outcome and wake anyone awaiting ``wait()``."""
        with self._lock:
            if self._outcome is not None:
                return
            self._outcome = outcome
            if not self._state.is_terminal:
                self._state = RequestState.SUCCEEDED if outcome.ok else (
                    RequestState.CANCELLED if outcome.cancelled else RequestState.FAILED
                )
            waiter, loop = self._waiter, self._waiter_loop

        if waiter is not None and loop is not None:
            loop.call_soon_threadsafe(_set_waiter, waiter, outcome)

    async def wait(self) -> RequestOutcome:
        """Await the final outcome of this request."""
        with self._lock:
            if self._outcome is not None:
                return self._outcome
            if self._waiter is None:
                self._waiter_loop = asyncio.get_running_loop()
                self._waiter = self._waiter_loop.create_future()
            waiter = self._waiter
        return await asyncio.shield(waiter)


def _set_waiter(waiter: asyncio.Future, outcome: RequestOutcome) -> None:
    if not waiter.done():
        waiter.set_result(outcome)
