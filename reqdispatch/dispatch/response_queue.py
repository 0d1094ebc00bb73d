"""Response-Processing Queue: serialized handling of finished requests.

Transport results arrive from whichever task ran the request. They are
funnelled through one dedicated worker thread so response decoding and
completion callbacks:
  - never run concurrently with each other
  - run strictly in the order they were handed over
  - never block the event loop or the caller's thread

This queue is independent of the execution queue: pausing execution does
not pause response handling, and cancelling requests does not discard
work already handed over here. Only ``cancel_all`` discards pending work.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from reqdispatch.core.metrics import REQUEST_OUTCOMES
from reqdispatch.dispatch.errors import CancelledInFlight
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.types import RequestOutcome

logger = logging.getLogger(__name__)


class ResponseQueue:
    """Single-worker FIFO queue for response handling."""

    def __init__(self, thread_name: str = "response-processor"):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name)
        self._pending: dict[Future, Request] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def submit(self, request: Request, outcome: RequestOutcome) -> Future:
        """Hand a finished request over for response handling."""
        with self._lock:
            future = self._executor.submit(self._process, request, outcome)
            self._pending[future] = request
        future.add_done_callback(self._forget)
        return future

    def cancel_all(self) -> int:
        """Discard every handler that has not started yet. Returns how many were dropped."""
        with self._lock:
            futures = list(self._pending)
        # Done callbacks fire synchronously from cancel(), so the lock must be free
        discarded = sum(1 for future in futures if future.cancel())
        if discarded:
            logger.info("Discarded %d pending response handlers", discarded)
        return discarded

    async def join(self) -> None:
        """Wait until every submitted handler has run or been discarded."""
        while True:
            with self._lock:
                futures = list(self._pending)
            if not futures:
                return
            await asyncio.gather(*(asyncio.wrap_future(f) for f in futures), return_exceptions=True)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _forget(self, future: Future) -> None:
        with self._lock:
            request = self._pending.pop(future, None)
        if request is not None and future.cancelled():
            outcome = RequestOutcome.cancellation(
                CancelledInFlight("Response processing discarded", reason="discarded")
            )
            REQUEST_OUTCOMES.labels(kind=request.kind, status=outcome.status.value).inc()
            request.resolve(outcome)

    def _process(self, request: Request, outcome: RequestOutcome) -> RequestOutcome:
        if outcome.ok:
            try:
                outcome.data = request.process_response(outcome.response)
            except Exception as exc:
                logger.exception("Decoding %s %s failed", request.kind, request.request_id)
                outcome = RequestOutcome.failure(exc, response=outcome.response)

        if request.completion is not None:
            try:
                request.completion(request, outcome)
            except Exception:
                logger.exception("Completion callback for %s %s raised", request.kind, request.request_id)

        REQUEST_OUTCOMES.labels(kind=request.kind, status=outcome.status.value).inc()
        request.resolve(outcome)
        logger.debug("Processed %r: %s", request, outcome.to_dict())
        return outcome
