"""Execution Queue: bounded-concurrency runner for admitted requests.

Each admitted request gets its own task; a semaphore bounds how many are
talking to the transport at once and an event gates new starts while the
queue is suspended. Requests already running when the queue is suspended
carry on to completion.

Cancellation is cooperative:
  - a request cancelled while waiting for a slot (or a resume) never runs
  - a request cancelled while running has its task cancelled, which aborts
    the awaited transport call, and it never reports success
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from reqdispatch.dispatch.errors import CancelledInFlight, TransportFailure
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.types import RequestOutcome

logger = logging.getLogger(__name__)

FinishedCallback = Callable[[Request, RequestOutcome], None]


class ExecutionQueue:
    """Runs requests against their transport with bounded concurrency.

    Usage:
        queue = ExecutionQueue(on_finished=handoff, max_concurrent=4)
        queue.add(request)        # request.transport must be set
        queue.suspend()           # no new starts
        queue.resume()
        queue.cancel_all()
        await queue.join()
    """

    def __init__(self, on_finished: FinishedCallback, max_concurrent: int = 6):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._on_finished = on_finished
        self._tasks: dict[Request, asyncio.Task] = {}
        self._slots = asyncio.Semaphore(max_concurrent)
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._running = 0
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- contents ---------------------------------------------------------

    @property
    def operations(self) -> list[Request]:
        """Snapshot of every queued or running request, in admission order."""
        return list(self._tasks)

    @property
    def running_count(self) -> int:
        return self._running

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, request: Request) -> bool:
        return request in self._tasks

    # -- control ----------------------------------------------------------

    def add(self, request: Request) -> None:
        """Admit a request. It starts once a slot is free and the queue is not suspended."""
        if request.transport is None:
            raise ValueError(f"{request!r} has no transport; prepare it before adding")
        if not request.mark_queued():
            raise ValueError(f"{request!r} is not pending")

        self._loop = asyncio.get_running_loop()
        task = self._loop.create_task(self._run(request), name=f"request-{request.request_id}")
        self._tasks[request] = task
        request.add_cancel_hook(self._abort)
        logger.debug("Queued %r (%d in queue)", request, len(self._tasks))

    def cancel_all(self) -> int:
        """Cancel every queued or running request. Returns how many were cancelled."""
        cancelled = 0
        for request in self.operations:
            if request.cancel(CancelledInFlight("All requests cancelled", reason="cancel_all")):
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d queued/running requests", cancelled)
        return cancelled

    def suspend(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    @property
    def is_suspended(self) -> bool:
        return not self._resumed.is_set()

    async def join(self) -> None:
        """Wait until every admitted request has left the queue."""
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    def get_stats(self) -> dict:
        return {
            "queued": len(self._tasks) - self._running,
            "running": self._running,
            "max_concurrent": self.max_concurrent,
            "suspended": self.is_suspended,
        }

    # -- internals --------------------------------------------------------

    def _abort(self, request: Request) -> None:
        task = self._tasks.get(request)
        if task is not None and not task.done() and self._loop is not None:
            # cancel() may be called from any thread
            self._loop.call_soon_threadsafe(task.cancel)

    async def _run(self, request: Request) -> None:
        try:
            async with self._slots:
                # A resume followed at once by a pause still wakes the waiter
                while not self._resumed.is_set():
                    await self._resumed.wait()
                if not request.mark_running():
                    outcome = RequestOutcome.cancellation(request.cancel_error)
                else:
                    self._running += 1
                    try:
                        outcome = await self._execute(request)
                    finally:
                        self._running -= 1
        except asyncio.CancelledError:
            if not request.is_cancelled:
                raise
            outcome = RequestOutcome.cancellation(request.cancel_error)
        finally:
            self._tasks.pop(request, None)

        self._on_finished(request, outcome)

    async def _execute(self, request: Request) -> RequestOutcome:
        logger.debug("Starting %r", request)
        try:
            response = await request.transport.send(request)
        except TransportFailure as exc:
            if not request.mark_processing():
                return RequestOutcome.cancellation(request.cancel_error)
            logger.warning("%s %s failed: %s", request.kind, request.request_id, exc)
            return RequestOutcome.failure(exc, response=exc.response)
        except Exception as exc:
            if not request.mark_processing():
                return RequestOutcome.cancellation(request.cancel_error)
            logger.exception("Transport raised unexpectedly for %r", request)
            failure = TransportFailure(str(exc) or type(exc).__name__)
            failure.__cause__ = exc
            return RequestOutcome.failure(failure)

        if not request.mark_processing():
            return RequestOutcome.cancellation(request.cancel_error)
        return RequestOutcome.success(response)
