import asyncio
from collections.abc import Callable

import httpx
import pytest

from reqdispatch.dispatch.dispatcher import Dispatcher


class FakeTransport:
    """Transport whose exchanges stay in flight until the test releases them."""

    def __init__(self, auto_release: bool = False):
        self.auto_release = auto_release
        self.started: list = []
        self.aborted: list = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._gates: dict[str, asyncio.Event] = {}
        self._failures: dict[str, Exception] = {}

    def _gate(self, request) -> asyncio.Event:
        return self._gates.setdefault(request.request_id, asyncio.Event())

    def release(self, request, error: Exception | None = None) -> None:
        if error is not None:
            self._failures[request.request_id] = error
        self._gate(request).set()

    def was_started(self, request) -> bool:
        return any(r is request for r in self.started)

    def was_aborted(self, request) -> bool:
        return any(r is request for r in self.aborted)

    async def send(self, request) -> httpx.Response:
        self.started.append(request)
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if not self.auto_release:
                await self._gate(request).wait()
            else:
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            self.aborted.append(request)
            raise
        finally:
            self._in_flight -= 1

        if request.request_id in self._failures:
            raise self._failures[request.request_id]
        return httpx.Response(
            200,
            json={"request_id": request.request_id, "kind": request.kind},
            request=httpx.Request(request.method, request.url),
        )

    async def aclose(self) -> None:
        pass


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
async def dispatcher(transport):
    d = Dispatcher(scheme="https", host="api.example.com", port=443, transport=transport, max_concurrent=4)
    yield d
    await d.aclose()


@pytest.fixture
def eventually() -> Callable:
    """Poll a predicate on the event loop until it holds."""

    async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.001)

    return _eventually
