"""Tests for the bounded, suspendable execution queue."""

from __future__ import annotations

import asyncio

import pytest

from reqdispatch.dispatch.errors import CancelledInFlight
from reqdispatch.dispatch.execution_queue import ExecutionQueue
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.types import OutcomeStatus, RequestState


def _prepared(transport) -> Request:
    request = Request("/work", host="api.example.com")
    request.transport = transport
    return request


class TestExecutionQueue:
    @pytest.fixture
    def finished(self):
        return []

    @pytest.fixture
    def queue(self, finished):
        return ExecutionQueue(on_finished=lambda r, o: finished.append((r, o)), max_concurrent=2)

    def test_rejects_invalid_width(self):
        with pytest.raises(ValueError):
            ExecutionQueue(on_finished=lambda r, o: None, max_concurrent=0)

    @pytest.mark.asyncio
    async def test_add_requires_transport(self, queue):
        with pytest.raises(ValueError, match="no transport"):
            queue.add(Request("/x"))

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, queue, transport, finished, eventually):
        requests = [_prepared(transport) for _ in range(5)]
        for request in requests:
            queue.add(request)

        await eventually(lambda: len(transport.started) == 2)
        await asyncio.sleep(0.02)
        assert len(transport.started) == 2
        assert queue.running_count == 2
        assert queue.get_stats()["queued"] == 3

        for request in requests:
            transport.release(request)
        await queue.join()

        assert transport.max_in_flight == 2
        assert len(finished) == 5
        assert all(outcome.ok for _, outcome in finished)
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_suspend_holds_new_starts(self, queue, transport, eventually):
        queue.suspend()
        assert queue.is_suspended
        request = _prepared(transport)
        queue.add(request)
        await asyncio.sleep(0.02)
        assert request.state == RequestState.QUEUED
        assert transport.started == []

        queue.resume()
        await eventually(lambda: request.state == RequestState.RUNNING)
        transport.release(request)
        await queue.join()

    @pytest.mark.asyncio
    async def test_suspend_leaves_running_alone(self, queue, transport, finished, eventually):
        request = _prepared(transport)
        queue.add(request)
        await eventually(lambda: request.state == RequestState.RUNNING)

        queue.suspend()
        transport.release(request)
        await queue.join()
        assert finished[0][1].ok

    @pytest.mark.asyncio
    async def test_cancel_all(self, queue, transport, finished, eventually):
        requests = [_prepared(transport) for _ in range(3)]
        for request in requests:
            queue.add(request)
        await eventually(lambda: len(transport.started) == 2)

        assert queue.cancel_all() == 3
        await queue.join()

        assert len(finished) == 3
        for _, outcome in finished:
            assert outcome.status == OutcomeStatus.CANCELLED
            assert isinstance(outcome.error, CancelledInFlight)
        assert len(transport.aborted) == 2
        assert not transport.was_started(requests[2])

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread(self, queue, transport, finished, eventually):
        request = _prepared(transport)
        queue.add(request)
        await eventually(lambda: request.state == RequestState.RUNNING)

        await asyncio.to_thread(request.cancel)
        await queue.join()
        assert finished[0][1].cancelled
        assert transport.was_aborted(request)

    @pytest.mark.asyncio
    async def test_operations_snapshot(self, queue, transport):
        queue.suspend()
        a, b = _prepared(transport), _prepared(transport)
        queue.add(a)
        queue.add(b)
        snapshot = queue.operations
        assert [op.request_id for op in snapshot] == [a.request_id, b.request_id]
        assert a in queue
        queue.cancel_all()
        assert [op.request_id for op in snapshot] == [a.request_id, b.request_id]
        await queue.join()
        assert queue.operations == []
