"""Tests for the authenticator pause/resume capability and bearer token handling."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from reqdispatch.dispatch.auth import Authenticator, BearerTokenAuthenticator, RequestFlowControl
from reqdispatch.dispatch.dispatcher import Dispatcher
from reqdispatch.dispatch.request import Request
from reqdispatch.dispatch.transport import HttpTransport
from reqdispatch.dispatch.types import FlowState, RequestState


class Ping(Request):
    path = "/ping"


def _http(token: str = "old") -> httpx.Request:
    return httpx.Request("GET", "https://api.example.com/ping", headers={"Authorization": f"Bearer {token}"})


class TestAuthenticator:
    def test_unbound_pause_raises(self):
        with pytest.raises(RuntimeError, match="not bound"):
            Authenticator().pause()

    def test_pause_resume_forwarded(self):
        control = MagicMock(spec=RequestFlowControl)
        auth = Authenticator(control)
        auth.pause()
        auth.resume()
        control.pause_requests.assert_called_once_with()
        control.resume_requests.assert_called_once_with()

    def test_dispatcher_is_flow_control(self):
        assert isinstance(Dispatcher(transport=MagicMock()), RequestFlowControl)

    @pytest.mark.asyncio
    async def test_bound_by_dispatcher(self, transport):
        auth = Authenticator()
        dispatcher = Dispatcher(host="api.example.com", authenticator=auth, transport=transport)
        assert auth.is_bound
        assert dispatcher.authenticator is auth

        auth.pause()
        assert dispatcher.flow_state == FlowState.PAUSED
        auth.pause()
        assert dispatcher.flow_state == FlowState.PAUSED
        auth.resume()
        assert dispatcher.flow_state == FlowState.RUNNING
        await dispatcher.aclose()

    @pytest.mark.asyncio
    async def test_refreshing_holds_new_requests(self, dispatcher, transport, eventually):
        auth = Authenticator(dispatcher)
        running = await dispatcher.enqueue(Ping())
        await eventually(lambda: running.state == RequestState.RUNNING)

        async with auth.refreshing():
            held = await dispatcher.enqueue(Ping())
            transport.release(running)
            assert (await running.wait()).ok
            await asyncio.sleep(0.02)
            assert held.state == RequestState.QUEUED

        assert dispatcher.flow_state == FlowState.RUNNING
        await eventually(lambda: held.state == RequestState.RUNNING)
        transport.release(held)
        assert (await held.wait()).ok

    @pytest.mark.asyncio
    async def test_refreshing_resumes_on_error(self, dispatcher):
        auth = Authenticator(dispatcher)
        with pytest.raises(ValueError):
            async with auth.refreshing():
                assert dispatcher.flow_state == FlowState.PAUSED
                raise ValueError("refresh failed")
        assert dispatcher.flow_state == FlowState.RUNNING

    @pytest.mark.asyncio
    async def test_base_hooks_are_passthrough(self):
        auth = Authenticator()
        http_request = _http()
        assert await auth.adapt(Ping(), http_request) is http_request
        assert await auth.retry(Ping(), http_request, httpx.Response(401), Exception(), 0) is None


class TestBearerTokenAuthenticator:
    @pytest.mark.asyncio
    async def test_adapt_sets_header(self):
        auth = BearerTokenAuthenticator("abc")
        http_request = await auth.adapt(Ping(), httpx.Request("GET", "https://api.example.com/ping"))
        assert http_request.headers["Authorization"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_no_refresh_without_callable(self):
        auth = BearerTokenAuthenticator("old", control=MagicMock())
        assert await auth.retry(Ping(), _http(), httpx.Response(401), Exception(), 0) is None

    @pytest.mark.asyncio
    async def test_ignores_other_statuses(self):
        refresh = AsyncMock(return_value="new")
        auth = BearerTokenAuthenticator("old", refresh=refresh, control=MagicMock())
        assert await auth.retry(Ping(), _http(), httpx.Response(500), Exception(), 0) is None
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_on_401_pauses_traffic(self):
        control = MagicMock(spec=RequestFlowControl)
        refresh = AsyncMock(return_value="new")
        auth = BearerTokenAuthenticator("old", refresh=refresh, control=control)

        delay = await auth.retry(Ping(), _http("old"), httpx.Response(401), Exception(), 0)

        assert delay == 0.0
        assert auth.token == "new"
        refresh.assert_awaited_once()
        control.pause_requests.assert_called_once_with()
        control.resume_requests.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_stale_token_retried_without_refresh(self):
        refresh = AsyncMock(return_value="newer")
        auth = BearerTokenAuthenticator("new", refresh=refresh, control=MagicMock())
        delay = await auth.retry(Ping(), _http("old"), httpx.Response(401), Exception(), 3)
        assert delay == 0.0
        refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_refreshed_attempt(self):
        refresh = AsyncMock(return_value="new")
        auth = BearerTokenAuthenticator("old", refresh=refresh, control=MagicMock())
        assert await auth.retry(Ping(), _http("old"), httpx.Response(401), Exception(), 1) is None

    @pytest.mark.asyncio
    async def test_end_to_end_refresh(self):
        seen_tokens = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.headers["Authorization"]
            seen_tokens.append(token)
            if token == "Bearer old":
                return httpx.Response(401)
            return httpx.Response(200, json={"pong": True})

        transport = HttpTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        auth = BearerTokenAuthenticator("old", refresh=AsyncMock(return_value="new"))
        async with Dispatcher(host="api.example.com", authenticator=auth, transport=transport) as dispatcher:
            assert transport.interceptors[0] is auth
            request = await dispatcher.enqueue(Ping())
            outcome = await request.wait()

        assert outcome.ok
        assert outcome.data == {"pong": True}
        assert seen_tokens == ["Bearer old", "Bearer new"]
        assert dispatcher.flow_state == FlowState.RUNNING
        await transport.client.aclose()
