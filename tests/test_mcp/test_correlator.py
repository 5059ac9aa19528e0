import asyncio

import pytest

from infobyte.exceptions import (
    MCPConnectionError,
    RequestTimeoutError,
    StaleResponseError,
    ToolExecutionError,
)
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.protocol import ResponseMessage
from infobyte.mcp.session import SessionManager


class RecordingSender:
    def __init__(self):
        self.sent: list[dict] = []

    async def __call__(self, payload: dict) -> None:
        self.sent.append(payload)


class ReplyingSender(RecordingSender):
    """Answers every request on the next loop iteration."""

    def __init__(self, reply):
        super().__init__()
        self.reply = reply
        self.correlator: RequestCorrelator | None = None

    async def __call__(self, payload: dict) -> None:
        await super().__call__(payload)
        message = self.reply(payload)
        asyncio.get_running_loop().call_soon(self.correlator.resolve, message)


def _established_sessions() -> SessionManager:
    sessions = SessionManager()
    sessions.establish("session-1")
    return sessions


def test_ten_thousand_request_ids_are_unique():
    correlator = RequestCorrelator(RecordingSender(), SessionManager())

    ids = {correlator.next_request_id() for _ in range(10_000)}

    assert len(ids) == 10_000


def test_request_ids_differ_between_correlators():
    first = RequestCorrelator(RecordingSender(), SessionManager())
    second = RequestCorrelator(RecordingSender(), SessionManager())

    assert first.next_request_id() != second.next_request_id()


@pytest.mark.asyncio
async def test_send_and_await_resolves_with_matching_result():
    sender = ReplyingSender(lambda p: ResponseMessage(request_id=p["id"], result={"tools": []}))
    correlator = RequestCorrelator(sender, _established_sessions())
    sender.correlator = correlator

    result = await correlator.send_and_await("tools/list", {"sessionId": "session-1"}, timeout=1.0)

    assert result == {"tools": []}
    request = sender.sent[0]
    assert request["jsonrpc"] == "2.0"
    assert request["method"] == "tools/list"
    assert request["params"] == {"sessionId": "session-1"}
    assert isinstance(request["id"], str)
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_timeout_removes_entry_and_ignores_late_response():
    sender = RecordingSender()
    correlator = RequestCorrelator(sender, _established_sessions())

    with pytest.raises(RequestTimeoutError) as exc_info:
        await correlator.send_and_await("tools/call", {"name": "slow"}, timeout=0.05)

    request_id = sender.sent[0]["id"]
    assert exc_info.value.request_id == request_id
    assert exc_info.value.method == "tools/call"
    assert isinstance(exc_info.value, TimeoutError)
    assert not correlator.is_pending(request_id)
    assert correlator.resolve(ResponseMessage(request_id=request_id, result="late")) is False
    assert correlator.pending_count == 0


@pytest.mark.asyncio
async def test_error_response_raises_tool_execution_error():
    sender = ReplyingSender(
        lambda p: ResponseMessage(
            request_id=p["id"],
            error={"code": -32000, "message": "database offline", "data": {"retry": True}},
        )
    )
    correlator = RequestCorrelator(sender, _established_sessions())
    sender.correlator = correlator

    with pytest.raises(ToolExecutionError) as exc_info:
        await correlator.send_and_await("tools/call", {"name": "getProducts"}, timeout=1.0)

    error = exc_info.value
    assert error.tool_name == "getProducts"
    assert error.code == -32000
    assert error.data == {"retry": True}
    assert "database offline" in str(error)


@pytest.mark.asyncio
async def test_response_from_previous_generation_is_rejected():
    sessions = _established_sessions()
    sender = RecordingSender()
    correlator = RequestCorrelator(sender, sessions)

    task = asyncio.create_task(correlator.send_and_await("tools/list", {}, timeout=1.0))
    while not sender.sent:
        await asyncio.sleep(0)

    sessions.invalidate("transport error")
    sessions.establish("session-2")
    accepted = correlator.resolve(ResponseMessage(request_id=sender.sent[0]["id"], result={"tools": []}))

    assert accepted is False
    with pytest.raises(StaleResponseError) as exc_info:
        await task
    assert exc_info.value.issued_generation == 0
    assert exc_info.value.current_generation == 1


@pytest.mark.asyncio
async def test_send_failure_propagates_and_clears_entry():
    async def failing_send(payload: dict) -> None:
        raise MCPConnectionError("MCP client not connected")

    correlator = RequestCorrelator(failing_send, _established_sessions())

    with pytest.raises(MCPConnectionError):
        await correlator.send_and_await("tools/list", {}, timeout=1.0)
    assert correlator.pending_count == 0


def test_unknown_response_is_dropped():
    correlator = RequestCorrelator(RecordingSender(), SessionManager())

    assert correlator.resolve(ResponseMessage(request_id="nobody", result=1)) is False
