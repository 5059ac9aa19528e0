import asyncio

import httpx
import pytest

from infobyte.exceptions import MCPConnectionError
from infobyte.mcp.transport import SSEDecoder, SSEEvent, SSETransport


def _decode(lines: list[str]) -> list[SSEEvent]:
    decoder = SSEDecoder()
    events = []
    for line in lines:
        event = decoder.feed(line)
        if event is not None:
            events.append(event)
    return events


def test_decoder_dispatches_on_blank_line():
    events = _decode(["event: endpoint", "data: /messages?sessionId=abc", ""])

    assert events == [SSEEvent(event="endpoint", data="/messages?sessionId=abc")]


def test_decoder_joins_multiline_data_and_ignores_comments():
    events = _decode([": keep-alive", "data: {\"a\":", "data: 1}", "id: 7", "", ""])

    assert len(events) == 1
    assert events[0].event == "message"
    assert events[0].data == '{"a":\n1}'
    assert events[0].id == "7"


def test_decoder_resets_event_name_between_events():
    events = _decode(["event: endpoint", "data: /m", "", "data: second", ""])

    assert [e.event for e in events] == ["endpoint", "message"]


def test_message_url_uses_announced_path():
    transport = SSETransport("http://mcp.local:8000/", client=httpx.AsyncClient())

    assert transport.sse_url == "http://mcp.local:8000/sse"
    assert transport.message_url == "http://mcp.local:8000/messages"

    transport.set_message_path("messages?sessionId=x")
    assert transport.message_url == "http://mcp.local:8000/messages?sessionId=x"


@pytest.mark.asyncio
async def test_stream_events_are_delivered_then_disconnect_reported():
    body = (
        "event: endpoint\n"
        "data: /messages?sessionId=abc\n"
        "\n"
        ": ping\n"
        'data: {"jsonrpc": "2.0", "id": "1", "result": {}}\n'
        "\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["accept"] == "text/event-stream"
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body.encode())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = SSETransport("http://mcp.local", client=client)
    events: list[SSEEvent] = []
    dropped = asyncio.Event()
    errors: list[Exception] = []

    def on_disconnect(error: Exception) -> None:
        errors.append(error)
        dropped.set()

    await transport.connect(events.append, on_disconnect)
    await asyncio.wait_for(dropped.wait(), timeout=1.0)

    assert [e.event for e in events] == ["endpoint", "message"]
    assert isinstance(errors[0], MCPConnectionError)
    assert transport.connected is False
    await transport.aclose()


@pytest.mark.asyncio
async def test_connect_rejects_non_success_status():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    transport = SSETransport("http://mcp.local", client=client)

    with pytest.raises(MCPConnectionError):
        await transport.connect(lambda event: None, lambda error: None)

    assert transport.connected is False
    await transport.aclose()


@pytest.mark.asyncio
async def test_post_requires_connection():
    transport = SSETransport("http://mcp.local", client=httpx.AsyncClient())

    with pytest.raises(MCPConnectionError):
        await transport.post({"jsonrpc": "2.0", "method": "tools/list", "id": "1"})

    await transport.aclose()
