"""SSE push channel and HTTP POST side channel to an MCP server."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from infobyte.exceptions import MCPConnectionError
from infobyte.logging import get_logger

log = get_logger(__name__)

#: Callback for each decoded SSE event. Called synchronously, in arrival order.
EventCallback = Callable[["SSEEvent"], None]
#: Callback when the channel drops without a manual disconnect.
DisconnectCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class SSEEvent:
    """A single dispatched server-sent event."""

    event: str = "message"
    data: str = ""
    id: str | None = None


class SSEDecoder:
    """Incremental decoder for ``text/event-stream`` lines."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._last_id: str | None = None

    def feed(self, line: str) -> SSEEvent | None:
        """Feed one line (without terminator); returns an event on blank lines."""
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_id = value
        # "retry" and unknown fields are ignored
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = SSEEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._last_id,
        )
        self._event = ""
        self._data = []
        return event


class SSETransport:
    """One push-channel connection plus one outbound side-channel sender."""

    def __init__(
        self,
        base_url: str,
        sse_path: str = "/sse",
        message_path: str = "/messages",
        connect_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.sse_path = sse_path
        self.default_message_path = message_path
        self.message_path = message_path
        self.connect_timeout = connect_timeout

        # No read timeout: the push channel stays idle between events
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, read=None),
            follow_redirects=True,
        )

        self._connected = False
        self._reader: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._connected and self._reader is not None and not self._reader.done()

    @property
    def sse_url(self) -> str:
        return f"{self.base_url}{self.sse_path}"

    @property
    def message_url(self) -> str:
        if self.message_path.startswith(("http://", "https://")):
            return self.message_path
        return f"{self.base_url}{self.message_path}"

    def set_message_path(self, path: str) -> None:
        """Use a server-announced side-channel path until the next disconnect."""
        if not path.startswith(("/", "http://", "https://")):
            path = f"/{path}"
        self.message_path = path

    async def connect(self, on_event: EventCallback, on_disconnect: DisconnectCallback) -> None:
        """Open the push channel; returns once the server answers with 2xx.

        Raises:
            MCPConnectionError: If the channel cannot be opened
        """
        if self.connected:
            return

        log.info("Connecting to MCP server", url=self.sse_url)
        request = self.client.build_request(
            "GET",
            self.sse_url,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        )
        try:
            response = await asyncio.wait_for(
                self.client.send(request, stream=True),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise MCPConnectionError(
                f"Timed out opening {self.sse_url} after {self.connect_timeout:g}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise MCPConnectionError(f"Failed to open {self.sse_url}: {exc}") from exc

        if not response.is_success:
            await response.aclose()
            raise MCPConnectionError(
                f"MCP server refused SSE connection: HTTP {response.status_code}"
            )

        self._connected = True
        self._reader = asyncio.create_task(
            self._read_loop(response, on_event, on_disconnect),
            name="mcp-sse-reader",
        )
        log.info("MCP SSE connection established", url=self.sse_url)

    async def _read_loop(
        self,
        response: httpx.Response,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
    ) -> None:
        decoder = SSEDecoder()
        error: Exception | None = None
        try:
            async for line in response.aiter_lines():
                event = decoder.feed(line)
                if event is None:
                    continue
                try:
                    on_event(event)
                except Exception as exc:
                    log.error("Error in MCP event handler", error=str(exc), exc_info=True)
            error = MCPConnectionError("MCP SSE stream closed by server")
        except Exception as exc:
            error = MCPConnectionError(f"MCP SSE stream error: {exc}")
        finally:
            await response.aclose()

        # Reached only when the stream ended on its own (cancellation skips this)
        self._connected = False
        self.message_path = self.default_message_path
        log.error("MCP SSE connection error", error=str(error))
        on_disconnect(error)

    async def post(self, payload: dict[str, Any]) -> None:
        """Send one JSON body over the side channel.

        Raises:
            MCPConnectionError: If not connected, or the POST fails
        """
        if not self.connected:
            raise MCPConnectionError("MCP client not connected")

        url = self.message_url
        log.debug("Posting MCP request", url=url, method=payload.get("method"), id=payload.get("id"))
        try:
            response = await self.client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise MCPConnectionError(f"MCP POST to {url} failed: {exc}") from exc

        if not response.is_success:
            raise MCPConnectionError(
                f"MCP POST to {url} failed: HTTP {response.status_code} {response.text}"
            )

    def disconnect(self) -> None:
        """Close the push channel (synchronous; the reader is cancelled)."""
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._reader = None
        self._connected = False
        self.message_path = self.default_message_path

    async def aclose(self) -> None:
        """Disconnect and close the HTTP client."""
        reader = self._reader
        self.disconnect()
        if reader is not None:
            try:
                await reader
            except asyncio.CancelledError:
                pass
        await self.client.aclose()
