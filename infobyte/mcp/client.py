"""MCP client context: transport, session, correlator, catalog and invoker."""

import asyncio
from typing import Any

from infobyte.config import MCPConfig
from infobyte.exceptions import MalformedMessageError, MCPError, ToolError
from infobyte.logging import get_logger
from infobyte.mcp.catalog import CatalogSnapshot, ToolCatalog
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.invoker import ToolInvoker
from infobyte.mcp.protocol import (
    ResponseMessage,
    SessionNotice,
    classify,
    parse_payload,
    session_id_from_endpoint,
)
from infobyte.mcp.session import SessionManager
from infobyte.mcp.transport import SSEEvent, SSETransport

log = get_logger(__name__)


class MCPClient:
    """Owns one connection to an MCP server and everything built on it.

    Create one per connection; nothing here is process-global.

    Example:
        async with MCPClient("http://localhost:8000") as client:
            snapshot = await client.fetch_tools()
            result = await client.call_tool("getProducts", {"limit": 5})
    """

    def __init__(
        self,
        url: str = "http://localhost:8000",
        sse_path: str = "/sse",
        message_path: str = "/messages",
        connect_timeout: float = 10.0,
        list_timeout: float = 30.0,
        call_timeout: float = 60.0,
        session_timeout: float = 10.0,
        catalog_ttl: float = 300.0,
        transport: SSETransport | None = None,
        auto_fetch_tools: bool = True,
    ):
        self.url = url
        self.transport = transport or SSETransport(
            url,
            sse_path=sse_path,
            message_path=message_path,
            connect_timeout=connect_timeout,
        )
        self.sessions = SessionManager()
        self.correlator = RequestCorrelator(self.transport.post, self.sessions)
        self.catalog = ToolCatalog(
            self.correlator,
            self.sessions,
            ttl=catalog_ttl,
            list_timeout=list_timeout,
            session_timeout=session_timeout,
        )
        self.invoker = ToolInvoker(
            self.catalog,
            self.correlator,
            self.sessions,
            call_timeout=call_timeout,
        )
        self.auto_fetch_tools = auto_fetch_tools
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: MCPConfig, **kwargs: Any) -> "MCPClient":
        return cls(
            url=config.url,
            sse_path=config.sse_path,
            message_path=config.message_path,
            connect_timeout=config.connect_timeout,
            list_timeout=config.list_timeout,
            call_timeout=config.call_timeout,
            session_timeout=config.session_timeout,
            catalog_ttl=config.catalog_ttl,
            **kwargs,
        )

    @property
    def is_connected(self) -> bool:
        return self.transport.connected

    async def connect(self) -> None:
        """Open the push channel.

        The session is not available yet when this returns; it is seeded by
        the first qualifying inbound message.

        Raises:
            MCPConnectionError: If the channel cannot be opened
        """
        await self.transport.connect(self.handle_event, self._on_transport_error)

    def disconnect(self) -> None:
        """Close the channel and clear the session."""
        self.transport.disconnect()
        self.sessions.invalidate("manual disconnect")
        log.info("Disconnected from MCP server", url=self.url)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        self.catalog.cancel_fetch()
        self.sessions.invalidate("client closed")
        await self.transport.aclose()

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def fetch_tools(self, force_refresh: bool = False) -> CatalogSnapshot:
        return await self.catalog.fetch(force_refresh=force_refresh)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self.invoker.call(name, arguments)

    def connection_info(self) -> dict[str, Any]:
        """Snapshot of connection state for diagnostics."""
        return {
            "url": self.url,
            "connected": self.is_connected,
            "session_id": self.sessions.session_id,
            "generation": self.sessions.generation,
            "pending_requests": self.correlator.pending_count,
            "cached_tools": len(self.catalog.cached_tools),
            "message_url": self.transport.message_url,
        }

    # Inbound dispatch. Runs on the reader task, one event at a time.

    def handle_event(self, event: SSEEvent) -> None:
        if event.event == "endpoint":
            self._handle_endpoint(event.data)
            return
        self.handle_message(event.data)

    def _handle_endpoint(self, data: str) -> None:
        path = data.strip()
        if not path:
            log.warning("Ignoring empty endpoint event")
            return
        self.transport.set_message_path(path)
        log.info("MCP endpoint announced", path=path)

        session_id = session_id_from_endpoint(path)
        if session_id:
            self._establish(session_id)

    def handle_message(self, data: str) -> None:
        """Parse and dispatch one inbound message payload."""
        try:
            payload = parse_payload(data)
        except MalformedMessageError as exc:
            log.warning("Discarding malformed MCP message", error=str(exc), data=data[:200])
            return

        message = classify(payload)
        if isinstance(message, ResponseMessage):
            self.correlator.resolve(message)
        elif isinstance(message, SessionNotice):
            self._establish(message.session_id)
        else:
            log.warning("Unrecognized MCP message", payload=payload)

    def _establish(self, session_id: str) -> None:
        if self.sessions.establish(session_id) and self.auto_fetch_tools:
            # Separate task: the fetch awaits responses that this reader delivers
            task = asyncio.get_running_loop().create_task(
                self._auto_fetch(), name="mcp-auto-fetch-tools"
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _auto_fetch(self) -> None:
        try:
            await self.catalog.fetch(force_refresh=True)
        except (MCPError, ToolError) as exc:
            log.warning("Automatic tool fetch failed", error=str(exc))

    def _on_transport_error(self, error: Exception) -> None:
        self.sessions.invalidate(str(error))
