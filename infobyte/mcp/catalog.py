"""Cached tool catalog fetched through the correlator."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from infobyte.logging import get_logger
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.protocol import METHOD_TOOLS_LIST
from infobyte.mcp.session import SessionManager

log = get_logger(__name__)


@dataclass(frozen=True)
class ToolDescriptor:
    """A remotely invocable tool."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, raw: Any) -> "ToolDescriptor | None":
        """Build from a ``{name, description, inputSchema}`` object."""
        if not isinstance(raw, dict):
            return None
        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        schema = raw.get("inputSchema")
        return cls(
            name=name,
            description=str(raw.get("description") or ""),
            input_schema=schema if isinstance(schema, dict) else {},
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class CatalogSnapshot:
    """Tools as of one ``tools/list`` call. Replaced, never mutated."""

    tools: tuple[ToolDescriptor, ...]
    fetched_at: float

    def get(self, name: str) -> ToolDescriptor | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def names(self) -> list[str]:
        return [tool.name for tool in self.tools]


class ToolCatalog:
    """TTL-bounded cache of the server's tool list."""

    def __init__(
        self,
        correlator: RequestCorrelator,
        sessions: SessionManager,
        ttl: float = 300.0,
        list_timeout: float = 30.0,
        session_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._correlator = correlator
        self._sessions = sessions
        self.ttl = ttl
        self.list_timeout = list_timeout
        self.session_timeout = session_timeout
        self._clock = clock
        self._snapshot: CatalogSnapshot | None = None
        self._inflight: asyncio.Task[CatalogSnapshot] | None = None

    @property
    def snapshot(self) -> CatalogSnapshot | None:
        return self._snapshot

    @property
    def cached_tools(self) -> tuple[ToolDescriptor, ...]:
        return self._snapshot.tools if self._snapshot else ()

    def is_valid(self) -> bool:
        return self._snapshot is not None and (self._clock() - self._snapshot.fetched_at) < self.ttl

    async def fetch(self, force_refresh: bool = False) -> CatalogSnapshot:
        """Return the catalog, going remote when stale, missing, or forced.

        Callers arriving while a remote fetch is running share its result
        instead of sending another ``tools/list``.

        Raises:
            SessionTimeoutError: No session appeared within ``session_timeout``
            RequestTimeoutError: ``tools/list`` got no response in time
        """
        if not force_refresh and self.is_valid():
            log.debug("Returning cached MCP tools", count=len(self._snapshot.tools))
            return self._snapshot

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(
                self._fetch_remote(force_refresh), name="mcp-tools-list"
            )
        else:
            log.debug("Joining in-flight tools/list request", force_refresh=force_refresh)
        return await asyncio.shield(self._inflight)

    def cancel_fetch(self) -> None:
        """Cancel a running remote fetch, if any."""
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None

    async def _fetch_remote(self, force_refresh: bool) -> CatalogSnapshot:
        log.info("Fetching available tools from MCP server", force_refresh=force_refresh)
        session = await self._sessions.wait_established(self.session_timeout)

        result = await self._correlator.send_and_await(
            METHOD_TOOLS_LIST,
            {"sessionId": session.id},
            self.list_timeout,
        )

        snapshot = CatalogSnapshot(tools=self._parse_tools(result), fetched_at=self._clock())
        self._snapshot = snapshot
        log.info("MCP tools cached", count=len(snapshot.tools), tools=snapshot.names())
        return snapshot

    @staticmethod
    def _parse_tools(result: Any) -> tuple[ToolDescriptor, ...]:
        raw_tools = result.get("tools") if isinstance(result, dict) else result
        if not isinstance(raw_tools, list):
            log.warning("tools/list result has no tool list", result_type=type(result).__name__)
            return ()

        tools: list[ToolDescriptor] = []
        seen: set[str] = set()
        for raw in raw_tools:
            tool = ToolDescriptor.from_wire(raw)
            if tool is None:
                log.warning("Skipping tool descriptor without a name", descriptor=raw)
                continue
            if tool.name in seen:
                log.warning("Skipping duplicate tool descriptor", tool=tool.name)
                continue
            seen.add(tool.name)
            tools.append(tool)
        return tuple(tools)

    def lookup(self, name: str) -> ToolDescriptor | None:
        """Find a tool in the current snapshot without refreshing."""
        if self._snapshot is None:
            return None
        return self._snapshot.get(name)

    def get_schema(self, name: str) -> dict[str, Any] | None:
        """Input schema of a tool in the current snapshot, if any."""
        tool = self.lookup(name)
        return tool.input_schema if tool else None

    def names(self) -> list[str]:
        return self._snapshot.names() if self._snapshot else []

    def invalidate(self) -> None:
        """Drop the snapshot so the next fetch goes remote."""
        self._snapshot = None
        log.info("MCP tools cache cleared")
