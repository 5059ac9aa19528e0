"""Validated tool invocation."""

from typing import Any

from infobyte.exceptions import SessionNotEstablishedError, ToolNotFoundError
from infobyte.logging import get_logger
from infobyte.mcp.catalog import ToolCatalog
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.protocol import METHOD_TOOLS_CALL
from infobyte.mcp.session import SessionManager

log = get_logger(__name__)


class ToolInvoker:
    """Check a tool exists in the catalog, then call it remotely."""

    def __init__(
        self,
        catalog: ToolCatalog,
        correlator: RequestCorrelator,
        sessions: SessionManager,
        call_timeout: float = 60.0,
    ):
        self._catalog = catalog
        self._correlator = correlator
        self._sessions = sessions
        self.call_timeout = call_timeout

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Invoke ``name`` with ``arguments`` and return the raw result.

        Arguments are not validated against the tool's schema.

        Raises:
            SessionNotEstablishedError: No live session
            ToolNotFoundError: ``name`` is not in the catalog
            ToolExecutionError: The server answered with an error
            RequestTimeoutError: No response within ``call_timeout``
        """
        if not self._sessions.is_established:
            raise SessionNotEstablishedError(
                f"Cannot call tool '{name}': MCP session not established"
            )

        snapshot = await self._catalog.fetch()
        if snapshot.get(name) is None:
            raise ToolNotFoundError(name, snapshot.names())

        session = self._sessions.session
        if session is None:
            raise SessionNotEstablishedError(
                f"Cannot call tool '{name}': MCP session lost while reading the catalog"
            )

        log.info("Calling MCP tool", tool=name, arguments=arguments or {})
        result = await self._correlator.send_and_await(
            METHOD_TOOLS_CALL,
            {
                "sessionId": session.id,
                "name": name,
                "arguments": dict(arguments or {}),
            },
            self.call_timeout,
        )
        log.info("Tool executed successfully", tool=name)
        return result
