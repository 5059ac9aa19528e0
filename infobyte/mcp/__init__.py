"""MCP tool client over SSE push channel and HTTP POST side channel."""

from infobyte.mcp.catalog import CatalogSnapshot, ToolCatalog, ToolDescriptor
from infobyte.mcp.client import MCPClient
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.invoker import ToolInvoker
from infobyte.mcp.session import Session, SessionManager
from infobyte.mcp.transport import SSEDecoder, SSEEvent, SSETransport

__all__ = [
    "CatalogSnapshot",
    "MCPClient",
    "RequestCorrelator",
    "SSEDecoder",
    "SSEEvent",
    "SSETransport",
    "Session",
    "SessionManager",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolInvoker",
]
