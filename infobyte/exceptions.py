"""Custom exceptions for Infobyte."""

from typing import Any


class InfobyteError(Exception):
    """Base exception for Infobyte."""

    pass


class ConfigurationError(InfobyteError):
    """Configuration-related errors."""

    pass


class LLMError(InfobyteError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MCPError(InfobyteError):
    """MCP client errors."""

    pass


class MCPConnectionError(MCPError, ConnectionError):
    """Push channel failed to open, closed unexpectedly, or a POST failed."""

    pass


class SessionNotEstablishedError(MCPError):
    """Operation needs a session but none is live."""

    def __init__(self, message: str = "MCP session not established"):
        super().__init__(message)


class SessionTimeoutError(SessionNotEstablishedError):
    """No session appeared within the wait budget."""

    def __init__(self, timeout: float):
        super().__init__(f"Timeout waiting for MCP session ID after {timeout:g}s")
        self.timeout = timeout


class RequestTimeoutError(MCPError, TimeoutError):
    """No matching response arrived within the request budget."""

    def __init__(self, method: str, request_id: str, timeout: float):
        super().__init__(
            f"Timeout waiting for {method} response (id={request_id}) after {timeout:g}s"
        )
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class StaleResponseError(MCPError):
    """Response arrived for a request issued under an older session generation."""

    def __init__(self, request_id: str, issued_generation: int, current_generation: int):
        super().__init__(
            f"Response {request_id} belongs to session generation "
            f"{issued_generation}, current is {current_generation}"
        )
        self.request_id = request_id
        self.issued_generation = issued_generation
        self.current_generation = current_generation


class MalformedMessageError(MCPError):
    """Inbound payload could not be parsed or recognized."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class ToolError(InfobyteError):
    """Tool errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in the current catalog."""

    def __init__(self, tool_name: str, available: list[str] | None = None):
        self.available = list(available or [])
        known = ", ".join(self.available) if self.available else "(none)"
        super().__init__(f"Tool '{tool_name}' not found. Available tools: {known}")
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """Remote side reported an error for a request."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        code: int | None = None,
        data: Any = None,
    ):
        suffix = f" (code {code})" if code is not None else ""
        super().__init__(f"Tool '{tool_name}' failed: {message}{suffix}")
        self.tool_name = tool_name
        self.remote_message = message
        self.code = code
        self.data = data


class PipelineError(InfobyteError):
    """Unrecoverable agent pipeline failure."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"Pipeline failed during {stage}: {message}")
        self.stage = stage
