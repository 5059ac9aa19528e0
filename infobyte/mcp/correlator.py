"""Request/response correlation over the side channel."""

import asyncio
import itertools
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from infobyte.exceptions import (
    RequestTimeoutError,
    StaleResponseError,
    ToolExecutionError,
)
from infobyte.logging import get_logger
from infobyte.mcp.protocol import METHOD_TOOLS_LIST, ResponseMessage, build_request
from infobyte.mcp.session import SessionManager

log = get_logger(__name__)

#: Sends one serialized request over the side channel.
Sender = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class PendingRequest:
    """An outstanding request awaiting its response."""

    id: str
    kind: str  # "list" | "call"
    method: str
    label: str
    future: asyncio.Future[Any]
    created_at: float
    generation: int


class RequestCorrelator:
    """Issue ids, track pending requests, and match responses to them."""

    def __init__(
        self,
        send: Sender,
        sessions: SessionManager,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._send = send
        self._sessions = sessions
        self._clock = clock
        self._pending: dict[str, PendingRequest] = {}
        self._counter = itertools.count(1)
        # Per-client prefix so ids stay unique across reconnects and processes
        self._prefix = uuid.uuid4().hex[:12]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    def next_request_id(self) -> str:
        """Return a request id that has never been issued before."""
        return f"{self._prefix}-{next(self._counter)}"

    async def send_and_await(
        self,
        method: str,
        params: dict[str, Any],
        timeout: float,
    ) -> Any:
        """Send a request and wait for its matching response.

        Args:
            method: JSON-RPC method name
            params: Method parameters
            timeout: Seconds to wait for the response

        Returns:
            The response's ``result`` payload

        Raises:
            RequestTimeoutError: No response within ``timeout``
            ToolExecutionError: Response carried an ``error`` member
            StaleResponseError: Session generation changed before the response
            MCPConnectionError: The side channel rejected the request
        """
        request_id = self.next_request_id()
        pending = PendingRequest(
            id=request_id,
            kind="list" if method == METHOD_TOOLS_LIST else "call",
            method=method,
            label=str(params.get("name") or method),
            future=asyncio.get_running_loop().create_future(),
            created_at=self._clock(),
            generation=self._sessions.generation,
        )
        self._pending[request_id] = pending

        try:
            log.debug("Sending MCP request", method=method, id=request_id, generation=pending.generation)
            await self._send(build_request(method, params, request_id))
            return await asyncio.wait_for(pending.future, timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("MCP request timed out", method=method, id=request_id, timeout=timeout)
            raise RequestTimeoutError(method, request_id, timeout) from None
        finally:
            self._pending.pop(request_id, None)

    def resolve(self, message: ResponseMessage) -> bool:
        """Hand a response to its pending request.

        Returns:
            True if the response completed a pending request successfully
        """
        pending = self._pending.pop(message.request_id, None)
        if pending is None:
            log.debug("Dropping response for unknown or expired request", id=message.request_id)
            return False
        if pending.future.done():
            return False

        current = self._sessions.generation
        if pending.generation != current:
            log.warning(
                "Rejecting stale MCP response",
                id=pending.id,
                issued_generation=pending.generation,
                current_generation=current,
            )
            pending.future.set_exception(
                StaleResponseError(pending.id, pending.generation, current)
            )
            return False

        if message.error is not None:
            error = message.error
            pending.future.set_exception(
                ToolExecutionError(
                    pending.label,
                    str(error.get("message") or "Unknown error"),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            )
            return False

        elapsed = self._clock() - pending.created_at
        log.debug("MCP response matched", id=pending.id, method=pending.method, elapsed=round(elapsed, 3))
        pending.future.set_result(message.result)
        return True
