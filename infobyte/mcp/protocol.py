"""Wire format for MCP tool traffic (JSON-RPC 2.0 over SSE + POST)."""

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

from infobyte.exceptions import MalformedMessageError

JSONRPC_VERSION = "2.0"

METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"


@dataclass(frozen=True)
class SessionNotice:
    """Unsolicited ``tools/call`` notification carrying ``params.sessionId``."""

    session_id: str
    tool_name: str
    message_id: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResponseMessage:
    """Correlated response to a request we sent."""

    request_id: str
    result: Any = None
    error: dict[str, Any] | None = None


@dataclass(frozen=True)
class UnrecognizedMessage:
    """Anything else."""

    payload: Any


InboundMessage = SessionNotice | ResponseMessage | UnrecognizedMessage


def build_request(method: str, params: dict[str, Any], request_id: str) -> dict[str, Any]:
    """Build an outbound request body."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params,
        "id": request_id,
    }


def parse_payload(data: str) -> dict[str, Any]:
    """Decode an event data field into a JSON object.

    Raises:
        MalformedMessageError: If data is not a JSON object
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"Invalid JSON in MCP message: {exc}", payload=data) from exc
    if not isinstance(payload, dict):
        raise MalformedMessageError(
            f"MCP message must be a JSON object, got {type(payload).__name__}",
            payload=payload,
        )
    return payload


def _is_response(payload: dict[str, Any]) -> bool:
    return (
        "method" not in payload
        and isinstance(payload.get("id"), str)
        and ("result" in payload or "error" in payload)
    )


def _is_session_notice(payload: dict[str, Any]) -> bool:
    params = payload.get("params")
    return (
        payload.get("jsonrpc") == JSONRPC_VERSION
        and payload.get("method") == METHOD_TOOLS_CALL
        and isinstance(params, dict)
        and isinstance(params.get("name"), str)
        and isinstance(params.get("sessionId"), str)
        and bool(params["sessionId"])
        and isinstance(payload.get("id"), str)
    )


def classify(payload: dict[str, Any]) -> InboundMessage:
    """Sort a decoded inbound payload into one of the three shapes we act on."""
    if _is_response(payload):
        error = payload.get("error")
        if error is not None and not isinstance(error, dict):
            error = {"message": str(error)}
        return ResponseMessage(
            request_id=payload["id"],
            result=payload.get("result"),
            error=error,
        )

    if _is_session_notice(payload):
        params = payload["params"]
        arguments = params.get("arguments")
        return SessionNotice(
            session_id=params["sessionId"],
            tool_name=params["name"],
            message_id=payload["id"],
            arguments=arguments if isinstance(arguments, dict) else {},
        )

    return UnrecognizedMessage(payload=payload)


def session_id_from_endpoint(endpoint: str) -> str | None:
    """Extract ``sessionId`` from an ``endpoint`` event path, if present."""
    query = urlsplit((endpoint or "").strip()).query
    values = parse_qs(query).get("sessionId") or parse_qs(query).get("session_id")
    if values and values[0]:
        return values[0]
    return None
