"""Tool selection: prompt, reply classification and argument coercion."""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from infobyte.mcp.catalog import ToolDescriptor

SELECTION_CONTRACT = """Given a user request, select the single most appropriate tool and extract its arguments.

Return ONLY a JSON object in this format:
{
  "tool": "<tool_name>",
  "args": { ... }
}

If no tool applies, answer the user directly in plain text instead.

PARAMETER EXTRACTION RULES:
- "skip first X" means skip: X
- "fetch/get Y items/products" means limit: Y
- "starting from Nth" means skip: N-1
- Example: "fetch 15 products and skip first 5" -> {"skip": 5, "limit": 15}
- Example: "get 8 products starting from 6th" -> {"skip": 5, "limit": 8}

You can only call ONE tool per request."""

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)

# Property names tried, in order, when free text must be mapped onto a schema
_COMMON_PARAMS = ("id", "query", "input", "text", "message")

_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}


@dataclass(frozen=True)
class ParsedSelection:
    """The model picked a tool."""

    tool: str
    args: dict[str, Any] | str = field(default_factory=dict)


@dataclass(frozen=True)
class PlainTextSelection:
    """The model answered in text; kept as a candidate final answer."""

    text: str


Selection = ParsedSelection | PlainTextSelection


def build_selection_prompt(tools: Iterable[ToolDescriptor]) -> str:
    """System prompt listing every tool as ``- name: description``."""
    tool_list = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)
    return (
        "You are an AI assistant. You have access to the following MCP tools:\n"
        f"{tool_list}\n\n{SELECTION_CONTRACT}"
    )


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def _decode_object(text: str) -> dict[str, Any] | None:
    """Decode ``text`` as a JSON object, or return None."""
    if not text.startswith("{"):
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def classify_selection(reply: str) -> Selection:
    """Sort a selection reply into a tool pick or plain text.

    A reply is a tool pick only when it decodes to an object with a non-empty
    string ``tool``. ``args`` defaults to an empty mapping; a bare scalar
    ``args`` is kept as text for mapping onto the tool schema.
    """
    text = (reply or "").strip()
    candidate = _decode_object(_strip_fence(text))

    tool = candidate.get("tool") if candidate is not None else None
    if not isinstance(tool, str) or not tool.strip():
        return PlainTextSelection(text=text)

    args = candidate.get("args")
    if args is None:
        args = candidate.get("arguments")
    return ParsedSelection(tool=tool.strip(), args=_normalize_args(args))


def _normalize_args(args: Any) -> dict[str, Any] | str:
    if isinstance(args, str):
        return args if args.strip() else {}
    if isinstance(args, dict):
        return args
    if isinstance(args, (bool, int, float)):
        return json.dumps(args)
    return {}


def _to_number(raw: str) -> int | float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return int(value) if value.is_integer() and "." not in raw and "e" not in raw.lower() else value


def coerce_argument(schema_type: str | None, raw: Any) -> Any:
    """Convert one raw argument value to its JSON-schema property type.

    Values that cannot be converted are returned unchanged; the server
    remains the authority on argument validity.

    Args:
        schema_type: JSON-schema ``type`` of the property (may be None)
        raw: Value from the model, often a string

    Returns:
        The converted value
    """
    if schema_type in ("number", "integer"):
        if isinstance(raw, bool):
            return int(raw)
        if isinstance(raw, (int, float)):
            return int(raw) if schema_type == "integer" and float(raw).is_integer() else raw
        if isinstance(raw, str):
            number = _to_number(raw.strip())
            if number is None:
                return raw
            if schema_type == "integer" and float(number).is_integer():
                return int(number)
            return number
        return raw

    if schema_type == "boolean":
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return raw != 0
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        return raw

    if schema_type == "string":
        if raw is None or isinstance(raw, str):
            return raw
        if isinstance(raw, (dict, list)):
            return json.dumps(raw)
        if isinstance(raw, bool):
            return "true" if raw else "false"
        return str(raw)

    if schema_type in ("array", "object") and isinstance(raw, str):
        expected = list if schema_type == "array" else dict
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return raw
        return value if isinstance(value, expected) else raw

    return raw


def _property_type(schema: dict[str, Any] | None, name: str) -> str | None:
    properties = (schema or {}).get("properties")
    if not isinstance(properties, dict):
        return None
    prop = properties.get(name)
    if not isinstance(prop, dict):
        return None
    value = prop.get("type")
    return value if isinstance(value, str) else None


def coerce_arguments(args: dict[str, Any], schema: dict[str, Any] | None) -> dict[str, Any]:
    """Apply ``coerce_argument`` to every argument with a declared type."""
    return {name: coerce_argument(_property_type(schema, name), value) for name, value in args.items()}


def arguments_from_text(text: str, schema: dict[str, Any] | None) -> dict[str, Any]:
    """Map a bare text argument onto a tool's input schema.

    JSON object text is used as-is. Otherwise the text is assigned to the only
    property, the first common property name present, or the first property.
    With no schema properties it becomes ``{"id": text}``.
    """
    value = (text or "").strip()
    decoded = _decode_object(value)
    if decoded is not None:
        return coerce_arguments(decoded, schema)

    properties = (schema or {}).get("properties")
    if not isinstance(properties, dict) or not properties:
        return {"id": coerce_argument("integer", value) if value.isdigit() else value}

    names = list(properties)
    if len(names) == 1:
        target = names[0]
    else:
        target = next((name for name in _COMMON_PARAMS if name in properties), names[0])
    return {target: coerce_argument(_property_type(schema, target), value)}
