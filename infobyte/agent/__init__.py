"""Agent pipeline that answers requests with MCP tools."""

from infobyte.agent.pipeline import (
    AgentPipeline,
    PipelineContext,
    PipelineResult,
    PipelineState,
    stringify_tool_result,
)
from infobyte.agent.selection import (
    ParsedSelection,
    PlainTextSelection,
    classify_selection,
    coerce_argument,
)

__all__ = [
    "AgentPipeline",
    "ParsedSelection",
    "PipelineContext",
    "PipelineResult",
    "PipelineState",
    "PlainTextSelection",
    "classify_selection",
    "coerce_argument",
    "stringify_tool_result",
]
