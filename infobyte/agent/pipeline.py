"""Select -> invoke -> format agent pipeline over MCP tools."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

from infobyte.agent.selection import (
    ParsedSelection,
    arguments_from_text,
    build_selection_prompt,
    classify_selection,
    coerce_arguments,
)
from infobyte.exceptions import InfobyteError, PipelineError, ToolError
from infobyte.llm import LLMProvider, Message
from infobyte.logging import get_logger
from infobyte.mcp.catalog import ToolCatalog
from infobyte.mcp.invoker import ToolInvoker

log = get_logger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    IDLE = "idle"
    SELECTING = "selecting"
    TOOL_CHOSEN = "tool_chosen"
    NO_TOOL = "no_tool"
    INVOKING = "invoking"
    FORMATTING = "formatting"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = {PipelineState.DONE, PipelineState.FAILED}

_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.SELECTING},
    PipelineState.SELECTING: {PipelineState.TOOL_CHOSEN, PipelineState.NO_TOOL},
    PipelineState.TOOL_CHOSEN: {PipelineState.INVOKING},
    PipelineState.NO_TOOL: {PipelineState.FORMATTING},
    PipelineState.INVOKING: {PipelineState.FORMATTING},
    PipelineState.FORMATTING: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}

FORMAT_SYSTEM_PROMPT = """You are a helpful assistant. Convert and explain the data below for the user.

- Answer the user's original request using the data provided.
- Do NOT return raw tool output; summarise and interpret it.
- If a note says something went wrong, acknowledge the problem briefly and
  answer as well as you can from what is available.
- Be concise and accurate."""


@dataclass(slots=True)
class PipelineContext:
    """Per-invocation working state. Never shared between runs."""

    input: str
    selected_tool: str | None = None
    args: dict[str, Any] | None = None
    raw_llm_fallback: str | None = None
    tool_result: str | None = None
    error: str | None = None
    state: PipelineState = PipelineState.IDLE

    def advance(self, target: PipelineState) -> None:
        """Move to ``target``; FAILED is reachable from any non-terminal state."""
        allowed = _TRANSITIONS[self.state]
        if target is PipelineState.FAILED and self.state not in TERMINAL_STATES:
            allowed = {target}
        if target not in allowed:
            raise PipelineError(
                self.state.value,
                f"invalid transition {self.state.value} -> {target.value}",
            )
        log.debug("Pipeline state", previous=self.state.value, state=target.value)
        self.state = target


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    text: str
    tool: str | None = None
    args: dict[str, Any] = field(default_factory=dict)
    tool_result: str | None = None
    error: str | None = None
    state: PipelineState = PipelineState.DONE
    prompt_tokens: int = 0


def stringify_tool_result(result: Any) -> str:
    """Render a tool result as text.

    MCP ``content`` blocks of type ``text`` are concatenated; other structured
    results are pretty-printed JSON.
    """
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            str(block.get("text", ""))
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        if texts:
            return "\n".join(texts)
    return json.dumps(result, indent=2, ensure_ascii=False, default=str)


class AgentPipeline:
    """Answers free-text input by optionally calling one MCP tool."""

    def __init__(
        self,
        provider: LLMProvider,
        catalog: ToolCatalog,
        invoker: ToolInvoker,
        selection_temperature: float = 0.0,
    ):
        self.provider = provider
        self.catalog = catalog
        self.invoker = invoker
        self.selection_temperature = selection_temperature

    @classmethod
    def from_client(cls, provider: LLMProvider, client: Any, **kwargs: Any) -> "AgentPipeline":
        """Build a pipeline over an ``MCPClient``'s catalog and invoker."""
        return cls(provider, client.catalog, client.invoker, **kwargs)

    async def run(self, user_input: str) -> str:
        """Run the pipeline and return the final answer text.

        Raises:
            PipelineError: If the format stage fails
        """
        result = await self.run_detailed(user_input)
        return result.text

    async def run_detailed(self, user_input: str) -> PipelineResult:
        ctx = await self._prepare(user_input)
        ctx.advance(PipelineState.FORMATTING)

        messages = self._format_messages(ctx)
        prompt_tokens = sum(self.provider.count_tokens(message.content) for message in messages)
        try:
            response = await self.provider.complete(messages)
        except Exception as exc:
            ctx.advance(PipelineState.FAILED)
            log.error("Format stage failed", error=str(exc), error_type=type(exc).__name__)
            raise PipelineError("format", str(exc)) from exc

        text = (response.content or "").strip() or self._fallback_text(ctx)
        ctx.advance(PipelineState.DONE)
        log.info(
            "Pipeline completed",
            tool=ctx.selected_tool,
            had_error=ctx.error is not None,
            prompt_tokens=prompt_tokens,
        )
        return self._result(ctx, text, prompt_tokens)

    async def stream(self, user_input: str) -> AsyncIterator[str]:
        """Run the pipeline, yielding the final answer as it is generated.

        Failures are delivered as a single error message fragment.
        """
        ctx: PipelineContext | None = None
        try:
            ctx = await self._prepare(user_input)
            ctx.advance(PipelineState.FORMATTING)

            emitted = False
            async for chunk in self.provider.complete_streaming(self._format_messages(ctx)):
                if chunk:
                    emitted = True
                    yield chunk
            if not emitted:
                yield self._fallback_text(ctx)
            ctx.advance(PipelineState.DONE)
        except Exception as exc:
            if ctx is not None and ctx.state not in TERMINAL_STATES:
                ctx.state = PipelineState.FAILED
            log.error("Streaming pipeline failed", error=str(exc))
            yield f"Error: {exc}"

    async def _prepare(self, user_input: str) -> PipelineContext:
        ctx = PipelineContext(input=user_input)
        await self._select(ctx)
        await self._invoke(ctx)
        return ctx

    async def _select(self, ctx: PipelineContext) -> None:
        ctx.advance(PipelineState.SELECTING)

        try:
            snapshot = await self.catalog.fetch()
        except Exception as exc:
            log.warning("Tool catalog unavailable, answering without tools", error=str(exc))
            ctx.error = f"Tool catalog unavailable: {exc}"
            ctx.advance(PipelineState.NO_TOOL)
            return

        if not snapshot.tools:
            log.info("No MCP tools available, skipping selection")
            ctx.advance(PipelineState.NO_TOOL)
            return

        messages = [
            Message(role="system", content=build_selection_prompt(snapshot.tools)),
            Message(role="user", content=ctx.input),
        ]
        try:
            response = await self.provider.complete(messages, temperature=self.selection_temperature)
        except Exception as exc:
            log.warning("Tool selection failed", error=str(exc), error_type=type(exc).__name__)
            ctx.error = f"Tool selection failed: {exc}"
            ctx.advance(PipelineState.NO_TOOL)
            return

        selection = classify_selection(response.content)
        if isinstance(selection, ParsedSelection):
            tool = snapshot.get(selection.tool)
            schema = tool.input_schema if tool is not None else None
            ctx.selected_tool = selection.tool
            if isinstance(selection.args, str):
                ctx.args = arguments_from_text(selection.args, schema)
            else:
                ctx.args = coerce_arguments(selection.args, schema)
            log.info("Tool selected", tool=ctx.selected_tool, args=ctx.args)
            ctx.advance(PipelineState.TOOL_CHOSEN)
        else:
            log.info("No tool selected, keeping model text as fallback")
            ctx.raw_llm_fallback = selection.text
            ctx.advance(PipelineState.NO_TOOL)

    async def _invoke(self, ctx: PipelineContext) -> None:
        if ctx.state is PipelineState.NO_TOOL:
            return
        ctx.advance(PipelineState.INVOKING)

        name = ctx.selected_tool or ""
        if self.catalog.lookup(name) is None:
            log.warning("Selected tool is not in the catalog", tool=name, available=self.catalog.names())
            ctx.error = f"The model chose tool '{name}', which is not available"
            return

        try:
            result = await self.invoker.call(name, ctx.args or {})
        except InfobyteError as exc:
            log.warning("Tool invocation failed", tool=name, error=str(exc))
            ctx.error = str(exc) if isinstance(exc, ToolError) else f"Tool '{name}' failed: {exc}"
            return

        ctx.tool_result = stringify_tool_result(result)
        if isinstance(result, dict) and result.get("isError"):
            ctx.error = f"Tool '{name}' reported an error"

    def _format_messages(self, ctx: PipelineContext) -> list[Message]:
        parts = [f"User request:\n{ctx.input}"]
        if ctx.tool_result is not None:
            parts.append(f"Data from tool '{ctx.selected_tool}':\n{ctx.tool_result}")
        elif ctx.raw_llm_fallback:
            parts.append(f"Data:\n{ctx.raw_llm_fallback}")
        else:
            parts.append("No tool data is available. Answer the request directly.")
        if ctx.error:
            parts.append(f"Note: {ctx.error}")
        return [
            Message(role="system", content=FORMAT_SYSTEM_PROMPT),
            Message(role="user", content="\n\n".join(parts)),
        ]

    @staticmethod
    def _fallback_text(ctx: PipelineContext) -> str:
        if ctx.error:
            return f"Sorry, I could not complete that request: {ctx.error}"
        if ctx.tool_result:
            return ctx.tool_result
        if ctx.raw_llm_fallback:
            return ctx.raw_llm_fallback
        return "Sorry, I do not have an answer for that."

    @staticmethod
    def _result(ctx: PipelineContext, text: str, prompt_tokens: int = 0) -> PipelineResult:
        return PipelineResult(
            text=text,
            tool=ctx.selected_tool,
            args=dict(ctx.args or {}),
            tool_result=ctx.tool_result,
            error=ctx.error,
            state=ctx.state,
            prompt_tokens=prompt_tokens,
        )
