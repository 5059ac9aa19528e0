import asyncio

import pytest

from infobyte.agent.pipeline import (
    AgentPipeline,
    PipelineContext,
    PipelineState,
    stringify_tool_result,
)
from infobyte.exceptions import LLMError, PipelineError
from infobyte.llm import LLMProvider, LLMResponse, Message
from infobyte.mcp.catalog import ToolCatalog
from infobyte.mcp.correlator import RequestCorrelator
from infobyte.mcp.invoker import ToolInvoker
from infobyte.mcp.protocol import ResponseMessage
from infobyte.mcp.session import SessionManager

GET_PRODUCTS = {
    "name": "getProducts",
    "description": "list products",
    "inputSchema": {"properties": {"skip": {"type": "number"}, "limit": {"type": "number"}}},
}


class ScriptedProvider(LLMProvider):
    def __init__(self, replies: list, stream_chunks: list | None = None):
        self.replies = list(replies)
        self.stream_chunks = stream_chunks or []
        self.calls: list[tuple[list[Message], float | None]] = []

    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append((messages, temperature))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply)

    async def complete_streaming(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        self.calls.append((messages, temperature))
        for chunk in self.stream_chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class ProductServer:
    def __init__(self, tools, call_result=None, call_error=None):
        self.tools = tools
        self.call_result = call_result
        self.call_error = call_error
        self.requests: list[dict] = []
        self.correlator: RequestCorrelator | None = None

    async def send(self, payload: dict) -> None:
        self.requests.append(payload)
        if payload["method"] == "tools/list":
            message = ResponseMessage(request_id=payload["id"], result={"tools": self.tools})
        elif self.call_error is not None:
            message = ResponseMessage(request_id=payload["id"], error=self.call_error)
        else:
            message = ResponseMessage(request_id=payload["id"], result=self.call_result)
        asyncio.get_running_loop().call_soon(self.correlator.resolve, message)

    def tool_calls(self) -> list[dict]:
        return [r for r in self.requests if r["method"] == "tools/call"]


def _make_pipeline(provider: LLMProvider, server: ProductServer) -> AgentPipeline:
    sessions = SessionManager()
    sessions.establish("session-1")
    correlator = RequestCorrelator(server.send, sessions)
    server.correlator = correlator
    catalog = ToolCatalog(correlator, sessions)
    invoker = ToolInvoker(catalog, correlator, sessions)
    return AgentPipeline(provider, catalog, invoker)


@pytest.mark.asyncio
async def test_get_products_scenario_selects_invokes_and_formats():
    provider = ScriptedProvider(
        [
            '{"tool": "getProducts", "args": {"skip": "2", "limit": 5}}',
            "Here are the 5 products after skipping the first 2.",
        ]
    )
    server = ProductServer([GET_PRODUCTS], call_result="[...5 items...]")
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("fetch the next 5 products skipping the first 2")

    assert result.text == "Here are the 5 products after skipping the first 2."
    assert result.tool == "getProducts"
    assert result.args == {"skip": 2, "limit": 5}
    assert result.tool_result == "[...5 items...]"
    assert result.prompt_tokens > 0
    assert result.error is None
    assert result.state is PipelineState.DONE

    assert server.tool_calls()[0]["params"]["arguments"] == {"skip": 2, "limit": 5}
    selection_messages, selection_temperature = provider.calls[0]
    assert selection_temperature == 0.0
    assert "- getProducts: list products" in selection_messages[0].content
    format_messages, _ = provider.calls[1]
    assert "[...5 items...]" in format_messages[1].content
    assert "fetch the next 5 products" in format_messages[1].content


@pytest.mark.asyncio
async def test_scalar_selection_args_are_mapped_onto_the_tool_schema():
    get_product = {
        "name": "getProduct",
        "description": "one product by id",
        "inputSchema": {"properties": {"id": {"type": "number"}}},
    }
    provider = ScriptedProvider(['{"tool": "getProduct", "args": "17"}', "Product 17 is a desk lamp."])
    server = ProductServer([get_product], call_result="desk lamp")
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("show me product 17")

    assert server.tool_calls()[0]["params"]["arguments"] == {"id": 17}
    assert result.args == {"id": 17}
    assert result.tool_result == "desk lamp"
    format_messages, _ = provider.calls[1]
    assert result.prompt_tokens == sum(len(m.content) // 4 for m in format_messages)


@pytest.mark.asyncio
async def test_invocation_failure_still_yields_text_about_the_failure():
    provider = ScriptedProvider(
        [
            '{"tool": "getProducts", "args": {"skip": 2, "limit": 5}}',
            "",
        ]
    )
    server = ProductServer([GET_PRODUCTS], call_error={"code": -32000, "message": "database offline"})
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("fetch the next 5 products skipping the first 2")

    assert result.text
    assert "database offline" in result.text
    assert "database offline" in result.error
    assert result.state is PipelineState.DONE
    format_messages, _ = provider.calls[1]
    assert "database offline" in format_messages[1].content


@pytest.mark.asyncio
async def test_plain_text_selection_is_passed_to_format_stage():
    provider = ScriptedProvider(["Paris is the capital of France.", "Paris."])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("What is the capital of France?")

    assert result.text == "Paris."
    assert result.tool is None
    assert server.tool_calls() == []
    format_messages, _ = provider.calls[1]
    assert "Paris is the capital of France." in format_messages[1].content


@pytest.mark.asyncio
async def test_empty_catalog_skips_selection_call():
    provider = ScriptedProvider(["Hello!"])
    server = ProductServer([])
    pipeline = _make_pipeline(provider, server)

    text = await pipeline.run("hi")

    assert text == "Hello!"
    assert len(provider.calls) == 1
    assert provider.calls[0][0][0].content.startswith("You are a helpful assistant.")


@pytest.mark.asyncio
async def test_unknown_tool_is_not_invoked():
    provider = ScriptedProvider(['{"tool": "deleteEverything", "args": {}}', "I can't do that."])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("delete everything")

    assert result.text == "I can't do that."
    assert server.tool_calls() == []
    assert "deleteEverything" in result.error


@pytest.mark.asyncio
async def test_selection_llm_failure_is_recoverable():
    provider = ScriptedProvider([LLMError("rate limited"), "Sorry, try again later."])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("list products")

    assert result.text == "Sorry, try again later."
    assert "rate limited" in result.error


@pytest.mark.asyncio
async def test_format_failure_raises_pipeline_error():
    provider = ScriptedProvider(["no tool", LLMError("service unavailable")])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run("hi")

    assert exc_info.value.stage == "format"


@pytest.mark.asyncio
async def test_unexpected_selection_error_is_recoverable():
    provider = ScriptedProvider([AttributeError("'NoneType' object has no attribute 'content'"), "Sorry."])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    result = await pipeline.run_detailed("list products")

    assert result.text == "Sorry."
    assert result.state is PipelineState.DONE
    assert "no attribute 'content'" in result.error
    assert server.tool_calls() == []


@pytest.mark.asyncio
async def test_unexpected_format_error_raises_pipeline_error():
    provider = ScriptedProvider(["no tool", AttributeError("bad response object")])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    with pytest.raises(PipelineError) as exc_info:
        await pipeline.run("hi")

    assert exc_info.value.stage == "format"
    assert isinstance(exc_info.value.__cause__, AttributeError)


@pytest.mark.asyncio
async def test_stream_yields_formatted_chunks():
    provider = ScriptedProvider(
        ['{"tool": "getProducts", "args": {"limit": 5}}'],
        stream_chunks=["Five ", "products ", "found."],
    )
    server = ProductServer([GET_PRODUCTS], call_result={"content": [{"type": "text", "text": "[...]"}]})
    pipeline = _make_pipeline(provider, server)

    chunks = [chunk async for chunk in pipeline.stream("get 5 products")]

    assert "".join(chunks) == "Five products found."
    assert len(server.tool_calls()) == 1


@pytest.mark.asyncio
async def test_stream_failure_yields_single_error_message():
    provider = ScriptedProvider(["no tool"], stream_chunks=[LLMError("connection reset")])
    server = ProductServer([GET_PRODUCTS])
    pipeline = _make_pipeline(provider, server)

    chunks = [chunk async for chunk in pipeline.stream("hi")]

    assert len(chunks) == 1
    assert chunks[0].startswith("Error:")
    assert "connection reset" in chunks[0]


def test_context_rejects_invalid_transition():
    ctx = PipelineContext(input="hi")
    ctx.advance(PipelineState.SELECTING)
    ctx.advance(PipelineState.NO_TOOL)

    with pytest.raises(PipelineError):
        ctx.advance(PipelineState.INVOKING)

    ctx.advance(PipelineState.FAILED)
    assert ctx.state is PipelineState.FAILED


def test_stringify_tool_result():
    assert stringify_tool_result(None) == ""
    assert stringify_tool_result("plain") == "plain"
    assert stringify_tool_result(
        {"content": [{"type": "text", "text": "a"}, {"type": "image", "data": "x"}, {"type": "text", "text": "b"}]}
    ) == "a\nb"
    assert stringify_tool_result({"items": [1]}) == '{\n  "items": [\n    1\n  ]\n}'
