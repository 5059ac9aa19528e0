"""Command-line entry point for Infobyte."""

import asyncio
import sys

import typer

from infobyte.agent.pipeline import AgentPipeline
from infobyte.config import Config, get_config, set_config
from infobyte.exceptions import ConfigurationError, InfobyteError
from infobyte.llm import create_provider
from infobyte.logging import configure_logging, log
from infobyte.mcp.client import MCPClient

app = typer.Typer(help="Infobyte - answer questions with tools from an MCP server")


def _setup(config: str, verbose: bool) -> Config:
    if config:
        cfg = Config.load(config)
    else:
        cfg = Config.load()
    set_config(cfg)
    configure_logging(cfg.logging, verbose=verbose)
    try:
        cfg.validate_runtime()
    except ConfigurationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(code=2) from e
    return cfg


async def _ask(prompt: str, stream: bool) -> None:
    cfg = get_config()
    provider = create_provider(
        provider=cfg.model.provider,
        model=cfg.model.model,
        api_key=cfg.model.api_key or None,
        base_url=cfg.model.base_url or None,
        temperature=cfg.model.temperature,
        max_tokens=cfg.model.max_tokens,
    )
    client = MCPClient.from_config(cfg.mcp)
    try:
        await client.connect()
        pipeline = AgentPipeline.from_client(
            provider,
            client,
            selection_temperature=cfg.agent.selection_temperature,
        )
        if stream:
            async for chunk in pipeline.stream(prompt):
                typer.echo(chunk, nl=False)
            typer.echo()
        else:
            typer.echo(await pipeline.run(prompt))
    finally:
        await client.aclose()
        await provider.close()


async def _list_tools(refresh: bool) -> None:
    client = MCPClient.from_config(get_config().mcp, auto_fetch_tools=False)
    try:
        await client.connect()
        snapshot = await client.fetch_tools(force_refresh=refresh)
        if not snapshot.tools:
            typer.echo("No tools available.")
            return
        for tool in snapshot.tools:
            typer.echo(f"- {tool.name}: {tool.description}")
    finally:
        await client.aclose()


def _run(work) -> None:
    try:
        asyncio.run(work)
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except InfobyteError as e:
        log.error("Command failed", error=str(e))
        typer.echo(f"Error: {e}", err=True)
        sys.exit(1)


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Question or instruction for the agent"),
    stream: bool = typer.Option(False, "-s", "--stream", help="Stream the answer as it is generated"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Answer PROMPT, calling an MCP tool when one applies."""
    _setup(config, verbose)
    _run(_ask(prompt, stream))


@app.command()
def tools(
    refresh: bool = typer.Option(False, "-r", "--refresh", help="Bypass the catalog cache"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """List the tools offered by the MCP server."""
    _setup(config, verbose)
    _run(_list_tools(refresh))


@app.command()
def version() -> None:
    """Show version information."""
    from infobyte import __version__
    typer.echo(f"Infobyte v{__version__}")


if __name__ == "__main__":
    app()
