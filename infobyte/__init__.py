"""Infobyte - an LLM agent that answers questions through remote MCP tools."""

__version__ = "0.1.0"

from infobyte.config import Config

__all__ = ["Config", "__version__"]
