"""MCP server exposing the lite reader as a tool."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from .config import ReaderConfig
from .navigator import run_reader

logger = logging.getLogger("lite_reader.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="lite-reader")


@mcp.tool()
async def read_page(
    url: str,
) -> str:
    """Fetch a web page over plain HTTP and return its readable content as Markdown."""

    config = ReaderConfig.from_env()
    results = await run_reader([url], config)
    if not results:
        raise RuntimeError(f"Failed to read {url}")
    return results[0].markdown


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
