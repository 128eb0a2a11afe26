import asyncio
from logging import Logger
from typing import Literal

import click
from fastmcp import FastMCP
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.utilities.logging import get_logger

from github_stars_mcp.clients.generation import get_generation_client
from github_stars_mcp.servers.stars import StarsServer
from github_stars_mcp.stores.sqlite import get_store

logger: Logger = get_logger(name=__name__)

mcp: FastMCP[None] = FastMCP[None](name="GitHub Stars MCP")

mcp.add_middleware(middleware=LoggingMiddleware(include_payloads=True, logger=logger))

stars_server: StarsServer = StarsServer(store=get_store(), generation_client=get_generation_client(), logger=logger)
_ = stars_server.register_tools(fastmcp=mcp)


@click.group()
def cli():
    pass


@cli.command(name="mcp")
@click.option(
    "--mcp-transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="stdio",
    help="The transport to run the MCP server on",
)
def run_mcp(mcp_transport: Literal["stdio", "streamable-http"]):
    mcp.run(transport=mcp_transport)


async def _run_sync(max_pages: int | None, describe: bool) -> list[str]:
    async with stars_server.store:
        if describe and stars_server.generation_client is None:
            logger.warning("No generation backend is configured, skipping description generation")
            describe = False

        return await stars_server.run_full_sync(max_pages=max_pages, describe=describe)


@cli.command(name="sync")
@click.option("--max-pages", type=int, default=None, help="The maximum number of pages of starred repositories to fetch")
@click.option("--describe/--no-describe", default=True, help="Whether to generate descriptions after resolving READMEs")
def run_sync(max_pages: int | None, describe: bool):
    messages = asyncio.run(_run_sync(max_pages=max_pages, describe=describe))

    for message in messages:
        click.echo(message)


if __name__ == "__main__":
    cli()
