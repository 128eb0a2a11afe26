from collections.abc import AsyncGenerator
from typing import Any

import pytest
from click.testing import CliRunner
from fastmcp.client import Client
from fastmcp.client.transports import FastMCPTransport
from inline_snapshot import snapshot

from github_stars_mcp.main import cli, mcp
from tests.conftest import dump_list_for_snapshot


def test_main():
    assert mcp is not None


@pytest.fixture
async def main_mcp_client() -> AsyncGenerator[Client[FastMCPTransport], Any]:
    async with Client[FastMCPTransport](transport=mcp) as mcp_client:
        yield mcp_client


async def test_list_tools(main_mcp_client: Client[FastMCPTransport]):
    list_tools = await main_mcp_client.list_tools()
    assert dump_list_for_snapshot(list_tools, exclude_keys=["inputSchema", "outputSchema", "meta"]) == snapshot(
        [
            {
                "name": "sync_starred_repositories",
                "description": "Fetch newly starred repositories from GitHub into the store, stopping at the ones already stored.",
            },
            {
                "name": "resolve_readmes",
                "description": "Find and store the README of every stored repository whose README has not been resolved yet.",
            },
            {
                "name": "describe_repositories",
                "description": "Generate a brief description and keywords for every selected repository with a stored README.",
            },
            {"name": "abort", "description": "Abort the running synchronization, README resolution or description generation."},
            {"name": "list_starred_repositories", "description": "List the stored starred repositories, most recently starred first."},
            {"name": "get_repository_descriptions", "description": "Get a stored starred repository with the descriptions generated for it."},
            {"name": "select_repositories", "description": "Include or exclude stored repositories from description generation."},
        ]
    )


def test_cli_help():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "mcp" in result.output
    assert "sync" in result.output


def test_sync_help():
    result = CliRunner().invoke(cli, ["sync", "--help"])

    assert result.exit_code == 0
    assert "--max-pages" in result.output
    assert "--describe / --no-describe" in result.output
