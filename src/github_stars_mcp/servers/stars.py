import asyncio
from logging import Logger
from typing import Any

from fastmcp.server import FastMCP
from fastmcp.tools import Tool
from fastmcp.utilities.logging import get_logger

from github_stars_mcp.clients.generation import BaseGenerationClient
from github_stars_mcp.clients.github import GitHubStarsClient
from github_stars_mcp.models.events import DescribeEvent, FetchEvent, ResolveEvent
from github_stars_mcp.models.records import DescriptionStatus, ReadmeFound, ReadmeNotFound, RepoRecord
from github_stars_mcp.pipeline.fetcher import DEFAULT_PAGE_DELAY_RANGE, fetch_starred_repositories
from github_stars_mcp.pipeline.generator import MonitorFactory, describe_repositories, get_monitor_factory
from github_stars_mcp.pipeline.resolver import resolve_readmes
from github_stars_mcp.servers.models.stars import DescribeResult, RepositoryWithDescriptions, ResolveResult, SyncResult
from github_stars_mcp.servers.shared.annotations import (
    LIMIT_READMES,
    LIMIT_REPOSITORIES,
    MAX_PAGES,
    REPO_ID,
    REPO_IDS,
    RETRY_NOT_FOUND,
    SELECTED,
)
from github_stars_mcp.servers.shared.errors import GenerationNotConfiguredError, RepositoryNotFoundError
from github_stars_mcp.stores.sqlite import StarsStore, get_store

DEFAULT_LIST_LIMIT = 50


class StarsServer:
    """Synchronizes the authenticated user's starred repositories into the store and enriches them."""

    store: StarsStore
    generation_client: BaseGenerationClient | None
    monitor_factory: MonitorFactory | None
    delay_range: tuple[float, float] | None
    cancel_event: asyncio.Event
    pipeline_lock: asyncio.Lock
    logger: Logger

    def __init__(
        self,
        stars_client: GitHubStarsClient | None = None,
        store: StarsStore | None = None,
        generation_client: BaseGenerationClient | None = None,
        monitor_factory: MonitorFactory | None = None,
        delay_range: tuple[float, float] | None = DEFAULT_PAGE_DELAY_RANGE,
        logger: Logger | None = None,
    ):
        self.logger = logger or get_logger(name=__name__)
        self._stars_client: GitHubStarsClient | None = stars_client
        self.store = store or get_store()
        self.generation_client = generation_client
        self.monitor_factory = monitor_factory if monitor_factory is not None else get_monitor_factory()
        self.delay_range = delay_range
        self.cancel_event = asyncio.Event()
        self.pipeline_lock = asyncio.Lock()

    @property
    def stars_client(self) -> GitHubStarsClient:
        # Created on first use so the server can be built without a GitHub token.
        if self._stars_client is None:
            self._stars_client = GitHubStarsClient(logger=self.logger)

        return self._stars_client

    def register_tools(self, fastmcp: FastMCP[Any]) -> FastMCP[Any]:
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.sync_starred_repositories))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.resolve_readmes))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.describe_repositories))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.abort))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.list_starred_repositories))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.get_repository_descriptions))
        _ = fastmcp.add_tool(tool=Tool.from_function(fn=self.select_repositories))

        return fastmcp

    def _start_run(self) -> asyncio.Event:
        # Only called with `pipeline_lock` held, so an abort always targets the run in progress.
        self.cancel_event.clear()
        return self.cancel_event

    async def sync_starred_repositories(self, max_pages: MAX_PAGES = None) -> SyncResult:
        """Fetch newly starred repositories from GitHub into the store, stopping at the ones already stored."""

        async with self.pipeline_lock:
            cancel_event = self._start_run()

            messages: list[str] = []
            new_repositories: int = 0
            last_event: FetchEvent | None = None

            async for event in fetch_starred_repositories(
                client=self.stars_client,
                store=self.store,
                page_end=max_pages,
                cancel_event=cancel_event,
                delay_range=self.delay_range,
                logger=self.logger,
            ):
                messages.append(event.message)
                new_repositories += len(event.repositories)
                last_event = event

            status = last_event.kind if last_event is not None and last_event.is_terminal else "complete"

            return SyncResult(status=status, new_repositories=new_repositories, messages=messages)

    async def resolve_readmes(self, retry_not_found: RETRY_NOT_FOUND = False) -> ResolveResult:
        """Find and store the README of every stored repository whose README has not been resolved yet."""

        async with self.pipeline_lock:
            cancel_event = self._start_run()

            messages: list[str] = []
            found: int = 0
            not_found: int = 0
            unresolved: int = 0
            last_event: ResolveEvent | None = None

            async for event in resolve_readmes(
                client=self.stars_client,
                store=self.store,
                retry_not_found=retry_not_found,
                cancel_event=cancel_event,
                logger=self.logger,
            ):
                messages.append(event.message)
                last_event = event

                if event.kind not in ("resolved", "repaired"):
                    continue

                if isinstance(event.readme_status, ReadmeFound):
                    found += 1
                elif isinstance(event.readme_status, ReadmeNotFound):
                    not_found += 1
                else:
                    unresolved += 1

            status = "aborted" if last_event is not None and last_event.kind == "aborted" else "complete"

            return ResolveResult(status=status, found=found, not_found=not_found, unresolved=unresolved, messages=messages)

    async def describe_repositories(self, limit: LIMIT_READMES = 0) -> DescribeResult:
        """Generate a brief description and keywords for every selected repository with a stored README."""

        if self.generation_client is None:
            raise GenerationNotConfiguredError

        async with self.pipeline_lock:
            cancel_event = self._start_run()

            messages: list[str] = []
            counts: dict[DescriptionStatus, int] = dict.fromkeys(DescriptionStatus, 0)
            last_event: DescribeEvent | None = None

            async for event in describe_repositories(
                generation_client=self.generation_client,
                store=self.store,
                limit=limit,
                monitor_factory=self.monitor_factory,
                cancel_event=cancel_event,
                logger=self.logger,
            ):
                messages.append(event.message)
                last_event = event

                if event.kind == "described" and event.status is not None:
                    counts[event.status] += 1

            status = "aborted" if last_event is not None and last_event.kind == "aborted" else "complete"

            return DescribeResult(
                status=status,
                model_name=self.generation_client.model,
                ok=counts[DescriptionStatus.OK],
                entropy_collapse=counts[DescriptionStatus.ENTROPY_COLLAPSE],
                error=counts[DescriptionStatus.ERROR],
                messages=messages,
            )

    def abort(self) -> str:
        """Abort the running synchronization, README resolution or description generation."""

        self.cancel_event.set()

        return "Abort requested."

    async def list_starred_repositories(self, limit: LIMIT_REPOSITORIES = DEFAULT_LIST_LIMIT) -> list[RepoRecord]:
        """List the stored starred repositories, most recently starred first."""

        return await self.store.list_repositories(limit=limit)

    async def get_repository_descriptions(self, repo_id: REPO_ID) -> RepositoryWithDescriptions:
        """Get a stored starred repository with the descriptions generated for it."""

        if not (repository := await self.store.get_repository(repo_id=repo_id)):
            raise RepositoryNotFoundError(repo_id=repo_id)

        descriptions = await self.store.list_repository_descriptions(repo_id=repo_id)

        return RepositoryWithDescriptions(repository=repository, descriptions=descriptions)

    async def select_repositories(self, repo_ids: REPO_IDS, selected: SELECTED) -> list[RepoRecord]:
        """Include or exclude stored repositories from description generation."""

        updated: list[RepoRecord] = []

        for repo_id in repo_ids:
            if not (repository := await self.store.get_repository(repo_id=repo_id)):
                self.logger.warning(f"Cannot update selection of repository {repo_id}, it is not stored")
                continue

            repository = repository.model_copy(update={"selected": selected})
            await self.store.upsert_repository(repository=repository)
            updated.append(repository)

        self.logger.info(f"Updated {len(updated)} repositories with selected={selected}")

        return updated

    async def run_full_sync(self, max_pages: int | None = None, describe: bool = True) -> list[str]:
        """Fetch, resolve and (optionally) describe in sequence, returning every status message."""

        sync_result = await self.sync_starred_repositories(max_pages=max_pages)
        messages: list[str] = list(sync_result.messages)

        if sync_result.status in ("aborted", "error"):
            return messages

        resolve_result = await self.resolve_readmes()
        messages.extend(resolve_result.messages)

        if resolve_result.status == "aborted" or not describe:
            return messages

        describe_result = await self.describe_repositories()
        messages.extend(describe_result.messages)

        return messages
