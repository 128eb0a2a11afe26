import asyncio
import random
from collections.abc import AsyncGenerator
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_stars_mcp.clients.errors.github import ClientError
from github_stars_mcp.clients.github import STARRED_PAGE_SIZE, GitHubStarsClient
from github_stars_mcp.models.events import FetchEvent
from github_stars_mcp.models.records import RepoRecord
from github_stars_mcp.pipeline.watermark import get_watermark, is_at_or_below_watermark
from github_stars_mcp.stores.sqlite import StarsStore

DEFAULT_PAGE_DELAY_RANGE: tuple[float, float] = (1.0, 3.0)

ABORTED_MESSAGE = "Operation aborted by user."


async def upsert_page(store: StarsStore, repositories: list[RepoRecord]) -> None:
    """Persist a page of repositories, keeping the README status and selection of already stored ones."""

    merged: list[RepoRecord] = []

    for repository in repositories:
        existing: RepoRecord | None = await store.get_repository(repo_id=repository.id)
        merged.append(existing.merge_remote(repository) if existing else repository)

    await store.upsert_repositories(repositories=merged)


async def fetch_starred_repositories(
    client: GitHubStarsClient,
    store: StarsStore,
    *,
    page: int = 1,
    page_end: int | None = None,
    cancel_event: asyncio.Event | None = None,
    delay_range: tuple[float, float] | None = None,
    logger: Logger | None = None,
) -> AsyncGenerator[FetchEvent, None]:
    """Fetch starred repositories page by page, most recently starred first, persisting each new page.

    Fetching stops at the first page that reaches the watermark (the most recent `starred_at` already stored);
    that page is not persisted. It also stops on a short page, once `page_end` has been fetched, when
    `cancel_event` is set, or on a client error. The last event is always terminal and errors are never raised.

    Args:
        client: The GitHub client.
        store: The store to persist repositories in.
        page: The first page to fetch.
        page_end: The last page to fetch, if bounded.
        cancel_event: Checked before every page, once set no further request is made.
        delay_range: The bounds in seconds of a random pause between consecutive pages.
    """

    logger = logger or get_logger(name=__name__)

    watermark = await get_watermark(store=store)

    logger.info(f"Fetching starred repositories from page {page}, watermark {watermark.isoformat() if watermark else 'none'}")

    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Fetching starred repositories aborted before page {page}")
            yield FetchEvent(kind="aborted", message=ABORTED_MESSAGE, page=page)
            return

        try:
            repositories: list[RepoRecord] = await client.get_starred_repositories(page=page, per_page=STARRED_PAGE_SIZE)
        except ClientError as e:
            logger.warning(f"Error fetching starred repositories on page {page}: {e}")
            yield FetchEvent(kind="error", message=f"Error fetching starred repositories: {e}", page=page)
            return

        if any(is_at_or_below_watermark(repository.starred_at, watermark) for repository in repositories):
            logger.info(f"Page {page} reached the watermark, all new repositories are up-to-date")
            yield FetchEvent(kind="up_to_date", message="All new repos are up-to-date.", page=page)
            return

        await upsert_page(store=store, repositories=repositories)

        yield FetchEvent(kind="page", message=f"Page {page}: fetched {len(repositories)} repos", page=page, repositories=repositories)

        if len(repositories) < STARRED_PAGE_SIZE or (page_end is not None and page >= page_end):
            yield FetchEvent(kind="complete", message=f"Fetched starred repositories through page {page}.", page=page)
            return

        page += 1

        if delay_range is not None:
            await asyncio.sleep(random.uniform(*delay_range))  # noqa: S311
