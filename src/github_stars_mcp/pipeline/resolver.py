import asyncio
from collections.abc import AsyncGenerator
from logging import Logger

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from github_stars_mcp.clients.errors.github import ClientError, ResourceNotFoundError, ResourceTypeMismatchError
from github_stars_mcp.clients.github import GitHubStarsClient
from github_stars_mcp.clients.models.github import RepositoryFile
from github_stars_mcp.models.events import ResolveEvent
from github_stars_mcp.models.records import (
    ReadmeFound,
    ReadmeNotFound,
    ReadmeRecord,
    ReadmeStatus,
    ReadmeUnknown,
    RepoRecord,
)
from github_stars_mcp.pipeline.fetcher import ABORTED_MESSAGE
from github_stars_mcp.stores.sqlite import StarsStore

README_CANDIDATE_PATHS: tuple[str, ...] = (
    "README.md",
    "README",
    "readme.md",
    "readme",
    "Readme.md",
)


class ReadmeProbeResult(BaseModel):
    """The outcome of probing a repository for its README."""

    status: ReadmeStatus = Field(description="The resolution status, `unknown` when a transient fault stopped the probe.")
    content: str | None = Field(default=None, description="The README content when found.")
    error: str | None = Field(default=None, description="The transient fault that stopped the probe, if any.")


async def probe_readme(client: GitHubStarsClient, owner: str, repo: str, logger: Logger | None = None) -> ReadmeProbeResult:
    """Probe the candidate README paths in priority order, the first one with content wins.

    A missing path or an empty file moves on to the next candidate. Any other client error, or a file GitHub
    returns without inline content, stops the probe and leaves the status unknown so the repository is retried
    on the next sync. Only a probe where every candidate is missing returns `not_found`.
    """

    logger = logger or get_logger(name=__name__)

    for path in README_CANDIDATE_PATHS:
        try:
            file: RepositoryFile | None = await client.get_file(owner=owner, repo=repo, path=path, error_on_not_found=False)
        except (ResourceNotFoundError, ResourceTypeMismatchError):
            continue
        except ClientError as e:
            logger.warning(f"Error fetching README {path} for {owner}/{repo}, leaving it unresolved: {e}")
            return ReadmeProbeResult(status=ReadmeUnknown(), error=str(e))

        if file is None:
            continue

        if not file.content:
            if file.size == 0:
                continue

            # Files over 1 MB come back without inline content.
            logger.warning(f"README {path} for {owner}/{repo} has no inline content ({file.size} bytes), leaving it unresolved")
            return ReadmeProbeResult(status=ReadmeUnknown(), error=f"{path} has no inline content ({file.size} bytes)")

        return ReadmeProbeResult(status=ReadmeFound(path=path), content=file.content)

    return ReadmeProbeResult(status=ReadmeNotFound())


async def select_unresolved(store: StarsStore, retry_not_found: bool = False) -> list[RepoRecord]:
    repositories: list[RepoRecord] = await store.list_repositories()

    return [
        repository
        for repository in repositories
        if isinstance(repository.readme_status, ReadmeUnknown) or (retry_not_found and isinstance(repository.readme_status, ReadmeNotFound))
    ]


async def resolve_readmes(
    client: GitHubStarsClient,
    store: StarsStore,
    repositories: list[RepoRecord] | None = None,
    *,
    retry_not_found: bool = False,
    cancel_event: asyncio.Event | None = None,
    logger: Logger | None = None,
) -> AsyncGenerator[ResolveEvent, None]:
    """Resolve the README of each repository and persist the content and the resolution status.

    Repositories already resolved to `found` are skipped, as are `not_found` ones unless `retry_not_found` is
    set. A repository with a stored README but a stale status (a crash between the two writes) is repaired
    from the stored README without a request. A failure on one repository never stops the batch.

    Args:
        client: The GitHub client.
        store: The store holding the repositories.
        repositories: The repositories to resolve. Defaults to the stored repositories with an unknown status.
        retry_not_found: Also probe again the repositories previously marked `not_found`.
        cancel_event: Checked before every repository, once set no further request is made.
    """

    logger = logger or get_logger(name=__name__)

    if repositories is None:
        repositories = await select_unresolved(store=store, retry_not_found=retry_not_found)

    total: int = len(repositories)
    processed: int = 0

    logger.info(f"Resolving READMEs for {total} repositories")

    for repository in repositories:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Resolving READMEs aborted after {processed} of {total} repositories")
            yield ResolveEvent(kind="aborted", message=ABORTED_MESSAGE, processed=processed, total=total)
            return

        current: RepoRecord = await store.get_repository(repo_id=repository.id) or repository

        if isinstance(current.readme_status, ReadmeFound) or (
            isinstance(current.readme_status, ReadmeNotFound) and not retry_not_found
        ):
            processed += 1
            yield ResolveEvent(
                kind="skipped",
                message=f"Skipping {current.full_name} as README is already processed.",
                repo_id=current.id,
                readme_status=current.readme_status,
                processed=processed,
                total=total,
            )
            continue

        if stored_readme := await store.get_readme(repo_id=current.id):
            repaired_status = ReadmeFound(path=stored_readme.path)
            await store.upsert_repository(repository=current.model_copy(update={"readme_status": repaired_status}))

            processed += 1
            logger.info(f"Repaired README status of {current.full_name} from the stored README {stored_readme.path}")
            yield ResolveEvent(
                kind="repaired",
                message=f"Repaired README status for {current.full_name}",
                repo_id=current.id,
                readme_status=repaired_status,
                processed=processed,
                total=total,
            )
            continue

        try:
            result: ReadmeProbeResult = await probe_readme(client=client, owner=current.owner, repo=current.name, logger=logger)

            if isinstance(result.status, ReadmeFound) and result.content is not None:
                # The README is written before the status so a crash in between is repairable.
                await store.upsert_readme(
                    readme=ReadmeRecord(repo_id=current.id, full_name=current.full_name, path=result.status.path, content=result.content)
                )
                await store.upsert_repository(repository=current.model_copy(update={"readme_status": result.status}))
            elif isinstance(result.status, ReadmeNotFound):
                await store.upsert_repository(repository=current.model_copy(update={"readme_status": result.status}))

            status: ReadmeStatus = result.status
        except Exception as e:
            logger.exception(f"Error resolving README for {current.full_name}: {e}")
            status = ReadmeUnknown()

        processed += 1

        yield ResolveEvent(
            kind="resolved",
            message=f"Processed README for {current.full_name}",
            repo_id=current.id,
            readme_status=status,
            processed=processed,
            total=total,
        )

    yield ResolveEvent(kind="complete", message="Processing complete.", processed=processed, total=total)
