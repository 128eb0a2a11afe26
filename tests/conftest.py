import asyncio
import math
from collections.abc import AsyncGenerator, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, overload, override

import pytest
from pydantic import BaseModel

from github_stars_mcp.clients.errors.generation import GenerationError
from github_stars_mcp.clients.errors.github import ClientError
from github_stars_mcp.clients.generation import BaseGenerationClient, GenerationChunk, TokenLogprobs
from github_stars_mcp.clients.models.github import RepositoryFile
from github_stars_mcp.models.records import RepoRecord
from github_stars_mcp.stores.sqlite import StarsStore

BASE_STARRED_AT = datetime(2025, 6, 1, tzinfo=UTC)


def make_repository(repo_id: int, full_name: str | None = None, starred_at: datetime | None = None, **kwargs: Any) -> RepoRecord:
    """Repositories with a higher id are starred more recently, unless `starred_at` says otherwise."""

    full_name = full_name or f"owner{repo_id}/repo{repo_id}"

    fields: dict[str, Any] = {
        "description": f"Repository {repo_id}",
        "url": f"https://github.com/{full_name}",
        "language": "Python",
        **kwargs,
    }

    return RepoRecord(
        id=repo_id,
        full_name=full_name,
        starred_at=starred_at or BASE_STARRED_AT + timedelta(hours=repo_id),
        **fields,
    )


def make_page(first_id: int, count: int) -> list[RepoRecord]:
    """A page of repositories ordered most recently starred first."""

    return [make_repository(repo_id) for repo_id in range(first_id, first_id - count, -1)]


class FakeStarsClient:
    """Serves starred repository pages and repository files from memory."""

    def __init__(
        self,
        pages: list[list[RepoRecord]] | None = None,
        files: dict[tuple[str, str], str | RepositoryFile] | None = None,
        errors: dict[Any, ClientError] | None = None,
    ):
        self.pages: list[list[RepoRecord]] = pages or []
        self.files: dict[tuple[str, str], str | RepositoryFile] = files or {}
        self.errors: dict[Any, ClientError] = errors or {}
        self.page_requests: list[int] = []
        self.file_requests: list[tuple[str, str]] = []
        self.in_flight: int = 0
        self.max_in_flight: int = 0

    async def _yield_while_in_flight(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

    async def get_starred_repositories(self, page: int = 1, per_page: int = 100) -> list[RepoRecord]:
        self.page_requests.append(page)
        await self._yield_while_in_flight()

        if error := self.errors.get(page):
            raise error

        if page > len(self.pages):
            return []

        return self.pages[page - 1]

    async def get_file(self, owner: str, repo: str, path: str, error_on_not_found: bool = False) -> RepositoryFile | None:
        full_name = f"{owner}/{repo}"
        self.file_requests.append((full_name, path))
        await self._yield_while_in_flight()

        if error := self.errors.get((full_name, path)):
            raise error

        if (content := self.files.get((full_name, path))) is None:
            return None

        if isinstance(content, RepositoryFile):
            return content

        return RepositoryFile(path=path, content=content, size=len(content.encode()))


CONFIDENT_TOKEN: list[float] = [0.0]
UNCERTAIN_TOKEN: list[float] = [-math.log(100)] * 100


class FakeGenerationClient(BaseGenerationClient):
    """Replies with a canned response, streamed as a single chunk carrying the given per-token log probabilities."""

    def __init__(
        self,
        response: str,
        token_logprobs: list[list[float]] | None = None,
        model: str = "fake-model",
        error: GenerationError | None = None,
    ):
        self.model = model
        self.top_logprobs = 5
        self.response = response
        self.token_logprobs: list[list[float]] = token_logprobs if token_logprobs is not None else [CONFIDENT_TOKEN] * 10
        self.error = error
        self.prompts: list[str] = []

    @override
    async def generate(self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True) -> str:
        self.prompts.append(prompt)

        if self.error:
            raise self.error

        return self.response

    @override
    async def stream(
        self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True
    ) -> AsyncGenerator[GenerationChunk, None]:
        self.prompts.append(prompt)

        if self.error:
            raise self.error

        yield GenerationChunk(
            text=self.response,
            tokens=[TokenLogprobs(token=f"t{index}", top_logprobs=logprobs) for index, logprobs in enumerate(self.token_logprobs)],
        )


@pytest.fixture
async def store() -> AsyncGenerator[StarsStore, Any]:
    async with StarsStore(path=":memory:") as stars_store:
        yield stars_store


def handle_exclude_keys(dictionary: dict[str, Any], exclude_keys: list[str] | None = None) -> dict[str, Any]:
    if exclude_keys is None:
        return dictionary
    return {key: value for key, value in dictionary.items() if key not in exclude_keys}


@overload
def dump_for_snapshot(
    basemodel: None,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> None: ...


@overload
def dump_for_snapshot(
    basemodel: BaseModel,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> dict[str, Any]: ...


def dump_for_snapshot(
    basemodel: None | BaseModel,
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> dict[str, Any] | None:
    if basemodel is None:
        return None

    return handle_exclude_keys(basemodel.model_dump(exclude_none=exclude_none, **dump_kwargs), exclude_keys)


def dump_list_for_snapshot(
    basemodel: None | Sequence[BaseModel],
    /,
    exclude_keys: list[str] | None = None,
    exclude_none: bool = True,
    **dump_kwargs: Any,
) -> list[dict[str, Any]] | None:
    if basemodel is None:
        return None

    return [dump_for_snapshot(item, exclude_keys=exclude_keys, exclude_none=exclude_none, **dump_kwargs) for item in basemodel]
