import os
from collections.abc import Awaitable, Callable, Sequence
from logging import Logger, getLogger
from typing import Any, Literal, overload

from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from githubkit.retry import RetryChainDecision, RetryRateLimit, RetryServerError
from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
from githubkit.versions.v2022_11_28.models import StarredRepository as GitHubKitStarredRepository
from pydantic import BaseModel

from github_stars_mcp.clients.errors.github import RequestError, ResourceNotFoundError, ResourceTypeMismatchError
from github_stars_mcp.clients.models.github import STAR_MEDIA_TYPE, RepositoryFile
from github_stars_mcp.models.records import RepoRecord

NOT_FOUND_ERROR = 404

GITHUBKIT_RESPONSE_TYPE = BaseModel | Sequence[BaseModel]

STARRED_PAGE_SIZE = 100


def extract_response[T: GITHUBKIT_RESPONSE_TYPE](response: GitHubKitResponse[T], /) -> T:
    """Extract the response from a response."""

    return response.parsed_data


def get_github_token() -> str:
    env_vars: tuple[str, ...] = ("GITHUB_TOKEN", "GITHUB_PERSONAL_ACCESS_TOKEN")
    for env_var in env_vars:
        if env_var in os.environ:
            return os.environ[env_var]
    msg = "GITHUB_TOKEN or GITHUB_PERSONAL_ACCESS_TOKEN must be set"
    raise ValueError(msg)


def get_githubkit_client() -> GitHubKit[Any]:
    # Retry server errors up to 3 times
    retry_server_error = RetryServerError()

    # Retry rate limit errors up to 3 times
    retry_rate_limit = RetryRateLimit(max_retry=3)

    retry_chain = RetryChainDecision(
        retry_server_error,
        retry_rate_limit,
    )

    return GitHubKit[TokenAuthStrategy](auth=TokenAuthStrategy(token=get_github_token()), auto_retry=retry_chain)


class GitHubStarsClient:
    githubkit_client: GitHubKit[Any]
    logger: Logger

    log_requests: bool
    log_responses: bool
    log_on_error: bool

    def __init__(
        self,
        githubkit_client: GitHubKit[Any] | None = None,
        logger: Logger | None = None,
        log_requests: bool = True,
        log_responses: bool = False,
        log_on_error: bool = True,
    ):
        self.githubkit_client = githubkit_client or get_githubkit_client()
        self.logger = logger or getLogger(__name__)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.log_on_error = log_on_error

    def _get_loggers(
        self, log_request: bool | None = None, log_response: bool | None = None, log_on_error: bool | None = None
    ) -> tuple[Callable[[str], Any], Callable[[str], Any], Callable[[BaseException | str], Any]]:
        request_logger = self.logger.info if log_request or self.log_requests else self.logger.debug
        response_logger = self.logger.info if log_response or self.log_responses else self.logger.debug
        error_logger = self.logger.exception if log_on_error or self.log_on_error else self.logger.debug
        return request_logger, response_logger, error_logger

    @overload
    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[False] = False,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None: ...

    @overload
    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: Literal[True] = True,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T: ...

    async def _perform_rest_request[T: GITHUBKIT_RESPONSE_TYPE](
        self,
        action: str,
        log_request: bool | None = None,
        log_response: bool | None = None,
        log_on_error: bool | None = None,
        error_on_not_found: bool | None = None,
        *,
        method: Callable[..., Awaitable[GitHubKitResponse[T]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> T | None:
        """Perform a request and extract the response.

        A 404 is an expected outcome for most lookups, it is only logged at debug level.

        Args:
            action: The action being performed.
            log_request: Whether to log the request.
            log_response: Whether to log the response.
            log_on_error: Whether to log on error.
            error_on_not_found: Whether to raise an error if the resource is not found.

        Raises:
            ResourceNotFoundError: If the resource is not found and error_on_not_found is True.
            RequestError: If the request fails.
        """

        request_logger, response_logger, error_logger = self._get_loggers(
            log_request=log_request, log_response=log_response, log_on_error=log_on_error
        )

        request_logger(f"Performing {action} using {method.__name__} with kwargs {request_args}")

        try:
            response: GitHubKitResponse[T] = await method(**request_args)
        except GitHubKitRequestFailed as e:
            if e.response.status_code == NOT_FOUND_ERROR:
                self.logger.debug(f"{action} using {method.__name__} with kwargs {request_args} returned not found")

                if error_on_not_found:
                    raise ResourceNotFoundError(action=action, resource=e.request.url.path) from e

                return None

            error_logger(f"RequestFailed error performing {action} using {method.__name__} with kwargs {request_args}: {e}")

            raise RequestError(action=action, message=str(e), extra_info={"status_code": str(e.response.status_code)}) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action} using {method.__name__} with kwargs {request_args}: {e}")

            raise RequestError(action=action, message=str(e)) from e

        extracted_response = extract_response(response)

        response_logger(f"Extracted response for {action} using {method.__name__} with kwargs {request_args}: {extracted_response}")

        return extracted_response

    async def _list_starred(self, page: int, per_page: int) -> GitHubKitResponse[list[GitHubKitStarredRepository]]:
        # The generated endpoint parses the plain repository shape, the star media type adds `starred_at`.
        return await self.githubkit_client.arequest(
            "GET",
            "/user/starred",
            params={"page": page, "per_page": per_page, "sort": "created", "direction": "desc"},
            headers={"Accept": STAR_MEDIA_TYPE, "X-GitHub-Api-Version": "2022-11-28"},
            response_model=list[GitHubKitStarredRepository],
        )

    async def get_starred_repositories(self, page: int = 1, per_page: int = STARRED_PAGE_SIZE) -> list[RepoRecord]:
        """Get a page of the authenticated user's starred repositories, most recently starred first.

        Args:
            page: The page to get, starting at 1.
            per_page: The number of repositories per page, at most 100.
        """

        starred_repositories: list[GitHubKitStarredRepository] = await self._perform_rest_request(
            action="List starred repositories",
            log_request=True,
            error_on_not_found=True,
            method=self._list_starred,
            page=page,
            per_page=per_page,
        )

        return [RepoRecord.from_starred_repository(starred_repository=starred) for starred in starred_repositories]

    @overload
    async def get_file(self, owner: str, repo: str, path: str, error_on_not_found: Literal[False] = False) -> RepositoryFile | None: ...

    @overload
    async def get_file(self, owner: str, repo: str, path: str, error_on_not_found: Literal[True] = True) -> RepositoryFile: ...

    async def get_file(
        self,
        owner: str,
        repo: str,
        path: str,
        error_on_not_found: bool = False,
    ) -> RepositoryFile | None:
        """Get a file from the default branch of a repository.

        Args:
            owner: The owner of the repository.
            repo: The name of the repository.
            path: The path of the file.
            error_on_not_found: Whether to raise an error if the file is not found.
        """

        if file := await self._perform_rest_request(
            action="Get file",
            log_request=True,
            error_on_not_found=error_on_not_found,
            method=self.githubkit_client.rest.repos.async_get_content,
            owner=owner,
            repo=repo,
            path=path,
        ):
            if not isinstance(file, GitHubKitContentFile):
                raise ResourceTypeMismatchError(
                    action="Get file", resource=path, expected_type=GitHubKitContentFile, actual_type=type(file)
                )

            return RepositoryFile.from_content_file(content_file=file)

        return None
