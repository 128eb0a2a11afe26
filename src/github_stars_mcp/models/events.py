from typing import Literal

from pydantic import BaseModel, Field

from github_stars_mcp.models.records import DescriptionStatus, ReadmeStatus, RepoRecord


class FetchEvent(BaseModel):
    """A status event emitted while fetching starred repositories."""

    kind: Literal["page", "up_to_date", "complete", "aborted", "error"]
    message: str
    page: int | None = None
    repositories: list[RepoRecord] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.kind != "page"


class ResolveEvent(BaseModel):
    """A status event emitted while resolving READMEs."""

    kind: Literal["resolved", "repaired", "skipped", "complete", "aborted"]
    message: str
    repo_id: int | None = None
    readme_status: ReadmeStatus | None = None
    processed: int = 0
    total: int = 0


class DescribeEvent(BaseModel):
    """A status event emitted while generating descriptions."""

    kind: Literal["described", "skipped", "complete", "aborted"]
    message: str
    repo_id: int | None = None
    status: DescriptionStatus | None = None
    processed: int = 0
    total: int = 0
