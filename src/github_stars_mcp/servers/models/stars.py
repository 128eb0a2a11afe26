from typing import Literal

from pydantic import BaseModel, Field

from github_stars_mcp.models.records import DescriptionRecord, RepoRecord


class SyncResult(BaseModel):
    """The outcome of fetching starred repositories."""

    status: Literal["up_to_date", "complete", "aborted", "error"] = Field(description="How the fetch ended.")
    new_repositories: int = Field(description="The number of repositories fetched and stored.")
    messages: list[str] = Field(description="The status messages emitted while fetching.")


class ResolveResult(BaseModel):
    """The outcome of resolving READMEs."""

    status: Literal["complete", "aborted"] = Field(description="How the resolution ended.")
    found: int = Field(description="The number of READMEs found.")
    not_found: int = Field(description="The number of repositories without a README.")
    unresolved: int = Field(description="The number of repositories left unresolved by a transient fault.")
    messages: list[str] = Field(description="The status messages emitted while resolving.")


class DescribeResult(BaseModel):
    """The outcome of generating descriptions."""

    status: Literal["complete", "aborted"] = Field(description="How the generation ended.")
    model_name: str = Field(description="The model that generated the descriptions.")
    ok: int = Field(description="The number of accepted descriptions.")
    entropy_collapse: int = Field(description="The number of descriptions rejected by the entropy monitor.")
    error: int = Field(description="The number of failed generations.")
    messages: list[str] = Field(description="The status messages emitted while generating.")


class RepositoryWithDescriptions(BaseModel):
    """A starred repository with the descriptions generated for it."""

    repository: RepoRecord = Field(description="The starred repository.")
    descriptions: list[DescriptionRecord] = Field(description="The descriptions generated for the repository, one per model.")
