from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Literal, Self

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from githubkit.versions.v2022_11_28.models import StarredRepository as GitHubKitStarredRepository


class ReadmeUnknown(BaseModel):
    """The README of the repository has not been resolved yet, or the last probe hit a transient fault."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"


class ReadmeFound(BaseModel):
    """The README of the repository was found at `path`."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["found"] = "found"
    path: str = Field(description="The path of the README file in the repository.")


class ReadmeNotFound(BaseModel):
    """Every candidate README path was probed and none exists."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["not_found"] = "not_found"


ReadmeStatus = Annotated[ReadmeUnknown | ReadmeFound | ReadmeNotFound, Field(discriminator="kind")]


class RepoRecord(BaseModel):
    """A starred repository."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int = Field(description="The stable GitHub identifier of the repository.")
    full_name: str = Field(description="The full name of the repository, `owner/name`.")
    description: str | None = Field(default=None, description="The description of the repository.")
    url: str = Field(description="The HTML URL of the repository.")
    starred_at: datetime = Field(description="The date and time the repository was starred.")
    language: str | None = Field(default=None, description="The primary language of the repository.")
    readme_status: ReadmeStatus = Field(default_factory=ReadmeUnknown, description="The README resolution status.")
    selected: bool = Field(default=True, description="Whether the repository takes part in description generation.")

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[1]

    @classmethod
    def from_starred_repository(cls, starred_repository: "GitHubKitStarredRepository") -> Self:
        return cls(
            id=starred_repository.repo.id,
            full_name=starred_repository.repo.full_name,
            description=starred_repository.repo.description,
            url=starred_repository.repo.html_url,
            starred_at=starred_repository.starred_at,
            language=starred_repository.repo.language,
        )

    def merge_remote(self, remote: "RepoRecord") -> Self:
        """Refresh the remote metadata while keeping the locally owned state."""

        return remote.model_copy(update={"readme_status": self.readme_status, "selected": self.selected})


class ReadmeRecord(BaseModel):
    """The README body of a starred repository."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    repo_id: int = Field(description="The identifier of the repository the README belongs to.")
    full_name: str = Field(description="The full name of the repository, `owner/name`.")
    path: str = Field(description="The path the README was found at.")
    content: str = Field(description="The decoded content of the README.")


class DescriptionStatus(StrEnum):
    OK = "ok"
    ENTROPY_COLLAPSE = "entropy_collapse"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class DescriptionRecord(BaseModel):
    """A generated description of a repository, keyed by repository and model."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    repo_id: int = Field(description="The identifier of the described repository.")
    model_name: str = Field(description="The name of the model that generated the description.")
    brief_description: str | None = Field(default=None, description="A one or two sentence description of the repository.")
    keywords: list[str] = Field(default_factory=list, description="Keywords that represent the repository.")
    status: DescriptionStatus = Field(description="The outcome of the generation.")
    timestamp: datetime = Field(default_factory=utc_now, description="When the description was generated.")
    entropy_stddev: float | None = Field(default=None, description="The final rolling stddev of token entropy, if monitored.")
    error: str | None = Field(default=None, description="Why the generation failed, if it failed.")
