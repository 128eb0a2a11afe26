import base64
from typing import Self

from githubkit.versions.v2022_11_28.models import ContentFile as GitHubKitContentFile
from pydantic import BaseModel, Field

STAR_MEDIA_TYPE = "application/vnd.github.star+json"


def decode_content(content: str) -> str:
    return base64.b64decode(content).decode("utf-8", errors="replace")


class RepositoryFile(BaseModel):
    """A file with its path and decoded content."""

    path: str = Field(description="The path of the file.")
    content: str = Field(description="The decoded content of the file, empty when GitHub does not inline it.")
    size: int = Field(default=0, description="The size of the file in bytes.")

    @classmethod
    def from_content_file(cls, content_file: GitHubKitContentFile) -> Self:
        return cls(path=content_file.path, content=decode_content(content_file.content), size=content_file.size)
