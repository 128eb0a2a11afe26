from typing import Annotated

from pydantic import Field

REPO_ID_DESCRIPTION = "The GitHub identifier of the starred repository."
REPO_ID = Annotated[int, Field(description=REPO_ID_DESCRIPTION)]

REPO_IDS = Annotated[list[int], Field(description="The GitHub identifiers of the starred repositories.")]

SELECTED = Annotated[bool, Field(description="Whether the repositories take part in description generation.")]

MAX_PAGES_DESCRIPTION = "The maximum number of pages of 100 starred repositories to fetch. If not provided, all new pages are fetched."
MAX_PAGES = Annotated[int | None, Field(description=MAX_PAGES_DESCRIPTION)]

RETRY_NOT_FOUND = Annotated[bool, Field(description="Whether to probe again the repositories where no README was found.")]

LIMIT_REPOSITORIES_DESCRIPTION = "The maximum number of repositories to return."
LIMIT_REPOSITORIES = Annotated[int, Field(description=LIMIT_REPOSITORIES_DESCRIPTION)]

LIMIT_READMES_DESCRIPTION = "The maximum number of stored READMEs to consider. 0 considers all of them."
LIMIT_READMES = Annotated[int, Field(description=LIMIT_READMES_DESCRIPTION)]
