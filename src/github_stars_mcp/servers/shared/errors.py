ExtraInfoType = dict[str, str | None]


class ServerError(Exception):
    """A request error from the GitHub Stars server."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class GenerationNotConfiguredError(ServerError):
    """No text generation backend is configured."""

    def __init__(self):
        super().__init__(
            message=(
                "No generation backend is configured. "
                "Set GOOGLE_API_KEY, OPENAI_API_KEY or OPENAI_BASE_URL to generate repository descriptions."
            )
        )


class RepositoryNotFoundError(ServerError):
    """The repository is not in the store."""

    def __init__(self, repo_id: int):
        super().__init__(message="The repository is not a stored starred repository.", extra_info={"repo_id": str(repo_id)})
