from github_stars_mcp.clients.errors.github import ClientError, ExtraInfoType


class GenerationError(ClientError):
    """An error from a text generation backend."""

    def __init__(self, model: str, message: str | None = None, extra_info: ExtraInfoType | None = None):
        if not extra_info:
            extra_info = {}
        super().__init__(message="A generation error occured.", extra_info={"model": model, "message": message, **extra_info})
