from pydantic import BaseModel, TypeAdapter, ValidationError

ALLOWED_TYPES = BaseModel | list[BaseModel]


class StructuredOutputError(Exception):
    """The generated text does not contain a valid structured object."""

    def __init__(self, message: str):
        super().__init__(message)


def extract_json_blocks_from_text(text: str) -> list[str]:
    """Extract all Markdown fenced blocks from a text string."""

    lines = text.strip().split("\n")

    start_index: int | None = None
    end_index: int | None = None

    matches: list[str] = []

    for i, line in enumerate(lines):
        if line.startswith("```") and start_index is None:
            start_index = i + 1
            continue
        if line.startswith("```") and start_index is not None and end_index is None:
            end_index = i

        if start_index is not None and end_index is not None:
            matches.append("\n".join(lines[start_index:end_index]))
            start_index = None
            end_index = None

    return matches


def extract_single_object_from_json_block[T: ALLOWED_TYPES](json_block_text: str, object_type: type[T]) -> T:
    """Extract an object from a JSON block."""
    type_adapter: TypeAdapter[T] = TypeAdapter[T](object_type)

    json_text: str = "\n".join([line.strip() for line in json_block_text.splitlines()])

    return type_adapter.validate_json(json_text)


def extract_object_from_text[T: ALLOWED_TYPES](text: str, object_type: type[T]) -> T:
    """Extract an object from generated text.

    JSON-mode output is the object itself. Models that ignore the output format tend to wrap the object in a
    single Markdown JSON block, which is accepted as well:
    ```json
    {"brief_description": "A tool.", "keywords": ["cli"]}
    ```

    Raises:
        StructuredOutputError: If the text holds no valid object of the requested type.
    """

    try:
        return extract_single_object_from_json_block(json_block_text=text.strip(), object_type=object_type)
    except ValidationError as e:
        matches: list[str] = extract_json_blocks_from_text(text)

        if len(matches) != 1:
            msg = f"Text is not a valid {object_type.__name__} and does not contain exactly one Markdown JSON block: {e}"
            raise StructuredOutputError(message=msg) from e

    try:
        return extract_single_object_from_json_block(json_block_text=matches[0], object_type=object_type)
    except ValidationError as e:
        msg = f"The Markdown JSON block is not a valid {object_type.__name__}: {e}"
        raise StructuredOutputError(message=msg) from e
