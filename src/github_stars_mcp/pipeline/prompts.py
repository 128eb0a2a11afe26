from pydantic import BaseModel, Field

DEFAULT_README_TRUNCATE_CHARACTERS = 8000

README_PLACEHOLDER = "{README_CONTENT}"

DESCRIBE_README_PROMPT = """
You are a helpful assistant that summarizes GitHub repository READMEs.

Given the following README content, provide a brief description (1-2 sentences) of what the repository does. Also, extract 3-5 relevant keywords or tags that best represent the repository's functionality. Respond using JSON format with the following fields:

{
  "brief_description": "<brief description>",
  "keywords": ["keyword1", "keyword2", "keyword3"]
}

README:
---
{README_CONTENT}
---
"""


class ReadmeSummary(BaseModel):
    """The structured response expected from the generation backend."""

    brief_description: str = Field(description="A one or two sentence description of what the repository does.")
    keywords: list[str] = Field(description="Three to five keywords that represent the repository's functionality.")


def truncate_readme(content: str, max_characters: int = DEFAULT_README_TRUNCATE_CHARACTERS) -> str:
    if len(content) > max_characters:
        return content[:max_characters].rstrip() + "\n..."

    return content.strip()


def build_describe_prompt(readme_content: str, max_characters: int = DEFAULT_README_TRUNCATE_CHARACTERS) -> str:
    return DESCRIBE_README_PROMPT.replace(README_PLACEHOLDER, truncate_readme(readme_content, max_characters))
