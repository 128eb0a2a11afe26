import os
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from typing import Any, override

import httpx
from fastmcp.utilities.logging import get_logger
from google.genai import Client as GoogleGenaiClient
from google.genai.errors import APIError as GoogleGenaiAPIError
from google.genai.types import (
    Candidate,
    GenerateContentConfig,
    GenerateContentResponse,
    Part,
    UserContent,
)
from openai import AsyncOpenAI, OpenAIError
from openai.types.chat import ChatCompletionChunk
from pydantic import BaseModel, Field

from github_stars_mcp.clients.errors.generation import GenerationError

logger = get_logger(__name__)

DEFAULT_GOOGLE_MODEL = "gemini-2.5-flash"
DEFAULT_OPENAI_MODEL = "llama3.2:3b"
DEFAULT_TOP_LOGPROBS = 5


def get_top_logprobs() -> int:
    return int(os.getenv("GENERATION_TOP_LOGPROBS", str(DEFAULT_TOP_LOGPROBS)))


class TokenLogprobs(BaseModel):
    """An emitted token and the log probabilities of the top candidates at its position."""

    token: str = Field(description="The emitted token.")
    top_logprobs: list[float] = Field(default_factory=list, description="The log probabilities of the top-k candidate tokens.")


class GenerationChunk(BaseModel):
    """A piece of a streamed generation."""

    text: str = Field(default="", description="The text generated in this chunk.")
    tokens: list[TokenLogprobs] = Field(default_factory=list, description="The tokens of this chunk with their top-k log probabilities.")


class BaseGenerationClient(ABC):
    """A text generation backend that can also stream per-token log probabilities."""

    model: str
    top_logprobs: int

    @abstractmethod
    async def generate(self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True) -> str:
        """Generate a complete response to the prompt."""

    @abstractmethod
    def stream(
        self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True
    ) -> AsyncGenerator[GenerationChunk, None]:
        """Stream a response to the prompt, exposing the top-k log probabilities of every emitted token."""


class OpenAIGenerationClient(BaseGenerationClient):
    """Chat completions against OpenAI or any OpenAI-compatible server, such as Ollama's `/v1` endpoint."""

    def __init__(self, default_model: str, client: AsyncOpenAI | None = None, top_logprobs: int | None = None):
        self.client: AsyncOpenAI = client or AsyncOpenAI()
        self.model = default_model
        self.top_logprobs = top_logprobs if top_logprobs is not None else get_top_logprobs()

    def _request_args(self, prompt: str, max_tokens: int, temperature: float, json_output: bool) -> dict[str, Any]:
        request_args: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        if json_output:
            request_args["response_format"] = {"type": "json_object"}

        return request_args

    @override
    async def generate(self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True) -> str:
        try:
            completion = await self.client.chat.completions.create(**self._request_args(prompt, max_tokens, temperature, json_output))
        except OpenAIError as e:
            raise GenerationError(model=self.model, message=str(e)) from e

        if not completion.choices or not (text := completion.choices[0].message.content):
            raise GenerationError(model=self.model, message="No content in response from completion.")

        return text

    @override
    async def stream(
        self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True
    ) -> AsyncGenerator[GenerationChunk, None]:
        try:
            completion_stream = await self.client.chat.completions.create(
                **self._request_args(prompt, max_tokens, temperature, json_output),
                stream=True,
                logprobs=True,
                top_logprobs=self.top_logprobs,
            )

            async for completion_chunk in completion_stream:
                if chunk := chunk_from_openai(completion_chunk):
                    yield chunk
        except OpenAIError as e:
            raise GenerationError(model=self.model, message=str(e)) from e


def chunk_from_openai(completion_chunk: ChatCompletionChunk) -> GenerationChunk | None:
    if not completion_chunk.choices:
        return None

    choice = completion_chunk.choices[0]

    tokens: list[TokenLogprobs] = []

    if choice.logprobs and choice.logprobs.content:
        tokens = [
            TokenLogprobs(token=token_logprob.token, top_logprobs=[top.logprob for top in token_logprob.top_logprobs])
            for token_logprob in choice.logprobs.content
        ]

    return GenerationChunk(text=choice.delta.content or "", tokens=tokens)


class GoogleGenaiGenerationClient(BaseGenerationClient):
    """Content generation against the Gemini API."""

    def __init__(self, default_model: str, client: GoogleGenaiClient | None = None, top_logprobs: int | None = None):
        self.client: GoogleGenaiClient = client or GoogleGenaiClient()
        self.model = default_model
        self.top_logprobs = top_logprobs if top_logprobs is not None else get_top_logprobs()

    def _config(self, max_tokens: int, temperature: float, json_output: bool, logprobs: bool) -> GenerateContentConfig:
        return GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_output else None,
            response_logprobs=True if logprobs else None,
            logprobs=self.top_logprobs if logprobs else None,
        )

    @override
    async def generate(self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True) -> str:
        try:
            response: GenerateContentResponse = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[UserContent(parts=[Part(text=prompt)])],
                config=self._config(max_tokens, temperature, json_output, logprobs=False),
            )
        except (GoogleGenaiAPIError, httpx.HTTPError) as e:
            raise GenerationError(model=self.model, message=str(e)) from e

        if not (text := response.text):
            finish_reason = response.candidates[0].finish_reason if response.candidates else None
            raise GenerationError(model=self.model, message=f"No content in response from completion: {finish_reason}")

        return text

    @override
    async def stream(
        self, prompt: str, *, max_tokens: int, temperature: float, json_output: bool = True
    ) -> AsyncGenerator[GenerationChunk, None]:
        try:
            response_stream = await self.client.aio.models.generate_content_stream(
                model=self.model,
                contents=[UserContent(parts=[Part(text=prompt)])],
                config=self._config(max_tokens, temperature, json_output, logprobs=True),
            )

            async for response in response_stream:
                if chunk := chunk_from_google_genai(response):
                    yield chunk
        except (GoogleGenaiAPIError, httpx.HTTPError) as e:
            raise GenerationError(model=self.model, message=str(e)) from e


def chunk_from_google_genai(response: GenerateContentResponse) -> GenerationChunk | None:
    if not response.candidates:
        return None

    candidate: Candidate = response.candidates[0]

    tokens: list[TokenLogprobs] = []

    if (logprobs_result := candidate.logprobs_result) and logprobs_result.top_candidates:
        chosen_candidates = logprobs_result.chosen_candidates or []

        for index, top_candidates in enumerate(logprobs_result.top_candidates):
            chosen_token = chosen_candidates[index].token if index < len(chosen_candidates) else None
            tokens.append(
                TokenLogprobs(
                    token=chosen_token or "",
                    top_logprobs=[
                        top_candidate.log_probability
                        for top_candidate in top_candidates.candidates or []
                        if top_candidate.log_probability is not None
                    ],
                )
            )

    text = "".join(part.text for part in candidate.content.parts or [] if part.text) if candidate.content else ""

    return GenerationChunk(text=text, tokens=tokens)


def get_generation_client() -> BaseGenerationClient | None:
    if os.getenv("GOOGLE_API_KEY"):
        return GoogleGenaiGenerationClient(default_model=os.getenv("GOOGLE_MODEL") or DEFAULT_GOOGLE_MODEL)

    if os.getenv("OPENAI_API_KEY") or os.getenv("OPENAI_BASE_URL"):
        # Local OpenAI-compatible servers such as Ollama accept any API key.
        client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY") or "ollama", base_url=os.getenv("OPENAI_BASE_URL"))
        return OpenAIGenerationClient(default_model=os.getenv("OPENAI_MODEL") or DEFAULT_OPENAI_MODEL, client=client)

    logger.warning(
        msg=(
            "No generation backend found, description generation will fail. "
            "Set GOOGLE_API_KEY, OPENAI_API_KEY or OPENAI_BASE_URL to use a generation backend. "
        )
    )

    return None
