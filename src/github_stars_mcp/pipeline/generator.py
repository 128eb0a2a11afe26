import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from logging import Logger

from fastmcp.utilities.logging import get_logger

from github_stars_mcp.clients.errors.generation import GenerationError
from github_stars_mcp.clients.generation import BaseGenerationClient
from github_stars_mcp.models.events import DescribeEvent
from github_stars_mcp.models.records import DescriptionRecord, DescriptionStatus, ReadmeRecord, RepoRecord
from github_stars_mcp.pipeline.entropy import TokenEntropyMonitor
from github_stars_mcp.pipeline.fetcher import ABORTED_MESSAGE
from github_stars_mcp.pipeline.prompts import DEFAULT_README_TRUNCATE_CHARACTERS, ReadmeSummary, build_describe_prompt
from github_stars_mcp.sampling.extract import StructuredOutputError, extract_object_from_text
from github_stars_mcp.stores.sqlite import StarsStore

DEFAULT_MAX_TOKENS = 300
DEFAULT_TEMPERATURE = 0.0

MonitorFactory = Callable[[], TokenEntropyMonitor]


def entropy_monitoring_enabled() -> bool:
    return not bool(os.getenv("DISABLE_ENTROPY_MONITOR"))


def get_monitor_factory() -> MonitorFactory | None:
    return TokenEntropyMonitor if entropy_monitoring_enabled() else None


async def _generate_text(
    generation_client: BaseGenerationClient,
    prompt: str,
    monitor: TokenEntropyMonitor | None,
    max_tokens: int,
    temperature: float,
) -> str:
    if monitor is None:
        return await generation_client.generate(prompt, max_tokens=max_tokens, temperature=temperature)

    text_parts: list[str] = []

    async for chunk in generation_client.stream(prompt, max_tokens=max_tokens, temperature=temperature):
        text_parts.append(chunk.text)

        for token in chunk.tokens:
            _ = monitor.detect_hallucination(token.top_logprobs)

    return "".join(text_parts)


async def generate_description(
    generation_client: BaseGenerationClient,
    readme: ReadmeRecord,
    *,
    model_name: str | None = None,
    monitor: TokenEntropyMonitor | None = None,
    max_characters: int = DEFAULT_README_TRUNCATE_CHARACTERS,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
    logger: Logger | None = None,
) -> DescriptionRecord:
    """Generate a brief description and keywords for a README.

    Generation and parse failures produce a record with status `error` instead of raising. When a monitor is
    given, the response is streamed through it and a generation it flags at the end is recorded as
    `entropy_collapse` with its text discarded, even when it parsed.
    """

    logger = logger or get_logger(name=__name__)
    model_name = model_name or generation_client.model

    if monitor is not None:
        monitor.reset()

    prompt: str = build_describe_prompt(readme_content=readme.content, max_characters=max_characters)

    try:
        text: str = await _generate_text(generation_client, prompt, monitor, max_tokens=max_tokens, temperature=temperature)
    except GenerationError as e:
        logger.warning(f"Error generating description for {readme.full_name} with {model_name}: {e}")
        return DescriptionRecord(repo_id=readme.repo_id, model_name=model_name, status=DescriptionStatus.ERROR, error=str(e))

    entropy_stddev: float | None = monitor.stddev if monitor is not None else None

    try:
        summary: ReadmeSummary = extract_object_from_text(text, object_type=ReadmeSummary)
    except StructuredOutputError as e:
        logger.warning(f"Invalid description generated for {readme.full_name} with {model_name}: {e}")
        return DescriptionRecord(
            repo_id=readme.repo_id,
            model_name=model_name,
            status=DescriptionStatus.ERROR,
            entropy_stddev=entropy_stddev,
            error=str(e),
        )

    if monitor is not None and monitor.is_anomalous:
        logger.warning(
            f"Discarding description for {readme.full_name} with {model_name}: "
            f"rolling entropy stddev {monitor.stddev:.4f} exceeds {monitor.entropy_threshold}"
        )
        return DescriptionRecord(
            repo_id=readme.repo_id,
            model_name=model_name,
            status=DescriptionStatus.ENTROPY_COLLAPSE,
            entropy_stddev=entropy_stddev,
        )

    return DescriptionRecord(
        repo_id=readme.repo_id,
        model_name=model_name,
        brief_description=summary.brief_description,
        keywords=summary.keywords,
        status=DescriptionStatus.OK,
        entropy_stddev=entropy_stddev,
    )


async def describe_repositories(
    generation_client: BaseGenerationClient,
    store: StarsStore,
    *,
    limit: int = 0,
    monitor_factory: MonitorFactory | None = TokenEntropyMonitor,
    cancel_event: asyncio.Event | None = None,
    logger: Logger | None = None,
) -> AsyncGenerator[DescribeEvent, None]:
    """Generate and persist a description for every stored README that has none for the active model.

    Repositories that are not selected are skipped, as are repositories already described by the model. Each
    generation gets a fresh monitor from `monitor_factory`; pass None to generate without entropy monitoring.

    Args:
        generation_client: The generation backend, its model is the active model.
        store: The store holding the READMEs.
        limit: The maximum number of READMEs to scan, 0 for all of them.
        monitor_factory: Creates the entropy monitor for each generation.
        cancel_event: Checked before every repository, once set no further generation is started.
    """

    logger = logger or get_logger(name=__name__)
    model_name: str = generation_client.model

    readmes: list[ReadmeRecord] = await store.list_readmes(limit=limit)

    total: int = len(readmes)
    processed: int = 0

    logger.info(f"Describing up to {total} repositories with {model_name}")

    for readme in readmes:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Describing repositories aborted after {processed} of {total} repositories")
            yield DescribeEvent(kind="aborted", message=ABORTED_MESSAGE, processed=processed, total=total)
            return

        repository: RepoRecord | None = await store.get_repository(repo_id=readme.repo_id)

        if repository is not None and not repository.selected:
            processed += 1
            yield DescribeEvent(
                kind="skipped",
                message=f"Skipping {readme.full_name} as it is not selected.",
                repo_id=readme.repo_id,
                processed=processed,
                total=total,
            )
            continue

        if existing := await store.get_description(repo_id=readme.repo_id, model_name=model_name):
            processed += 1
            yield DescribeEvent(
                kind="skipped",
                message=f"Skipping {readme.full_name} as it is already described by {model_name}.",
                repo_id=readme.repo_id,
                status=existing.status,
                processed=processed,
                total=total,
            )
            continue

        monitor: TokenEntropyMonitor | None = monitor_factory() if monitor_factory is not None else None

        try:
            description: DescriptionRecord = await generate_description(
                generation_client, readme, model_name=model_name, monitor=monitor, logger=logger
            )
        except Exception as e:
            logger.exception(f"Error describing {readme.full_name}: {e}")
            description = DescriptionRecord(repo_id=readme.repo_id, model_name=model_name, status=DescriptionStatus.ERROR, error=str(e))

        await store.upsert_description(description=description)

        processed += 1

        yield DescribeEvent(
            kind="described",
            message=f"Described {readme.full_name}: {description.status.value}",
            repo_id=readme.repo_id,
            status=description.status,
            processed=processed,
            total=total,
        )

    yield DescribeEvent(kind="complete", message="Description generation complete.", processed=processed, total=total)
