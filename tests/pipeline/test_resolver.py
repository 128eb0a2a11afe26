import asyncio

from inline_snapshot import snapshot

from github_stars_mcp.clients.errors.github import RequestError, ResourceTypeMismatchError
from github_stars_mcp.clients.models.github import RepositoryFile
from github_stars_mcp.models.events import ResolveEvent
from github_stars_mcp.models.records import ReadmeFound, ReadmeNotFound, ReadmeRecord, ReadmeUnknown
from github_stars_mcp.pipeline.resolver import README_CANDIDATE_PATHS, probe_readme, resolve_readmes, select_unresolved
from github_stars_mcp.stores.sqlite import StarsStore
from tests.conftest import FakeStarsClient, make_repository

SERVER_ERROR = RequestError(action="Get file", message="Server Error", extra_info={"status_code": "502"})


async def collect(client: FakeStarsClient, store: StarsStore, **kwargs) -> list[ResolveEvent]:
    return [event async for event in resolve_readmes(client, store, **kwargs)]  # pyright: ignore[reportArgumentType]


class TestProbeReadme:
    async def test_prefers_earlier_candidate(self):
        client = FakeStarsClient(files={("octo/cat", "README.md"): "# Upper", ("octo/cat", "readme"): "lower"})

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeFound(path="README.md")
        assert result.content == "# Upper"
        assert client.file_requests == [("octo/cat", "README.md")]

    async def test_falls_through_missing_candidates(self):
        client = FakeStarsClient(files={("octo/cat", "readme"): "lower"})

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeFound(path="readme")
        assert [path for _, path in client.file_requests] == snapshot(["README.md", "README", "readme.md", "readme"])

    async def test_empty_file_is_skipped(self):
        client = FakeStarsClient(files={("octo/cat", "README.md"): "", ("octo/cat", "README"): "plain"})

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeFound(path="README")

    async def test_file_without_inline_content_stays_unknown(self):
        client = FakeStarsClient(
            files={
                ("octo/cat", "README.md"): RepositoryFile(path="README.md", content="", size=2_000_000),
                ("octo/cat", "README"): "plain",
            }
        )

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeUnknown()
        assert result.error == "README.md has no inline content (2000000 bytes)"
        assert [path for _, path in client.file_requests] == ["README.md"]

    async def test_directory_is_skipped(self):
        client = FakeStarsClient(
            files={("octo/cat", "readme.md"): "found"},
            errors={("octo/cat", "README"): ResourceTypeMismatchError(action="Get file", resource="README", expected_type=str, actual_type=list)},
        )

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeFound(path="readme.md")

    async def test_all_missing_is_not_found(self):
        client = FakeStarsClient()

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeNotFound()
        assert len(client.file_requests) == len(README_CANDIDATE_PATHS)

    async def test_transient_error_leaves_unknown(self):
        client = FakeStarsClient(
            files={("octo/cat", "readme"): "lower"},
            errors={("octo/cat", "README.md"): SERVER_ERROR},
        )

        result = await probe_readme(client, owner="octo", repo="cat")  # pyright: ignore[reportArgumentType]

        assert result.status == ReadmeUnknown()
        assert result.content is None
        assert result.error == snapshot("A request error occured. (action: Get file, message: Server Error, status_code: 502)")
        assert client.file_requests == [("octo/cat", "README.md")]


class TestResolveReadmes:
    async def test_resolves_and_persists(self, store: StarsStore):
        await store.upsert_repositories(repositories=[make_repository(1, "octo/found"), make_repository(2, "octo/missing")])
        client = FakeStarsClient(files={("octo/found", "README.md"): "# Found"})

        events = await collect(client, store)

        assert [(event.kind, event.message) for event in events] == snapshot(
            [
                ("resolved", "Processed README for octo/missing"),
                ("resolved", "Processed README for octo/found"),
                ("complete", "Processing complete."),
            ]
        )
        assert events[-1].processed == 2
        assert events[-1].total == 2

        found = await store.get_repository(repo_id=1)
        assert found is not None
        assert found.readme_status == ReadmeFound(path="README.md")
        assert await store.get_readme(repo_id=1) == ReadmeRecord(repo_id=1, full_name="octo/found", path="README.md", content="# Found")

        missing = await store.get_repository(repo_id=2)
        assert missing is not None
        assert missing.readme_status == ReadmeNotFound()
        assert await store.get_readme(repo_id=2) is None

    async def test_transient_failure_is_retried_next_run(self, store: StarsStore):
        await store.upsert_repository(repository=make_repository(1, "octo/flaky"))

        flaky_client = FakeStarsClient(errors={("octo/flaky", "README.md"): SERVER_ERROR})
        events = await collect(flaky_client, store)

        assert events[0].readme_status == ReadmeUnknown()
        repository = await store.get_repository(repo_id=1)
        assert repository is not None
        assert repository.readme_status == ReadmeUnknown()
        assert [repository.id for repository in await select_unresolved(store)] == [1]

        healthy_client = FakeStarsClient(files={("octo/flaky", "README.md"): "# Flaky"})
        events = await collect(healthy_client, store)

        assert events[0].readme_status == ReadmeFound(path="README.md")
        assert await select_unresolved(store) == []

    async def test_one_failure_does_not_stop_batch(self, store: StarsStore):
        await store.upsert_repositories(repositories=[make_repository(1, "octo/one"), make_repository(2, "octo/two")])
        client = FakeStarsClient(
            files={("octo/one", "README.md"): "# One"},
            errors={("octo/two", "README.md"): SERVER_ERROR},
        )

        events = await collect(client, store)

        assert [event.readme_status for event in events if event.kind == "resolved"] == [ReadmeUnknown(), ReadmeFound(path="README.md")]
        assert events[-1].kind == "complete"

    async def test_found_repositories_are_skipped(self, store: StarsStore):
        repository = make_repository(1, "octo/done", readme_status=ReadmeFound(path="README.md"))
        client = FakeStarsClient()

        events = await collect(client, store, repositories=[repository])

        assert [(event.kind, event.message) for event in events] == snapshot(
            [("skipped", "Skipping octo/done as README is already processed."), ("complete", "Processing complete.")]
        )
        assert client.file_requests == []

    async def test_not_found_is_only_retried_when_asked(self, store: StarsStore):
        await store.upsert_repository(repository=make_repository(1, "octo/empty", readme_status=ReadmeNotFound()))

        assert await select_unresolved(store) == []

        client = FakeStarsClient(files={("octo/empty", "README"): "now there is one"})
        events = await collect(client, store, retry_not_found=True)

        assert events[0].readme_status == ReadmeFound(path="README")

    async def test_repairs_status_from_stored_readme(self, store: StarsStore):
        await store.upsert_repository(repository=make_repository(1, "octo/crashed"))
        await store.upsert_readme(readme=ReadmeRecord(repo_id=1, full_name="octo/crashed", path="readme.md", content="# Crashed"))
        client = FakeStarsClient()

        events = await collect(client, store)

        assert [(event.kind, event.message) for event in events] == snapshot(
            [("repaired", "Repaired README status for octo/crashed"), ("complete", "Processing complete.")]
        )
        assert client.file_requests == []

        repository = await store.get_repository(repo_id=1)
        assert repository is not None
        assert repository.readme_status == ReadmeFound(path="readme.md")

    async def test_aborted_between_repositories(self, store: StarsStore):
        await store.upsert_repositories(repositories=[make_repository(1, "octo/one"), make_repository(2, "octo/two")])
        client = FakeStarsClient(files={("octo/one", "README.md"): "# One", ("octo/two", "README.md"): "# Two"})
        cancel_event = asyncio.Event()

        events: list[ResolveEvent] = []
        async for event in resolve_readmes(client, store, cancel_event=cancel_event):  # pyright: ignore[reportArgumentType]
            events.append(event)
            cancel_event.set()

        assert [event.kind for event in events] == snapshot(["resolved", "aborted"])
        assert events[-1].message == snapshot("Operation aborted by user.")
        assert events[-1].processed == 1
        assert len(client.file_requests) == 1
