"""A local SQLite store with three keyspaces: repositories, READMEs and generated descriptions.

Every keyspace holds pydantic records serialized as JSON and supports get-by-key, upsert and scan-with-limit.
Writes are per-record upserts; there is no cross-record transaction.
"""

import asyncio
import os
import sqlite3
from datetime import datetime
from logging import Logger
from pathlib import Path
from typing import Any, Self

from fastmcp.utilities.logging import get_logger

from github_stars_mcp.models.records import DescriptionRecord, ReadmeRecord, RepoRecord

DEFAULT_STORE_PATH = "github_stars.sqlite"

REPOS_KEYSPACE = "repos"
READMES_KEYSPACE = "readmes"
DESCRIPTIONS_KEYSPACE = "descriptions"

_DDL = f"""
CREATE TABLE IF NOT EXISTS {REPOS_KEYSPACE} (
  id INTEGER PRIMARY KEY,
  starred_at REAL NOT NULL,  -- unix epoch, for watermark ordering
  value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS {READMES_KEYSPACE} (
  repo_id INTEGER PRIMARY KEY,
  value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS {DESCRIPTIONS_KEYSPACE} (
  repo_id INTEGER NOT NULL,
  model_name TEXT NOT NULL,
  value TEXT NOT NULL,
  PRIMARY KEY (repo_id, model_name)
);
"""


def get_store_path() -> str:
    return os.getenv("STARS_DB_PATH", DEFAULT_STORE_PATH)


def _limit_clause(limit: int) -> str:
    return f" LIMIT {int(limit)}" if limit > 0 else ""


class StarsStore:
    """The persistent store of starred repositories, READMEs and descriptions."""

    path: str
    logger: Logger

    def __init__(self, path: str | Path | None = None, logger: Logger | None = None):
        self.path = str(path) if path is not None else get_store_path()
        self.logger = logger or get_logger(name=__name__)
        self._connection: sqlite3.Connection | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def __aenter__(self) -> Self:
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)

            # Calls are dispatched to worker threads one at a time under `_lock`, never concurrently.
            self._connection = sqlite3.connect(self.path, check_same_thread=False)
            self._connection.executescript(_DDL)
            self._connection.commit()

            self.logger.info(f"Opened store at {self.path}")

        return self._connection

    async def initialize(self) -> None:
        """Open the database and create the keyspaces. Safe to call any number of times."""

        async with self._lock:
            _ = await asyncio.to_thread(self._connect)

    async def close(self) -> None:
        async with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _write(self, sql: str, parameters: tuple[Any, ...]) -> None:
        connection = self._connect()
        with connection:
            _ = connection.execute(sql, parameters)

    def _read(self, sql: str, parameters: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        connection = self._connect()
        return connection.execute(sql, parameters).fetchall()

    async def _execute_write(self, sql: str, parameters: tuple[Any, ...]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, sql, parameters)

    async def _execute_read(self, sql: str, parameters: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        async with self._lock:
            return await asyncio.to_thread(self._read, sql, parameters)

    # Repositories

    async def get_repository(self, repo_id: int) -> RepoRecord | None:
        rows = await self._execute_read(f"SELECT value FROM {REPOS_KEYSPACE} WHERE id = ?", (repo_id,))

        return RepoRecord.model_validate_json(rows[0][0]) if rows else None

    async def upsert_repository(self, repository: RepoRecord) -> None:
        await self._execute_write(
            f"""INSERT INTO {REPOS_KEYSPACE} (id, starred_at, value) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET starred_at = excluded.starred_at, value = excluded.value""",
            (repository.id, repository.starred_at.timestamp(), repository.model_dump_json()),
        )

    async def upsert_repositories(self, repositories: list[RepoRecord]) -> None:
        for repository in repositories:
            await self.upsert_repository(repository=repository)

        self.logger.debug(f"Saved or updated {len(repositories)} repositories in {REPOS_KEYSPACE}")

    async def list_repositories(self, limit: int = 0) -> list[RepoRecord]:
        """Scan the repositories, most recently starred first. A limit of 0 returns all of them."""

        rows = await self._execute_read(f"SELECT value FROM {REPOS_KEYSPACE} ORDER BY starred_at DESC, id{_limit_clause(limit)}")

        return [RepoRecord.model_validate_json(row[0]) for row in rows]

    async def count_repositories(self) -> int:
        rows = await self._execute_read(f"SELECT COUNT(*) FROM {REPOS_KEYSPACE}")

        return int(rows[0][0])

    async def latest_starred_at(self) -> datetime | None:
        rows = await self._execute_read(f"SELECT value FROM {REPOS_KEYSPACE} ORDER BY starred_at DESC LIMIT 1")

        return RepoRecord.model_validate_json(rows[0][0]).starred_at if rows else None

    # READMEs

    async def get_readme(self, repo_id: int) -> ReadmeRecord | None:
        rows = await self._execute_read(f"SELECT value FROM {READMES_KEYSPACE} WHERE repo_id = ?", (repo_id,))

        return ReadmeRecord.model_validate_json(rows[0][0]) if rows else None

    async def upsert_readme(self, readme: ReadmeRecord) -> None:
        await self._execute_write(
            f"""INSERT INTO {READMES_KEYSPACE} (repo_id, value) VALUES (?, ?)
                ON CONFLICT(repo_id) DO UPDATE SET value = excluded.value""",
            (readme.repo_id, readme.model_dump_json()),
        )

        self.logger.debug(f"Saved README for {readme.full_name} in {READMES_KEYSPACE}")

    async def list_readmes(self, limit: int = 0) -> list[ReadmeRecord]:
        rows = await self._execute_read(f"SELECT value FROM {READMES_KEYSPACE} ORDER BY repo_id{_limit_clause(limit)}")

        return [ReadmeRecord.model_validate_json(row[0]) for row in rows]

    # Descriptions

    async def get_description(self, repo_id: int, model_name: str) -> DescriptionRecord | None:
        rows = await self._execute_read(
            f"SELECT value FROM {DESCRIPTIONS_KEYSPACE} WHERE repo_id = ? AND model_name = ?", (repo_id, model_name)
        )

        return DescriptionRecord.model_validate_json(rows[0][0]) if rows else None

    async def upsert_description(self, description: DescriptionRecord) -> None:
        await self._execute_write(
            f"""INSERT INTO {DESCRIPTIONS_KEYSPACE} (repo_id, model_name, value) VALUES (?, ?, ?)
                ON CONFLICT(repo_id, model_name) DO UPDATE SET value = excluded.value""",
            (description.repo_id, description.model_name, description.model_dump_json()),
        )

    async def list_descriptions(self, limit: int = 0, model_name: str | None = None) -> list[DescriptionRecord]:
        if model_name is None:
            rows = await self._execute_read(f"SELECT value FROM {DESCRIPTIONS_KEYSPACE} ORDER BY repo_id, model_name{_limit_clause(limit)}")
        else:
            rows = await self._execute_read(
                f"SELECT value FROM {DESCRIPTIONS_KEYSPACE} WHERE model_name = ? ORDER BY repo_id{_limit_clause(limit)}", (model_name,)
            )

        return [DescriptionRecord.model_validate_json(row[0]) for row in rows]

    async def list_repository_descriptions(self, repo_id: int) -> list[DescriptionRecord]:
        rows = await self._execute_read(
            f"SELECT value FROM {DESCRIPTIONS_KEYSPACE} WHERE repo_id = ? ORDER BY model_name", (repo_id,)
        )

        return [DescriptionRecord.model_validate_json(row[0]) for row in rows]


def get_store() -> StarsStore:
    return StarsStore(path=get_store_path())
