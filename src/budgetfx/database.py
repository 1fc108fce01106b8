"""
BudgetFX Database Access

A single `project` table behind two interchangeable async backends:
PostgreSQL (asyncpg pool) and SQLite (aiosqlite). DATABASE_BACKEND selects one.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

import aiosqlite
import asyncpg
from asyncpg import Pool
from pydantic import ValidationError

from budgetfx.config import Settings
from budgetfx.models import ProjectBudget, ProjectBudgetCreate

logger = logging.getLogger(__name__)

COLUMNS = (
    "project_id",
    "project_name",
    "year",
    "currency",
    "initial_budget_local",
    "budget_usd",
    "initial_schedule_estimate_months",
    "adjusted_schedule_estimate_months",
    "contingency_rate",
    "escalation_rate",
    "final_budget_usd",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS project (
    project_id INTEGER PRIMARY KEY,
    project_name VARCHAR(255) NOT NULL,
    year INTEGER NOT NULL,
    currency VARCHAR(8) NOT NULL,
    initial_budget_local DOUBLE PRECISION NOT NULL,
    budget_usd DOUBLE PRECISION NOT NULL,
    initial_schedule_estimate_months INTEGER NOT NULL,
    adjusted_schedule_estimate_months INTEGER NOT NULL,
    contingency_rate DOUBLE PRECISION NOT NULL,
    escalation_rate DOUBLE PRECISION NOT NULL,
    final_budget_usd DOUBLE PRECISION NOT NULL
)
"""

INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_project_name_year ON project (project_name, year)"


class RepositoryError(Exception):
    """Base exception for storage failures."""


class DuplicateProjectError(RepositoryError):
    """A project with the same id already exists."""

    def __init__(self, project_id: int):
        super().__init__(f"Project with ID {project_id} already exists")
        self.project_id = project_id


class InvalidRecordError(RepositoryError):
    """A stored row no longer satisfies the project record constraints."""


def _values(project: ProjectBudgetCreate) -> list[Any]:
    return [getattr(project, column) for column in COLUMNS]


def _row_to_project(row: Mapping[str, Any]) -> ProjectBudget:
    try:
        return ProjectBudget(**{column: row[column] for column in COLUMNS})
    except ValidationError as e:
        raise InvalidRecordError(
            f"Stored project {row['project_id']} is invalid: {e.error_count()} field error(s)"
        ) from e


class ProjectRepository(ABC):
    """
    Storage for project budget rows.

    Subclasses only differ in driver and placeholder style; the SQL is shared.
    """

    BACKEND_NAME: str = "base"

    @abstractmethod
    def _placeholder(self, index: int) -> str:
        """Return the bind parameter marker for 1-based position index."""

    @abstractmethod
    async def _fetchone(self, query: str, args: list[Any]) -> Mapping[str, Any] | None:
        pass

    @abstractmethod
    async def _execute(self, query: str, args: list[Any]) -> int:
        """Run a write statement and return the number of affected rows."""

    @abstractmethod
    async def init_schema(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    async def check_connection(self) -> bool:
        """Check if the database is reachable."""
        try:
            row = await self._fetchone("SELECT 1 AS ok", [])
            return row is not None and row["ok"] == 1
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def get(self, project_id: int) -> ProjectBudget | None:
        row = await self._fetchone(
            f"SELECT {', '.join(COLUMNS)} FROM project WHERE project_id = {self._placeholder(1)}",
            [project_id]
        )
        return _row_to_project(row) if row else None

    async def exists(self, project_id: int) -> bool:
        row = await self._fetchone(
            f"SELECT project_id FROM project WHERE project_id = {self._placeholder(1)}",
            [project_id]
        )
        return row is not None

    async def find_by_name_and_year(self, project_name: str, year: int) -> ProjectBudget | None:
        row = await self._fetchone(
            f"SELECT {', '.join(COLUMNS)} FROM project "
            f"WHERE project_name = {self._placeholder(1)} AND year = {self._placeholder(2)} "
            f"ORDER BY project_id LIMIT 1",
            [project_name, year]
        )
        return _row_to_project(row) if row else None

    async def create(self, project: ProjectBudgetCreate) -> ProjectBudget:
        """
        Insert a new project.

        Raises:
            DuplicateProjectError: If project_id is already taken
        """
        if await self.exists(project.project_id):
            raise DuplicateProjectError(project.project_id)

        placeholders = ", ".join(self._placeholder(i) for i in range(1, len(COLUMNS) + 1))
        await self._execute(
            f"INSERT INTO project ({', '.join(COLUMNS)}) VALUES ({placeholders})",
            _values(project)
        )
        logger.info(f"Created project {project.project_id} ({project.project_name})")
        return ProjectBudget(**project.model_dump())

    async def update(self, project_id: int, project: ProjectBudgetCreate) -> ProjectBudget | None:
        """
        Replace the row stored under project_id (the id itself may change).

        Returns:
            The stored project, or None if project_id does not exist

        Raises:
            DuplicateProjectError: If the new id belongs to another project
        """
        if not await self.exists(project_id):
            return None
        if project.project_id != project_id and await self.exists(project.project_id):
            raise DuplicateProjectError(project.project_id)

        assignments = ", ".join(
            f"{column} = {self._placeholder(i)}" for i, column in enumerate(COLUMNS, start=1)
        )
        await self._execute(
            f"UPDATE project SET {assignments} WHERE project_id = {self._placeholder(len(COLUMNS) + 1)}",
            _values(project) + [project_id]
        )
        logger.info(f"Updated project {project_id} -> {project.project_id}")
        return ProjectBudget(**project.model_dump())

    async def delete(self, project_id: int) -> bool:
        """Delete a project; returns False if it did not exist."""
        affected = await self._execute(
            f"DELETE FROM project WHERE project_id = {self._placeholder(1)}",
            [project_id]
        )
        if affected:
            logger.info(f"Deleted project {project_id}")
        return affected > 0


class PostgresProjectRepository(ProjectRepository):
    """asyncpg-backed repository using a lazily created connection pool."""

    BACKEND_NAME = "postgres"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._pool: Pool | None = None

    def _placeholder(self, index: int) -> str:
        return f"${index}"

    async def get_pool(self) -> Pool:
        """Get or create database connection pool."""
        if self._pool is None:
            settings = self.settings
            self._pool = await asyncpg.create_pool(
                host=settings.database_host,
                port=settings.database_port,
                database=settings.database_name,
                user=settings.database_user,
                password=settings.database_password,
                min_size=2,
                max_size=10,
                command_timeout=30,
                ssl=settings.database_ssl_mode,
            )
            logger.info(
                f"Database pool created: {settings.database_host}:{settings.database_port}"
                f"/{settings.database_name}"
            )
        return self._pool

    async def _fetchone(self, query: str, args: list[Any]) -> Mapping[str, Any] | None:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _execute(self, query: str, args: list[Any]) -> int:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            try:
                status = await conn.execute(query, *args)
            except asyncpg.UniqueViolationError as e:
                raise DuplicateProjectError(args[0]) from e
            except asyncpg.IntegrityConstraintViolationError as e:
                raise RepositoryError(f"Integrity constraint violated: {e}") from e
        # asyncpg returns the command tag, e.g. "DELETE 1" or "INSERT 0 1"
        return int(status.split()[-1]) if status and status.split()[-1].isdigit() else 0

    async def init_schema(self) -> None:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(SCHEMA_SQL)
                await conn.execute(INDEX_SQL)

    async def close(self) -> None:
        """Close database connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")


class SQLiteProjectRepository(ProjectRepository):
    """aiosqlite-backed repository holding a single connection."""

    BACKEND_NAME = "sqlite"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._connection: aiosqlite.Connection | None = None

    def _placeholder(self, index: int) -> str:
        return "?"

    async def connect(self) -> aiosqlite.Connection:
        """Get or create the connection."""
        if self._connection is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self.path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA busy_timeout=30000")
            logger.info(f"SQLite database opened: {self.path}")
        return self._connection

    async def _fetchone(self, query: str, args: list[Any]) -> Mapping[str, Any] | None:
        conn = await self.connect()
        async with conn.execute(query, args) as cursor:
            return await cursor.fetchone()

    async def _execute(self, query: str, args: list[Any]) -> int:
        conn = await self.connect()
        try:
            cursor = await conn.execute(query, args)
            await conn.commit()
        except aiosqlite.IntegrityError as e:
            await conn.rollback()
            # "UNIQUE constraint failed: project.project_id"; NOT NULL and CHECK
            # failures are not duplicates
            if str(e).startswith("UNIQUE constraint failed"):
                raise DuplicateProjectError(args[0]) from e
            raise RepositoryError(f"Integrity constraint violated: {e}") from e
        return cursor.rowcount

    async def init_schema(self) -> None:
        conn = await self.connect()
        await conn.execute(SCHEMA_SQL)
        await conn.execute(INDEX_SQL)
        await conn.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("SQLite database closed")


def create_repository(settings: Settings) -> ProjectRepository:
    """Build the repository selected by DATABASE_BACKEND."""
    if settings.database_backend == "postgres":
        return PostgresProjectRepository(settings)
    return SQLiteProjectRepository(settings.sqlite_path)
