"""Issue record and workspace token storage.

This module defines the storage contracts used by the lifecycle and the
dispatcher, plus two implementations of each:

- InMemoryIssueRepository / InMemoryWorkspaceRepository for local
  development and tests
- PostgresRepository, an asyncpg-backed implementation of both contracts

Upserts follow merge-on-null semantics: ``state`` and ``organization_id``
are always written, every optional field is written only when the new
value is not None.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import asyncpg

from src.linear_pilot.state.models import IssueRecord, IssueState, WorkspaceInstallation


logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Raised when a database operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


@runtime_checkable
class IssueRepository(Protocol):
    """Storage contract for issue records."""

    async def get(self, issue_id: str) -> Optional[IssueRecord]:
        """Return the record for ``issue_id`` or None if absent."""
        ...

    async def upsert(
        self,
        issue_id: str,
        organization_id: str,
        state: IssueState,
        repo_path: Optional[str] = None,
        agent_session_id: Optional[str] = None,
        plan_comment_id: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> IssueRecord:
        """Insert or merge a record and return the stored result."""
        ...

    async def list_by_state(self, state: IssueState) -> List[IssueRecord]:
        """Return all records currently in ``state``."""
        ...


@runtime_checkable
class WorkspaceRepository(Protocol):
    """Storage contract for per-organization OAuth tokens."""

    async def get_access_token(self, organization_id: str) -> Optional[str]:
        ...

    async def upsert_workspace(self, organization_id: str, access_token: str) -> None:
        ...


def merge_record(
    existing: Optional[IssueRecord],
    issue_id: str,
    organization_id: str,
    state: IssueState,
    repo_path: Optional[str],
    agent_session_id: Optional[str],
    plan_comment_id: Optional[str],
    pr_url: Optional[str],
) -> IssueRecord:
    """Apply merge-on-null upsert semantics to an in-memory record."""
    now = datetime.now(timezone.utc)
    if existing is None:
        return IssueRecord(
            issue_id=issue_id,
            organization_id=organization_id,
            state=state,
            repo_path=repo_path,
            agent_session_id=agent_session_id,
            plan_comment_id=plan_comment_id,
            pr_url=pr_url,
            created_at=now,
            updated_at=now,
        )

    updates: Dict[str, Any] = {
        "organization_id": organization_id,
        "state": state,
        "updated_at": now,
    }
    optional = {
        "repo_path": repo_path,
        "agent_session_id": agent_session_id,
        "plan_comment_id": plan_comment_id,
        "pr_url": pr_url,
    }
    updates.update({k: v for k, v in optional.items() if v is not None})
    return existing.model_copy(update=updates)


class InMemoryIssueRepository:
    """Dictionary-backed issue repository for local development."""

    def __init__(self) -> None:
        self._records: Dict[str, IssueRecord] = {}

    async def get(self, issue_id: str) -> Optional[IssueRecord]:
        return self._records.get(issue_id)

    async def upsert(
        self,
        issue_id: str,
        organization_id: str,
        state: IssueState,
        repo_path: Optional[str] = None,
        agent_session_id: Optional[str] = None,
        plan_comment_id: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> IssueRecord:
        record = merge_record(
            self._records.get(issue_id),
            issue_id,
            organization_id,
            state,
            repo_path,
            agent_session_id,
            plan_comment_id,
            pr_url,
        )
        self._records[issue_id] = record
        return record

    async def list_by_state(self, state: IssueState) -> List[IssueRecord]:
        return [r for r in self._records.values() if r.state == state]


class InMemoryWorkspaceRepository:
    """Dictionary-backed workspace token store for local development."""

    def __init__(self) -> None:
        self._installations: Dict[str, WorkspaceInstallation] = {}

    async def get_access_token(self, organization_id: str) -> Optional[str]:
        installation = self._installations.get(organization_id)
        return installation.access_token if installation else None

    async def upsert_workspace(self, organization_id: str, access_token: str) -> None:
        self._installations[organization_id] = WorkspaceInstallation(
            organization_id=organization_id,
            access_token=access_token,
        )


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        organization_id TEXT PRIMARY KEY,
        access_token TEXT NOT NULL,
        installed_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS issues (
        issue_id TEXT PRIMARY KEY,
        organization_id TEXT NOT NULL,
        state TEXT NOT NULL,
        repo_path TEXT,
        agent_session_id TEXT,
        plan_comment_id TEXT,
        pr_url TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS issues_state_idx ON issues (state)
    """,
)


class PostgresRepository:
    """PostgreSQL implementation of IssueRepository and WorkspaceRepository.

    Attributes:
        connection_string: PostgreSQL connection URL.
        min_pool_size: Minimum connections in pool.
        max_pool_size: Maximum connections in pool.

    Example:
        >>> async with PostgresRepository("postgresql://...") as repo:
        ...     record = await repo.get("issue-uuid")
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 1,
        max_pool_size: int = 5,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """The asyncpg pool; only valid between connect() and disconnect().

        Raises:
            DatabaseError: If the pool is not initialized.
        """
        if self._pool is None:
            raise DatabaseError(
                "PostgresRepository.connect() has not been awaited"
            )
        return self._pool

    async def connect(self) -> None:
        """Create the connection pool and ensure the schema exists.

        Raises:
            DatabaseError: If connection or schema creation fails.
        """
        if self._pool is not None:
            logger.warning("connect() called on an open repository")
            return

        try:
            logger.info(
                "Opening issue store pool",
                extra={
                    "min_pool_size": self.min_pool_size,
                    "max_pool_size": self.max_pool_size,
                },
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            async with self._transaction() as conn:
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
            logger.info("Issue store ready")
        except Exception as e:
            logger.error(
                "Failed to connect to PostgreSQL",
                extra={"error": str(e)},
            )
            raise DatabaseError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("Closing issue store pool")
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def get(self, issue_id: str) -> Optional[IssueRecord]:
        """Get an issue record by id.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT
                        issue_id,
                        organization_id,
                        state,
                        repo_path,
                        agent_session_id,
                        plan_comment_id,
                        pr_url,
                        created_at,
                        updated_at
                    FROM issues
                    WHERE issue_id = $1
                    """,
                    issue_id,
                )
        except Exception as e:
            logger.error(
                "Failed to get issue record",
                extra={"issue_id": issue_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to get issue record: {e}",
                original_error=e,
            ) from e

        return _row_to_record(row) if row is not None else None

    async def upsert(
        self,
        issue_id: str,
        organization_id: str,
        state: IssueState,
        repo_path: Optional[str] = None,
        agent_session_id: Optional[str] = None,
        plan_comment_id: Optional[str] = None,
        pr_url: Optional[str] = None,
    ) -> IssueRecord:
        """Insert or merge an issue record.

        Optional columns are only overwritten by non-null values.

        Raises:
            DatabaseError: If the statement fails.
        """
        try:
            async with self._transaction() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO issues (
                        issue_id,
                        organization_id,
                        state,
                        repo_path,
                        agent_session_id,
                        plan_comment_id,
                        pr_url
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (issue_id) DO UPDATE SET
                        organization_id = EXCLUDED.organization_id,
                        state = EXCLUDED.state,
                        repo_path = COALESCE(EXCLUDED.repo_path, issues.repo_path),
                        agent_session_id = COALESCE(
                            EXCLUDED.agent_session_id, issues.agent_session_id
                        ),
                        plan_comment_id = COALESCE(
                            EXCLUDED.plan_comment_id, issues.plan_comment_id
                        ),
                        pr_url = COALESCE(EXCLUDED.pr_url, issues.pr_url),
                        updated_at = now()
                    RETURNING
                        issue_id,
                        organization_id,
                        state,
                        repo_path,
                        agent_session_id,
                        plan_comment_id,
                        pr_url,
                        created_at,
                        updated_at
                    """,
                    issue_id,
                    organization_id,
                    state.value,
                    repo_path,
                    agent_session_id,
                    plan_comment_id,
                    pr_url,
                )
        except Exception as e:
            logger.error(
                "Failed to upsert issue record",
                extra={"issue_id": issue_id, "state": state.value, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to upsert issue record: {e}",
                original_error=e,
            ) from e

        logger.debug(
            "Upserted issue record",
            extra={"issue_id": issue_id, "state": state.value},
        )
        return _row_to_record(row)

    async def list_by_state(self, state: IssueState) -> List[IssueRecord]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT
                        issue_id,
                        organization_id,
                        state,
                        repo_path,
                        agent_session_id,
                        plan_comment_id,
                        pr_url,
                        created_at,
                        updated_at
                    FROM issues
                    WHERE state = $1
                    ORDER BY updated_at ASC
                    """,
                    state.value,
                )
        except Exception as e:
            logger.error(
                "Failed to list issue records by state",
                extra={"state": state.value, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to list issue records by state: {e}",
                original_error=e,
            ) from e

        return [_row_to_record(row) for row in rows]

    async def get_access_token(self, organization_id: str) -> Optional[str]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetchval(
                    """
                    SELECT access_token
                    FROM workspaces
                    WHERE organization_id = $1
                    """,
                    organization_id,
                )
        except Exception as e:
            logger.error(
                "Failed to read workspace token",
                extra={"organization_id": organization_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to read workspace token: {e}",
                original_error=e,
            ) from e

    async def upsert_workspace(self, organization_id: str, access_token: str) -> None:
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO workspaces (organization_id, access_token)
                    VALUES ($1, $2)
                    ON CONFLICT (organization_id) DO UPDATE SET
                        access_token = EXCLUDED.access_token,
                        installed_at = now()
                    """,
                    organization_id,
                    access_token,
                )
        except Exception as e:
            logger.error(
                "Failed to store workspace token",
                extra={"organization_id": organization_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to store workspace token: {e}",
                original_error=e,
            ) from e

        logger.info(
            "Stored workspace installation",
            extra={"organization_id": organization_id},
        )

    async def health_check(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning(
                "Issue store health check failed",
                extra={"error": str(e)},
            )
            return False


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _row_to_record(row: Any) -> IssueRecord:
    return IssueRecord(
        issue_id=row["issue_id"],
        organization_id=row["organization_id"],
        state=IssueState(row["state"]),
        repo_path=row["repo_path"],
        agent_session_id=row["agent_session_id"],
        plan_comment_id=row["plan_comment_id"],
        pr_url=row["pr_url"],
        created_at=_as_utc(row["created_at"]),
        updated_at=_as_utc(row["updated_at"]),
    )
