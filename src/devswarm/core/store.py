"""Durable storage: the Database interface, its SQLite adapter and repositories.

The engine only ever talks to `Database` (async ``query``/``execute``/
``close``). `SQLiteDatabase` implements it on aiosqlite and creates the
schema on connect. Every driver error is re-raised as `StoreError`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import aiosqlite

from ..models.agent import Agent, AgentStatus, Specialty
from ..models.submission import (
    STATUS_TRANSITIONS,
    AnalysisResult,
    CodeSubmission,
    SubmissionStatus,
)
from .errors import InvalidTransitionError, NotFoundError, StoreError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    specialty TEXT NOT NULL UNIQUE
        CHECK (specialty IN ('security', 'performance', 'accessibility', 'best-practices')),
    description TEXT,
    status TEXT NOT NULL DEFAULT 'idle' CHECK (status IN ('idle', 'analyzing', 'error')),
    fork_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_forks (
    fork_id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    parent_service_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'expired', 'deleted')),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_agent_forks_agent_id ON agent_forks(agent_id);

CREATE TABLE IF NOT EXISTS code_submissions (
    id TEXT PRIMARY KEY,
    code TEXT NOT NULL,
    language TEXT NOT NULL,
    filename TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'analyzing', 'completed', 'failed')),
    submitted_at TEXT NOT NULL,
    completed_at TEXT,
    error_message TEXT
);

CREATE TABLE IF NOT EXISTS analysis_results (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL REFERENCES code_submissions(id) ON DELETE CASCADE,
    agent_id TEXT NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
    findings TEXT NOT NULL DEFAULT '[]',
    confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
    execution_time_ms INTEGER NOT NULL DEFAULT 0,
    patterns_matched INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_analysis_results_submission_id ON analysis_results(submission_id);

CREATE TABLE IF NOT EXISTS code_patterns (
    id TEXT PRIMARY KEY,
    pattern_text TEXT NOT NULL,
    category TEXT NOT NULL,
    severity TEXT NOT NULL CHECK (severity IN ('critical', 'high', 'medium', 'low', 'info')),
    description TEXT NOT NULL,
    language TEXT NOT NULL,
    example_fix TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_code_patterns_language ON code_patterns(language);
"""


def now_iso(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).isoformat(timespec="microseconds")


@runtime_checkable
class Database(Protocol):
    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]: ...

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int: ...

    async def close(self) -> None: ...


class SQLiteDatabase:
    """aiosqlite-backed `Database`. Use ``await SQLiteDatabase.connect(path)``."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn: Optional[aiosqlite.Connection] = None

    @classmethod
    async def connect(cls, path: str = ":memory:") -> "SQLiteDatabase":
        db = cls(path)
        await db.open()
        return db

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await aiosqlite.connect(self.path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA foreign_keys=ON;")
            await self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Could not open database {self.path}: {e}") from e
        logger.debug("Database ready at %s", self.path)

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("Database is not connected")
        return self._conn

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        conn = self._connection()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query failed: {e}") from e
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        conn = self._connection()
        try:
            async with conn.execute(sql, tuple(params)) as cursor:
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Statement failed: {e}") from e

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class SubmissionStore:
    """Code submissions and their guarded status lifecycle."""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, submission: CodeSubmission) -> CodeSubmission:
        await self.db.execute(
            "INSERT INTO code_submissions (id, code, language, filename, status, submitted_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                submission.id,
                submission.code,
                submission.language,
                submission.filename,
                submission.status.value,
                now_iso(submission.submitted_at),
            ),
        )
        return submission

    async def get(self, submission_id: str) -> Optional[CodeSubmission]:
        rows = await self.db.query("SELECT * FROM code_submissions WHERE id = ?", (submission_id,))
        return CodeSubmission.model_validate(rows[0]) if rows else None

    async def transition(
        self,
        submission_id: str,
        new_status: SubmissionStatus,
        error_message: Optional[str] = None,
    ) -> CodeSubmission:
        """Move a submission forward. Illegal moves raise InvalidTransitionError."""
        current = await self.get(submission_id)
        if current is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        if new_status not in STATUS_TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Cannot move submission {submission_id} from {current.status.value} to {new_status.value}",
                details={"from": current.status.value, "to": new_status.value},
            )

        completed_at = now_iso() if new_status.is_terminal else None
        # Conditional on the old status so a concurrent writer cannot be overwritten.
        changed = await self.db.execute(
            "UPDATE code_submissions SET status = ?, completed_at = ?, error_message = ? "
            "WHERE id = ? AND status = ?",
            (new_status.value, completed_at, error_message, submission_id, current.status.value),
        )
        if changed == 0:
            latest = await self.get(submission_id)
            found = latest.status.value if latest else "missing"
            raise InvalidTransitionError(
                f"Submission {submission_id} changed concurrently (now {found})",
                details={"from": found, "to": new_status.value},
            )

        updated = await self.get(submission_id)
        if updated is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return updated


class AgentStore:
    """The agent roster, one row per specialty."""

    def __init__(self, db: Database):
        self.db = db

    async def register(
        self,
        agent_id: str,
        name: str,
        specialty: Specialty,
        description: str = "",
    ) -> Agent:
        """Insert the agent for `specialty` unless one already exists."""
        now = now_iso()
        await self.db.execute(
            "INSERT OR IGNORE INTO agents (id, name, specialty, description, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, 'idle', ?, ?)",
            (agent_id, name, specialty.value, description, now, now),
        )
        agent = await self.get_by_specialty(specialty)
        if agent is None:
            raise StoreError(f"Agent for specialty {specialty.value} was not registered")
        return agent

    async def get(self, agent_id: str) -> Optional[Agent]:
        rows = await self.db.query("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return Agent.model_validate(rows[0]) if rows else None

    async def get_by_specialty(self, specialty: Specialty) -> Optional[Agent]:
        rows = await self.db.query("SELECT * FROM agents WHERE specialty = ?", (specialty.value,))
        return Agent.model_validate(rows[0]) if rows else None

    async def list_all(self) -> list[Agent]:
        rows = await self.db.query("SELECT * FROM agents ORDER BY specialty")
        return [Agent.model_validate(row) for row in rows]

    async def list_available(self) -> list[Agent]:
        """Agents not in the error state, ordered by specialty."""
        rows = await self.db.query("SELECT * FROM agents WHERE status != 'error' ORDER BY specialty")
        return [Agent.model_validate(row) for row in rows]

    async def set_status(self, agent_id: str, status: AgentStatus) -> None:
        await self.db.execute(
            "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, now_iso(), agent_id),
        )

    async def set_fork(self, agent_id: str, fork_id: Optional[str]) -> None:
        await self.db.execute(
            "UPDATE agents SET fork_id = ?, updated_at = ? WHERE id = ?",
            (fork_id, now_iso(), agent_id),
        )


class ResultStore:
    """Per-(submission, agent) analysis results. Rows are written once."""

    def __init__(self, db: Database):
        self.db = db

    async def save(self, result: AnalysisResult) -> AnalysisResult:
        findings = json.dumps([f.model_dump(mode="json") for f in result.findings])
        await self.db.execute(
            "INSERT INTO analysis_results "
            "(id, submission_id, agent_id, findings, confidence, execution_time_ms, patterns_matched, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.id,
                result.submission_id,
                result.agent_id,
                findings,
                result.confidence,
                result.execution_time_ms,
                result.patterns_matched,
                now_iso(result.created_at),
            ),
        )
        return result

    async def get_results(self, submission_id: str) -> list[AnalysisResult]:
        rows = await self.db.query(
            "SELECT * FROM analysis_results WHERE submission_id = ? ORDER BY created_at, rowid",
            (submission_id,),
        )
        results = []
        for row in rows:
            row["findings"] = json.loads(row["findings"] or "[]")
            results.append(AnalysisResult.model_validate(row))
        return results
