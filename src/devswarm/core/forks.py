"""Agent fork bookkeeping.

A fork is a metadata record tying an agent to a logical isolation unit with
an expiry. Nothing is sandboxed or copied; this only tracks the records.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from ..models.agent import AgentFork, ForkStatus
from .errors import NotFoundError
from .store import Database, now_iso

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 24


class ForkManager:
    def __init__(self, db: Database, parent_service_id: str = "local", ttl_hours: int = DEFAULT_TTL_HOURS):
        self.db = db
        self.parent_service_id = parent_service_id
        self.ttl_hours = ttl_hours

    async def create_fork(self, agent_id: str, duration_hours: Optional[int] = None) -> AgentFork:
        now = datetime.now()
        fork = AgentFork(
            fork_id=str(uuid.uuid4()),
            agent_id=agent_id,
            parent_service_id=self.parent_service_id,
            status=ForkStatus.ACTIVE,
            created_at=now,
            expires_at=now + timedelta(hours=duration_hours or self.ttl_hours),
        )
        await self.db.execute(
            "INSERT INTO agent_forks (fork_id, agent_id, parent_service_id, status, created_at, expires_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                fork.fork_id,
                fork.agent_id,
                fork.parent_service_id,
                fork.status.value,
                now_iso(fork.created_at),
                now_iso(fork.expires_at),
            ),
        )
        logger.debug("Created fork %s for agent %s", fork.fork_id, agent_id)
        return fork

    async def get_fork(self, fork_id: str) -> Optional[AgentFork]:
        rows = await self.db.query("SELECT * FROM agent_forks WHERE fork_id = ?", (fork_id,))
        return AgentFork.model_validate(rows[0]) if rows else None

    async def get_agent_forks(self, agent_id: str) -> list[AgentFork]:
        rows = await self.db.query(
            "SELECT * FROM agent_forks WHERE agent_id = ? ORDER BY created_at DESC",
            (agent_id,),
        )
        return [AgentFork.model_validate(row) for row in rows]

    async def delete_fork(self, fork_id: str) -> None:
        await self.db.execute(
            "UPDATE agent_forks SET status = 'deleted' WHERE fork_id = ?",
            (fork_id,),
        )

    async def cleanup_expired_forks(self, now: Optional[datetime] = None) -> int:
        """Mark active forks past their expiry as expired. Returns how many."""
        changed = await self.db.execute(
            "UPDATE agent_forks SET status = 'expired' WHERE expires_at < ? AND status = 'active'",
            (now_iso(now),),
        )
        if changed:
            logger.info("Expired %d agent forks", changed)
        return changed

    async def get_active_fork_count(self, now: Optional[datetime] = None) -> int:
        rows = await self.db.query(
            "SELECT COUNT(*) AS count FROM agent_forks WHERE status = 'active' AND expires_at > ?",
            (now_iso(now),),
        )
        return int(rows[0]["count"])

    async def extend_fork(self, fork_id: str, additional_hours: int) -> AgentFork:
        fork = await self.get_fork(fork_id)
        if fork is None:
            raise NotFoundError(f"Fork {fork_id} not found")

        expires_at = fork.expires_at + timedelta(hours=additional_hours)
        await self.db.execute(
            "UPDATE agent_forks SET expires_at = ? WHERE fork_id = ?",
            (now_iso(expires_at), fork_id),
        )
        return fork.model_copy(update={"expires_at": expires_at})
