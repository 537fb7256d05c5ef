"""Agent data models."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Specialty(str, Enum):
    SECURITY = "security"
    PERFORMANCE = "performance"
    ACCESSIBILITY = "accessibility"
    BEST_PRACTICES = "best-practices"


class AgentStatus(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    ERROR = "error"


class Agent(BaseModel):
    id: str
    name: str
    specialty: Specialty
    description: str = ""
    status: AgentStatus = AgentStatus.IDLE
    fork_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ForkStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DELETED = "deleted"


class AgentFork(BaseModel):
    """Bookkeeping record for an agent's logical isolation unit."""

    fork_id: str
    agent_id: str
    parent_service_id: str
    status: ForkStatus = ForkStatus.ACTIVE
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now()) >= self.expires_at

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        return self.expires_at - (now or datetime.now())
