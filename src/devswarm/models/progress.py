"""Progress event data models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ProgressPhase(str, Enum):
    STARTED = "started"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageType(str, Enum):
    ANALYSIS_STARTED = "analysis_started"
    AGENT_PROGRESS = "agent_progress"
    ANALYSIS_COMPLETE = "analysis_complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    submission_id: str
    agent_id: str
    agent_name: str
    status: ProgressPhase
    progress_percent: int = Field(ge=0, le=100)
    current_step: Optional[str] = None


class ProgressMessage(BaseModel):
    type: MessageType
    payload: dict[str, Any] = {}

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
