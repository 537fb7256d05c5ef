"""Submission and analysis result data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .finding import AnalysisSummary, Finding


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.COMPLETED, SubmissionStatus.FAILED)


# Allowed forward moves; terminal states have none.
STATUS_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = {
    SubmissionStatus.PENDING: {SubmissionStatus.ANALYZING, SubmissionStatus.FAILED},
    SubmissionStatus.ANALYZING: {SubmissionStatus.COMPLETED, SubmissionStatus.FAILED},
    SubmissionStatus.COMPLETED: set(),
    SubmissionStatus.FAILED: set(),
}


class CodeSubmission(BaseModel):
    id: str
    code: str
    language: str
    filename: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    submitted_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class AnalysisResult(BaseModel):
    id: str
    submission_id: str
    agent_id: str
    findings: list[Finding] = []
    confidence: float = Field(ge=0.0, le=1.0)
    execution_time_ms: int = 0
    patterns_matched: int = 0
    created_at: Optional[datetime] = None


class AnalysisReport(BaseModel):
    """What a caller polling a submission gets back."""

    submission_id: str
    status: SubmissionStatus
    results: list[AnalysisResult] = []
    summary: AnalysisSummary = AnalysisSummary()
    execution_time_ms: int = 0
    error_message: Optional[str] = None
