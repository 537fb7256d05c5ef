"""Submission intake: validate, persist, hand off to the orchestrator."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from ..models.agent import Specialty
from ..models.submission import CodeSubmission, SubmissionStatus
from .errors import ValidationError
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)

DEFAULT_MAX_CODE_BYTES = 10 * 1024 * 1024

KNOWN_SPECIALTIES = {s.value for s in Specialty}


class SubmissionIntake:
    def __init__(self, orchestrator: Orchestrator, max_code_bytes: Optional[int] = None):
        self.orchestrator = orchestrator
        if max_code_bytes is None:
            max_code_bytes = orchestrator.config.get("analysis", {}).get(
                "max_code_bytes", DEFAULT_MAX_CODE_BYTES
            )
        self.max_code_bytes = max_code_bytes

    def validate(self, code: str, language: str, agents: Optional[list[str]] = None) -> None:
        if not code or not language:
            raise ValidationError("Missing required fields: code and language")

        size = len(code.encode("utf-8"))
        if size > self.max_code_bytes:
            raise ValidationError(
                f"Code is {size} bytes; the limit is {self.max_code_bytes}",
                details={"size": size, "limit": self.max_code_bytes},
            )

        if agents:
            unknown = sorted(set(agents) - KNOWN_SPECIALTIES)
            if unknown:
                raise ValidationError(
                    f"Unknown agent specialties: {', '.join(unknown)}",
                    details={"unknown": unknown, "known": sorted(KNOWN_SPECIALTIES)},
                )

    async def start_analysis(
        self,
        code: str,
        language: str,
        filename: Optional[str] = None,
        agents: Optional[list[str]] = None,
    ) -> str:
        """Accept a submission and start analysing it in the background.

        Returns the new submission id as soon as the submission is stored;
        callers poll `Orchestrator.get_analysis` or subscribe to progress.
        """
        self.validate(code, language, agents)

        submission = CodeSubmission(
            id=str(uuid.uuid4()),
            code=code,
            language=language,
            filename=filename,
            status=SubmissionStatus.PENDING,
            submitted_at=datetime.now(),
        )
        await self.orchestrator.submissions.create(submission)
        await self.orchestrator.submissions.transition(submission.id, SubmissionStatus.ANALYZING)

        self.orchestrator.launch(submission.id, code, language, agents)
        logger.info("Accepted submission %s (%s, %d bytes)", submission.id, language, len(code))
        return submission.id
