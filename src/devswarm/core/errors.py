"""Exception hierarchy for the analysis engine."""

from __future__ import annotations

from typing import Any, Optional


class DevSwarmError(Exception):
    """Base error. `code` is a stable machine-readable identifier."""

    code = "DEVSWARM_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data: dict = {"error": self.message, "code": self.code}
        if self.details is not None:
            data["details"] = self.details
        return data


class ValidationError(DevSwarmError):
    """Caller input rejected before orchestration starts."""

    code = "VALIDATION_ERROR"


class NotFoundError(DevSwarmError):
    code = "NOT_FOUND"


class InvalidTransitionError(DevSwarmError):
    code = "INVALID_TRANSITION"


class CollaboratorError(DevSwarmError):
    """An external collaborator (store, LLM service) is unavailable."""

    code = "COLLABORATOR_ERROR"


class StoreError(CollaboratorError):
    code = "STORE_ERROR"


class AgentExecutionError(DevSwarmError):
    """A pipeline failed with an error it could not absorb."""

    code = "AGENT_EXECUTION_ERROR"

    def __init__(self, message: str, agent_id: str, details: Optional[Any] = None):
        super().__init__(message, details)
        self.agent_id = agent_id
