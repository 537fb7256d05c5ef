"""Analysis orchestrator.

Drives one submission through ``pending -> analyzing -> completed | failed``:
resolves the agent set, runs one pipeline per agent concurrently, stores
each agent's result as soon as it is ready and joins them behind a
`JoinPolicy`.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from datetime import datetime
from typing import Iterable, Optional

from ..models.agent import Agent, AgentStatus
from ..models.progress import MessageType
from ..models.submission import AnalysisReport, AnalysisResult, SubmissionStatus
from ..utils.sanitize import sanitize_error
from .agents import create_pipeline
from .config import DEFAULT_CONFIG
from .errors import AgentExecutionError, DevSwarmError, NotFoundError
from .llm import LLMAnalyzer, NullAnalyzer
from .progress import DEFAULT_QUEUE_SIZE, ProgressBus
from .rules import DatabaseRuleLibrary, RuleLibrary
from .store import AgentStore, Database, ResultStore, SubmissionStore
from .synthesis import calculate_confidence, summarize_results, total_execution_time

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Join policies
# ---------------------------------------------------------------------------

class JoinPolicy:
    """Waits for every agent run of a submission and decides what failures mean."""

    name = "base"

    async def join(
        self, submission_id: str, runs: Iterable[asyncio.Task]
    ) -> list[AgentExecutionError]:
        """Wait for all runs. Returns the failures, in launch order."""
        outcomes = await asyncio.gather(*runs, return_exceptions=True)
        failures: list[AgentExecutionError] = []
        for outcome in outcomes:
            if isinstance(outcome, AgentExecutionError):
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                failures.append(AgentExecutionError(str(outcome), agent_id="unknown"))
        return failures


class AllOrNothingJoin(JoinPolicy):
    """Any failed agent fails the submission."""

    name = "all"

    async def join(
        self, submission_id: str, runs: Iterable[asyncio.Task]
    ) -> list[AgentExecutionError]:
        failures = await super().join(submission_id, runs)
        if failures:
            raise failures[0]
        return failures


class PartialSuccessJoin(JoinPolicy):
    """Failed agents are reported, the submission still completes."""

    name = "partial"


JOIN_POLICIES: dict[str, type[JoinPolicy]] = {
    AllOrNothingJoin.name: AllOrNothingJoin,
    PartialSuccessJoin.name: PartialSuccessJoin,
}


def get_join_policy(name: str) -> JoinPolicy:
    try:
        return JOIN_POLICIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown join policy: {name}. Expected one of: {', '.join(JOIN_POLICIES)}"
        ) from None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class Orchestrator:
    def __init__(
        self,
        db: Database,
        config: Optional[dict] = None,
        bus: Optional[ProgressBus] = None,
        rules: Optional[RuleLibrary] = None,
        analyzer: Optional[LLMAnalyzer] = None,
        join_policy: Optional[JoinPolicy] = None,
    ):
        self.config = config or copy.deepcopy(DEFAULT_CONFIG)
        self.submissions = SubmissionStore(db)
        self.agents = AgentStore(db)
        self.results = ResultStore(db)
        self.bus = bus or ProgressBus(
            self.config.get("progress", {}).get("queue_size", DEFAULT_QUEUE_SIZE)
        )
        self.rules = rules or DatabaseRuleLibrary(db)
        self.analyzer = analyzer or NullAnalyzer()
        self.join_policy = join_policy or get_join_policy(
            self.config.get("analysis", {}).get("join_policy", "all")
        )

        self._runs: dict[str, asyncio.Task] = {}
        self._in_flight: dict[str, int] = {}
        self._errored: set[str] = set()
        self._status_lock = asyncio.Lock()

    # -- agent status -------------------------------------------------------

    async def _acquire(self, agent: Agent) -> None:
        async with self._status_lock:
            self._in_flight[agent.id] = self._in_flight.get(agent.id, 0) + 1
            await self.agents.set_status(agent.id, AgentStatus.ANALYZING)

    async def _release(self, agent: Agent, failed: bool) -> None:
        """Idle only when the agent's last in-flight pipeline finished cleanly."""
        async with self._status_lock:
            remaining = self._in_flight.get(agent.id, 1) - 1
            if failed:
                self._errored.add(agent.id)
                await self.agents.set_status(agent.id, AgentStatus.ERROR)
            elif remaining <= 0 and agent.id not in self._errored:
                await self.agents.set_status(agent.id, AgentStatus.IDLE)

            if remaining <= 0:
                self._in_flight.pop(agent.id, None)
                self._errored.discard(agent.id)
            else:
                self._in_flight[agent.id] = remaining

    # -- analysis -----------------------------------------------------------

    async def resolve_agents(self, requested: Optional[list[str]] = None) -> list[Agent]:
        """Requested specialties, or every agent not in the error state."""
        available = await self.agents.list_available()
        if requested:
            wanted = set(requested)
            return [a for a in available if a.specialty.value in wanted]
        return available

    async def _run_agent(
        self, submission_id: str, agent: Agent, code: str, language: str
    ) -> AnalysisResult:
        start = time.monotonic()
        pipeline = create_pipeline(
            agent,
            self.rules,
            analyzer=self.analyzer,
            reporter=self.bus.reporter(submission_id, agent),
            config=self.config,
        )
        try:
            findings = await pipeline.analyze(code, language)
            result = AnalysisResult(
                id=str(uuid.uuid4()),
                submission_id=submission_id,
                agent_id=agent.id,
                findings=findings,
                confidence=calculate_confidence(findings),
                execution_time_ms=int((time.monotonic() - start) * 1000),
                patterns_matched=pipeline.patterns_matched,
                created_at=datetime.now(),
            )
            await self.results.save(result)
        except Exception as e:
            logger.error("Agent %s failed on submission %s: %s", agent.name, submission_id, sanitize_error(str(e)))
            await self._release(agent, failed=True)
            raise AgentExecutionError(f"Agent {agent.name} failed: {e}", agent_id=agent.id) from e

        await self._release(agent, failed=False)
        return result

    async def run_analysis(
        self,
        submission_id: str,
        code: str,
        language: str,
        requested_agents: Optional[list[str]] = None,
    ) -> None:
        """Run every selected agent for a submission already in `analyzing`."""
        start = time.monotonic()
        self.bus.broadcast(submission_id, MessageType.ANALYSIS_STARTED)

        try:
            selected = await self.resolve_agents(requested_agents)
            for agent in selected:
                await self._acquire(agent)

            runs = [
                asyncio.create_task(self._run_agent(submission_id, agent, code, language))
                for agent in selected
            ]
            failures = await self.join_policy.join(submission_id, runs)

            await self.submissions.transition(submission_id, SubmissionStatus.COMPLETED)
        except Exception as e:
            message = sanitize_error(str(e))
            logger.error("Analysis of submission %s failed: %s", submission_id, message)
            try:
                await self.submissions.transition(
                    submission_id, SubmissionStatus.FAILED, error_message=message
                )
            except DevSwarmError as store_error:
                logger.error("Could not mark submission %s failed: %s", submission_id, store_error)
            error_payload = {"message": "Analysis failed", "error": message}
            if isinstance(e, AgentExecutionError):
                error_payload["agent_id"] = e.agent_id
            self.bus.broadcast(submission_id, MessageType.ERROR, error_payload)
            raise

        payload: dict = {"execution_time_ms": int((time.monotonic() - start) * 1000)}
        if failures:
            payload["failed_agents"] = [
                {"agent_id": f.agent_id, "error": sanitize_error(f.message)} for f in failures
            ]
        logger.info(
            "Submission %s completed: %d agents, %d failed",
            submission_id, len(selected), len(failures),
        )
        self.bus.broadcast(submission_id, MessageType.ANALYSIS_COMPLETE, payload)

    async def _run_in_background(
        self,
        submission_id: str,
        code: str,
        language: str,
        requested_agents: Optional[list[str]],
    ) -> None:
        try:
            await self.run_analysis(submission_id, code, language, requested_agents)
        except Exception:
            # Already recorded on the submission and broadcast.
            logger.debug("Background analysis %s ended in failure", submission_id, exc_info=True)

    def launch(
        self,
        submission_id: str,
        code: str,
        language: str,
        requested_agents: Optional[list[str]] = None,
    ) -> asyncio.Task:
        """Schedule `run_analysis` without waiting for it."""
        task = asyncio.create_task(
            self._run_in_background(submission_id, code, language, requested_agents)
        )
        self._runs[submission_id] = task
        task.add_done_callback(lambda _: self._runs.pop(submission_id, None))
        return task

    async def wait(self, submission_id: str) -> AnalysisReport:
        """Block until a launched analysis finishes, then return its report."""
        task = self._runs.get(submission_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.get_analysis(submission_id)

    # -- reads --------------------------------------------------------------

    async def get_analysis(self, submission_id: str) -> AnalysisReport:
        submission = await self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")

        results = await self.results.get_results(submission_id)
        return AnalysisReport(
            submission_id=submission_id,
            status=submission.status,
            results=results,
            summary=summarize_results(results),
            execution_time_ms=total_execution_time(results),
            error_message=submission.error_message,
        )

    async def list_agents(self) -> list[Agent]:
        """The full roster, ordered by specialty."""
        return await self.agents.list_all()
