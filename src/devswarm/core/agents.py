"""Agent roster and the analysis pipeline every agent runs.

All four specialties share one pipeline skeleton:

1. AI-assisted analysis (only when an analyzer is configured and the
   specialty has ``ai_assisted`` enabled)
2. rule matching against rules fetched for (language, specialty)
3. the specialty's deterministic heuristic checks

What differs per specialty (step labels and heuristic checks) lives in a
`PipelineSpec`; `create_pipeline` picks it from the agent's specialty.

Stages 2 and 3 are CPU-bound and run in worker threads via
`asyncio.to_thread`; progress is always reported from the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..models.agent import Agent, Specialty
from ..models.finding import Finding
from ..models.progress import ProgressPhase
from ..utils.sanitize import sanitize_error
from .config import DEFAULT_CONFIG
from .heuristics import (
    HeuristicCheck,
    accessibility_checks,
    best_practice_checks,
    code_style_checks,
    complexity_checks,
    performance_checks,
    security_checks,
)
from .llm import LLMAnalyzer, NullAnalyzer
from .patterns import DEFAULT_SNIPPET_CONTEXT, match_patterns
from .progress import ProgressReporter
from .rules import DEFAULT_RULE_LIMIT, RuleLibrary

if TYPE_CHECKING:
    from .forks import ForkManager
    from .store import AgentStore

logger = logging.getLogger(__name__)

AGENT_DEFS: dict[Specialty, dict] = {
    Specialty.SECURITY: {"label": "security", "color": "red"},
    Specialty.PERFORMANCE: {"label": "performance", "color": "yellow"},
    Specialty.ACCESSIBILITY: {"label": "accessibility", "color": "green"},
    Specialty.BEST_PRACTICES: {"label": "best practices", "color": "blue"},
}

ALL_SPECIALTIES = list(Specialty)

HEURISTICS_END_PERCENT = 90


@dataclass(frozen=True)
class PipelineSpec:
    """What a specialty plugs into the shared pipeline."""

    specialty: Specialty
    label: str
    ai_context: str
    checks: tuple[tuple[str, HeuristicCheck], ...]


PIPELINE_SPECS: dict[Specialty, PipelineSpec] = {
    Specialty.SECURITY: PipelineSpec(
        specialty=Specialty.SECURITY,
        label="security",
        ai_context="Analyze for security vulnerabilities, injection attacks, and unsafe practices",
        checks=(("Running language-specific checks", security_checks),),
    ),
    Specialty.PERFORMANCE: PipelineSpec(
        specialty=Specialty.PERFORMANCE,
        label="performance",
        ai_context="Analyze for performance bottlenecks, inefficient algorithms, and optimization opportunities",
        checks=(
            ("Running language-specific checks", performance_checks),
            ("Analyzing code complexity", complexity_checks),
        ),
    ),
    Specialty.ACCESSIBILITY: PipelineSpec(
        specialty=Specialty.ACCESSIBILITY,
        label="accessibility",
        ai_context="Analyze for WCAG violations, missing labels, and keyboard or screen reader problems",
        checks=(("Checking ARIA and semantic HTML", accessibility_checks),),
    ),
    Specialty.BEST_PRACTICES: PipelineSpec(
        specialty=Specialty.BEST_PRACTICES,
        label="best practices",
        ai_context="Analyze for code smells, poor error handling, and maintainability problems",
        checks=(
            ("Running language-specific checks", best_practice_checks),
            ("Checking code style", code_style_checks),
        ),
    ),
}


class AgentPipeline:
    """One agent's analysis of one submission."""

    def __init__(
        self,
        agent: Agent,
        spec: PipelineSpec,
        rules: RuleLibrary,
        analyzer: Optional[LLMAnalyzer] = None,
        reporter: Optional[ProgressReporter] = None,
        ai_enabled: bool = True,
        rule_limit: int = DEFAULT_RULE_LIMIT,
        snippet_context: int = DEFAULT_SNIPPET_CONTEXT,
    ):
        self.agent = agent
        self.spec = spec
        self.rules = rules
        self.analyzer = analyzer or NullAnalyzer()
        self.reporter = reporter
        self.ai_enabled = ai_enabled
        self.rule_limit = rule_limit
        self.snippet_context = snippet_context
        self.patterns_matched = 0
        self.last_percent = 0

    @property
    def uses_ai(self) -> bool:
        return self.ai_enabled and self.analyzer.configured

    def report_progress(self, phase: ProgressPhase, percent: int, step: Optional[str] = None) -> None:
        self.last_percent = max(self.last_percent, percent)
        if self.reporter is not None:
            self.reporter.report(phase, self.last_percent, step)

    async def analyze(self, code: str, language: str) -> list[Finding]:
        """Run every stage. On failure reports `failed` and re-raises."""
        start = time.monotonic()
        logger.info("%s: starting %s analysis (%s)", self.agent.name, self.spec.label, language)
        try:
            findings = await self._run_stages(code, language)
        except Exception as e:
            self.report_progress(
                ProgressPhase.FAILED,
                self.last_percent,
                f"{self.spec.label.capitalize()} analysis failed: {sanitize_error(str(e))}",
            )
            raise

        logger.info(
            "%s: %d findings (%d from rules) in %dms",
            self.agent.name, len(findings), self.patterns_matched,
            int((time.monotonic() - start) * 1000),
        )
        return findings

    async def _run_stages(self, code: str, language: str) -> list[Finding]:
        label = self.spec.label
        findings: list[Finding] = []
        self.report_progress(ProgressPhase.STARTED, 0, f"Initializing {label} analysis")

        if self.uses_ai:
            self.report_progress(ProgressPhase.ANALYZING, 20, f"Running AI-powered {label} analysis")
            try:
                ai_findings = await self.analyzer.analyze(
                    self.spec.specialty, code, language, self.spec.ai_context
                )
            except Exception as e:
                logger.warning("%s: AI analysis failed: %s", self.agent.name, sanitize_error(str(e)))
                self.report_progress(ProgressPhase.ANALYZING, 50, "LLM analysis failed, using pattern matching")
            else:
                findings.extend(ai_findings)
                self.report_progress(ProgressPhase.ANALYZING, 50, f"Found {len(ai_findings)} AI-detected issues")
            base = 60
        else:
            base = 20

        stride = (HEURISTICS_END_PERCENT - base) // (len(self.spec.checks) + 1)

        self.report_progress(ProgressPhase.SEARCHING, base, f"Loading {label} patterns")
        rules = await self.rules.fetch_rules(language, self.spec.specialty, self.rule_limit)

        self.report_progress(ProgressPhase.ANALYZING, base + stride, f"Scanning for {label} issues")
        rule_findings = await asyncio.to_thread(match_patterns, code, rules, self.snippet_context)
        self.patterns_matched = len(rule_findings)
        findings.extend(rule_findings)

        for index, (step, check) in enumerate(self.spec.checks):
            self.report_progress(ProgressPhase.ANALYZING, base + stride * (index + 2), step)
            findings.extend(await asyncio.to_thread(check, code, language))

        self.report_progress(ProgressPhase.COMPLETED, 100, f"{label.capitalize()} analysis complete")
        return findings


def agent_settings(config: dict, specialty: Specialty) -> dict:
    defaults = DEFAULT_CONFIG["agents"][specialty.value]
    return {**defaults, **config.get("agents", {}).get(specialty.value, {})}


def create_pipeline(
    agent: Agent,
    rules: RuleLibrary,
    analyzer: Optional[LLMAnalyzer] = None,
    reporter: Optional[ProgressReporter] = None,
    config: Optional[dict] = None,
) -> AgentPipeline:
    """Build the pipeline for `agent` according to its specialty."""
    spec = PIPELINE_SPECS.get(agent.specialty)
    if spec is None:
        raise ValueError(f"Unknown agent specialty: {agent.specialty}")

    config = config or DEFAULT_CONFIG
    analysis = config.get("analysis", {})
    return AgentPipeline(
        agent,
        spec,
        rules,
        analyzer=analyzer,
        reporter=reporter,
        ai_enabled=bool(agent_settings(config, agent.specialty).get("ai_assisted", False)),
        rule_limit=analysis.get("rule_limit", DEFAULT_RULE_LIMIT),
        snippet_context=analysis.get("snippet_context", DEFAULT_SNIPPET_CONTEXT),
    )


async def register_roster(
    agents: "AgentStore",
    config: dict,
    forks: Optional["ForkManager"] = None,
) -> list[Agent]:
    """Ensure one agent row per enabled specialty; give new agents a fork."""
    roster: list[Agent] = []
    for specialty in ALL_SPECIALTIES:
        settings = agent_settings(config, specialty)
        if not settings.get("enabled", True):
            continue

        agent = await agents.register(
            str(uuid.uuid4()),
            settings["name"],
            specialty,
            settings.get("description", ""),
        )
        if forks is not None and agent.fork_id is None:
            fork = await forks.create_fork(agent.id)
            await agents.set_fork(agent.id, fork.fork_id)
            agent = agent.model_copy(update={"fork_id": fork.fork_id})
        roster.append(agent)
    return roster
