"""Shared fixtures for DevSwarm tests."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio

from devswarm.core.agents import register_roster
from devswarm.core.config import DEFAULT_CONFIG
from devswarm.core.store import AgentStore, SQLiteDatabase
from devswarm.models.agent import Agent, Specialty
from devswarm.models.finding import Finding, Severity
from devswarm.models.pattern import CodePattern
from devswarm.models.provider import CompletionResult


@pytest.fixture
def config() -> dict:
    """Default configuration with AI switched off."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["ai"]["provider"] = "none"
    return cfg


@pytest_asyncio.fixture
async def db():
    database = await SQLiteDatabase.connect(":memory:")
    yield database
    await database.close()


@pytest_asyncio.fixture
async def roster(db, config) -> dict[Specialty, Agent]:
    """The four default agents registered in the in-memory database."""
    agents = await register_roster(AgentStore(db), config)
    return {agent.specialty: agent for agent in agents}


@pytest.fixture
def make_rule():
    counter = {"n": 0}

    def _make(
        pattern_text: str,
        category: str = "security",
        severity: Severity = Severity.HIGH,
        language: str = "javascript",
        rule_id: Optional[str] = None,
        description: Optional[str] = None,
        example_fix: Optional[str] = "Fix it",
        created_at: Optional[datetime] = None,
    ) -> CodePattern:
        counter["n"] += 1
        return CodePattern(
            id=rule_id or f"rule-{counter['n']}",
            pattern_text=pattern_text,
            category=category,
            severity=severity,
            description=description or f"Matched {pattern_text}",
            language=language,
            example_fix=example_fix,
            created_at=created_at,
        )

    return _make


@pytest.fixture
def make_agent():
    def _make(specialty: Specialty = Specialty.SECURITY, agent_id: str = "agent-1") -> Agent:
        return Agent(id=agent_id, name=f"{specialty.value} agent", specialty=specialty)

    return _make


class FakeAnalyzer:
    """Configured LLM analyzer returning canned findings."""

    def __init__(self, findings: Optional[list[Finding]] = None, error: Optional[Exception] = None):
        self.findings = findings or []
        self.error = error
        self.calls: list[tuple[Specialty, str, str]] = []

    @property
    def configured(self) -> bool:
        return True

    async def analyze(self, specialty, code, language, context=None):
        self.calls.append((specialty, code, language))
        if self.error is not None:
            raise self.error
        return list(self.findings)


class FakeProvider:
    """AI provider returning queued completion results."""

    name = "fake"
    model = "fake-model"

    def __init__(self, results: Optional[list[CompletionResult]] = None, configured: bool = True):
        self.results = list(results or [])
        self.configured = configured
        self.calls: list[dict] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def complete_with_retry(self, system_prompt, user_prompt, max_tokens=0, json_mode=False, temperature=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "max_tokens": max_tokens,
            "json_mode": json_mode,
            "temperature": temperature,
        })
        if self.results:
            return self.results.pop(0)
        return CompletionResult(success=False, error="no result queued")


@pytest.fixture
def fake_analyzer_cls():
    return FakeAnalyzer


@pytest.fixture
def fake_provider_cls():
    return FakeProvider
