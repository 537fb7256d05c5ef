"""AI-assisted analysis as an optional, injected capability.

Pipelines depend on `LLMAnalyzer`. `NullAnalyzer` is the default and
contributes nothing; `ProviderAnalyzer` sends the code to a completion
provider and maps the JSON it returns into findings. Provider failures and
unparseable responses never propagate: they are logged and yield no
findings.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from ..models.agent import Specialty
from ..models.finding import Finding, Severity
from ..providers.base import AIProvider, get_ai_provider

logger = logging.getLogger(__name__)

SYSTEM_PROMPTS: dict[Specialty, str] = {
    Specialty.SECURITY: """You are an expert security analyst specializing in code security vulnerabilities.
Your job is to analyze code and identify security issues like:
- SQL injection vulnerabilities
- XSS (Cross-Site Scripting) vulnerabilities
- Authentication/authorization flaws
- Insecure data handling
- Hardcoded secrets
- Unsafe eval() usage
- CSRF vulnerabilities
- Insecure dependencies

Provide specific, actionable findings with severity levels.""",
    Specialty.PERFORMANCE: """You are an expert performance engineer specializing in code optimization.
Your job is to analyze code and identify performance issues like:
- Inefficient algorithms (O(n^2) when O(n) is possible)
- Memory leaks
- Unnecessary re-renders
- Blocking operations
- Inefficient database queries
- Large bundle sizes
- Unoptimized loops
- Excessive DOM manipulation

Provide specific, actionable findings with measurable impact.""",
    Specialty.ACCESSIBILITY: """You are an expert accessibility specialist (WCAG 2.1 AA/AAA).
Your job is to analyze code and identify accessibility issues like:
- Missing ARIA labels
- Insufficient color contrast
- Missing alt text for images
- Keyboard navigation issues
- Screen reader compatibility
- Focus management problems
- Semantic HTML violations
- Missing form labels

Provide specific, actionable findings with WCAG references.""",
    Specialty.BEST_PRACTICES: """You are an expert code reviewer specializing in software engineering best practices.
Your job is to analyze code and identify issues like:
- Code smells and anti-patterns
- Violation of SOLID principles
- Poor error handling
- Inconsistent naming conventions
- Missing documentation
- Overly complex functions
- Tight coupling
- Magic numbers/strings

Provide specific, actionable findings with industry standards.""",
}

FINDINGS_INSTRUCTIONS = """Provide your analysis as a JSON object of the form {"findings": [...]}. Each finding should have:
- severity: "critical" | "high" | "medium" | "low" | "info"
- message: Brief description of the issue
- line_start: Line number where issue starts (if applicable)
- line_end: Line number where issue ends (if applicable)
- code_snippet: The problematic code snippet
- suggestion: How to fix the issue
- explanation: Detailed explanation of why this is an issue
- category: Category of the issue (e.g., "xss", "sql-injection", "memory-leak")

Return ONLY the JSON, no additional text."""

EXPLAIN_SYSTEM_PROMPT = "You are an expert programmer who explains code clearly and concisely."


def get_system_prompt(specialty: Specialty) -> str:
    return SYSTEM_PROMPTS.get(specialty, SYSTEM_PROMPTS[Specialty.BEST_PRACTICES])


def build_user_prompt(specialty: Specialty, code: str, language: str, context: Optional[str] = None) -> str:
    parts = [
        f"Analyze this {language} code for {specialty.value} issues:",
        "",
        f"```{language}",
        code,
        "```",
        "",
    ]
    if context:
        parts.extend([f"Context: {context}", ""])
    parts.append(FINDINGS_INSTRUCTIONS)
    return "\n".join(parts)


def _strip_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_findings(content: Optional[str]) -> list[Finding]:
    """Map a completion into findings.

    Accepts a bare JSON array or an object with a ``findings`` array.
    Missing fields get the same defaults a reviewer would assume:
    severity info, category general.
    """
    if not content:
        return []
    parsed = json.loads(_strip_fences(content))
    raw_findings = parsed if isinstance(parsed, list) else parsed.get("findings", [])

    findings: list[Finding] = []
    for raw in raw_findings:
        if not isinstance(raw, dict):
            continue
        severity = str(raw.get("severity") or "info").lower()
        if severity not in Severity._value2member_map_:
            severity = Severity.INFO.value
        try:
            findings.append(
                Finding(
                    severity=Severity(severity),
                    category=str(raw.get("category") or "general"),
                    message=str(raw.get("message") or "Issue detected"),
                    line_start=_optional_int(raw.get("line_start")),
                    line_end=_optional_int(raw.get("line_end")),
                    code_snippet=raw.get("code_snippet") or None,
                    suggestion=str(raw.get("suggestion") or "Review and fix this issue"),
                )
            )
        except PydanticValidationError as e:
            logger.debug("Skipping malformed AI finding: %s", e)
    return findings


@runtime_checkable
class LLMAnalyzer(Protocol):
    @property
    def configured(self) -> bool: ...

    async def analyze(
        self, specialty: Specialty, code: str, language: str, context: Optional[str] = None
    ) -> list[Finding]: ...


class NullAnalyzer:
    """No AI assistance. Pipelines skip their AI stage."""

    @property
    def configured(self) -> bool:
        return False

    async def analyze(
        self, specialty: Specialty, code: str, language: str, context: Optional[str] = None
    ) -> list[Finding]:
        return []


class ProviderAnalyzer:
    """`LLMAnalyzer` backed by an AI completion provider."""

    def __init__(self, provider: AIProvider):
        self.provider = provider

    @property
    def configured(self) -> bool:
        return self.provider.is_configured

    async def analyze(
        self, specialty: Specialty, code: str, language: str, context: Optional[str] = None
    ) -> list[Finding]:
        if not self.configured:
            logger.warning("AI provider %s has no API key; skipping AI analysis", self.provider.name)
            return []

        result = await self.provider.complete_with_retry(
            get_system_prompt(specialty),
            build_user_prompt(specialty, code, language, context),
            json_mode=True,
        )
        if not result.success:
            logger.warning("AI %s analysis failed: %s", specialty.value, result.error)
            return []

        try:
            return parse_findings(result.content)
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("AI %s analysis returned unparseable output: %s", specialty.value, e)
            return []

    async def explain_code(self, code: str, language: str) -> str:
        result = await self.provider.complete_with_retry(
            EXPLAIN_SYSTEM_PROMPT,
            f"Explain this {language} code:\n\n```{language}\n{code}\n```",
            max_tokens=500,
            temperature=0.5,
        )
        if not result.success:
            logger.warning("Code explanation failed: %s", result.error)
            return "Error generating explanation"
        return result.content or "No explanation generated"


def build_analyzer(config: dict) -> LLMAnalyzer:
    """The analyzer the configuration asks for; NullAnalyzer when AI is off."""
    provider = get_ai_provider(config)
    if provider is None:
        return NullAnalyzer()
    logger.debug("AI analysis via %s (%s)", provider.name, provider.model)
    return ProviderAnalyzer(provider)
