"""Rule-based pattern matching over source lines.

Rules come from an external library and may not be valid regular
expressions (`eval(`, `setTimeout(function`). Compilation therefore never
fails: invalid rule text is escaped and matched as a literal substring.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from ..models.finding import Finding
from ..models.pattern import CodePattern

logger = logging.getLogger(__name__)

DEFAULT_SNIPPET_CONTEXT = 2

_BRACE_QUANTIFIER = re.compile(r"\{(?:\d+(?:,\d*)?|,\d+)\}")


def _has_possessive_syntax(pattern_text: str) -> bool:
    """True for possessive quantifiers (``a++``, ``a{2}+``) or atomic groups (``(?>``).

    Python 3.11+ accepts both, but they are errors in the rule dialect, so
    text such as ``i++)`` must still fall back to a literal match.
    """
    in_class = False
    after_quantifier = False
    i = 0
    while i < len(pattern_text):
        ch = pattern_text[i]
        if ch == "\\":
            after_quantifier = False
            i += 2
            continue
        if in_class:
            in_class = ch != "]"
        elif ch == "[":
            in_class = True
            after_quantifier = False
        elif ch == "+" and after_quantifier:
            return True
        elif pattern_text.startswith("(?>", i):
            return True
        elif ch == "{":
            brace = _BRACE_QUANTIFIER.match(pattern_text, i)
            after_quantifier = brace is not None
            if brace:
                i = brace.end()
                continue
        else:
            after_quantifier = ch in "*+?"
        i += 1
    return False


def compile_pattern(pattern_text: str) -> re.Pattern[str]:
    """Compile rule text case-insensitively, falling back to a literal match."""
    try:
        if _has_possessive_syntax(pattern_text):
            raise re.error("possessive quantifier or atomic group")
        return re.compile(pattern_text, re.IGNORECASE)
    except re.error as e:
        logger.debug("Rule %r is not a valid regex (%s); matching literally", pattern_text, e)
        return re.compile(re.escape(pattern_text), re.IGNORECASE)


def split_lines(code: str) -> list[str]:
    return code.split("\n")


def snippet_from_lines(lines: list[str], line_number: int, context: int = DEFAULT_SNIPPET_CONTEXT) -> str:
    start = max(0, line_number - context - 1)
    end = min(len(lines), line_number + context)
    return "\n".join(lines[start:end])


def extract_snippet(code: str, line_number: int, context: int = DEFAULT_SNIPPET_CONTEXT) -> str:
    """Return the 1-based `line_number` with `context` lines either side."""
    return snippet_from_lines(split_lines(code), line_number, context)


def _scan_rule(
    lines: list[str],
    rule: CodePattern,
    context: int,
) -> list[Finding]:
    regex = compile_pattern(rule.pattern_text)
    findings: list[Finding] = []

    for index, line in enumerate(lines):
        for match in regex.finditer(line):
            line_number = index + 1
            findings.append(
                Finding(
                    severity=rule.severity,
                    category=rule.category,
                    message=rule.description,
                    line_start=line_number,
                    line_end=line_number,
                    column_start=match.start(),
                    column_end=match.end(),
                    suggestion=rule.example_fix,
                    code_snippet=snippet_from_lines(lines, line_number, context),
                    pattern_match_id=rule.id,
                )
            )
    return findings


def match_patterns(
    code: str,
    rules: Iterable[CodePattern],
    context: int = DEFAULT_SNIPPET_CONTEXT,
) -> list[Finding]:
    """Scan `code` with every rule.

    Findings are ordered by rule, then line, then position within the line.
    A fault while scanning one rule is logged and the next rule still runs.
    """
    lines = split_lines(code)
    findings: list[Finding] = []

    for rule in rules:
        if not rule.pattern_text:
            logger.warning("Skipping rule %s with empty pattern text", rule.id)
            continue
        try:
            findings.extend(_scan_rule(lines, rule, context))
        except Exception:
            logger.warning("Error matching rule %s", rule.id, exc_info=True)

    return findings
