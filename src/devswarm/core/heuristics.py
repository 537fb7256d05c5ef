"""Hand-coded structural checks, one family per agent specialty.

Every check has the signature ``check(code, language) -> list[Finding]``,
works on raw text and the line stream, and never calls anything external.
"""

from __future__ import annotations

import re
from bisect import bisect_left, bisect_right
from typing import Callable, Optional

from ..models.finding import Finding, Severity
from .patterns import snippet_from_lines, split_lines

HeuristicCheck = Callable[[str, str], list[Finding]]

JS_LANGUAGES = {"javascript", "typescript", "jsx", "tsx"}

MAX_NESTING_DEPTH = 4
MAX_FUNCTION_LINES = 50
MAX_LINE_LENGTH = 120


def _finding(
    lines: list[str],
    line_number: Optional[int],
    severity: Severity,
    category: str,
    message: str,
    suggestion: str,
    snippet: bool = True,
) -> Finding:
    return Finding(
        severity=severity,
        category=category,
        message=message,
        line_start=line_number,
        line_end=line_number,
        suggestion=suggestion,
        code_snippet=snippet_from_lines(lines, line_number) if snippet and line_number else None,
    )


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

_PY_SQL_FORMAT = re.compile(r"execute\s*\([^)]*%s[^)]*\)")
_PY_SQL_CONCAT = re.compile(r"execute\s*\([^)]*\+[^)]*\)")


def _javascript_security(code: str, lines: list[str]) -> list[Finding]:
    findings: list[Finding] = []
    for index, line in enumerate(lines):
        n = index + 1
        if re.search(r"\beval\s*\(", line):
            findings.append(_finding(
                lines, n, Severity.CRITICAL, "security",
                "Use of eval() is dangerous and can lead to code injection",
                "Avoid eval(). Use safer alternatives like JSON.parse() for data",
            ))
        if re.search(r"\.innerHTML\s*=", line):
            findings.append(_finding(
                lines, n, Severity.HIGH, "security",
                "Direct innerHTML assignment can lead to XSS vulnerabilities",
                "Use textContent or sanitize HTML with DOMPurify",
            ))
        if "dangerouslySetInnerHTML" in line:
            findings.append(_finding(
                lines, n, Severity.HIGH, "security",
                "dangerouslySetInnerHTML can introduce XSS vulnerabilities",
                "Sanitize HTML content before using dangerouslySetInnerHTML",
            ))
    return findings


def _python_security(code: str, lines: list[str]) -> list[Finding]:
    findings: list[Finding] = []
    for index, line in enumerate(lines):
        n = index + 1
        if re.search(r"\b(eval|exec)\s*\(", line):
            findings.append(_finding(
                lines, n, Severity.CRITICAL, "security",
                "Use of eval()/exec() can lead to arbitrary code execution",
                "Use ast.literal_eval() for safe evaluation of literals",
            ))
        if _PY_SQL_FORMAT.search(line) or _PY_SQL_CONCAT.search(line):
            findings.append(_finding(
                lines, n, Severity.CRITICAL, "security",
                "Potential SQL injection vulnerability",
                "Use parameterized queries instead of string concatenation",
            ))
    return findings


def _java_security(code: str, lines: list[str]) -> list[Finding]:
    findings: list[Finding] = []
    for index, line in enumerate(lines):
        if re.search(r"Statement.*execute.*\+", line):
            findings.append(_finding(
                lines, index + 1, Severity.CRITICAL, "security",
                "Potential SQL injection vulnerability",
                "Use PreparedStatement with parameterized queries",
            ))
    return findings


def security_checks(code: str, language: str) -> list[Finding]:
    lang = language.lower()
    lines = split_lines(code)
    if lang in JS_LANGUAGES:
        return _javascript_security(code, lines)
    if lang == "python":
        return _python_security(code, lines)
    if lang == "java":
        return _java_security(code, lines)
    return []


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

_FOR_HEADER = re.compile(r"for\s*\([^)]*\)")
_FOR_OPEN = re.compile(r"for\s*\(")
_JS_FUNCTION = re.compile(r"function\s+\w+\s*\([^)]*\)\s*\{[^}]*\}", re.DOTALL)


def _next_at(positions: list[int], offset: int) -> int:
    index = bisect_left(positions, offset)
    return positions[index] if index < len(positions) else -1


def last_nested_loop_start(code: str) -> int:
    """Offset of the last ``for (...) { ... for (`` opening, or -1.

    A loop counts as nested when another ``for (`` starts between its first
    ``{`` and the next ``}``. One pass over the text with bisected lookups
    instead of rescanning the rest of the file for every loop.
    """
    loops = [(m.start(), m.end()) for m in _FOR_OPEN.finditer(code)]
    if len(loops) < 2:
        return -1
    starts = [start for start, _ in loops]
    closing = {ch: [m.start() for m in re.finditer(re.escape(ch), code)] for ch in "){}"}

    for start, header_end in reversed(loops):
        paren = _next_at(closing[")"], header_end)
        if paren < 0:
            continue
        brace = _next_at(closing["{"], paren + 1)
        if brace < 0:
            continue
        end = _next_at(closing["}"], brace + 1)
        if end < 0:
            end = len(code)
        inner = bisect_right(starts, brace)
        if inner < len(starts) and starts[inner] < end:
            return start
    return -1


def _javascript_performance(code: str, lines: list[str]) -> list[Finding]:
    findings: list[Finding] = []
    # Any nested loop at or after a loop header flags that header.
    last_nested = last_nested_loop_start(code)
    offset = 0
    for index, line in enumerate(lines):
        n = index + 1
        line_offset = offset
        offset += len(line) + 1
        is_for_line = bool(_FOR_HEADER.search(line))

        if is_for_line and line_offset <= last_nested:
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "performance",
                "Nested loops detected - potential O(n^2) or worse complexity",
                "Consider using hash maps or optimizing the algorithm",
            ))

        if is_for_line and re.search(r"\.(push|concat|splice)", line):
            findings.append(_finding(
                lines, n, Severity.LOW, "performance",
                "Array mutation in loop - consider pre-allocating or using different approach",
                "Pre-allocate array size or use array methods like map/filter",
            ))

        if re.search(r"console\.(log|debug|info|warn)", line):
            findings.append(_finding(
                lines, n, Severity.INFO, "performance",
                "Console statements can impact performance in production",
                "Remove console statements or use a logging library with levels",
            ))

        if re.search(r"fs\.readFileSync|fs\.writeFileSync", line):
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "performance",
                "Synchronous file operation blocks the event loop",
                "Use async versions (readFile, writeFile) with async/await",
            ))
    return findings


def _python_performance(code: str, lines: list[str]) -> list[Finding]:
    findings: list[Finding] = []
    for index, line in enumerate(lines):
        n = index + 1
        is_for_line = bool(re.search(r"for\s+.*:", line))
        if is_for_line and re.search(r"\+=\s*\[", line):
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "performance",
                "List concatenation in loop is inefficient",
                "Use list.append() or list comprehension instead",
            ))
        if is_for_line and re.search(r"global\s+", line):
            findings.append(_finding(
                lines, n, Severity.LOW, "performance",
                "Global variable access in loop can be slow",
                "Cache global variables in local scope before loop",
            ))
    return findings


def performance_checks(code: str, language: str) -> list[Finding]:
    lang = language.lower()
    lines = split_lines(code)
    if lang in JS_LANGUAGES:
        return _javascript_performance(code, lines)
    if lang == "python":
        return _python_performance(code, lines)
    return []


def complexity_checks(code: str, language: str) -> list[Finding]:
    """Brace nesting depth and over-long brace-delimited functions."""
    findings: list[Finding] = []
    lines = split_lines(code)

    max_nesting = 0
    current = 0
    nesting_line = 0
    for index, line in enumerate(lines):
        current += line.count("{") - line.count("}")
        if current > max_nesting:
            max_nesting = current
            nesting_line = index + 1

    if max_nesting > MAX_NESTING_DEPTH:
        findings.append(_finding(
            lines, nesting_line, Severity.MEDIUM, "performance",
            f"High nesting level detected ({max_nesting} levels) - code complexity issue",
            "Refactor into smaller functions or use early returns to reduce nesting",
        ))

    scanned = 0
    start_line = 1
    for match in _JS_FUNCTION.finditer(code):
        start_line += code.count("\n", scanned, match.start())
        scanned = match.start()
        line_count = match.group(0).count("\n") + 1
        if line_count > MAX_FUNCTION_LINES:
            findings.append(_finding(
                lines, start_line, Severity.LOW, "performance",
                f"Long function detected ({line_count} lines) - maintainability and performance concern",
                "Break down into smaller, focused functions",
                snippet=False,
            ))

    return findings


# ---------------------------------------------------------------------------
# Accessibility
# ---------------------------------------------------------------------------

def accessibility_checks(code: str, language: str) -> list[Finding]:
    findings: list[Finding] = []
    has_label = "<label" in code

    lines = split_lines(code)
    for index, line in enumerate(lines):
        n = index + 1
        if re.search(r"<img[^>]*>", line) and not re.search(r"<img[^>]*alt=", line):
            findings.append(_finding(
                lines, n, Severity.HIGH, "accessibility",
                "Image missing alt attribute for screen readers",
                'Add descriptive alt text: <img src="..." alt="Description of image">',
            ))

        if re.search(r"<button[^>]*>\s*</button>", line):
            findings.append(_finding(
                lines, n, Severity.HIGH, "accessibility",
                "Button without text content or aria-label",
                "Add text content or aria-label to describe button action",
            ))

        if re.search(r"<input[^>]*type=[\"'](?!hidden)", line) and not has_label:
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "accessibility",
                "Form input may be missing associated label",
                "Wrap input in <label> or use aria-label/aria-labelledby",
            ))

        if re.search(r"<div[^>]*onClick", line):
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "accessibility",
                "onClick handler on non-interactive element (div)",
                'Use <button> or add role="button" and keyboard handlers',
            ))

        if re.search(r"<html[^>]*>", line) and not re.search(r"<html[^>]*lang=", line):
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "accessibility",
                "HTML element missing lang attribute",
                'Add lang attribute: <html lang="en">',
            ))

        if (re.search(r"color:\s*['\"]?(red|green|#[0-9a-f]{3,6})", line)
                and re.search(r"error|success|warning", line)):
            findings.append(_finding(
                lines, n, Severity.LOW, "accessibility",
                "Information conveyed by color alone",
                "Add text, icons, or patterns in addition to color",
            ))

    return findings


# ---------------------------------------------------------------------------
# Best practices
# ---------------------------------------------------------------------------

def best_practice_checks(code: str, language: str) -> list[Finding]:
    findings: list[Finding] = []
    is_js = language.lower() in JS_LANGUAGES

    lines = split_lines(code)
    for index, line in enumerate(lines):
        n = index + 1
        if is_js and re.search(r"\bvar\s+", line):
            findings.append(_finding(
                lines, n, Severity.LOW, "best-practices",
                "Use const or let instead of var",
                "Replace var with const (for constants) or let (for variables)",
            ))

        if is_js and re.search(r"[^=!]==[^=]", line):
            findings.append(_finding(
                lines, n, Severity.LOW, "best-practices",
                "Use strict equality (===) instead of loose equality (==)",
                "Replace == with === for type-safe comparison",
            ))

        if re.search(r"\b\d{3,}\b", line) and not re.search(r"const|let|var", line):
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                "Magic number detected - consider using named constant",
                "Extract number to a named constant for better readability",
            ))

        if re.search(r"//\s*TODO|#\s*TODO", line):
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                "TODO comment found - incomplete implementation",
                "Complete the implementation or create a ticket",
            ))

        if re.search(r"catch\s*\([^)]*\)\s*\{\s*\}", line):
            findings.append(_finding(
                lines, n, Severity.MEDIUM, "best-practices",
                "Empty catch block - errors are silently swallowed",
                "Log the error or handle it appropriately",
            ))

        if re.search(r"console\.(log|error|warn)", line) and not line.strip().startswith("//"):
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                "Console statement found - use proper logging library",
                "Use a logging library with levels for production code",
            ))

    return findings


def code_style_checks(code: str, language: str) -> list[Finding]:
    findings: list[Finding] = []

    lines = split_lines(code)
    for index, line in enumerate(lines):
        n = index + 1
        if len(line) > MAX_LINE_LENGTH:
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                f"Line too long ({len(line)} characters) - consider breaking it up",
                f"Keep lines under {MAX_LINE_LENGTH} characters for better readability",
                snippet=False,
            ))

        if line.count(";") > 1 and "for" not in line:
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                "Multiple statements on one line",
                "Put each statement on its own line",
            ))

        indent = re.match(r"^\s+", line)
        if indent and "\t" in indent.group(0) and " " in indent.group(0):
            findings.append(_finding(
                lines, n, Severity.INFO, "best-practices",
                "Mixed tabs and spaces in indentation",
                "Use consistent indentation (either tabs or spaces)",
                snippet=False,
            ))

    return findings
