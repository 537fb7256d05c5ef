"""Confidence scoring and summary aggregation."""

from __future__ import annotations

from typing import Iterable

from ..models.finding import AnalysisSummary, Finding, Severity
from ..models.submission import AnalysisResult

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.8,
    Severity.MEDIUM: 0.6,
    Severity.LOW: 0.4,
    Severity.INFO: 0.2,
}

CONFIDENCE_BOOST = 0.2

SEVERITY_ORDER = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW, Severity.INFO]


def calculate_confidence(findings: list[Finding]) -> float:
    """Severity-weighted confidence in [0, 1].

    - No findings: 1.0
    - Otherwise: mean severity weight + 0.2, capped at 1.0
    """
    if not findings:
        return 1.0

    avg_weight = sum(SEVERITY_WEIGHTS[f.severity] for f in findings) / len(findings)
    return min(1.0, avg_weight + CONFIDENCE_BOOST)


def summarize_findings(findings: Iterable[Finding]) -> AnalysisSummary:
    counts = {severity: 0 for severity in Severity}
    total = 0
    for finding in findings:
        counts[finding.severity] += 1
        total += 1

    return AnalysisSummary(
        total_findings=total,
        critical_count=counts[Severity.CRITICAL],
        high_count=counts[Severity.HIGH],
        medium_count=counts[Severity.MEDIUM],
        low_count=counts[Severity.LOW],
        info_count=counts[Severity.INFO],
    )


def summarize_results(results: Iterable[AnalysisResult]) -> AnalysisSummary:
    """Tally finding severities across every stored agent result."""
    return summarize_findings(f for result in results for f in result.findings)


def total_execution_time(results: Iterable[AnalysisResult]) -> int:
    return sum(r.execution_time_ms for r in results)
