"""Tests for core/patterns.py."""

from __future__ import annotations

import logging
import re

import pytest

from devswarm.core import patterns
from devswarm.core.patterns import compile_pattern, extract_snippet, match_patterns
from devswarm.models.finding import Severity


class TestCompilePattern:
    def test_valid_regex_is_case_insensitive(self):
        regex = compile_pattern(r"eval\s*\(")
        assert regex.search("x = EVAL (y)")

    @pytest.mark.parametrize("text", [
        "eval(",
        "function(",
        "setTimeout(function",
        "*abc",
        "[unclosed",
        "for (let i = 0; i < array.length; i++)",
        "a*+b",
        "(?>x)",
        "a{2}+",
        "x{1,3}+",
        "y{,2}+",
    ])
    def test_invalid_regex_matches_literally(self, text):
        regex = compile_pattern(text)
        assert regex.pattern == re.escape(text)
        assert regex.search(f"prefix {text} suffix")

    @pytest.mark.parametrize("text", [r"\+\+", "[+]+", "a+?b", "a{2}", "a{2,}?", "}+"])
    def test_escaped_or_lazy_plus_stays_regex(self, text):
        assert compile_pattern(text).pattern == text

    def test_literal_fallback_does_not_overmatch(self):
        regex = compile_pattern("eval(")
        assert regex.search("evaluate(x)") is None

    def test_fallback_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="devswarm.core.patterns"):
            compile_pattern("eval(")
        assert "not a valid regex" in caplog.text


class TestExtractSnippet:
    CODE = "a\nb\nc\nd\ne\nf"

    def test_clipped_at_start(self):
        assert extract_snippet(self.CODE, 1) == "a\nb\nc"

    def test_middle(self):
        assert extract_snippet(self.CODE, 4) == "b\nc\nd\ne\nf"

    def test_clipped_at_end(self):
        assert extract_snippet(self.CODE, 6) == "d\ne\nf"

    def test_custom_context(self):
        assert extract_snippet(self.CODE, 3, context=0) == "c"


class TestMatchPatterns:
    def test_order_rule_then_line_then_match(self, make_rule):
        rules = [make_rule("foo", rule_id="r1"), make_rule("bar", rule_id="r2")]
        findings = match_patterns("bar foo\nfoo foo", rules)

        positions = [(f.pattern_match_id, f.line_start, f.column_start, f.column_end) for f in findings]
        assert positions == [
            ("r1", 1, 4, 7),
            ("r1", 2, 0, 3),
            ("r1", 2, 4, 7),
            ("r2", 1, 0, 3),
        ]

    def test_finding_fields_come_from_rule(self, make_rule):
        rule = make_rule(
            "eval(",
            severity=Severity.CRITICAL,
            description="Use of eval()",
            example_fix="Use JSON.parse()",
            rule_id="sec-eval",
        )
        code = "line1\nline2\nconst r = eval(x);\nline4"
        [finding] = match_patterns(code, [rule])

        assert finding.severity == Severity.CRITICAL
        assert finding.category == "security"
        assert finding.message == "Use of eval()"
        assert finding.suggestion == "Use JSON.parse()"
        assert finding.line_start == finding.line_end == 3
        assert finding.column_start == 10
        assert finding.column_end == 15
        assert finding.code_snippet == code
        assert finding.pattern_match_id == "sec-eval"

    def test_case_insensitive_match(self, make_rule):
        findings = match_patterns("Password = 'x'", [make_rule("password")])
        assert len(findings) == 1

    def test_brace_possessive_rule_matches_literally(self, make_rule):
        [finding] = match_patterns("xx a{2}+ yy", [make_rule("a{2}+")])
        assert (finding.column_start, finding.column_end) == (3, 8)

    def test_loop_header_rule_matches_literally(self, make_rule):
        code = "for (let i = 0; i < array.length; i++) {\n  total += array[i];\n}"
        [finding] = match_patterns(code, [make_rule("for (let i = 0; i < array.length; i++)")])
        assert finding.line_start == 1
        assert finding.column_start == 0

    def test_no_rules(self):
        assert match_patterns("anything", []) == []

    def test_empty_rule_text_skipped(self, make_rule, caplog):
        findings = match_patterns("abc", [make_rule("", rule_id="empty"), make_rule("abc")])
        assert len(findings) == 1
        assert "Skipping rule empty" in caplog.text

    def test_rule_fault_does_not_stop_other_rules(self, make_rule, monkeypatch, caplog):
        original = patterns.compile_pattern

        def flaky_compile(text):
            if text == "boom":
                raise RuntimeError("engine fault")
            return original(text)

        monkeypatch.setattr(patterns, "compile_pattern", flaky_compile)
        findings = match_patterns("boom ok", [make_rule("boom", rule_id="bad"), make_rule("ok")])

        assert [f.message for f in findings] == ["Matched ok"]
        assert "Error matching rule bad" in caplog.text

    def test_snippet_context_respected(self, make_rule):
        code = "a\nb\nneedle\nd\ne"
        [finding] = match_patterns(code, [make_rule("needle")], context=1)
        assert finding.code_snippet == "b\nneedle\nd"
