"""Rule libraries: where pipelines get their detection rules from."""

from __future__ import annotations

import json
import logging
from importlib import resources
from typing import Iterable, Optional, Protocol, runtime_checkable

import yaml

from ..models.agent import Specialty
from ..models.pattern import CodePattern
from .store import Database, now_iso

logger = logging.getLogger(__name__)

DEFAULT_RULE_LIMIT = 20


@runtime_checkable
class RuleLibrary(Protocol):
    async def fetch_rules(
        self, language: str, specialty: Specialty, limit: int = DEFAULT_RULE_LIMIT
    ) -> list[CodePattern]: ...


def _row_to_pattern(row: dict) -> CodePattern:
    data = dict(row)
    data["tags"] = json.loads(data.get("tags") or "[]")
    return CodePattern.model_validate(data)


class DatabaseRuleLibrary:
    """Rules stored in the ``code_patterns`` table."""

    def __init__(self, db: Database):
        self.db = db

    async def fetch_rules(
        self, language: str, specialty: Specialty, limit: int = DEFAULT_RULE_LIMIT
    ) -> list[CodePattern]:
        """Newest rules for `language` whose category mentions the specialty."""
        rows = await self.db.query(
            "SELECT * FROM code_patterns WHERE language = ? AND category LIKE ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (language, f"%{specialty.value}%", limit),
        )
        return [_row_to_pattern(row) for row in rows]

    async def search_rules(
        self,
        query: Optional[str] = None,
        language: Optional[str] = None,
        limit: int = 10,
    ) -> list[CodePattern]:
        """Free-text search over rule text and description."""
        sql = "SELECT * FROM code_patterns WHERE 1=1"
        params: list = []
        if language:
            sql += " AND language = ?"
            params.append(language)
        if query:
            sql += " AND (pattern_text LIKE ? OR description LIKE ?)"
            params.extend([f"%{query}%", f"%{query}%"])
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        rows = await self.db.query(sql, params)
        return [_row_to_pattern(row) for row in rows]

    async def add_rule(self, rule: CodePattern) -> bool:
        """Insert `rule` unless its id exists. Returns True when inserted."""
        changed = await self.db.execute(
            "INSERT OR IGNORE INTO code_patterns "
            "(id, pattern_text, category, severity, description, language, example_fix, tags, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                rule.id,
                rule.pattern_text,
                rule.category,
                rule.severity.value,
                rule.description,
                rule.language,
                rule.example_fix,
                json.dumps(rule.tags),
                now_iso(rule.created_at),
            ),
        )
        return changed > 0


class StaticRuleLibrary:
    """In-memory rules, filtered the same way as the database library."""

    def __init__(self, rules: Iterable[CodePattern] = ()):
        # Later entries count as newer.
        self.rules = list(rules)

    async def fetch_rules(
        self, language: str, specialty: Specialty, limit: int = DEFAULT_RULE_LIMIT
    ) -> list[CodePattern]:
        matching = [
            rule for rule in reversed(self.rules)
            if rule.language == language and specialty.value.lower() in rule.category.lower()
        ]
        return matching[:limit]


def load_default_rules() -> list[CodePattern]:
    """Read the bundled rule set."""
    data_pkg = resources.files("devswarm.data")
    content = (data_pkg / "rules.yaml").read_text(encoding="utf-8")
    data = yaml.safe_load(content) or {}
    return [CodePattern.model_validate(entry) for entry in data.get("rules", [])]


async def seed_default_rules(db: Database) -> int:
    """Insert the bundled rules. Returns how many were new."""
    library = DatabaseRuleLibrary(db)
    added = 0
    for rule in load_default_rules():
        if await library.add_rule(rule):
            added += 1
    logger.info("Seeded %d default rules", added)
    return added
