"""Detection rule data model."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .finding import Severity


class CodePattern(BaseModel):
    id: str
    pattern_text: str
    category: str
    severity: Severity
    description: str
    language: str
    example_fix: Optional[str] = None
    tags: list[str] = []
    created_at: Optional[datetime] = None
