"""Utilities to normalize free-text entered by the user."""

from __future__ import annotations

import re
from typing import Optional

_WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_description(value: Optional[str]) -> str:
    """Collapse runs of whitespace and strip the ends of a description."""
    if not value:
        return ""
    return _WHITESPACE_PATTERN.sub(" ", value).strip()


def normalize_title(value: Optional[str]) -> str:
    """Normalize a project title; raises ``ValueError`` when nothing is left."""
    normalized = normalize_description(value)
    if not normalized:
        raise ValueError("project title must not be empty")
    return normalized
