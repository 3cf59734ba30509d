"""
Requirement-code helpers shared by the loader, mapper and compliance engine.

Codes look like ``M.SS.RR`` with an optional lowercase suffix (``2.03.04b``).
"""

from __future__ import annotations

import re

REQUIREMENT_CODE_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+)([a-z]?))?", re.IGNORECASE)


def code_sort_key(code: str) -> tuple[int, int, int, str]:
    """Numeric sort key for a dotted code; unparseable codes sort last."""
    match = REQUIREMENT_CODE_RE.fullmatch(code.strip())
    if not match:
        return (10**6, 0, 0, code)
    major, minor, sub, suffix = match.groups()
    return (int(major), int(minor), int(sub or 0), (suffix or "").lower())
