# Copyright (c) Syntropy Systems
"""SQL identifier checks.

Physical table names are the only thing tablebench ever splices into SQL
text. They go through ``quote_identifier`` and nowhere else.
"""
from __future__ import annotations

import re

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 63


def is_identifier(name: str) -> bool:
    """Check that name is a plain, unquoted SQL identifier."""
    return (
        bool(IDENTIFIER_PATTERN.match(name))
        and len(name) <= MAX_IDENTIFIER_LENGTH
    )


def validate_identifier(name: str, what: str = "identifier") -> str:
    """Return name unchanged or raise ValueError."""
    if not is_identifier(name):
        msg = (
            f"Invalid {what} '{name}': use letters, digits and underscores "
            f"(max {MAX_IDENTIFIER_LENGTH} chars, not starting with a digit)"
        )
        raise ValueError(msg)
    return name


def quote_identifier(name: str) -> str:
    """Double-quote a validated identifier."""
    return '"' + validate_identifier(name) + '"'
