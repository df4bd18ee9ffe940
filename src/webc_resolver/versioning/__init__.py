"""Version constraint handling."""

from .parser import (
    ANY_VERSION,
    InvalidVersionConstraint,
    is_any_version,
    parse_candidates,
    parse_constraint,
    pick_version,
    satisfies,
)

__all__ = [
    "ANY_VERSION",
    "InvalidVersionConstraint",
    "is_any_version",
    "parse_candidates",
    "parse_constraint",
    "pick_version",
    "satisfies",
]
