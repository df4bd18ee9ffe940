"""Version constraint parsing and candidate selection.

Constraints follow npm range syntax (exact versions, comparison operators,
caret/tilde, hyphen ranges, ``x``/``*`` wildcards and ``||`` unions) as
implemented by ``semantic_version.NpmSpec``.
"""

from typing import Iterable, List, Optional

import semantic_version

from ..constants import Constants


class InvalidVersionConstraint(ValueError):
    """Raised when a constraint string is not valid range syntax."""

    def __init__(self, raw: str, reason: str = ""):
        message = f'Invalid version number, "{raw}"'
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.raw = raw


def parse_constraint(raw: Optional[str]) -> semantic_version.NpmSpec:
    """Parse ``raw`` into a version constraint.

    None and blank strings mean "any version".

    Raises:
        InvalidVersionConstraint: ``raw`` is not a valid range.
    """
    text = (raw or "").strip() or Constants.ANY_VERSION
    try:
        return semantic_version.NpmSpec(text)
    except ValueError as exc:
        raise InvalidVersionConstraint(text, str(exc)) from exc


ANY_VERSION = parse_constraint(Constants.ANY_VERSION)


def is_any_version(constraint: semantic_version.NpmSpec) -> bool:
    """True when ``constraint`` places no restriction on the version."""
    return constraint == ANY_VERSION


def parse_candidates(candidates: Iterable[str]) -> List[semantic_version.Version]:
    """Parse version strings, skipping anything that is not valid semver."""
    parsed = []
    for candidate in candidates:
        try:
            parsed.append(semantic_version.Version(candidate))
        except ValueError:
            continue
    return parsed


def satisfies(constraint: semantic_version.NpmSpec, version: str) -> bool:
    """True when ``version`` is valid semver and matches ``constraint``."""
    try:
        return constraint.match(semantic_version.Version(version))
    except ValueError:
        return False


def pick_version(
    constraint: semantic_version.NpmSpec, candidates: Iterable[str]
) -> Optional[semantic_version.Version]:
    """Return the highest candidate matching ``constraint``, or None."""
    return constraint.select(parse_candidates(candidates))
