"""Textual package identifier grammar.

``<full_name>["@"<version-constraint>]`` where ``full_name`` only uses
``[A-Za-z0-9._/-]``. A missing constraint means any version. Parsed
identifiers always point at the registry; local and URL locators are
attached by callers that already know where the package lives.
"""

from __future__ import annotations

from typing import Tuple

from ..constants import Constants
from ..versioning import InvalidVersionConstraint, parse_constraint
from .errors import IdentifierParseError
from .models import REGISTRY, Locator, PackageIdentifier, validate_package_name


def split_identifier(text: str) -> Tuple[str, str]:
    """Split on the first ``@`` into ``(name, constraint)``."""
    name, sep, version = text.partition(Constants.NAME_VERSION_SEPARATOR)
    if not sep:
        return name, Constants.ANY_VERSION
    return name, version


def parse_identifier(text: str) -> PackageIdentifier:
    """Parse ``text`` into a registry ``PackageIdentifier``.

    Raises:
        IdentifierParseError: invalid name character (with offset) or
            invalid version constraint (naming the bad input).
    """
    full_name, raw_version = split_identifier(text)
    validate_package_name(full_name)

    try:
        if not raw_version.strip():
            raise InvalidVersionConstraint(raw_version, "empty constraint after '@'")
        version = parse_constraint(raw_version)
    except InvalidVersionConstraint as exc:
        raise IdentifierParseError(
            f'Invalid version number, "{raw_version}"', version=raw_version
        ) from exc

    return PackageIdentifier(full_name=full_name, locator=REGISTRY, version=version)


def with_locator(identifier: PackageIdentifier, locator: Locator) -> PackageIdentifier:
    """Copy of ``identifier`` pointing at ``locator``."""
    return PackageIdentifier(
        full_name=identifier.full_name, locator=locator, version=identifier.version
    )


def format_identifier(identifier: PackageIdentifier) -> str:
    """``name@version``, plus `` (<path or url>)`` for non-registry locators.

    The suffix is for diagnostics only and does not parse back.
    """
    return str(identifier)
