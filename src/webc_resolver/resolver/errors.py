"""Error taxonomy for identifier parsing and package resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .models import PackageIdentifier


class IdentifierParseError(ValueError):
    """A textual package identifier is malformed.

    Raised synchronously by the parser, never wrapped in ``ResolverError``.
    ``character``/``offset`` are set for an invalid name character,
    ``version`` for an invalid version constraint.
    """

    def __init__(
        self,
        message: str,
        *,
        character: Optional[str] = None,
        offset: Optional[int] = None,
        version: Optional[str] = None,
    ):
        super().__init__(message)
        self.character = character
        self.offset = offset
        self.version = version


class ResolverError(Exception):
    """Base class for every resolution failure."""


class UnknownPackageError(ResolverError):
    """The identifier could not be found at its locator."""

    def __init__(self, identifier: "PackageIdentifier"):
        super().__init__(f"Unknown package, {identifier}")
        self.identifier = identifier


class ResolverFailure(ResolverError):
    """Any other failure: network, malformed package data, I/O, cycles.

    Carries a human readable message and the underlying cause, which is
    also chained as ``__cause__`` when raised with ``raise ... from``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @classmethod
    def wrap(cls, cause: BaseException, context: str) -> "ResolverFailure":
        """Build a failure describing ``context`` around ``cause``."""
        return cls(f"{context}: {cause}", cause=cause)

    def __str__(self) -> str:
        return self.message


class DependencyCycleError(Exception):
    """Diagnostic cause attached to a ``ResolverFailure`` for cyclic graphs."""

    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.path))


class ContainerError(Exception):
    """The fetched bytes are not a valid package container."""
