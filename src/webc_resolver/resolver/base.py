"""Base interface for package resolvers."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

from ..common.http_client import HttpClient
from .models import PackageIdentifier, ResolvedPackage

if TYPE_CHECKING:
    from .cache import InMemoryCache


class PackageResolver(abc.ABC):
    """Turns a ``PackageIdentifier`` into a ``ResolvedPackage``.

    Implementations must be safe to call concurrently, including for the
    same identifier. Failures are raised as ``ResolverError`` subclasses:
    ``UnknownPackageError`` when the package does not exist at its locator,
    ``ResolverFailure`` for everything else.
    """

    @abc.abstractmethod
    async def resolve_package(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> ResolvedPackage:
        """Resolve a package, loading all dependencies.

        Args:
            pkg: Package to resolve.
            client: Transport used for any network access.

        Returns:
            The fully materialized package.
        """

    def with_cache(self) -> "InMemoryCache":
        """Wrap this resolver in a basic in-memory cache."""
        from .cache import InMemoryCache  # pylint: disable=import-outside-toplevel

        return InMemoryCache(self)


class SharedResolver(PackageResolver):
    """Handle that forwards every call to another resolver.

    Lets several owners (a cache, a composite, dependency lookups) hold the
    same resolver without knowing whether it is concrete or decorated.
    """

    def __init__(self, inner: PackageResolver):
        self._inner = inner

    @property
    def inner(self) -> PackageResolver:
        return self._inner

    async def resolve_package(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> ResolvedPackage:
        return await self._inner.resolve_package(pkg, client)

    def __repr__(self) -> str:
        return f"SharedResolver({self._inner!r})"
