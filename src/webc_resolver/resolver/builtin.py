"""Composite resolver: locator dispatch plus recursive dependency resolution."""

from __future__ import annotations

import asyncio
import contextvars
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..common.http_client import HttpClient
from ..common.logging_utils import Timer, extra_context, is_debug_enabled
from ..constants import LocatorKind
from .base import PackageResolver
from .container import PackageContainer
from .errors import DependencyCycleError, ResolverFailure, UnknownPackageError
from .models import PackageIdentifier, ResolvedCommand, ResolvedPackage
from .sources import PackageSource

logger = logging.getLogger(__name__)

# Packages currently being resolved on this logical call chain, outermost first.
# Tasks copy the context when created, so the chain follows dependency
# lookups through caches and other wrappers.
_resolution_path: contextvars.ContextVar[Tuple[PackageIdentifier, ...]] = contextvars.ContextVar(
    "webc_resolver_resolution_path", default=()
)


def _find_cycle(
    path: Sequence[PackageIdentifier], pkg: PackageIdentifier
) -> Optional[List[str]]:
    for index, ancestor in enumerate(path):
        if ancestor.cycle_key() == pkg.cycle_key():
            return [p.full_name for p in path[index:]] + [pkg.full_name]
    return None


def merge_package(
    container: PackageContainer, dependencies: Sequence[ResolvedPackage]
) -> ResolvedPackage:
    """Combine a decoded package with its already resolved dependencies.

    Dependencies contribute first, in declaration order; the package's own
    commands replace same-named dependency commands and its own mounts come
    last so they shadow dependency mounts. The entrypoint is never inherited.
    """
    commands: Dict[str, ResolvedCommand] = {}
    filesystem = []
    for dependency in dependencies:
        commands.update(dependency.commands)
        filesystem.extend(dependency.filesystem)

    for metadata in container.commands:
        commands[metadata.name] = ResolvedCommand(metadata)
    filesystem.extend(container.filesystem)

    return ResolvedPackage(
        commands=commands,
        entrypoint=container.entrypoint,
        filesystem=tuple(filesystem),
    )


class BuiltinResolver(PackageResolver):
    """Resolves packages through per-locator sources.

    Each dependency is resolved through ``dependency_resolver`` (this
    resolver unless another one is set, typically a cache wrapping it).
    Cycles are detected by package name and locator before any dependency
    lookup starts and reported as ``ResolverFailure``.
    """

    def __init__(
        self,
        sources: Iterable[PackageSource] = (),
        dependency_resolver: Optional[PackageResolver] = None,
    ):
        """Initialize the resolver.

        Args:
            sources: Sources to register, at most one per locator kind.
            dependency_resolver: Resolver used for dependencies.
        """
        self._sources: Dict[LocatorKind, PackageSource] = {}
        for source in sources:
            self.register_source(source)
        self._dependency_resolver = dependency_resolver

    def register_source(self, source: PackageSource) -> None:
        """Register (or replace) the source for ``source.kind``."""
        self._sources[source.kind] = source

    @property
    def dependency_resolver(self) -> PackageResolver:
        return self._dependency_resolver or self

    @dependency_resolver.setter
    def dependency_resolver(self, resolver: Optional[PackageResolver]) -> None:
        self._dependency_resolver = resolver

    def source_for(self, pkg: PackageIdentifier) -> PackageSource:
        source = self._sources.get(pkg.locator.kind)
        if source is None:
            raise ResolverFailure(f"No source configured for {pkg.locator.kind.value} packages")
        return source

    async def resolve_package(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> ResolvedPackage:
        path = _resolution_path.get()
        cycle = _find_cycle(path, pkg)
        if cycle is not None:
            raise ResolverFailure(f"Unable to resolve {pkg}", cause=DependencyCycleError(cycle))

        token = _resolution_path.set(path + (pkg,))
        try:
            with Timer() as timer:
                source = self.source_for(pkg)
                container = await source.load(pkg, client)
                dependencies = await self._resolve_dependencies(pkg, container, client)
                resolved = merge_package(container, dependencies)
        finally:
            _resolution_path.reset(token)

        if is_debug_enabled(logger):
            logger.debug(
                "Resolved package",
                extra=extra_context(
                    event="package_resolved",
                    component="builtin_resolver",
                    target=str(pkg),
                    version=container.version,
                    count=len(resolved.commands),
                    duration_ms=timer.duration_ms(),
                ),
            )
        return resolved

    async def _resolve_dependencies(
        self, pkg: PackageIdentifier, container: PackageContainer, client: HttpClient
    ) -> List[ResolvedPackage]:
        if not container.dependencies:
            return []

        path = _resolution_path.get()
        for dependency in container.dependencies:
            cycle = _find_cycle(path, dependency)
            if cycle is not None:
                logger.error("Dependency cycle: %s", " -> ".join(cycle))
                raise ResolverFailure(
                    f"Unable to resolve dependencies of {pkg}",
                    cause=DependencyCycleError(cycle),
                )

        resolver = self.dependency_resolver
        tasks = [
            asyncio.ensure_future(resolver.resolve_package(dependency, client))
            for dependency in container.dependencies
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except UnknownPackageError as exc:
            raise ResolverFailure.wrap(exc, f"Missing dependency of {pkg}") from exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    def __repr__(self) -> str:
        kinds = ", ".join(sorted(kind.value for kind in self._sources))
        return f"BuiltinResolver(sources=[{kinds}])"
