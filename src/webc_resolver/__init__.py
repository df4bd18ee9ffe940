"""webc-resolver: package resolution core for WebAssembly application runtimes.

Turns ``name@constraint`` references (or local/URL locators) into runnable
packages: named commands, an optional entrypoint and a mount table.
"""

from .resolver import (
    BuiltinResolver,
    InMemoryCache,
    PackageIdentifier,
    PackageResolver,
    ResolvedPackage,
    ResolverError,
    ResolverFailure,
    SharedResolver,
    UnknownPackageError,
    parse_identifier,
)

__version__ = "0.1.0"

__all__ = [
    "BuiltinResolver",
    "InMemoryCache",
    "PackageIdentifier",
    "PackageResolver",
    "ResolvedPackage",
    "ResolverError",
    "ResolverFailure",
    "SharedResolver",
    "UnknownPackageError",
    "parse_identifier",
]
