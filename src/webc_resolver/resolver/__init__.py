"""Package identifiers, resolvers and the resolution cache."""

from .base import PackageResolver, SharedResolver
from .builtin import BuiltinResolver, merge_package
from .cache import InMemoryCache
from .container import PackageContainer, decode_files, decode_tarball, read_directory
from .errors import (
    ContainerError,
    DependencyCycleError,
    IdentifierParseError,
    ResolverError,
    ResolverFailure,
    UnknownPackageError,
)
from .identifier import format_identifier, parse_identifier, with_locator
from .models import (
    REGISTRY,
    CommandMetadata,
    FileSystemMapping,
    LocalLocator,
    Locator,
    PackageIdentifier,
    RegistryLocator,
    ResolvedCommand,
    ResolvedPackage,
    UrlLocator,
    Volume,
)
from .sources import FileSystemSource, PackageSource, RegistrySource, UrlSource

__all__ = [
    "REGISTRY",
    "BuiltinResolver",
    "CommandMetadata",
    "ContainerError",
    "DependencyCycleError",
    "FileSystemMapping",
    "FileSystemSource",
    "IdentifierParseError",
    "InMemoryCache",
    "LocalLocator",
    "Locator",
    "PackageContainer",
    "PackageIdentifier",
    "PackageResolver",
    "PackageSource",
    "RegistryLocator",
    "RegistrySource",
    "ResolvedCommand",
    "ResolvedPackage",
    "ResolverError",
    "ResolverFailure",
    "SharedResolver",
    "UnknownPackageError",
    "UrlLocator",
    "UrlSource",
    "Volume",
    "decode_files",
    "decode_tarball",
    "format_identifier",
    "merge_package",
    "parse_identifier",
    "read_directory",
    "with_locator",
]
