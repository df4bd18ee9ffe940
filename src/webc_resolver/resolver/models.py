"""Data models for package identifiers and resolved packages."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass, field, replace
from pathlib import Path, PurePosixPath
from typing import Any, ClassVar, Dict, Iterator, Mapping, Optional, Tuple, Union

import semantic_version

from ..constants import LocatorKind
from ..versioning import ANY_VERSION, parse_constraint
from .errors import IdentifierParseError

_NAME_CHAR = re.compile(r"[A-Za-z0-9._/\-]")


@dataclass(frozen=True)
class RegistryLocator:
    """Resolve against the configured package registry."""

    kind: ClassVar[LocatorKind] = LocatorKind.REGISTRY

    def describe(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class LocalLocator:
    """A pre-fetched package on the current machine (file or directory)."""

    path: Path
    kind: ClassVar[LocatorKind] = LocatorKind.LOCAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))

    def describe(self) -> Optional[str]:
        return str(self.path)


@dataclass(frozen=True)
class UrlLocator:
    """An exact URL to download the package from, bypassing the registry."""

    url: str
    kind: ClassVar[LocatorKind] = LocatorKind.URL

    def __post_init__(self) -> None:
        parts = urllib.parse.urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Not an absolute http(s) URL: {self.url!r}")

    def describe(self) -> Optional[str]:
        return self.url


Locator = Union[RegistryLocator, LocalLocator, UrlLocator]
REGISTRY = RegistryLocator()


def find_invalid_character(name: str) -> Optional[Tuple[int, str]]:
    """Return ``(offset, char)`` of the first character not allowed in a name.

    The offset is a byte offset into the UTF-8 encoding of ``name``.
    """
    offset = 0
    for char in name:
        if not _NAME_CHAR.fullmatch(char):
            return offset, char
        offset += len(char.encode("utf-8"))
    return None


def validate_package_name(name: str) -> None:
    """Raise ``IdentifierParseError`` unless ``name`` is a valid full name."""
    if not name:
        raise IdentifierParseError("Package name is empty", offset=0)
    invalid = find_invalid_character(name)
    if invalid is not None:
        offset, char = invalid
        raise IdentifierParseError(
            f"Invalid character, {char!r}, at offset {offset}",
            character=char,
            offset=offset,
        )


@dataclass(frozen=True)
class PackageIdentifier:
    """Reference to a package: name, where to get it and which versions.

    Equality and hashing are structural, so identifiers work as cache keys.
    ``version`` accepts either a parsed constraint or range text.
    """

    full_name: str
    locator: Locator = REGISTRY
    version: semantic_version.NpmSpec = ANY_VERSION

    def __post_init__(self) -> None:
        validate_package_name(self.full_name)
        if isinstance(self.version, str):
            object.__setattr__(self, "version", parse_constraint(self.version))

    @classmethod
    def parse(cls, text: str) -> "PackageIdentifier":
        """Parse ``name[@constraint]``; see ``identifier.parse_identifier``."""
        from .identifier import parse_identifier  # pylint: disable=import-outside-toplevel

        return parse_identifier(text)

    @property
    def namespace(self) -> Optional[str]:
        """Leading ``ns`` of ``ns/name``, if any."""
        if "/" not in self.full_name:
            return None
        return self.full_name.split("/", 1)[0]

    def cycle_key(self) -> Tuple[str, Locator]:
        """Identity used for dependency cycle detection (version ignored)."""
        return self.full_name, self.locator

    def __str__(self) -> str:
        text = f"{self.full_name}@{self.version}"
        suffix = self.locator.describe()
        if suffix is not None:
            text = f"{text} ({suffix})"
        return text


@dataclass(frozen=True)
class CommandMetadata:
    """Manifest entry describing one invocable command.

    ``annotations`` takes part in equality but not in the hash.
    """

    name: str
    module: str
    runner: Optional[str] = None
    annotations: Mapping[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class ResolvedCommand:
    """A command exposed by a resolved package."""

    metadata: CommandMetadata

    @property
    def name(self) -> str:
        return self.metadata.name


@dataclass(frozen=True)
class Volume:
    """Read-only file tree mounted into a package's filesystem.

    ``files`` maps relative POSIX paths to contents.
    """

    name: str
    files: Mapping[str, bytes] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.files)

    def paths(self) -> Iterator[str]:
        return iter(sorted(self.files))

    def read(self, path: str) -> Optional[bytes]:
        return self.files.get(str(path).lstrip("/"))


@dataclass(frozen=True)
class FileSystemMapping:
    """Mount ``volume`` at ``mount_path`` inside the package filesystem."""

    mount_path: PurePosixPath
    volume: Volume

    def __post_init__(self) -> None:
        mount_path = PurePosixPath(self.mount_path)
        if not mount_path.is_absolute():
            raise ValueError(f"Mount path must be absolute: {mount_path}")
        object.__setattr__(self, "mount_path", mount_path)


@dataclass(frozen=True)
class ResolvedPackage:
    """The output of a successful resolution.

    ``commands`` is ordered by name, ``filesystem`` keeps mount order; a
    later mapping shadows an earlier one where their paths overlap.
    """

    commands: Dict[str, ResolvedCommand] = field(default_factory=dict)
    entrypoint: Optional[str] = None
    filesystem: Tuple[FileSystemMapping, ...] = ()

    def __post_init__(self) -> None:
        for name, command in self.commands.items():
            if command.name != name:
                raise ValueError(f"Command keyed as {name!r} is named {command.name!r}")
        if self.entrypoint is not None and self.entrypoint not in self.commands:
            raise ValueError(f"Entrypoint {self.entrypoint!r} is not a known command")
        object.__setattr__(self, "commands", dict(sorted(self.commands.items())))
        object.__setattr__(self, "filesystem", tuple(self.filesystem))

    def clone(self) -> "ResolvedPackage":
        """Shallow copy; volumes are shared, never copied."""
        return replace(self, commands=dict(self.commands))

    def read_file(self, path: str) -> Optional[bytes]:
        """Read ``path`` through the mount table, last mapping first."""
        target = PurePosixPath(path)
        for mapping in reversed(self.filesystem):
            try:
                relative = target.relative_to(mapping.mount_path)
            except ValueError:
                continue
            data = mapping.volume.read(relative.as_posix())
            if data is not None:
                return data
        return None
