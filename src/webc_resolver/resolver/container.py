"""Decode package containers: gzip'd tarballs or unpacked directories.

A container holds a ``wasmer.toml`` manifest at its root plus the module
files and filesystem directories the manifest refers to.
"""

from __future__ import annotations

import io
import logging
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional

try:
    import tomllib
except ImportError:  # Python < 3.11
    import tomli as tomllib  # type: ignore

from ..constants import Constants
from ..versioning import parse_candidates
from .errors import ContainerError, IdentifierParseError
from .models import (
    CommandMetadata,
    FileSystemMapping,
    PackageIdentifier,
    Volume,
    validate_package_name,
)

logger = logging.getLogger(__name__)


@dataclass
class PackageContainer:
    """Everything a resolver needs from one decoded package."""

    name: str
    version: str
    entrypoint: Optional[str] = None
    commands: List[CommandMetadata] = field(default_factory=list)
    filesystem: List[FileSystemMapping] = field(default_factory=list)
    dependencies: List[PackageIdentifier] = field(default_factory=list)


def _normalize_member(name: str) -> Optional[str]:
    """Return a safe relative path for an archive member, or None to skip."""
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        return None
    parts = [p for p in path.parts if p not in ("", ".")]
    if not parts:
        return None
    return "/".join(parts)


def _strip_common_root(files: Dict[str, bytes]) -> Dict[str, bytes]:
    """Drop a single top-level directory (``package/``) wrapping the manifest."""
    if Constants.MANIFEST_FILE in files:
        return files
    roots = {name.split("/", 1)[0] for name in files}
    if len(roots) != 1:
        return files
    root = roots.pop() + "/"
    if root + Constants.MANIFEST_FILE not in files:
        return files
    return {name[len(root):]: data for name, data in files.items() if name.startswith(root)}


def decode_tarball(data: bytes) -> PackageContainer:
    """Decode a (optionally compressed) tar archive.

    Raises:
        ContainerError: not an archive, or the manifest is missing/invalid.
    """
    files: Dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
            for member in archive.getmembers():
                if not member.isfile():
                    continue
                name = _normalize_member(member.name)
                if name is None:
                    logger.warning("Skipping unsafe archive member: %s", member.name)
                    continue
                handle = archive.extractfile(member)
                if handle is not None:
                    files[name] = handle.read()
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise ContainerError(f"Not a valid package archive: {exc}") from exc
    return decode_files(_strip_common_root(files))


def read_directory(path: Path) -> PackageContainer:
    """Decode an unpacked package directory."""
    files = {
        entry.relative_to(path).as_posix(): entry.read_bytes()
        for entry in sorted(path.rglob("*"))
        if entry.is_file()
    }
    return decode_files(files)


def decode_files(files: Mapping[str, bytes]) -> PackageContainer:
    """Decode a package from its files keyed by relative POSIX path."""
    raw = files.get(Constants.MANIFEST_FILE)
    if raw is None:
        raise ContainerError(f"Package has no {Constants.MANIFEST_FILE}")
    try:
        manifest = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ContainerError(f"Malformed {Constants.MANIFEST_FILE}: {exc}") from exc
    return _build_container(manifest, files)


def _table(manifest: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = manifest.get(key, {})
    if not isinstance(value, dict):
        raise ContainerError(f"[{key}] must be a table")
    return value


def _array_of_tables(manifest: Mapping[str, Any], key: str) -> List[Dict[str, Any]]:
    value = manifest.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ContainerError(f"[[{key}]] must be an array of tables")
    return value


def _build_container(manifest: Mapping[str, Any], files: Mapping[str, bytes]) -> PackageContainer:
    # pylint: disable=too-many-locals, too-many-branches
    package = _table(manifest, "package")
    name = package.get("name")
    version = package.get("version")
    if not isinstance(name, str) or not isinstance(version, str):
        raise ContainerError("[package] needs string 'name' and 'version'")
    if not parse_candidates([version]):
        raise ContainerError(f"Package version {version!r} is not valid semver")
    try:
        validate_package_name(name)
    except IdentifierParseError as exc:
        raise ContainerError(f"Invalid package name {name!r}: {exc}") from exc

    modules: Dict[str, str] = {}
    for module in _array_of_tables(manifest, "module"):
        module_name, source = module.get("name"), module.get("source")
        if not isinstance(module_name, str) or not isinstance(source, str):
            raise ContainerError("Every [[module]] needs 'name' and 'source'")
        if _normalize_member(source) not in files:
            raise ContainerError(f"Module {module_name!r} source {source!r} is missing")
        modules[module_name] = source

    commands: List[CommandMetadata] = []
    seen = set()
    for command in _array_of_tables(manifest, "command"):
        command_name, module_name = command.get("name"), command.get("module")
        if not isinstance(command_name, str) or not isinstance(module_name, str):
            raise ContainerError("Every [[command]] needs 'name' and 'module'")
        if command_name in seen:
            raise ContainerError(f"Duplicate command {command_name!r}")
        if module_name not in modules:
            raise ContainerError(f"Command {command_name!r} uses unknown module {module_name!r}")
        runner = command.get("runner")
        if runner is not None and not isinstance(runner, str):
            raise ContainerError(f"Command {command_name!r} runner must be a string")
        annotations = command.get("annotations", {})
        if not isinstance(annotations, dict):
            raise ContainerError(f"Command {command_name!r} annotations must be a table")
        seen.add(command_name)
        commands.append(
            CommandMetadata(
                name=command_name,
                module=module_name,
                runner=runner,
                annotations=dict(annotations),
            )
        )

    entrypoint = package.get("entrypoint")
    if entrypoint is not None and entrypoint not in seen:
        raise ContainerError(f"Entrypoint {entrypoint!r} is not a declared command")

    filesystem = []
    for mount_path, directory in _table(manifest, "fs").items():
        root = _normalize_member(str(directory))
        if root is None and PurePosixPath(str(directory)).parts:
            raise ContainerError(
                f"Directory {directory!r} mounted at {mount_path!r} is outside the package"
            )
        prefix = root + "/" if root else ""
        contents = {
            path[len(prefix):]: data for path, data in files.items() if path.startswith(prefix)
        }
        if not contents:
            raise ContainerError(f"Directory {directory!r} mounted at {mount_path!r} is missing")
        try:
            filesystem.append(
                FileSystemMapping(PurePosixPath(mount_path), Volume(str(directory), contents))
            )
        except ValueError as exc:
            raise ContainerError(str(exc)) from exc

    dependencies = []
    for dep_name, constraint in _table(manifest, "dependencies").items():
        try:
            dependencies.append(PackageIdentifier(full_name=dep_name, version=str(constraint)))
        except ValueError as exc:
            raise ContainerError(f"Invalid dependency {dep_name!r}: {exc}") from exc

    return PackageContainer(
        name=name,
        version=version,
        entrypoint=entrypoint,
        commands=commands,
        filesystem=filesystem,
        dependencies=dependencies,
    )
