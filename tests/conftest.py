"""Shared fixtures: fake transport, in-memory registry and package builders."""

import asyncio
import io
import json
import tarfile
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple

import pytest

from webc_resolver.common.http_client import HttpClient, HttpResponse
from webc_resolver.resolver import (
    BuiltinResolver,
    CommandMetadata,
    FileSystemSource,
    PackageResolver,
    RegistrySource,
    ResolvedCommand,
    ResolvedPackage,
    UrlSource,
)

REGISTRY_BASE = "https://registry.test"
CDN_BASE = "https://cdn.test"


class FakeHttpClient(HttpClient):
    """Serves canned responses by URL; unknown URLs get a 404."""

    def __init__(self, routes: Optional[Dict[str, object]] = None):
        self.routes: Dict[str, object] = dict(routes or {})
        self.requests = []

    async def request(self, request):
        self.requests.append(request)
        outcome = self.routes.get(request.url)
        if outcome is None:
            return HttpResponse(status=404)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def urls(self):
        return [r.url for r in self.requests]


def package_files(
    name: str,
    version: str = "1.0.0",
    commands: Iterable[str] = ("main",),
    entrypoint: Optional[str] = None,
    fs: Optional[Mapping[str, Tuple[str, Mapping[str, bytes]]]] = None,
    dependencies: Optional[Mapping[str, str]] = None,
) -> Dict[str, bytes]:
    """Build the files of a package, ``wasmer.toml`` included."""
    lines = ["[package]", f'name = "{name}"', f'version = "{version}"']
    if entrypoint:
        lines.append(f'entrypoint = "{entrypoint}"')
    lines.append("")

    if dependencies:
        lines.append("[dependencies]")
        for dep_name, constraint in dependencies.items():
            lines.append(f'"{dep_name}" = "{constraint}"')
        lines.append("")

    files: Dict[str, bytes] = {}
    commands = list(commands)
    module = name.replace("/", "-")
    if commands:
        lines += ["[[module]]", f'name = "{module}"', f'source = "{module}.wasm"', ""]
        files[f"{module}.wasm"] = b"\x00asm\x01\x00\x00\x00"
        for command in commands:
            lines += [
                "[[command]]",
                f'name = "{command}"',
                f'module = "{module}"',
                'runner = "wasi"',
                "",
            ]

    if fs:
        lines.append("[fs]")
        for mount, (directory, contents) in fs.items():
            lines.append(f'"{mount}" = "{directory}"')
            for relative, data in contents.items():
                files[f"{directory}/{relative}"] = data
        lines.append("")

    files["wasmer.toml"] = "\n".join(lines).encode("utf-8")
    return files


def make_tarball(files: Mapping[str, bytes], prefix: str = "") -> bytes:
    """Pack ``files`` into a gzip'd tarball, optionally under ``prefix/``."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for path, data in sorted(files.items()):
            info = tarfile.TarInfo(name=f"{prefix}/{path}" if prefix else path)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def write_directory(root: Path, files: Mapping[str, bytes]) -> Path:
    for path, data in files.items():
        target = root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return root


class FakeRegistry:
    """Registry index plus CDN tarballs, served through ``FakeHttpClient``."""

    def __init__(self):
        self.routes: Dict[str, object] = {}
        self._index: Dict[str, list] = {}

    def index_url(self, name: str) -> str:
        return f"{REGISTRY_BASE}/api/packages/{name}"

    def publish(self, name: str, version: str = "1.0.0", **kwargs) -> str:
        files = package_files(name, version, **kwargs)
        download_url = f"{CDN_BASE}/{name}-{version}.tar.gz"
        self.routes[download_url] = HttpResponse(status=200, body=make_tarball(files))
        self._index.setdefault(name, []).append(
            {"version": version, "download_url": download_url}
        )
        body = json.dumps({"name": name, "versions": self._index[name]}).encode("utf-8")
        self.routes[self.index_url(name)] = HttpResponse(status=200, body=body)
        return download_url

    def client(self) -> FakeHttpClient:
        return FakeHttpClient(self.routes)


class CountingResolver(PackageResolver):
    """Inner resolver that records calls and can be held open with ``gate``.

    Events must be attached from inside the running loop.
    """

    def __init__(self, result: Optional[ResolvedPackage] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls = 0
        self.cancelled = False
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None

    async def resolve_package(self, pkg, client):
        self.calls += 1
        if self.started is not None:
            self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result


def simple_package(*commands: str, entrypoint: Optional[str] = None) -> ResolvedPackage:
    names = commands or ("main",)
    return ResolvedPackage(
        commands={
            name: ResolvedCommand(CommandMetadata(name=name, module="mod")) for name in names
        },
        entrypoint=entrypoint,
    )


@pytest.fixture
def registry():
    """A fresh in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def builtin():
    """Builtin resolver with every source pointed at the fake registry."""
    return BuiltinResolver(
        sources=[RegistrySource(REGISTRY_BASE), FileSystemSource(), UrlSource()]
    )
