"""Fetch strategies: one ``PackageSource`` per locator kind.

A source only locates and decodes a single package; dependency handling
and merging belong to ``BuiltinResolver``.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import urllib.parse
from pathlib import Path
from typing import Dict, Optional

from ..common.http_client import HttpClient, HttpResponse, TransportError
from ..common.logging_utils import extra_context, is_debug_enabled, safe_url
from ..constants import Constants, LocatorKind
from ..versioning import parse_candidates, pick_version, satisfies
from .container import PackageContainer, decode_tarball, read_directory
from .errors import ContainerError, ResolverFailure, UnknownPackageError
from .models import LocalLocator, PackageIdentifier, UrlLocator

logger = logging.getLogger(__name__)

_TARBALL_ACCEPT = "application/gzip, application/x-tar, */*"


class PackageSource(abc.ABC):
    """Loads one package for identifiers of a single locator kind."""

    @property
    @abc.abstractmethod
    def kind(self) -> LocatorKind:
        """Locator kind this source serves."""

    @abc.abstractmethod
    async def load(self, pkg: PackageIdentifier, client: HttpClient) -> PackageContainer:
        """Locate and decode ``pkg``.

        Raises:
            UnknownPackageError: nothing matching ``pkg`` exists there.
            ResolverFailure: any other failure.
        """


async def _fetch(client: HttpClient, url: str, pkg: PackageIdentifier, accept: str) -> HttpResponse:
    try:
        return await client.get(url, headers={"Accept": accept})
    except TransportError as exc:
        raise ResolverFailure.wrap(exc, f"Unable to fetch {pkg} from {safe_url(url)}") from exc


async def _decode_archive(body: bytes, pkg: PackageIdentifier) -> PackageContainer:
    try:
        return await asyncio.to_thread(decode_tarball, body)
    except ContainerError as exc:
        raise ResolverFailure.wrap(exc, f"Invalid package data for {pkg}") from exc


def _ensure_matches(pkg: PackageIdentifier, container: PackageContainer) -> PackageContainer:
    """Reject a package whose manifest does not match what was asked for."""
    if container.name != pkg.full_name or not satisfies(pkg.version, container.version):
        logger.warning(
            "Package at %s is %s@%s, which does not match %s",
            pkg.locator.describe(),
            container.name,
            container.version,
            pkg,
        )
        raise UnknownPackageError(pkg)
    return container


class RegistrySource(PackageSource):
    """Package index lookup followed by a tarball download.

    ``GET {registry}/api/packages/{full_name}`` returns::

        {"name": "ns/pkg",
         "versions": [{"version": "1.0.0", "download_url": "..."}]}

    The highest version satisfying the identifier's constraint wins.
    """

    def __init__(self, registry_url: str = Constants.REGISTRY_URL):
        self._registry_url = registry_url.rstrip("/")

    @property
    def kind(self) -> LocatorKind:
        return LocatorKind.REGISTRY

    @property
    def registry_url(self) -> str:
        return self._registry_url

    def package_url(self, pkg: PackageIdentifier) -> str:
        """Build the index URL for ``pkg``."""
        name = urllib.parse.quote(pkg.full_name, safe="/")
        return f"{self._registry_url}{Constants.REGISTRY_PACKAGE_PATH}{name}"

    async def fetch_candidates(
        self, pkg: PackageIdentifier, client: HttpClient
    ) -> Dict[str, Optional[str]]:
        """Return every published version mapped to its download URL.

        Raises:
            UnknownPackageError: the registry does not know the package.
            ResolverFailure: HTTP errors or a malformed index document.
        """
        url = self.package_url(pkg)
        response = await _fetch(client, url, pkg, "application/json")
        if response.is_not_found():
            raise UnknownPackageError(pkg)
        if not response.ok:
            raise ResolverFailure(f"Registry returned HTTP {response.status} for {pkg}")

        try:
            data = json.loads(response.body)
        except ValueError as exc:
            raise ResolverFailure.wrap(exc, f"Invalid registry response for {pkg}") from exc

        versions = data.get("versions") if isinstance(data, dict) else None
        if not isinstance(versions, list):
            raise ResolverFailure(f"Registry response for {pkg} has no version list")

        candidates: Dict[str, Optional[str]] = {}
        for entry in versions:
            if not isinstance(entry, dict):
                continue
            raw = str(entry.get("version", ""))
            parsed = parse_candidates([raw])
            if not parsed:
                logger.debug("Skipping invalid version %r for %s", raw, pkg.full_name)
                continue
            download_url = entry.get("download_url")
            if download_url is not None and not isinstance(download_url, str):
                logger.debug(
                    "Skipping version %s of %s with invalid download_url %r",
                    raw,
                    pkg.full_name,
                    download_url,
                )
                continue
            candidates[str(parsed[0])] = urllib.parse.urljoin(url, download_url) if download_url else None
        return candidates

    async def load(self, pkg: PackageIdentifier, client: HttpClient) -> PackageContainer:
        candidates = await self.fetch_candidates(pkg, client)
        chosen = pick_version(pkg.version, candidates)
        if chosen is None:
            logger.info(
                "No version of %s matches %s (%d candidates)",
                pkg.full_name,
                pkg.version,
                len(candidates),
            )
            raise UnknownPackageError(pkg)

        download_url = candidates[str(chosen)]
        if not download_url:
            raise ResolverFailure(f"Registry lists {pkg.full_name}@{chosen} without a download URL")

        if is_debug_enabled(logger):
            logger.debug(
                "Selected version",
                extra=extra_context(
                    event="version_selected",
                    component="registry_source",
                    target=pkg.full_name,
                    version=str(chosen),
                    count=len(candidates),
                ),
            )

        response = await _fetch(client, download_url, pkg, _TARBALL_ACCEPT)
        if not response.ok:
            raise ResolverFailure(
                f"Downloading {pkg.full_name}@{chosen} failed with HTTP {response.status}"
            )
        container = await _decode_archive(response.body, pkg)
        served = parse_candidates([container.version])
        if container.name != pkg.full_name or str(served[0]) != str(chosen):
            raise ResolverFailure(
                f"Registry served {container.name}@{container.version} "
                f"for {pkg.full_name}@{chosen}"
            )
        return container


class FileSystemSource(PackageSource):
    """Pre-fetched packages on disk: a tarball file or an unpacked directory."""

    @property
    def kind(self) -> LocatorKind:
        return LocatorKind.LOCAL

    @staticmethod
    def _read(path: Path) -> PackageContainer:
        if path.is_dir():
            return read_directory(path)
        return decode_tarball(path.read_bytes())

    async def load(self, pkg: PackageIdentifier, client: HttpClient) -> PackageContainer:
        if not isinstance(pkg.locator, LocalLocator):
            raise ResolverFailure(f"{pkg} does not have a local locator")
        path = pkg.locator.path

        if not await asyncio.to_thread(path.exists):
            raise UnknownPackageError(pkg)
        try:
            container = await asyncio.to_thread(self._read, path)
        except ContainerError as exc:
            raise ResolverFailure.wrap(exc, f"Invalid package at {path}") from exc
        except OSError as exc:
            raise ResolverFailure.wrap(exc, f"Unable to read {path}") from exc
        return _ensure_matches(pkg, container)


class UrlSource(PackageSource):
    """Download a package tarball from an exact URL."""

    @property
    def kind(self) -> LocatorKind:
        return LocatorKind.URL

    async def load(self, pkg: PackageIdentifier, client: HttpClient) -> PackageContainer:
        if not isinstance(pkg.locator, UrlLocator):
            raise ResolverFailure(f"{pkg} does not have a URL locator")
        url = pkg.locator.url

        response = await _fetch(client, url, pkg, _TARBALL_ACCEPT)
        if response.is_not_found():
            raise UnknownPackageError(pkg)
        if not response.ok:
            raise ResolverFailure(f"Fetching {safe_url(url)} failed with HTTP {response.status}")
        container = await _decode_archive(response.body, pkg)
        return _ensure_matches(pkg, container)
