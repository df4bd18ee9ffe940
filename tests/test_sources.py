"""Tests for registry, filesystem and URL package sources."""

import asyncio
import json

import pytest

from webc_resolver.common.http_client import HttpResponse, TransportError
from webc_resolver.resolver import (
    FileSystemSource,
    LocalLocator,
    RegistrySource,
    ResolverError,
    ResolverFailure,
    UnknownPackageError,
    UrlLocator,
    UrlSource,
    parse_identifier,
    with_locator,
)

from conftest import (
    REGISTRY_BASE,
    FakeHttpClient,
    make_tarball,
    package_files,
    write_directory,
)


@pytest.fixture
def source():
    """Registry source pointed at the fake registry."""
    return RegistrySource(REGISTRY_BASE + "/")


class TestRegistrySource:
    """Tests for RegistrySource."""

    def test_package_url(self, source):
        """Index URLs keep the namespace slash."""
        assert source.package_url(parse_identifier("ns/pkg")) == f"{REGISTRY_BASE}/api/packages/ns/pkg"

    def test_picks_highest_matching_version(self, source, registry):
        """The newest release inside the range is downloaded."""
        for version in ("1.0.0", "1.5.0", "2.0.0"):
            registry.publish("ns/pkg", version)
        client = registry.client()

        container = asyncio.run(source.load(parse_identifier("ns/pkg@^1.0"), client))

        assert container.version == "1.5.0"
        assert client.urls()[-1].endswith("ns/pkg-1.5.0.tar.gz")

    def test_unknown_package(self, source):
        """A 404 from the index means the package does not exist."""
        with pytest.raises(UnknownPackageError):
            asyncio.run(source.load(parse_identifier("ns/missing"), FakeHttpClient()))

    def test_no_matching_version_is_unknown(self, source, registry):
        """A known package with no version in range is still unknown."""
        registry.publish("ns/pkg", "1.0.0")

        with pytest.raises(UnknownPackageError):
            asyncio.run(source.load(parse_identifier("ns/pkg@^2"), registry.client()))

    def test_server_error_is_failure(self, source, registry):
        """Non-404 errors are failures, not unknown packages."""
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=503)})

        with pytest.raises(ResolverFailure, match="503"):
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

    def test_transport_error_is_failure(self, source, registry):
        """Network errors are wrapped with their cause."""
        error = TransportError("connection refused")
        client = FakeHttpClient({registry.index_url("ns/pkg"): error})

        with pytest.raises(ResolverFailure) as exc_info:
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

        assert exc_info.value.cause is error

    def test_malformed_index(self, source, registry):
        """Index documents must be JSON with a version list."""
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=200, body=b"<html>")})
        with pytest.raises(ResolverFailure):
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

        client = FakeHttpClient(
            {registry.index_url("ns/pkg"): HttpResponse(status=200, body=json.dumps({"name": "ns/pkg"}).encode())}
        )
        with pytest.raises(ResolverFailure, match="version list"):
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

    def test_invalid_candidate_versions_are_skipped(self, source, registry):
        """Entries that are not semver are ignored."""
        registry.publish("ns/pkg", "1.0.0")
        body = json.dumps(
            {"versions": [{"version": "nightly", "download_url": "x"}, {"version": "1.0.0"}]}
        ).encode()
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=200, body=body)})

        candidates = asyncio.run(source.fetch_candidates(parse_identifier("ns/pkg"), client))

        assert candidates == {"1.0.0": None}

    def test_non_string_download_url_is_skipped(self, source, registry):
        """A malformed entry does not break selection of the other versions."""
        good_url = registry.publish("ns/pkg", "1.0.0")
        body = json.dumps(
            {
                "versions": [
                    {"version": "1.0.0", "download_url": good_url},
                    {"version": "2.0.0", "download_url": 5},
                ]
            }
        ).encode()
        registry.routes[registry.index_url("ns/pkg")] = HttpResponse(status=200, body=body)

        container = asyncio.run(source.load(parse_identifier("ns/pkg"), registry.client()))

        assert container.version == "1.0.0"

    def test_only_malformed_entries_is_a_resolver_error(self, source, registry):
        """An index whose entries are all malformed stays inside the error taxonomy."""
        body = json.dumps({"versions": [{"version": "1.0.0", "download_url": 5}]}).encode()
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=200, body=body)})

        with pytest.raises(ResolverError):
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

    def test_relative_download_urls_are_resolved(self, source, registry):
        """download_url may be relative to the index URL."""
        body = json.dumps({"versions": [{"version": "1.0.0", "download_url": "/files/pkg.tar.gz"}]}).encode()
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=200, body=body)})

        candidates = asyncio.run(source.fetch_candidates(parse_identifier("ns/pkg"), client))

        assert candidates == {"1.0.0": f"{REGISTRY_BASE}/files/pkg.tar.gz"}

    def test_missing_download_url(self, source, registry):
        """A selected version without a download URL cannot be fetched."""
        body = json.dumps({"versions": [{"version": "1.0.0"}]}).encode()
        client = FakeHttpClient({registry.index_url("ns/pkg"): HttpResponse(status=200, body=body)})

        with pytest.raises(ResolverFailure, match="download URL"):
            asyncio.run(source.load(parse_identifier("ns/pkg"), client))

    def test_corrupt_tarball(self, source, registry):
        """Undecodable downloads are failures."""
        url = registry.publish("ns/pkg", "1.0.0")
        registry.routes[url] = HttpResponse(status=200, body=b"corrupt")

        with pytest.raises(ResolverFailure, match="Invalid package data"):
            asyncio.run(source.load(parse_identifier("ns/pkg"), registry.client()))

    def test_served_package_must_match(self, source, registry):
        """The registry must serve the version it advertised."""
        url = registry.publish("ns/pkg", "1.0.0")
        registry.routes[url] = HttpResponse(status=200, body=make_tarball(package_files("ns/pkg", "9.9.9")))

        with pytest.raises(ResolverFailure, match="served"):
            asyncio.run(source.load(parse_identifier("ns/pkg"), registry.client()))


class TestFileSystemSource:
    """Tests for FileSystemSource."""

    def test_loads_directory(self, tmp_path):
        """Unpacked directories are read in place."""
        write_directory(tmp_path, package_files("ns/pkg", "1.0.0"))
        pkg = with_locator(parse_identifier("ns/pkg"), LocalLocator(tmp_path))

        container = asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

        assert container.name == "ns/pkg"

    def test_loads_tarball(self, tmp_path):
        """Tarball files are decoded."""
        archive = tmp_path / "pkg.tar.gz"
        archive.write_bytes(make_tarball(package_files("ns/pkg", "1.0.0")))
        pkg = with_locator(parse_identifier("ns/pkg@1.0.0"), LocalLocator(archive))

        container = asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

        assert container.version == "1.0.0"

    def test_missing_path_is_unknown(self, tmp_path):
        """Nothing at the path means the package is unknown."""
        pkg = with_locator(parse_identifier("ns/pkg"), LocalLocator(tmp_path / "nope"))

        with pytest.raises(UnknownPackageError):
            asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

    def test_invalid_file_is_failure(self, tmp_path):
        """A file that is not a package is a failure."""
        bogus = tmp_path / "pkg.tar.gz"
        bogus.write_bytes(b"nope")
        pkg = with_locator(parse_identifier("ns/pkg"), LocalLocator(bogus))

        with pytest.raises(ResolverFailure):
            asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

    def test_name_mismatch_is_unknown(self, tmp_path):
        """The package found must be the one asked for."""
        write_directory(tmp_path, package_files("ns/other", "1.0.0"))
        pkg = with_locator(parse_identifier("ns/pkg"), LocalLocator(tmp_path))

        with pytest.raises(UnknownPackageError):
            asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

    def test_version_mismatch_is_unknown(self, tmp_path):
        """The version found must satisfy the constraint."""
        write_directory(tmp_path, package_files("ns/pkg", "1.0.0"))
        pkg = with_locator(parse_identifier("ns/pkg@^2"), LocalLocator(tmp_path))

        with pytest.raises(UnknownPackageError):
            asyncio.run(FileSystemSource().load(pkg, FakeHttpClient()))

    def test_requires_local_locator(self):
        """Registry identifiers are not served from disk."""
        with pytest.raises(ResolverFailure):
            asyncio.run(FileSystemSource().load(parse_identifier("ns/pkg"), FakeHttpClient()))


class TestUrlSource:
    """Tests for UrlSource."""

    URL = "https://downloads.test/pkg.tar.gz"

    def _pkg(self, text="ns/pkg"):
        return with_locator(parse_identifier(text), UrlLocator(self.URL))

    def test_downloads_exact_url(self):
        """The tarball is fetched from the locator URL without an index lookup."""
        client = FakeHttpClient({self.URL: HttpResponse(status=200, body=make_tarball(package_files("ns/pkg")))})

        container = asyncio.run(UrlSource().load(self._pkg(), client))

        assert container.name == "ns/pkg"
        assert client.urls() == [self.URL]

    def test_not_found_is_unknown(self):
        """404 means the package is unknown."""
        with pytest.raises(UnknownPackageError):
            asyncio.run(UrlSource().load(self._pkg(), FakeHttpClient()))

    def test_server_error_is_failure(self):
        """Other HTTP errors are failures."""
        client = FakeHttpClient({self.URL: HttpResponse(status=500)})

        with pytest.raises(ResolverFailure, match="500"):
            asyncio.run(UrlSource().load(self._pkg(), client))

    def test_malformed_manifest_is_failure(self):
        """Manifest type errors surface as ResolverFailure."""
        files = package_files("ns/pkg")
        files["wasmer.toml"] = files["wasmer.toml"].replace(
            b'runner = "wasi"', b'runner = "wasi"\nannotations = "x"'
        )
        client = FakeHttpClient({self.URL: HttpResponse(status=200, body=make_tarball(files))})

        with pytest.raises(ResolverFailure, match="Invalid package data"):
            asyncio.run(UrlSource().load(self._pkg(), client))

    def test_version_mismatch_is_unknown(self):
        """The downloaded version must satisfy the constraint."""
        client = FakeHttpClient({self.URL: HttpResponse(status=200, body=make_tarball(package_files("ns/pkg", "1.0.0")))})

        with pytest.raises(UnknownPackageError):
            asyncio.run(UrlSource().load(self._pkg("ns/pkg@>=2"), client))
