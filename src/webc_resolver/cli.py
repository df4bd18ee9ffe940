"""Command line entry point: resolve one package and print a summary."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .common.http_client import AiohttpClient, RequestsHttpClient
from .common.logging_utils import configure_logging
from .config import ResolverConfig, build_resolver
from .constants import ExitCodes
from .resolver import (
    LocalLocator,
    PackageIdentifier,
    PackageResolver,
    ResolvedPackage,
    ResolverFailure,
    UnknownPackageError,
    UrlLocator,
    parse_identifier,
    with_locator,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="webc-resolve",
        description="Resolve a WebAssembly package into its commands and filesystem",
        add_help=True,
    )
    parser.add_argument("package",
                        help="Package identifier, i.e: namespace/name@^1.0")

    source_group = parser.add_mutually_exclusive_group()
    source_group.add_argument("--local",
                              dest="LOCAL_PATH",
                              help="Load the package from a tarball or directory on disk",
                              action="store", type=str)
    source_group.add_argument("--url",
                              dest="URL",
                              help="Download the package tarball from this exact URL",
                              action="store", type=str)

    parser.add_argument("--registry",
                        dest="REGISTRY",
                        help="Registry base URL",
                        action="store", type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="HTTP request timeout in seconds",
                        action="store", type=int)
    parser.add_argument("--no-cache",
                        dest="NO_CACHE",
                        help="Disable the in-memory resolution cache",
                        action="store_true")
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="YAML configuration file",
                        action="store", type=str)
    parser.add_argument("--transport",
                        dest="TRANSPORT",
                        help="HTTP implementation to use",
                        choices=["aiohttp", "requests"],
                        default="aiohttp")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        choices=LOG_LEVELS,
                        type=str.upper)
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Also write logs to this file",
                        action="store", type=str)
    return parser.parse_args(argv)


def _setup_logging(level: str, log_file: Optional[str]) -> None:
    configure_logging(level)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def build_identifier(args: argparse.Namespace) -> PackageIdentifier:
    """Parse the positional identifier and attach a --local/--url locator."""
    pkg = parse_identifier(args.package)
    if getattr(args, "LOCAL_PATH", None):
        return with_locator(pkg, LocalLocator(Path(args.LOCAL_PATH)))
    if getattr(args, "URL", None):
        return with_locator(pkg, UrlLocator(args.URL))
    return pkg


def summarize(pkg: PackageIdentifier, resolved: ResolvedPackage) -> Dict[str, Any]:
    """JSON-serializable view of a resolved package."""
    return {
        "package": str(pkg),
        "entrypoint": resolved.entrypoint,
        "commands": [
            {
                "name": name,
                "module": command.metadata.module,
                "runner": command.metadata.runner,
            }
            for name, command in resolved.commands.items()
        ],
        "filesystem": [
            {
                "mount_path": str(mapping.mount_path),
                "volume": mapping.volume.name,
                "files": len(mapping.volume),
            }
            for mapping in resolved.filesystem
        ],
    }


async def _resolve(
    resolver: PackageResolver, pkg: PackageIdentifier, config: ResolverConfig, transport: str
) -> ResolvedPackage:
    if transport == "requests":
        requests_client = RequestsHttpClient(
            timeout=config.request_timeout, user_agent=config.user_agent
        )
        try:
            return await resolver.resolve_package(pkg, requests_client)
        finally:
            requests_client.close()

    async with AiohttpClient(timeout=config.request_timeout, user_agent=config.user_agent) as client:
        return await resolver.resolve_package(pkg, client)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function of the program."""
    args = parse_args(argv)

    try:
        config = ResolverConfig.from_args(args)
    except ValueError as exc:
        configure_logging()
        logger.error("%s", exc)
        return ExitCodes.FILE_ERROR.value
    _setup_logging(config.log_level, getattr(args, "LOG_FILE", None))

    try:
        pkg = build_identifier(args)
    except ValueError as exc:
        logger.error("Invalid package identifier %r: %s", args.package, exc)
        return ExitCodes.FILE_ERROR.value

    resolver = build_resolver(config)
    logger.info("Resolving %s", pkg)
    try:
        resolved = asyncio.run(_resolve(resolver, pkg, config, args.TRANSPORT))
    except UnknownPackageError as exc:
        logger.error("%s", exc)
        return ExitCodes.UNKNOWN_PACKAGE.value
    except ResolverFailure as exc:
        logger.error("Resolution failed: %s", exc)
        if exc.cause is not None:
            logger.debug("Underlying cause", exc_info=exc.cause)
        return ExitCodes.CONNECTION_ERROR.value

    sys.stdout.write(json.dumps(summarize(pkg, resolved), indent=2) + "\n")
    return ExitCodes.SUCCESS.value


if __name__ == "__main__":
    sys.exit(main())
