"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the command line tool.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    UNKNOWN_PACKAGE = 3


class LocatorKind(Enum):
    """Where a package's bytes come from.

    Args:
        Enum (string): Locator kinds understood by the resolvers.
    """

    REGISTRY = "registry"
    LOCAL = "local"
    URL = "url"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL = "https://registry.wasmer.io"
    REGISTRY_PACKAGE_PATH = "/api/packages/"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    USER_AGENT = "webc-resolver/0.1"
    MANIFEST_FILE = "wasmer.toml"
    ANY_VERSION = "*"
    NAME_VERSION_SEPARATOR = "@"
    LOG_FORMAT = "[%(levelname)s] %(message)s"

    # Environment overrides
    ENV_PREFIX = "WEBC_RESOLVER_"
    ENV_REGISTRY = "WEBC_RESOLVER_REGISTRY"
    ENV_TIMEOUT = "WEBC_RESOLVER_TIMEOUT"
    ENV_CACHE = "WEBC_RESOLVER_CACHE"
    ENV_LOG_LEVEL = "WEBC_RESOLVER_LOG_LEVEL"
