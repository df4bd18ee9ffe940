"""Runtime configuration and resolver wiring.

Precedence, lowest first: ``Constants`` defaults, YAML config file,
``WEBC_RESOLVER_*`` environment variables, command line flags.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import yaml

from .constants import Constants
from .resolver import (
    BuiltinResolver,
    FileSystemSource,
    PackageResolver,
    RegistrySource,
    SharedResolver,
    UrlSource,
)

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    logger.warning("Ignoring invalid boolean value %r", value)
    return default


@dataclass
class ResolverConfig:
    """Configuration for building a resolver."""

    registry_url: str = Constants.REGISTRY_URL
    request_timeout: int = Constants.REQUEST_TIMEOUT
    cache_enabled: bool = True
    log_level: str = "INFO"
    user_agent: str = Constants.USER_AGENT

    def apply_mapping(self, data: Mapping[str, Any]) -> "ResolverConfig":
        """Apply keys from a config file section; unknown keys are ignored."""
        if data.get("registry_url"):
            self.registry_url = str(data["registry_url"])
        if data.get("request_timeout") is not None:
            self.request_timeout = int(data["request_timeout"])
        if data.get("cache_enabled") is not None:
            self.cache_enabled = _coerce_bool(data["cache_enabled"], self.cache_enabled)
        if data.get("log_level"):
            self.log_level = str(data["log_level"]).upper()
        if data.get("user_agent"):
            self.user_agent = str(data["user_agent"])
        return self

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> "ResolverConfig":
        """Apply ``WEBC_RESOLVER_*`` overrides."""
        env = os.environ if environ is None else environ
        if env.get(Constants.ENV_REGISTRY):
            self.registry_url = env[Constants.ENV_REGISTRY]
        if env.get(Constants.ENV_TIMEOUT):
            try:
                self.request_timeout = int(env[Constants.ENV_TIMEOUT])
            except ValueError:
                logger.warning(
                    "Ignoring non-integer %s=%r", Constants.ENV_TIMEOUT, env[Constants.ENV_TIMEOUT]
                )
        if env.get(Constants.ENV_CACHE):
            self.cache_enabled = _coerce_bool(env[Constants.ENV_CACHE], self.cache_enabled)
        if env.get(Constants.ENV_LOG_LEVEL):
            self.log_level = env[Constants.ENV_LOG_LEVEL].upper()
        return self

    @classmethod
    def from_file(cls, path: Optional[str]) -> "ResolverConfig":
        """Load defaults plus the ``resolver`` section of a YAML file.

        A missing file only logs a warning; a malformed file raises
        ``ValueError``.
        """
        config = cls()
        if not path:
            return config
        if not os.path.isfile(path):
            logger.warning("Config file not found: %s", path)
            return config

        with open(path, "r", encoding="utf-8") as handle:
            try:
                data = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid config file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        section = data.get("resolver", data)
        if not isinstance(section, dict):
            raise ValueError(f"'resolver' section of {path} must be a mapping")
        return config.apply_mapping(section)

    @classmethod
    def from_args(cls, args: Any) -> "ResolverConfig":
        """Create config from CLI arguments.

        Args:
            args: Parsed CLI arguments namespace.

        Returns:
            ResolverConfig instance.
        """
        config = cls.from_file(getattr(args, "CONFIG", None)).apply_env()

        if getattr(args, "REGISTRY", None):
            config.registry_url = args.REGISTRY
        if getattr(args, "TIMEOUT", None) is not None:
            config.request_timeout = int(args.TIMEOUT)
        if getattr(args, "NO_CACHE", False):
            config.cache_enabled = False
        if getattr(args, "LOG_LEVEL", None):
            config.log_level = str(args.LOG_LEVEL).upper()

        return config


def build_resolver(config: Optional[ResolverConfig] = None) -> PackageResolver:
    """Wire the builtin resolver with every source, cached when enabled.

    With caching on, dependency lookups go back through the cache so a
    package shared by several dependents is resolved once.
    """
    config = config or ResolverConfig()
    builtin = BuiltinResolver(
        sources=[RegistrySource(config.registry_url), FileSystemSource(), UrlSource()]
    )
    if not config.cache_enabled:
        return builtin

    cached = builtin.with_cache()
    builtin.dependency_resolver = SharedResolver(cached)
    return cached
