"""Runtime configuration: YAML/JSON config files, environment and CLI overrides.

Precedence, lowest first: built-in defaults, config file, environment
variables, CLI flags. Invalid values raise ConfigError.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from analysis.transitive import TransitiveRules
from constants import Constants
from registry.nuget.sources import PackageSource, sources_from_config
from versioning.models import ConflictResolutionStrategy

logger = logging.getLogger(__name__)

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


class ConfigError(ValueError):
    """Raised when configuration is present but invalid."""


@dataclass
class CacheSettings:
    enabled: bool = True
    ttl_minutes: int = Constants.CACHE_TTL_MINUTES
    sweep_interval_seconds: int = Constants.CACHE_SWEEP_INTERVAL_SEC


@dataclass
class ResolutionSettings:
    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.USE_HIGHEST
    max_concurrency: int = Constants.MAX_CONCURRENCY
    offline: bool = False
    packages_path: Optional[str] = None
    use_registry_dependencies: bool = False
    resolve_wildcards: bool = False
    offline_versions: Dict[str, str] = field(default_factory=dict)


@dataclass
class ReconcileConfig:
    """Fully merged configuration for one run."""

    sources: List[PackageSource] = field(default_factory=list)
    nuget_config: Optional[str] = None
    cache: CacheSettings = field(default_factory=CacheSettings)
    resolution: ResolutionSettings = field(default_factory=ResolutionSettings)
    transitive: TransitiveRules = field(default_factory=TransitiveRules)


def _as_int(value: Any, name: str, minimum: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_str_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{name} must be a list of package ids")
    return value


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


def default_config_paths() -> List[str]:
    """Config files looked up when no explicit path is given, in order."""
    paths = [os.path.join(os.getcwd(), name) for name in Constants.CONFIG_FILE_NAMES]
    user_dir = os.path.expanduser(Constants.CONFIG_USER_DIR)
    paths.extend(os.path.join(user_dir, name) for name in ("config.yml", "config.yaml"))
    return paths


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a YAML (or ``.json``) config file into a dict.

    Raises:
        ConfigError: the file cannot be read or does not hold a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a mapping at top level")
    return data


def _load_default_file() -> Dict[str, Any]:
    for path in default_config_paths():
        if not os.path.isfile(path):
            continue
        try:
            data = read_config_file(path)
        except ConfigError as exc:
            logger.warning("%s; using defaults", exc)
            return {}
        logger.debug("Loaded configuration from %s", path)
        return data
    return {}


def config_from_dict(data: Dict[str, Any]) -> ReconcileConfig:
    """Validate a raw config mapping and build a ReconcileConfig."""
    config = ReconcileConfig()

    raw_sources = data.get("sources")
    if raw_sources is not None and not isinstance(raw_sources, list):
        raise ConfigError("'sources' must be a list")
    try:
        config.sources = sources_from_config(raw_sources)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    if data.get("nuget_config"):
        config.nuget_config = str(data["nuget_config"])

    cache = _section(data, "cache")
    if "enabled" in cache:
        config.cache.enabled = _as_bool(cache["enabled"], "cache.enabled")
    if "ttl_minutes" in cache:
        config.cache.ttl_minutes = _as_int(cache["ttl_minutes"], "cache.ttl_minutes", minimum=1)
    if "sweep_interval_seconds" in cache:
        config.cache.sweep_interval_seconds = _as_int(
            cache["sweep_interval_seconds"], "cache.sweep_interval_seconds", minimum=1
        )

    resolution = _section(data, "resolution")
    if "strategy" in resolution:
        try:
            config.resolution.strategy = ConflictResolutionStrategy.parse(resolution["strategy"])
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    if "max_concurrency" in resolution:
        config.resolution.max_concurrency = _as_int(resolution["max_concurrency"], "resolution.max_concurrency", 1)
    for key in ("offline", "use_registry_dependencies", "resolve_wildcards"):
        if key in resolution:
            setattr(config.resolution, key, _as_bool(resolution[key], f"resolution.{key}"))
    if resolution.get("packages_path"):
        config.resolution.packages_path = os.path.expanduser(str(resolution["packages_path"]))
    offline_versions = resolution.get("offline_versions") or {}
    if not isinstance(offline_versions, dict):
        raise ConfigError("resolution.offline_versions must be a mapping of package id to version")
    config.resolution.offline_versions = {str(k): str(v) for k, v in offline_versions.items()}

    transitive = _section(data, "transitive")
    known = transitive.get("known_dependencies") or {}
    if not isinstance(known, dict):
        raise ConfigError("transitive.known_dependencies must be a mapping")
    config.transitive = config.transitive.extend(
        essential=_as_str_list(transitive.get("essential"), "transitive.essential"),
        common_transitive=_as_str_list(transitive.get("common_transitive"), "transitive.common_transitive"),
        known_dependencies={
            str(parent): _as_str_list(children, f"transitive.known_dependencies.{parent}")
            for parent, children in known.items()
        },
    )
    return config


def apply_env_overrides(config: ReconcileConfig, environ: Optional[Dict[str, str]] = None) -> ReconcileConfig:
    """Apply PKGRECONCILE_* environment variables."""
    env = os.environ if environ is None else environ
    if env.get(Constants.ENV_CACHE_TTL):
        config.cache.ttl_minutes = _as_int(env[Constants.ENV_CACHE_TTL], Constants.ENV_CACHE_TTL, minimum=1)
    if env.get(Constants.ENV_CACHE_DISABLED):
        config.cache.enabled = not _as_bool(env[Constants.ENV_CACHE_DISABLED], Constants.ENV_CACHE_DISABLED)
    if env.get(Constants.ENV_MAX_CONCURRENCY):
        config.resolution.max_concurrency = _as_int(
            env[Constants.ENV_MAX_CONCURRENCY], Constants.ENV_MAX_CONCURRENCY, minimum=1
        )
    return config


def apply_cli_overrides(config: ReconcileConfig, args) -> ReconcileConfig:
    """Apply parsed CLI arguments; unset flags leave the config untouched."""
    if getattr(args, "STRATEGY", None):
        try:
            config.resolution.strategy = ConflictResolutionStrategy.parse(args.STRATEGY)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    if getattr(args, "MAX_CONCURRENCY", None) is not None:
        config.resolution.max_concurrency = _as_int(args.MAX_CONCURRENCY, "--max-concurrency", minimum=1)
    if getattr(args, "OFFLINE", False):
        config.resolution.offline = True
    if getattr(args, "RESOLVE_WILDCARDS", False):
        config.resolution.resolve_wildcards = True
    if getattr(args, "REGISTRY_DEPENDENCIES", False):
        config.resolution.use_registry_dependencies = True
    if getattr(args, "NO_CACHE", False):
        config.cache.enabled = False
    if getattr(args, "NUGET_CONFIG", None):
        config.nuget_config = args.NUGET_CONFIG
    if getattr(args, "PACKAGES_PATH", None):
        config.resolution.packages_path = args.PACKAGES_PATH
    return config


def load_config(path: Optional[str] = None, args=None, environ: Optional[Dict[str, str]] = None) -> ReconcileConfig:
    """Load, validate and merge configuration.

    An explicit ``path`` must exist and parse; default locations are optional
    and a broken default file is logged and skipped.
    """
    if path:
        if not os.path.isfile(path):
            raise ConfigError(f"Config file not found: {path}")
        data = read_config_file(path)
    else:
        data = _load_default_file()
    config = config_from_dict(data)
    apply_env_overrides(config, environ)
    if args is not None:
        apply_cli_overrides(config, args)
    return config
