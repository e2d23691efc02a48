"""Tests for configuration loading and overrides."""

import json
import os
import tempfile
from unittest.mock import patch

import pytest

from args import parse_args
from cli_config import (
    ConfigError,
    apply_cli_overrides,
    apply_env_overrides,
    config_from_dict,
    load_config,
    read_config_file,
)
from constants import Constants
from versioning.models import ConflictResolutionStrategy

YAML_CONFIG = """
sources:
  - https://api.nuget.org/v3/index.json
  - name: internal
    url: https://pkgs.example.com/nuget/v3/index.json
    username: builder
    password: s3cret
cache:
  enabled: true
  ttl_minutes: 15
resolution:
  strategy: UseMostCommon
  max_concurrency: 4
  offline_versions:
    Contoso.Lib: 1.2.3
transitive:
  essential: [System.Memory]
  known_dependencies:
    Contoso.Platform: [Contoso.Platform.Core]
"""


def _write(directory, name, content):
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


class TestConfigFromDict:
    """Test validation of raw config mappings."""

    def test_defaults(self):
        config = config_from_dict({})
        assert config.sources == []
        assert config.cache.enabled is True
        assert config.cache.ttl_minutes == Constants.CACHE_TTL_MINUTES
        assert config.resolution.strategy is ConflictResolutionStrategy.USE_HIGHEST
        assert config.resolution.max_concurrency == Constants.MAX_CONCURRENCY

    def test_invalid_ttl(self):
        with pytest.raises(ConfigError):
            config_from_dict({"cache": {"ttl_minutes": 0}})
        with pytest.raises(ConfigError):
            config_from_dict({"cache": {"ttl_minutes": "soon"}})

    def test_invalid_strategy(self):
        with pytest.raises(ConfigError):
            config_from_dict({"resolution": {"strategy": "UseNewest"}})

    def test_invalid_sources(self):
        with pytest.raises(ConfigError):
            config_from_dict({"sources": "https://api.nuget.org/v3/index.json"})
        with pytest.raises(ConfigError):
            config_from_dict({"sources": [{"name": "no-url"}]})

    def test_invalid_section_type(self):
        with pytest.raises(ConfigError):
            config_from_dict({"cache": ["enabled"]})

    def test_bool_strings(self):
        config = config_from_dict({"resolution": {"offline": "yes", "resolve_wildcards": "off"}})
        assert config.resolution.offline is True
        assert config.resolution.resolve_wildcards is False
        with pytest.raises(ConfigError):
            config_from_dict({"resolution": {"offline": "maybe"}})


class TestConfigFiles:
    """Test reading YAML and JSON files."""

    def test_yaml_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config(_write(tmpdir, "pkgreconcile.yml", YAML_CONFIG), environ={})

        assert [s.name for s in config.sources] == ["https://api.nuget.org/v3/index.json", "internal"]
        assert config.sources[1].auth == ("builder", "s3cret")
        assert config.cache.ttl_minutes == 15
        assert config.resolution.strategy is ConflictResolutionStrategy.USE_MOST_COMMON
        assert config.resolution.max_concurrency == 4
        assert config.resolution.offline_versions == {"Contoso.Lib": "1.2.3"}
        assert "system.memory" in config.transitive.essential
        assert "contoso.platform.core" in config.transitive.known_dependencies["contoso.platform"]
        assert "newtonsoft.json" in config.transitive.essential

    def test_json_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "config.json", json.dumps({"cache": {"enabled": False}}))
            assert read_config_file(path) == {"cache": {"enabled": False}}
            assert load_config(path, environ={}).cache.enabled is False

    def test_empty_file_is_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert read_config_file(_write(tmpdir, "empty.yml", "")) == {}

    def test_malformed_yaml(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigError):
                read_config_file(_write(tmpdir, "bad.yml", "cache: [unclosed"))

    def test_top_level_must_be_mapping(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigError):
                read_config_file(_write(tmpdir, "list.yml", "- a\n- b\n"))

    def test_explicit_missing_file(self):
        with pytest.raises(ConfigError):
            load_config("/nonexistent/pkgreconcile.yml", environ={})

    def test_broken_default_file_is_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "pkgreconcile.yml", "cache: [unclosed")
            with patch("cli_config.default_config_paths", return_value=[path]):
                config = load_config(environ={})
        assert config.cache.ttl_minutes == Constants.CACHE_TTL_MINUTES

    def test_default_file_is_used(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "pkgreconcile.yml", "cache:\n  ttl_minutes: 5\n")
            with patch("cli_config.default_config_paths", return_value=[path]):
                config = load_config(environ={})
        assert config.cache.ttl_minutes == 5


class TestOverrides:
    """Test environment and CLI precedence."""

    def test_env_overrides(self):
        config = apply_env_overrides(config_from_dict({}), {
            Constants.ENV_CACHE_TTL: "5",
            Constants.ENV_CACHE_DISABLED: "true",
            Constants.ENV_MAX_CONCURRENCY: "2",
        })
        assert config.cache.ttl_minutes == 5
        assert config.cache.enabled is False
        assert config.resolution.max_concurrency == 2

    def test_env_invalid(self):
        with pytest.raises(ConfigError):
            apply_env_overrides(config_from_dict({}), {Constants.ENV_MAX_CONCURRENCY: "0"})

    def test_cli_overrides_file_and_env(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "pkgreconcile.yml", YAML_CONFIG)
            args = parse_args(["-i", "projects.json", "-c", path, "-s", "UseLowest", "-j", "3",
                               "--no-cache", "--offline", "--resolve-wildcards", "--registry-dependencies",
                               "--nuget-config", "nuget.config", "--packages-path", "packages"])

            config = load_config(args.CONFIG, args=args, environ={Constants.ENV_MAX_CONCURRENCY: "6"})

        assert config.resolution.strategy is ConflictResolutionStrategy.USE_LOWEST
        assert config.resolution.max_concurrency == 3
        assert config.cache.enabled is False
        assert config.resolution.offline is True
        assert config.resolution.resolve_wildcards is True
        assert config.resolution.use_registry_dependencies is True
        assert config.nuget_config == "nuget.config"
        assert config.resolution.packages_path == "packages"

    def test_unset_flags_keep_config(self):
        args = parse_args(["-i", "projects.json"])
        config = config_from_dict({"resolution": {"strategy": "UseLowest", "offline": True}})

        apply_cli_overrides(config, args)

        assert config.resolution.strategy is ConflictResolutionStrategy.USE_LOWEST
        assert config.resolution.offline is True
