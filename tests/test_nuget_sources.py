"""Tests for NuGet package source configuration."""

import os
import tempfile

import pytest

from constants import Constants
from registry.nuget.sources import (
    PackageSource,
    enabled_sources,
    find_nuget_config,
    load_nuget_config,
    resolve_sources,
    sources_from_config,
)

NUGET_CONFIG = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
  <packageSources>
    <clear />
    <add key="nuget.org" value="https://api.nuget.org/v3/index.json" />
    <add key="Company Feed" value="https://pkgs.example.com/nuget/v3/index.json" />
    <add key="legacy" value="https://legacy.example.com/api/v2" />
  </packageSources>
  <disabledPackageSources>
    <add key="legacy" value="true" />
  </disabledPackageSources>
  <packageSourceCredentials>
    <Company_x0020_Feed>
      <add key="Username" value="builder" />
      <add key="ClearTextPassword" value="s3cret" />
    </Company_x0020_Feed>
    <legacy>
      <add key="Username" value="old" />
      <add key="Password" value="AQAAANCMnd8BFdERjHoAwE" />
    </legacy>
  </packageSourceCredentials>
</configuration>
"""


def _write(directory, name, content):
    path = os.path.join(directory, name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


class TestPackageSource:
    """Test source properties."""

    def test_v3_detection(self):
        assert PackageSource("a", "https://api.nuget.org/v3/index.json").is_v3
        assert not PackageSource("b", "https://example.org/api/v2").is_v3

    def test_auth_only_with_username_and_password(self):
        assert PackageSource("a", "https://x/index.json", username="u").auth is None
        assert PackageSource("a", "https://x/index.json", username="u", password="").request_kwargs() == \
            {"auth": ("u", "")}
        assert PackageSource("a", "https://x/index.json").request_kwargs() == {}

    def test_repr_hides_credentials(self):
        source = PackageSource("a", "https://user:pw@x.example.com/index.json", password="pw")
        assert "pw" not in repr(source)


class TestSourcesFromConfig:
    """Test YAML source entries."""

    def test_strings_and_mappings(self):
        sources = sources_from_config([
            "https://api.nuget.org/v3/index.json",
            {"name": "internal", "url": "https://pkgs.example.com/index.json", "enabled": False,
             "username": "u", "password": "p"},
        ])
        assert sources[0].name == "https://api.nuget.org/v3/index.json"
        assert sources[1].name == "internal"
        assert sources[1].enabled is False
        assert sources[1].auth == ("u", "p")

    def test_missing_url_raises(self):
        with pytest.raises(ValueError):
            sources_from_config([{"name": "broken"}])

    def test_none_is_empty(self):
        assert sources_from_config(None) == []


class TestNuGetConfig:
    """Test nuget.config parsing and discovery."""

    def test_parses_sources_disabled_and_credentials(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write(tmpdir, "nuget.config", NUGET_CONFIG)

            sources = load_nuget_config(path)

        by_name = {s.name: s for s in sources}
        assert list(by_name) == ["nuget.org", "Company Feed", "legacy"]
        assert by_name["Company Feed"].auth == ("builder", "s3cret")
        assert by_name["legacy"].enabled is False
        assert by_name["legacy"].username == "old"
        assert by_name["legacy"].password is None

    def test_clear_drops_earlier_entries(self):
        content = """<configuration><packageSources>
            <add key="first" value="https://first/index.json" />
            <clear />
            <add key="second" value="https://second/index.json" />
        </packageSources></configuration>"""
        with tempfile.TemporaryDirectory() as tmpdir:
            sources = load_nuget_config(_write(tmpdir, "nuget.config", content))
        assert [s.name for s in sources] == ["second"]

    def test_malformed_file_yields_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert load_nuget_config(_write(tmpdir, "nuget.config", "<configuration>")) == []

    def test_find_walks_up(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            expected = _write(tmpdir, "NuGet.Config", "<configuration />")
            nested = os.path.join(tmpdir, "src", "App")
            os.makedirs(nested)
            found = find_nuget_config(nested)
        assert found is not None
        assert os.path.dirname(found) == os.path.dirname(expected)


class TestResolveSources:
    """Test merging configured and discovered sources."""

    def test_defaults_to_nuget_org(self):
        sources = enabled_sources([])
        assert [s.url for s in sources] == [Constants.REGISTRY_URL_NUGET_V3]

    def test_all_disabled_falls_back(self):
        sources = enabled_sources([PackageSource("x", "https://x/index.json", enabled=False)])
        assert [s.url for s in sources] == [Constants.REGISTRY_URL_NUGET_V3]

    def test_dedupes_by_url(self):
        sources = enabled_sources([
            PackageSource("a", "https://x/index.json"),
            PackageSource("b", "https://X/index.json/"),
        ])
        assert [s.name for s in sources] == ["a"]

    def test_configured_then_nuget_config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            _write(tmpdir, "nuget.config", NUGET_CONFIG)
            configured = [PackageSource("yaml", "https://yaml.example.com/index.json")]

            sources = resolve_sources(configured, search_dir=tmpdir)

        assert [s.name for s in sources] == ["yaml", "nuget.org", "Company Feed"]

    def test_explicit_path_wins_over_search(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            _write(tmpdir, "nuget.config", NUGET_CONFIG)
            other = os.path.join(tmpdir, "other")
            os.makedirs(other)
            explicit = _write(other, "custom.config", """<configuration><packageSources>
                <add key="only" value="https://only/index.json" /></packageSources></configuration>""")

            sources = resolve_sources(None, nuget_config_path=explicit, search_dir=tmpdir)

        assert [s.name for s in sources] == ["only"]
