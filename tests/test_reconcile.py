"""Tests for the reconciliation run."""

import json
import os
import tempfile
import threading
from unittest.mock import MagicMock

import pytest

from cli_config import config_from_dict
from reconcile import (
    Reconciler,
    create_cache,
    create_resolver,
    load_projects,
    resolve_floating_version,
)
from versioning.models import ConflictResolutionStrategy, ProjectPackageReference
from versioning.resolvers import (
    CachedPackageResolver,
    NuGetPackageResolver,
    OfflinePackageResolver,
    ResolutionCancelled,
)


def project_map(*entries):
    projects = {}
    for project, package_id, version in entries:
        projects.setdefault(project, []).append(ProjectPackageReference(project, package_id, version))
    return projects


def _write_json(directory, data):
    path = os.path.join(directory, "projects.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path


class TestLoadProjects:
    """Test reading the project input file."""

    def test_reads_references(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, {
                "src/App/App.csproj": [
                    {"id": "Newtonsoft.Json", "version": "13.0.1", "targetFramework": "net6.0"},
                    {"id": "Serilog"},
                ],
            })
            projects = load_projects(path)

        refs = projects["src/App/App.csproj"]
        assert refs[0].package_id == "Newtonsoft.Json"
        assert refs[0].target_framework == "net6.0"
        assert refs[1].version is None
        assert refs[1].is_transitive is False

    @pytest.mark.parametrize("data", [[], {"A.csproj": "Moq"}, {"A.csproj": [{"version": "1.0.0"}]}])
    def test_invalid_shape(self, data):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_json(tmpdir, data)
            with pytest.raises(ValueError):
                load_projects(path)

    def test_missing_file(self):
        with pytest.raises(OSError):
            load_projects("/nonexistent/projects.json")


class TestFactories:
    """Test cache and resolver construction from config."""

    def test_cache_disabled(self):
        assert create_cache(config_from_dict({"cache": {"enabled": False}})) is None

    def test_offline_resolver_wrapped_in_cache(self):
        config = config_from_dict({"resolution": {"offline": True, "offline_versions": {"Contoso.Lib": "1.0.0"}}})
        cache = create_cache(config)
        try:
            resolver = create_resolver(config, cache)
            assert isinstance(resolver, CachedPackageResolver)
            assert isinstance(resolver.inner, OfflinePackageResolver)
            assert resolver.get_latest_stable_version("Contoso.Lib") == "1.0.0"
        finally:
            cache.shutdown()

    def test_live_resolver_uses_configured_sources(self):
        config = config_from_dict({"sources": ["https://pkgs.example.com/index.json"]})
        with tempfile.TemporaryDirectory() as tmpdir:
            resolver = create_resolver(config, search_dir=tmpdir)
        assert isinstance(resolver, NuGetPackageResolver)
        assert [s.url for s in resolver.sources] == ["https://pkgs.example.com/index.json"]


class TestResolveFloatingVersion:
    """Test wildcard and floating version resolution."""

    def test_star_uses_latest_stable(self):
        resolver = MagicMock()
        resolver.get_latest_stable_version.return_value = "3.0.0"
        assert resolve_floating_version(resolver, "Pkg", "*") == "3.0.0"

    def test_floating_picks_highest_match(self):
        resolver = MagicMock()
        resolver.get_all_versions.return_value = ["3.0.0", "2.5.1", "2.5.0", "1.0.0"]
        assert resolve_floating_version(resolver, "Pkg", "2.*") == "2.5.1"
        assert resolve_floating_version(resolver, "Pkg", "4.*") is None


class TestReconciler:
    """Test full runs against the offline resolver."""

    def test_run_end_to_end(self):
        projects = project_map(
            ("A.csproj", "Newtonsoft.Json", "12.0.3"),
            ("A.csproj", "xunit", "2.6.6"),
            ("A.csproj", "xunit.core", "2.4.0"),
            ("B.csproj", "Newtonsoft.Json", "13.0.3"),
            ("B.csproj", "xunit", "2.6.6"),
            ("B.csproj", "xunit.core", "2.6.6"),
        )
        reconciler = Reconciler(OfflinePackageResolver(), max_concurrency=4)

        report = reconciler.run(projects)

        assert report.resolution.resolved_versions == {"Newtonsoft.Json": "13.0.3"}
        assert report.transitive == {"A.csproj": ["xunit.core"], "B.csproj": ["xunit.core"]}
        assert projects["A.csproj"][0].version == "13.0.3"
        assert projects["A.csproj"][2].version == "2.4.0"
        assert report.registry_reachable is True

        data = report.as_dict()
        assert data["strategy"] == "UseHighest"
        assert data["updates"] == [{
            "project": "A.csproj", "package_id": "Newtonsoft.Json", "old_version": "12.0.3", "new_version": "13.0.3",
        }]
        assert "assemblies" not in data
        assert json.dumps(data)

    def test_sequential_and_parallel_agree(self):
        def build():
            return project_map(*[(f"P{i}.csproj", "Moq", f"4.{i}.0") for i in range(10)])

        sequential = Reconciler(OfflinePackageResolver(), max_concurrency=1).run(build())
        parallel = Reconciler(OfflinePackageResolver(), max_concurrency=8).run(build())

        assert sequential.resolution.resolved_versions == parallel.resolution.resolved_versions == {"Moq": "4.9.0"}
        assert len(parallel.resolution.projects_needing_update) == 9

    def test_latest_stable_strategy_with_cache(self):
        config = config_from_dict({"resolution": {"offline": True, "strategy": "UseLatestStable"}})
        cache = create_cache(config)
        try:
            resolver = create_resolver(config, cache)
            report = Reconciler.from_config(config, resolver).run(project_map(
                ("A.csproj", "Polly", "7.2.4"), ("B.csproj", "Polly", "8.0.0"),
            ))
        finally:
            cache.shutdown()

        assert report.resolution.resolved_versions == {"Polly": "8.2.0"}
        assert report.cache_statistics is not None
        assert report.as_dict()["cache_statistics"]["version_misses"] == 1

    def test_resolve_wildcards(self):
        projects = project_map(("A.csproj", "Dapper", "*"), ("B.csproj", "Dapper", "2.0.123"),
                               ("B.csproj", "Contoso.Private", "1.*"))
        reconciler = Reconciler(OfflinePackageResolver(), resolve_wildcards=True)

        report = reconciler.run(projects)

        assert report.resolved_wildcards == {"A.csproj": {"Dapper": "2.1.24"}}
        assert report.resolution.resolved_versions == {"Dapper": "2.1.24"}
        assert report.warnings == ["Could not resolve Contoso.Private 1.* to a concrete version"]
        assert projects["B.csproj"][1].version == "1.*"

    def test_assemblies_listed_per_project(self):
        projects = project_map(("A.csproj", "Serilog", "3.1.1"), ("B.csproj", "Dapper", "2.1.24"))
        reconciler = Reconciler(OfflinePackageResolver())

        report = reconciler.run(projects, include_assemblies=True)

        assert "Serilog" in report.assemblies["A.csproj"]
        assert report.as_dict()["assemblies"]["B.csproj"] == ["Dapper"]

    def test_unreachable_registry_warns(self):
        resolver = MagicMock()
        resolver.registry_reachable = False
        resolver.get_latest_stable_version.return_value = None
        reconciler = Reconciler(resolver, strategy=ConflictResolutionStrategy.USE_LATEST_STABLE)

        report = reconciler.run(project_map(("A", "Pkg", "1.0.0"), ("B", "Pkg", "2.0.0")))

        assert report.registry_reachable is False
        assert report.resolution.resolved_versions == {"Pkg": "2.0.0"}
        assert any("No package source" in w for w in report.warnings)

    def test_interactive_chooser(self):
        reconciler = Reconciler(OfflinePackageResolver(), strategy=ConflictResolutionStrategy.INTERACTIVE,
                                chooser=lambda conflict: "1.0.0")
        report = reconciler.run(project_map(("A", "Pkg", "1.0.0"), ("B", "Pkg", "2.0.0")))
        assert report.resolution.resolved_versions == {"Pkg": "1.0.0"}

    def test_cancelled_run(self):
        event = threading.Event()
        event.set()
        projects = project_map(("A", "Pkg", "*"), ("B", "Pkg", "2.0.0"))
        reconciler = Reconciler(OfflinePackageResolver(), resolve_wildcards=True, cancel_event=event)

        with pytest.raises(ResolutionCancelled):
            reconciler.run(projects)

    def test_worker_error_cancels_others(self):
        resolver = MagicMock()
        resolver.get_latest_stable_version.side_effect = RuntimeError("boom")
        projects = project_map(("A", "One", "*"), ("B", "Two", "*"), ("C", "Three", "*"))
        reconciler = Reconciler(resolver, max_concurrency=3, resolve_wildcards=True)

        with pytest.raises(RuntimeError):
            reconciler.run(projects)
        assert reconciler.cancel_event.is_set()
