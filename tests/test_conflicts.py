"""Tests for package version conflict detection and resolution."""

import threading
from unittest.mock import MagicMock

import pytest

from analysis.conflicts import ConflictResolver
from versioning.models import (
    ConflictResolutionStrategy,
    PackageVersionConflict,
    ProjectPackageReference,
    ProjectPackageVersion,
)
from versioning.resolvers import ResolutionCancelled

Strategy = ConflictResolutionStrategy


def project_map(*entries):
    """Build a project map from (project, package, version) triples."""
    projects = {}
    for project, package_id, version in entries:
        projects.setdefault(project, []).append(ProjectPackageReference(project, package_id, version))
    return projects


@pytest.fixture
def newtonsoft_map():
    return project_map(
        ("P1.csproj", "Newtonsoft.Json", "1.0.0"),
        ("P2.csproj", "Newtonsoft.Json", "2.0.0"),
        ("P3.csproj", "Newtonsoft.Json", "1.5.0"),
    )


class TestDetectConflicts:
    """Test conflict detection."""

    def test_distinct_versions_conflict(self, newtonsoft_map):
        conflicts = ConflictResolver().detect_conflicts(newtonsoft_map)

        assert len(conflicts) == 1
        assert conflicts[0].package_id == "Newtonsoft.Json"
        assert [r.project_path for r in conflicts[0].requested_versions] == ["P1.csproj", "P2.csproj", "P3.csproj"]

    def test_same_version_no_conflict(self):
        projects = project_map(("A.csproj", "Moq", "4.20.70"), ("B.csproj", "moq", "4.20.70"))
        assert ConflictResolver().detect_conflicts(projects) == []

    def test_transitive_references_ignored(self):
        projects = project_map(("A.csproj", "System.Memory", "4.5.5"), ("B.csproj", "System.Memory", "4.5.4"))
        projects["B.csproj"][0].is_transitive = True
        assert ConflictResolver().detect_conflicts(projects) == []

    def test_missing_version_is_wildcard(self):
        projects = project_map(("A.csproj", "Serilog", None), ("B.csproj", "Serilog", "3.1.1"))
        conflicts = ConflictResolver().detect_conflicts(projects)
        assert [r.version for r in conflicts[0].requested_versions] == ["*", "3.1.1"]

    def test_ids_grouped_case_insensitively(self):
        projects = project_map(("A.csproj", "NUnit", "3.13.3"), ("B.csproj", "nunit", "3.14.0"))
        conflicts = ConflictResolver().detect_conflicts(projects)
        assert len(conflicts) == 1
        assert conflicts[0].package_id == "NUnit"


class TestResolveConflicts:
    """Test each strategy."""

    def test_use_highest_example(self, newtonsoft_map):
        """P1 1.0.0, P2 2.0.0, P3 1.5.0 resolve to 2.0.0 and update P1 and P3."""
        resolver = ConflictResolver()
        conflicts = resolver.detect_conflicts(newtonsoft_map)

        resolution = resolver.resolve_conflicts(conflicts, Strategy.USE_HIGHEST)

        assert resolution.resolved_versions == {"Newtonsoft.Json": "2.0.0"}
        updates = {(u.project_path, u.old_version, u.new_version) for u in resolution.projects_needing_update}
        assert updates == {("P1.csproj", "1.0.0", "2.0.0"), ("P3.csproj", "1.5.0", "2.0.0")}

    def test_use_highest_numeric_not_lexicographic(self):
        projects = project_map(("A", "Pkg", "1.9.0"), ("B", "Pkg", "1.10.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects))
        assert resolution.resolved_versions["Pkg"] == "1.10.0"

    def test_use_highest_ignores_wildcards(self):
        projects = project_map(("A", "Pkg", "*"), ("B", "Pkg", "1.2.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects))
        assert resolution.resolved_versions["Pkg"] == "1.2.0"
        assert [u.project_path for u in resolution.projects_needing_update] == ["A"]

    def test_use_highest_unparseable_falls_back_to_lexicographic(self):
        projects = project_map(("A", "Pkg", "abc"), ("B", "Pkg", "abd"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects))
        assert resolution.resolved_versions["Pkg"] == "abd"

    def test_use_lowest(self, newtonsoft_map):
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map), Strategy.USE_LOWEST)
        assert resolution.resolved_versions["Newtonsoft.Json"] == "1.0.0"
        assert len(resolution.projects_needing_update) == 2

    def test_use_latest_stable_queries_registry(self, newtonsoft_map):
        registry = MagicMock()
        registry.get_latest_stable_version.return_value = "13.0.3"
        resolver = ConflictResolver(registry)

        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map), Strategy.USE_LATEST_STABLE)

        assert resolution.resolved_versions["Newtonsoft.Json"] == "13.0.3"
        assert len(resolution.projects_needing_update) == 3

    def test_use_latest_stable_falls_back_to_highest(self, newtonsoft_map):
        registry = MagicMock()
        registry.get_latest_stable_version.return_value = None
        resolver = ConflictResolver(registry)

        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map), Strategy.USE_LATEST_STABLE)

        assert resolution.resolved_versions["Newtonsoft.Json"] == "2.0.0"

    def test_use_most_common(self):
        projects = project_map(("A", "Pkg", "1.0.0"), ("B", "Pkg", "1.0.0"), ("C", "Pkg", "2.0.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects), Strategy.USE_MOST_COMMON)
        assert resolution.resolved_versions["Pkg"] == "1.0.0"
        assert [u.project_path for u in resolution.projects_needing_update] == ["C"]

    def test_use_most_common_tie_prefers_higher(self):
        projects = project_map(("A", "Pkg", "1.0.0"), ("B", "Pkg", "2.0.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects), Strategy.USE_MOST_COMMON)
        assert resolution.resolved_versions["Pkg"] == "2.0.0"

    def test_all_wildcards(self):
        conflict = PackageVersionConflict("Pkg", [ProjectPackageVersion("A", "*"), ProjectPackageVersion("B", "*")])
        resolver = ConflictResolver()

        for strategy in (Strategy.USE_LOWEST, Strategy.USE_MOST_COMMON, Strategy.USE_HIGHEST):
            resolution = resolver.resolve_conflicts([conflict], strategy)
            assert resolution.resolved_versions["Pkg"] == "*"
            assert resolution.projects_needing_update == []

    def test_every_conflict_resolved(self):
        projects = project_map(
            ("A", "One", "1.0.0"), ("B", "One", "1.1.0"),
            ("A", "Two", "2.0.0"), ("B", "Two", "2.0.1"),
            ("A", "Three", "3.0.0"), ("B", "Three", "3.0.0"),
        )
        resolver = ConflictResolver()
        conflicts = resolver.detect_conflicts(projects)
        resolution = resolver.resolve_conflicts(conflicts)
        assert set(resolution.resolved_versions) == {"One", "Two"}
        for update in resolution.projects_needing_update:
            assert update.new_version == resolution.resolved_versions[update.package_id]

    def test_cancellation(self, newtonsoft_map):
        event = threading.Event()
        event.set()
        resolver = ConflictResolver()
        with pytest.raises(ResolutionCancelled):
            resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map), cancel_event=event)


class TestInteractiveStrategy:
    """Test chooser callback and fallback."""

    def test_chooser_picks_requested_version(self, newtonsoft_map):
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(
            resolver.detect_conflicts(newtonsoft_map), Strategy.INTERACTIVE, chooser=lambda conflict: "1.5.0"
        )
        assert resolution.resolved_versions["Newtonsoft.Json"] == "1.5.0"
        assert resolution.notes == []

    def test_without_chooser_falls_back_with_note(self, newtonsoft_map):
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map), Strategy.INTERACTIVE)
        assert resolution.resolved_versions["Newtonsoft.Json"] == "2.0.0"
        assert len(resolution.notes) == 1
        assert "Newtonsoft.Json" in resolution.notes[0]

    def test_unrequested_choice_falls_back(self, newtonsoft_map):
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(
            resolver.detect_conflicts(newtonsoft_map), Strategy.INTERACTIVE, chooser=lambda conflict: "9.9.9"
        )
        assert resolution.resolved_versions["Newtonsoft.Json"] == "2.0.0"
        assert "9.9.9" in resolution.notes[0]


class TestApplyResolution:
    """Test applying a resolution to the project map."""

    def test_apply_updates_and_is_idempotent(self, newtonsoft_map):
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(newtonsoft_map))

        assert resolver.apply_resolution(resolution, newtonsoft_map) == 2
        assert resolver.apply_resolution(resolution, newtonsoft_map) == 0
        assert {refs[0].version for refs in newtonsoft_map.values()} == {"2.0.0"}
        assert resolver.detect_conflicts(newtonsoft_map) == []

    def test_apply_skips_transitive(self):
        projects = project_map(("A", "Pkg", "1.0.0"), ("B", "Pkg", "2.0.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects))
        projects["A"].append(ProjectPackageReference("A", "Pkg", "0.9.0", is_transitive=True))

        resolver.apply_resolution(resolution, projects)

        assert [r.version for r in projects["A"]] == ["2.0.0", "0.9.0"]

    def test_duplicate_declarations_update_once(self):
        projects = project_map(("A", "Pkg", "1.0.0"), ("A", "Pkg", "1.1.0"), ("B", "Pkg", "2.0.0"))
        resolver = ConflictResolver()
        resolution = resolver.resolve_conflicts(resolver.detect_conflicts(projects))

        assert [u.project_path for u in resolution.projects_needing_update] == ["A"]
        assert resolver.apply_resolution(resolution, projects) == 2
        assert [r.version for r in projects["A"]] == ["2.0.0", "2.0.0"]
