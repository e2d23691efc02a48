"""Run orchestration: discovery, classification, conflict resolution and reporting.

Per-project work (wildcard resolution, transitive classification, assembly
listing) runs on a bounded thread pool; conflict detection and resolution run
once over the merged project map afterwards.
"""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from analysis.assemblies import AssemblyProviderResolver
from analysis.conflicts import ConflictResolver, VersionChooser
from analysis.transitive import TransitiveClassifier, TransitiveRules, transitive_packages
from cli_config import ReconcileConfig
from common.logging_utils import Timer
from constants import Constants
from registry.nuget.sources import resolve_sources
from versioning.cache import CacheStatistics, VersionCache
from versioning.models import (
    ConflictResolutionStrategy,
    PackageVersionConflict,
    PackageVersionResolution,
    ProjectPackageMap,
    ProjectPackageReference,
)
from versioning.parser import is_floating, is_wildcard, matches_floating
from versioning.resolvers import (
    CachedPackageResolver,
    NuGetPackageResolver,
    OfflinePackageResolver,
    PackageResolver,
    check_cancelled,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def load_projects(path: str) -> ProjectPackageMap:
    """Read ``{project: [{"id", "version", "targetFramework"}]}`` from a JSON file.

    Raises:
        OSError: the file cannot be read.
        ValueError: the content is not valid JSON of the expected shape.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError("Project file must contain an object mapping project paths to package lists")
    projects: ProjectPackageMap = {}
    for project_path, packages in data.items():
        if not isinstance(packages, list):
            raise ValueError(f"Packages for project {project_path} must be a list")
        refs = []
        for index, item in enumerate(packages):
            if not isinstance(item, dict) or not item.get("id"):
                raise ValueError(f"{project_path}[{index}] must be an object with an 'id'")
            version = item.get("version")
            refs.append(
                ProjectPackageReference(
                    project_path=project_path,
                    package_id=str(item["id"]),
                    version=str(version) if version is not None else None,
                    target_framework=item.get("targetFramework"),
                )
            )
        projects[project_path] = refs
    return projects


def create_cache(config: ReconcileConfig) -> Optional[VersionCache]:
    if not config.cache.enabled:
        logger.info("Package version cache disabled")
        return None
    return VersionCache(
        ttl_minutes=config.cache.ttl_minutes,
        sweep_interval=config.cache.sweep_interval_seconds,
    )


def create_resolver(
    config: ReconcileConfig,
    cache: Optional[VersionCache] = None,
    search_dir: Optional[str] = None,
) -> PackageResolver:
    """Offline or live resolver, wrapped by the cache when one is given.

    Without an explicit nuget.config, one is looked up from ``search_dir`` upwards.
    """
    if config.resolution.offline:
        inner: PackageResolver = OfflinePackageResolver(config.resolution.offline_versions)
    else:
        inner = NuGetPackageResolver(resolve_sources(config.sources, config.nuget_config, search_dir))
    if cache is not None:
        return CachedPackageResolver(inner, cache)
    return inner


def resolve_floating_version(
    resolver: PackageResolver,
    package_id: str,
    spec: Optional[str],
    cancel_event: Optional[threading.Event] = None,
) -> Optional[str]:
    """Latest stable version satisfying ``*`` or a floating spec like ``1.*``."""
    if is_wildcard(spec):
        return resolver.get_latest_stable_version(package_id, cancel_event=cancel_event)
    for candidate in resolver.get_all_versions(package_id, include_prerelease=False, cancel_event=cancel_event):
        if matches_floating(spec, candidate):  # type: ignore[arg-type]
            return candidate
    return None


@dataclass
class ReconcileReport:
    """Everything a run produced, ready for JSON output."""

    strategy: ConflictResolutionStrategy
    conflicts: List[PackageVersionConflict] = field(default_factory=list)
    resolution: PackageVersionResolution = field(default_factory=PackageVersionResolution)
    transitive: Dict[str, List[str]] = field(default_factory=dict)
    resolved_wildcards: Dict[str, Dict[str, str]] = field(default_factory=dict)
    assemblies: Optional[Dict[str, List[str]]] = None
    warnings: List[str] = field(default_factory=list)
    registry_reachable: bool = True
    cache_statistics: Optional[CacheStatistics] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "strategy": self.strategy.value,
            "resolved_versions": dict(self.resolution.resolved_versions),
            "updates": [
                {
                    "project": u.project_path,
                    "package_id": u.package_id,
                    "old_version": u.old_version,
                    "new_version": u.new_version,
                }
                for u in self.resolution.projects_needing_update
            ],
            "conflicts": [
                {
                    "package_id": c.package_id,
                    "requested": [{"project": r.project_path, "version": r.version} for r in c.requested_versions],
                }
                for c in self.conflicts
            ],
            "transitive": self.transitive,
            "resolved_wildcards": self.resolved_wildcards,
            "notes": list(self.resolution.notes),
            "warnings": list(self.warnings),
            "cache_statistics": self.cache_statistics.as_dict() if self.cache_statistics else None,
        }
        if self.assemblies is not None:
            data["assemblies"] = self.assemblies
        return data


class Reconciler:
    """Drive one reconciliation run over a caller-owned project map."""

    def __init__(
        self,
        resolver: PackageResolver,
        strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.USE_HIGHEST,
        max_concurrency: int = Constants.MAX_CONCURRENCY,
        rules: Optional[TransitiveRules] = None,
        use_registry_dependencies: bool = False,
        resolve_wildcards: bool = False,
        assembly_resolver: Optional[AssemblyProviderResolver] = None,
        chooser: Optional[VersionChooser] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.resolver = resolver
        self.strategy = strategy
        self.max_concurrency = max(1, max_concurrency)
        self.classifier = TransitiveClassifier(rules, resolver, use_registry_dependencies)
        self.conflict_resolver = ConflictResolver(resolver)
        self.resolve_wildcards = resolve_wildcards
        self.assembly_resolver = assembly_resolver
        self.chooser = chooser
        self.cancel_event = cancel_event or threading.Event()

    @classmethod
    def from_config(cls, config: ReconcileConfig, resolver: PackageResolver, **kwargs) -> "Reconciler":
        assembly_resolver = AssemblyProviderResolver(resolver, packages_path=config.resolution.packages_path)
        return cls(
            resolver,
            strategy=config.resolution.strategy,
            max_concurrency=config.resolution.max_concurrency,
            rules=config.transitive,
            use_registry_dependencies=config.resolution.use_registry_dependencies,
            resolve_wildcards=config.resolution.resolve_wildcards,
            assembly_resolver=assembly_resolver,
            **kwargs,
        )

    def _map(self, fn: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Run ``fn`` over items on the worker pool, preserving order."""
        items = list(items)
        if self.max_concurrency == 1 or len(items) <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            futures = [executor.submit(fn, item) for item in items]
            try:
                return [future.result() for future in futures]
            except BaseException:
                # Stop the remaining workers at their next registry call.
                self.cancel_event.set()
                raise

    def _resolve_wildcards(self, project_packages: ProjectPackageMap, report: ReconcileReport) -> None:
        floating = {}
        for refs in project_packages.values():
            for ref in refs:
                if is_floating(ref.version) or is_wildcard(ref.version):
                    floating.setdefault((ref.package_id.lower(), (ref.version or "*").lower()), ref)
        if not floating:
            return

        def resolve(ref: ProjectPackageReference) -> Optional[str]:
            check_cancelled(self.cancel_event)
            return resolve_floating_version(self.resolver, ref.package_id, ref.version, self.cancel_event)

        keys = list(floating)
        results = dict(zip(keys, self._map(resolve, [floating[k] for k in keys])))
        for project_path, refs in project_packages.items():
            for ref in refs:
                key = (ref.package_id.lower(), (ref.version or "*").lower())
                if key not in results:
                    continue
                resolved = results[key]
                if resolved is None:
                    message = f"Could not resolve {ref.package_id} {ref.version or '*'} to a concrete version"
                    if message not in report.warnings:
                        logger.warning(message)
                        report.warnings.append(message)
                    continue
                report.resolved_wildcards.setdefault(project_path, {})[ref.package_id] = resolved
                ref.version = resolved

    def _project_assemblies(self, project_packages: ProjectPackageMap) -> Dict[str, List[str]]:
        resolver = self.assembly_resolver or AssemblyProviderResolver(self.resolver)
        projects = list(project_packages.items())

        def collect(item):
            _, refs = item
            direct = [r for r in refs if not r.is_transitive]
            return sorted(resolver.assemblies_for_packages(direct, cancel_event=self.cancel_event), key=str.lower)

        return dict(zip((p for p, _ in projects), self._map(collect, projects)))

    def run(self, project_packages: ProjectPackageMap, include_assemblies: bool = False) -> ReconcileReport:
        """Classify, detect, resolve and apply; ``project_packages`` is updated in place."""
        report = ReconcileReport(strategy=self.strategy)
        with Timer() as t:
            if self.resolve_wildcards:
                self._resolve_wildcards(project_packages, report)

            self._map(lambda refs: self.classifier.classify(refs, self.cancel_event), project_packages.values())
            report.transitive = {p: ids for p, ids in transitive_packages(project_packages).items() if ids}

            report.conflicts = self.conflict_resolver.detect_conflicts(project_packages)
            report.resolution = self.conflict_resolver.resolve_conflicts(
                report.conflicts, self.strategy, chooser=self.chooser, cancel_event=self.cancel_event
            )
            self.conflict_resolver.apply_resolution(report.resolution, project_packages)

            if include_assemblies:
                report.assemblies = self._project_assemblies(project_packages)

        report.registry_reachable = getattr(self.resolver, "registry_reachable", True)
        if not report.registry_reachable:
            report.warnings.append("No package source answered any registry query")
        cache = getattr(self.resolver, "cache", None)
        if isinstance(cache, VersionCache):
            report.cache_statistics = cache.stats()
        logger.info(
            "Reconciled %d projects: %d conflicts, %d updates in %d ms",
            len(project_packages), len(report.conflicts),
            len(report.resolution.projects_needing_update), t.duration_ms(),
        )
        return report
