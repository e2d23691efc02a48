"""Detection and resolution of package version conflicts across projects."""
from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from typing import Callable, Dict, List, Optional, Set, Tuple

from constants import Constants
from versioning.models import (
    ConflictResolutionStrategy,
    PackageVersionConflict,
    PackageVersionResolution,
    ProjectPackageMap,
    ProjectPackageVersion,
    ProjectVersionUpdate,
)
from versioning.parser import parse_version
from versioning.resolvers.base import PackageResolver, check_cancelled

logger = logging.getLogger(__name__)

# Called with a conflict; returns one of its requested versions or None.
VersionChooser = Callable[[PackageVersionConflict], Optional[str]]


def _concrete_versions(conflict: PackageVersionConflict) -> List[str]:
    return [
        r.version for r in conflict.requested_versions
        if r.version and r.version.strip() != Constants.WILDCARD_VERSION
    ]


def _highest(versions: List[str], package_id: str) -> Optional[str]:
    parsed = []
    for version in versions:
        pv = parse_version(version)
        if pv is None:
            logger.warning("Could not parse version %s for package %s", version, package_id)
        else:
            parsed.append((pv, version))
    if parsed:
        return max(parsed, key=lambda pair: pair[0])[1]
    return max(versions) if versions else None


def _lowest(versions: List[str]) -> Optional[str]:
    parsed = [(parse_version(v), v) for v in versions]
    valid = [(pv, v) for pv, v in parsed if pv is not None]
    if valid:
        return min(valid, key=lambda pair: pair[0])[1]
    return min(versions) if versions else None


class ConflictResolver:
    """Find packages declared at different versions and pick one version each.

    Registry lookups (UseHighest with only wildcards, UseLatestStable) go
    through the optional resolver; without one those strategies fall back to
    the requested versions.
    """

    def __init__(self, resolver: Optional[PackageResolver] = None):
        self.resolver = resolver

    def detect_conflicts(self, project_packages: ProjectPackageMap) -> List[PackageVersionConflict]:
        """Group direct references by id and report ids with more than one version."""
        grouped: Dict[str, PackageVersionConflict] = {}
        for project_path, references in project_packages.items():
            for ref in references:
                if ref.is_transitive:
                    continue
                key = ref.package_id.lower()
                conflict = grouped.setdefault(key, PackageVersionConflict(package_id=ref.package_id))
                conflict.requested_versions.append(
                    ProjectPackageVersion(
                        project_path=project_path,
                        version=ref.version or Constants.WILDCARD_VERSION,
                        is_transitive=False,
                    )
                )

        conflicts = []
        for conflict in grouped.values():
            distinct = {r.version.lower() for r in conflict.requested_versions}
            if len(distinct) > 1:
                conflicts.append(conflict)
        logger.info("Detected %d package version conflicts", len(conflicts))
        return conflicts

    def _latest_stable(self, package_id: str, cancel_event: Optional[threading.Event]) -> Optional[str]:
        if self.resolver is None:
            return None
        check_cancelled(cancel_event)
        return self.resolver.get_latest_stable_version(package_id, cancel_event=cancel_event)

    def _use_highest(self, conflict: PackageVersionConflict, cancel_event) -> str:
        versions = _concrete_versions(conflict)
        if not versions:
            return self._latest_stable(conflict.package_id, cancel_event) or Constants.WILDCARD_VERSION
        return _highest(versions, conflict.package_id)  # type: ignore[return-value]

    def _use_lowest(self, conflict: PackageVersionConflict) -> str:
        return _lowest(_concrete_versions(conflict)) or Constants.WILDCARD_VERSION

    def _use_latest_stable(self, conflict: PackageVersionConflict, cancel_event) -> str:
        latest = self._latest_stable(conflict.package_id, cancel_event)
        if latest is not None:
            logger.info("Found latest stable version %s for %s", latest, conflict.package_id)
            return latest
        logger.warning("Could not fetch latest stable version for %s, using highest existing", conflict.package_id)
        return self._use_highest(conflict, cancel_event)

    def _use_most_common(self, conflict: PackageVersionConflict) -> str:
        versions = _concrete_versions(conflict)
        if not versions:
            return Constants.WILDCARD_VERSION
        counts = Counter(v.lower() for v in versions)
        spelling = {}
        for v in versions:
            spelling.setdefault(v.lower(), v)
        top = max(counts.values())
        tied = [spelling[key] for key, count in counts.items() if count == top]
        winner = _highest(tied, conflict.package_id) if len(tied) > 1 else tied[0]
        logger.info("Most common version for %s is %s (used in %d projects)", conflict.package_id, winner, top)
        return winner  # type: ignore[return-value]

    def _interactive(self, conflict, chooser: Optional[VersionChooser], cancel_event, notes: List[str]) -> str:
        if chooser is not None:
            choice = chooser(conflict)
            requested = {r.version.lower(): r.version for r in conflict.requested_versions}
            if choice is not None and choice.lower() in requested:
                return requested[choice.lower()]
            reason = f"chooser returned {choice!r}, which was not requested"
        else:
            reason = "no interactive chooser available"
        logger.warning("Interactive resolution for %s unavailable (%s), falling back to highest version",
                       conflict.package_id, reason)
        notes.append(f"{conflict.package_id}: {reason}; used highest version")
        return self._use_highest(conflict, cancel_event)

    def _resolve_one(self, conflict, strategy, chooser, cancel_event, notes) -> str:
        if strategy == ConflictResolutionStrategy.USE_LOWEST:
            return self._use_lowest(conflict)
        if strategy == ConflictResolutionStrategy.USE_LATEST_STABLE:
            return self._use_latest_stable(conflict, cancel_event)
        if strategy == ConflictResolutionStrategy.USE_MOST_COMMON:
            return self._use_most_common(conflict)
        if strategy == ConflictResolutionStrategy.INTERACTIVE:
            return self._interactive(conflict, chooser, cancel_event, notes)
        return self._use_highest(conflict, cancel_event)

    def resolve_conflicts(
        self,
        conflicts: List[PackageVersionConflict],
        strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.USE_HIGHEST,
        chooser: Optional[VersionChooser] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PackageVersionResolution:
        """Pick one version per conflict and list the projects that must change."""
        resolution = PackageVersionResolution()
        for conflict in conflicts:
            check_cancelled(cancel_event)
            logger.info("Resolving version conflict for package %s: %s", conflict.package_id,
                        ", ".join(r.version for r in conflict.requested_versions))
            resolved = self._resolve_one(conflict, strategy, chooser, cancel_event, resolution.notes)
            resolution.resolved_versions[conflict.package_id] = resolved

            seen: Set[Tuple[str, str]] = set()
            for request in conflict.requested_versions:
                key = (request.project_path, conflict.package_id.lower())
                if request.version.lower() == resolved.lower() or key in seen:
                    continue
                seen.add(key)
                resolution.projects_needing_update.append(
                    ProjectVersionUpdate(
                        project_path=request.project_path,
                        package_id=conflict.package_id,
                        old_version=request.version,
                        new_version=resolved,
                    )
                )
            logger.info("Resolved %s to version %s using %s strategy", conflict.package_id, resolved, strategy.value)
        return resolution

    def apply_resolution(self, resolution: PackageVersionResolution, project_packages: ProjectPackageMap) -> int:
        """Set every matching direct reference to its resolved version.

        Returns the number of references changed; a second call changes nothing.
        """
        changed = 0
        for update in resolution.projects_needing_update:
            for ref in project_packages.get(update.project_path, []):
                if ref.package_id.lower() != update.package_id.lower() or ref.is_transitive:
                    continue
                if (ref.version or "") == update.new_version:
                    continue
                logger.info("Updating %s in %s from %s to %s", update.package_id,
                            os.path.basename(update.project_path), ref.version, update.new_version)
                ref.version = update.new_version
                changed += 1
        return changed
