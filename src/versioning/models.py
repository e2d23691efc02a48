"""Data models for package resolution and version reconciliation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ConflictResolutionStrategy(Enum):
    """Strategy used to pick one version when projects disagree."""
    USE_HIGHEST = "UseHighest"
    USE_LOWEST = "UseLowest"
    USE_LATEST_STABLE = "UseLatestStable"
    USE_MOST_COMMON = "UseMostCommon"
    INTERACTIVE = "Interactive"

    @classmethod
    def parse(cls, value: str) -> "ConflictResolutionStrategy":
        """Accept either the enum value ("UseHighest") or name ("use_highest")."""
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown conflict resolution strategy: {value}")


@dataclass(frozen=True)
class PackageIdentity:
    """A package id plus version; id comparison is case-insensitive."""
    id: str
    version: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version.lower() == other.version.lower()

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version.lower()))


@dataclass
class PackageResolutionResult:
    """Outcome of mapping an assembly/module name to a package."""
    package_id: str
    version: str
    additional_packages: List[str] = field(default_factory=list)
    notes: Optional[str] = None


@dataclass
class ProjectPackageReference:
    """A package declared by one project."""
    project_path: str
    package_id: str
    version: Optional[str]
    is_transitive: bool = False
    target_framework: Optional[str] = None


@dataclass
class ProjectPackageVersion:
    """One project's request for a package version."""
    project_path: str
    version: str
    is_transitive: bool = False


@dataclass
class PackageVersionConflict:
    """A package directly declared with more than one distinct version."""
    package_id: str
    requested_versions: List[ProjectPackageVersion] = field(default_factory=list)


@dataclass
class ProjectVersionUpdate:
    """A project whose declared version must change to the resolved one."""
    project_path: str
    package_id: str
    old_version: str
    new_version: str


@dataclass
class PackageVersionResolution:
    """Result of resolving a batch of conflicts."""
    resolved_versions: Dict[str, str] = field(default_factory=dict)
    projects_needing_update: List[ProjectVersionUpdate] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


# Project path -> declared references; owned by the caller.
ProjectPackageMap = Dict[str, List[ProjectPackageReference]]

# (package id, minimum version) pairs reported as dependencies of a package.
DependencyPair = Tuple[str, str]
