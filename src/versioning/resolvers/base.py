"""Base class for package resolvers."""

import threading
from abc import ABC, abstractmethod
from typing import FrozenSet, List, Optional

from ..models import DependencyPair, PackageResolutionResult


class ResolutionCancelled(Exception):
    """Raised when a caller cancels an in-flight resolution."""


def check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    """Raise ResolutionCancelled if ``cancel_event`` has been set."""
    if cancel_event is not None and cancel_event.is_set():
        raise ResolutionCancelled("Package resolution cancelled")


class PackageResolver(ABC):
    """Abstract resolver answering version and assembly questions for packages.

    Implementations return None (or an empty collection) when nothing is found;
    they only raise for cancellation.
    """

    @abstractmethod
    def get_latest_stable_version(
        self, package_id: str, cancel_event: Optional[threading.Event] = None
    ) -> Optional[str]:
        """Return the highest non-prerelease version of ``package_id``."""

    @abstractmethod
    def get_latest_version(
        self,
        package_id: str,
        include_prerelease: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[str]:
        """Return the highest version, optionally including prereleases."""

    @abstractmethod
    def get_all_versions(
        self,
        package_id: str,
        include_prerelease: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        """Return every known version, highest first."""

    @abstractmethod
    def resolve_assembly_to_package(
        self,
        assembly_name: str,
        target_framework: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[PackageResolutionResult]:
        """Map an assembly name to the package that provides it."""

    def get_package_dependencies(
        self,
        package_id: str,
        version: str,
        target_framework: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FrozenSet[DependencyPair]:
        """Return the (id, minimum version) dependencies of a package.

        Resolvers without dependency metadata report none.
        """
        check_cancelled(cancel_event)
        return frozenset()
