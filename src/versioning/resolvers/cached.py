"""Caching decorator over any package resolver."""

import logging

from ..cache import VersionCache
from .base import PackageResolver

logger = logging.getLogger(__name__)


class CachedPackageResolver(PackageResolver):
    """Serve resolver answers from a VersionCache, delegating on a miss.

    Only positive answers are written back: None, empty lists and empty
    dependency sets are always re-asked.
    """

    def __init__(self, inner: PackageResolver, cache: VersionCache):
        self.inner = inner
        self.cache = cache

    def get_latest_stable_version(self, package_id, cancel_event=None):
        cached = self.cache.get_version(package_id, include_prerelease=False)
        if cached is not None:
            return cached
        version = self.inner.get_latest_stable_version(package_id, cancel_event=cancel_event)
        if version:
            self.cache.set_version(package_id, version, include_prerelease=False)
        return version

    def get_latest_version(self, package_id, include_prerelease=False, cancel_event=None):
        cached = self.cache.get_version(package_id, include_prerelease=include_prerelease)
        if cached is not None:
            return cached
        version = self.inner.get_latest_version(package_id, include_prerelease, cancel_event=cancel_event)
        if version:
            self.cache.set_version(package_id, version, include_prerelease=include_prerelease)
        return version

    def get_all_versions(self, package_id, include_prerelease=False, cancel_event=None):
        cached = self.cache.get_all_versions(package_id, include_prerelease)
        if cached is not None:
            return cached
        versions = self.inner.get_all_versions(package_id, include_prerelease, cancel_event=cancel_event)
        if versions:
            self.cache.set_all_versions(package_id, versions, include_prerelease)
        return versions

    def resolve_assembly_to_package(self, assembly_name, target_framework=None, cancel_event=None):
        cached = self.cache.get_resolution(assembly_name, target_framework)
        if cached is not None:
            logger.debug("Resolved %s from cache", assembly_name)
            return cached
        result = self.inner.resolve_assembly_to_package(assembly_name, target_framework, cancel_event=cancel_event)
        if result is not None:
            self.cache.set_resolution(assembly_name, result, target_framework)
        return result

    def get_package_dependencies(self, package_id, version, target_framework=None, cancel_event=None):
        cached = self.cache.get_dependencies(package_id, version, target_framework)
        if cached is not None:
            return cached
        dependencies = self.inner.get_package_dependencies(
            package_id, version, target_framework, cancel_event=cancel_event
        )
        if dependencies:
            self.cache.set_dependencies(package_id, version, dependencies, target_framework)
        return dependencies

    @property
    def registry_reachable(self) -> bool:
        return getattr(self.inner, "registry_reachable", True)
