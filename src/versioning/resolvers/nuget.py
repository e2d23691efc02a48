"""NuGet package resolver querying every configured source (V3 primary, V2 fallback)."""

import logging
import re
import threading
from typing import Any, Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Tuple

from constants import Constants
from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from registry.nuget import client
from registry.nuget.sources import PackageSource, default_sources

from ..models import DependencyPair, PackageResolutionResult
from ..parser import sort_versions_desc
from .base import PackageResolver, check_cancelled

logger = logging.getLogger(__name__)

# Errors raised by malformed registry payloads that slip past the client helpers.
_PAYLOAD_ERRORS = (ValueError, TypeError, AttributeError, KeyError)


class KnownMapping(NamedTuple):
    """Assembly whose package id does not follow the assembly name."""
    package_id: str
    notes: Optional[str] = None
    companions: Tuple[str, ...] = ()


_MSTEST = KnownMapping("MSTest.TestFramework", "Also requires MSTest.TestAdapter", ("MSTest.TestAdapter",))

KNOWN_ASSEMBLY_MAPPINGS: Dict[str, KnownMapping] = {
    name.lower(): mapping
    for name, mapping in {
        "Microsoft.VisualStudio.QualityTools.UnitTestFramework": _MSTEST,
        "Microsoft.VisualStudio.TestPlatform.TestFramework": _MSTEST,
        "Microsoft.VisualStudio.TestPlatform.TestFramework.Extensions": KnownMapping("MSTest.TestFramework.Extensions"),
        "xunit": KnownMapping("xunit", "Also requires xunit.runner.visualstudio", ("xunit.runner.visualstudio",)),
        "xunit.core": KnownMapping("xunit.core"),
        "xunit.assert": KnownMapping("xunit.assert"),
        "nunit.framework": KnownMapping("NUnit", "Also requires NUnit3TestAdapter", ("NUnit3TestAdapter",)),
        "Moq": KnownMapping("Moq"),
        "Castle.Core": KnownMapping("Castle.Core"),
        "log4net": KnownMapping("log4net"),
        "Serilog": KnownMapping("Serilog"),
        "NLog": KnownMapping("NLog"),
        "AutoMapper": KnownMapping("AutoMapper"),
        "FluentValidation": KnownMapping("FluentValidation"),
        "MediatR": KnownMapping("MediatR"),
        "Polly": KnownMapping("Polly"),
        "StackExchange.Redis": KnownMapping("StackExchange.Redis"),
        "RabbitMQ.Client": KnownMapping("RabbitMQ.Client"),
        "AWSSDK.Core": KnownMapping("AWSSDK.Core"),
        "Azure.Storage.Blobs": KnownMapping("Azure.Storage.Blobs"),
        "Google.Apis": KnownMapping("Google.Apis"),
        "Grpc.Core": KnownMapping("Grpc.Core"),
        "protobuf-net": KnownMapping("protobuf-net"),
        "System.Data.SqlClient": KnownMapping("System.Data.SqlClient", "Consider using Microsoft.Data.SqlClient instead"),
        "EntityFramework": KnownMapping("EntityFramework", "Consider using Microsoft.EntityFrameworkCore instead"),
        "System.Windows.Forms": KnownMapping("System.Windows.Forms", "For .NET Core/5+ projects"),
        "System.Drawing": KnownMapping("System.Drawing.Common"),
        "System.Configuration.ConfigurationManager": KnownMapping("System.Configuration.ConfigurationManager"),
        "Unity": KnownMapping("Unity", "Unity container for dependency injection"),
        "Ninject": KnownMapping("Ninject"),
        "SimpleInjector": KnownMapping("SimpleInjector"),
        "StructureMap": KnownMapping("StructureMap", "No longer maintained, consider alternatives"),
        "CommonServiceLocator": KnownMapping("CommonServiceLocator"),
    }.items()
}

_VERSION_SUFFIX_RE = re.compile(r"\.\d+(\.\d+)*$")


def known_mapping(assembly_name: str) -> Optional[KnownMapping]:
    return KNOWN_ASSEMBLY_MAPPINGS.get(assembly_name.lower())


def package_id_candidates(assembly_name: str) -> List[str]:
    """Package ids worth trying for an assembly name, most likely first.

    Duplicates are dropped case-insensitively; first spelling wins.
    """
    candidates = [assembly_name, _VERSION_SUFFIX_RE.sub("", assembly_name)]
    lower = assembly_name.lower()
    if lower.startswith("system."):
        candidates.append(f"Microsoft.{assembly_name}")
    elif lower.startswith("microsoft."):
        candidates.append(assembly_name[len("Microsoft."):])
    candidates.append(f"{assembly_name}.Core")
    candidates.append(f"{assembly_name}.Abstractions")

    seen = set()
    unique = []
    for candidate in candidates:
        if candidate and candidate.lower() not in seen:
            seen.add(candidate.lower())
            unique.append(candidate)
    return unique


class NuGetPackageResolver(PackageResolver):
    """Resolver backed by live NuGet feeds.

    Versions from all sources are merged. A source that fails is logged and
    skipped; the resolver never raises for registry trouble.
    """

    def __init__(self, sources: Optional[Sequence[PackageSource]] = None):
        self.sources: List[PackageSource] = list(sources) if sources else default_sources()
        self._index_lock = threading.Lock()
        self._service_indexes: Dict[str, Optional[Dict[str, Any]]] = {}
        self._counter_lock = threading.Lock()
        self.queries_answered = 0
        self.queries_failed = 0

    @property
    def registry_reachable(self) -> bool:
        """False only when queries were made and no source ever answered."""
        return self.queries_answered > 0 or self.queries_failed == 0

    def _count(self, answered: bool) -> None:
        with self._counter_lock:
            if answered:
                self.queries_answered += 1
            else:
                self.queries_failed += 1

    def _service_index(self, source: PackageSource) -> Optional[Dict[str, Any]]:
        # Failed lookups are remembered too so a dead source is asked once per run.
        with self._index_lock:
            if source.url in self._service_indexes:
                return self._service_indexes[source.url]
        index = client.fetch_service_index(source)
        with self._index_lock:
            self._service_indexes.setdefault(source.url, index)
            return self._service_indexes[source.url]

    def _source_versions(self, source: PackageSource, package_id: str) -> Optional[List[str]]:
        if not source.is_v3:
            return client.fetch_v2_versions(source, package_id)
        index = self._service_index(source)
        if index is None:
            return None
        versions = None
        flat = client.find_resource(index, Constants.NUGET_RESOURCE_FLAT_CONTAINER)
        if flat:
            versions = client.fetch_flat_container_versions(flat, package_id, source)
            if versions:
                return versions
        registration = client.find_resource(index, Constants.NUGET_RESOURCE_REGISTRATION)
        if registration:
            reg_versions = client.fetch_registration_versions(registration, package_id, source)
            if reg_versions is not None:
                return reg_versions
        return versions

    def get_all_versions(self, package_id, include_prerelease=False, cancel_event=None):
        collected: List[str] = []
        found_in: List[str] = []
        for source in self.sources:
            check_cancelled(cancel_event)
            with Timer() as t:
                try:
                    versions = self._source_versions(source, package_id)
                except _PAYLOAD_ERRORS as exc:
                    logger.warning("Failed to get versions for package %s from repository %s: %s",
                                   package_id, source.name, exc)
                    versions = None
            self._count(versions is not None)
            if is_debug_enabled(logger):
                logger.debug("Searched repository", extra=extra_context(
                    event="registry_lookup", component="nuget_resolver", action="get_all_versions",
                    outcome="failure" if versions is None else "success", package_id=package_id,
                    source=safe_url(source.url), count=len(versions or []), duration_ms=t.duration_ms()
                ))
            if versions:
                collected.extend(versions)
                found_in.append(source.name)

        result = sort_versions_desc(collected, include_prerelease=include_prerelease)
        if result:
            logger.info("Package %s found in repositories: %s", package_id, ", ".join(found_in))
        else:
            logger.debug("Package %s not found in any configured repository", package_id)
        return result

    def get_latest_version(self, package_id, include_prerelease=False, cancel_event=None):
        versions = self.get_all_versions(package_id, include_prerelease, cancel_event)
        return versions[0] if versions else None

    def get_latest_stable_version(self, package_id, cancel_event=None):
        return self.get_latest_version(package_id, include_prerelease=False, cancel_event=cancel_event)

    def resolve_assembly_to_package(self, assembly_name, target_framework=None, cancel_event=None):
        mapping = known_mapping(assembly_name)
        if mapping is not None:
            version = self.get_latest_stable_version(mapping.package_id, cancel_event)
            if version is not None:
                return PackageResolutionResult(
                    package_id=mapping.package_id,
                    version=version,
                    additional_packages=list(mapping.companions),
                    notes=mapping.notes,
                )

        for candidate in package_id_candidates(assembly_name):
            version = self.get_latest_stable_version(candidate, cancel_event)
            if version is not None:
                return PackageResolutionResult(package_id=candidate, version=version)

        logger.warning("Could not resolve assembly %s to a NuGet package", assembly_name)
        return None

    def _source_dependency_groups(
        self, source: PackageSource, package_id: str, version: str
    ) -> Optional[List[Dict[str, Any]]]:
        if not source.is_v3:
            return client.fetch_v2_dependency_groups(source, package_id, version)
        index = self._service_index(source)
        if index is None:
            return None
        registration = client.find_resource(index, Constants.NUGET_RESOURCE_REGISTRATION)
        if not registration:
            return None
        entry = client.fetch_registration_entry(registration, package_id, version, source)
        if entry is None:
            return None
        return entry.get("dependencyGroups") or []

    def get_package_dependencies(
        self, package_id, version, target_framework=None, cancel_event=None
    ) -> FrozenSet[DependencyPair]:
        for source in self.sources:
            check_cancelled(cancel_event)
            try:
                groups = self._source_dependency_groups(source, package_id, version)
                if groups is None:
                    continue
                return client.dependency_pairs(groups, target_framework)
            except _PAYLOAD_ERRORS as exc:
                logger.warning("Failed to read dependencies of %s %s from repository %s: %s",
                               package_id, version, source.name, exc)
        logger.debug("No dependency metadata for %s %s", package_id, version)
        return frozenset()
