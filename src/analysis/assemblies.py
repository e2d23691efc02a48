"""Which assemblies (modules) a package provides for a target framework."""
from __future__ import annotations

import logging
import os
import threading
from typing import Dict, Iterable, List, Optional, Set, Tuple

from constants import Constants
from common.frameworks import (
    FAMILY_NET,
    FAMILY_NETCOREAPP,
    FAMILY_NETFRAMEWORK,
    FAMILY_NETSTANDARD,
    framework_family,
    framework_version,
    normalize_framework,
)
from versioning.models import PackageIdentity, ProjectPackageReference
from versioning.resolvers.base import PackageResolver, check_cancelled

logger = logging.getLogger(__name__)

_ANY = "*"

# package id -> framework pattern -> assemblies. Patterns are "*", a family
# name ("netframework", "netcoreapp", "net") or an exact TFM.
FRAMEWORK_ASSEMBLIES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "Newtonsoft.Json": {_ANY: ("Newtonsoft.Json",)},
    "EntityFramework": {_ANY: ("EntityFramework", "EntityFramework.SqlServer", "EntityFramework.SqlServerCompact")},
    "Microsoft.EntityFrameworkCore": {_ANY: (
        "Microsoft.EntityFrameworkCore", "Microsoft.EntityFrameworkCore.Abstractions",
        "Microsoft.EntityFrameworkCore.Relational",
    )},
    "Microsoft.EntityFrameworkCore.SqlServer": {_ANY: ("Microsoft.EntityFrameworkCore.SqlServer",)},
    "Microsoft.EntityFrameworkCore.Design": {_ANY: ("Microsoft.EntityFrameworkCore.Design",)},
    "NUnit": {_ANY: ("nunit.framework",)},
    "xunit": {
        _ANY: ("xunit.core", "xunit.assert", "xunit.abstractions"),
        "netframework": ("xunit.execution.desktop",),
        "netcoreapp": ("xunit.execution.dotnet",),
        "net": ("xunit.execution.dotnet",),
    },
    "xunit.core": {_ANY: ("xunit.core", "xunit.abstractions")},
    "xunit.assert": {_ANY: ("xunit.assert",)},
    "MSTest.TestFramework": {
        _ANY: (
            "Microsoft.VisualStudio.TestPlatform.TestFramework",
            "Microsoft.VisualStudio.TestPlatform.TestFramework.Extensions",
        ),
        "netframework": ("Microsoft.VisualStudio.QualityTools.UnitTestFramework",),
    },
    "MSTest.TestAdapter": {_ANY: (
        "Microsoft.VisualStudio.TestPlatform.MSTest.TestAdapter",
        "Microsoft.VisualStudio.TestPlatform.MSTestAdapter.PlatformServices",
    )},
    "Moq": {_ANY: ("Moq", "Castle.Core", "System.Threading.Tasks.Extensions")},
    "Castle.Core": {_ANY: ("Castle.Core",)},
    "AutoMapper": {_ANY: ("AutoMapper",)},
    "log4net": {_ANY: ("log4net",)},
    "NLog": {_ANY: ("NLog",)},
    "Serilog": {_ANY: ("Serilog",)},
    "Microsoft.AspNet.WebApi.Core": {"netframework": (
        "System.Web.Http", "System.Net.Http.Formatting", "System.Web.Http.WebHost",
    )},
    "Microsoft.AspNet.WebApi.Client": {_ANY: ("System.Net.Http.Formatting",)},
    "Microsoft.AspNet.WebApi.WebHost": {"netframework": ("System.Web.Http.WebHost",)},
    "Microsoft.AspNet.Mvc": {"netframework": (
        "System.Web.Mvc", "System.Web.Helpers", "System.Web.Razor", "System.Web.WebPages",
        "System.Web.WebPages.Deployment", "System.Web.WebPages.Razor",
    )},
    "Microsoft.AspNet.Razor": {"netframework": ("System.Web.Razor",)},
    "Microsoft.AspNet.WebPages": {"netframework": (
        "System.Web.WebPages", "System.Web.WebPages.Deployment", "System.Web.WebPages.Razor", "System.Web.Helpers",
    )},
    "System.Data.SqlClient": {_ANY: ("System.Data.SqlClient",)},
    "Microsoft.Data.SqlClient": {_ANY: ("Microsoft.Data.SqlClient",)},
    "System.Configuration.ConfigurationManager": {_ANY: ("System.Configuration.ConfigurationManager",)},
    "System.Drawing.Common": {
        _ANY: ("System.Drawing.Common",),
        "netframework": ("System.Drawing",),
    },
    "System.Runtime.Caching": {_ANY: ("System.Runtime.Caching",)},
    "System.Security.Cryptography.Xml": {_ANY: ("System.Security.Cryptography.Xml",)},
    "System.Security.Permissions": {_ANY: ("System.Security.Permissions",)},
    "System.Windows.Extensions": {_ANY: ("System.Windows.Extensions",)},
    "Microsoft.Windows.Compatibility": {"net": (
        "System.ServiceModel", "System.ServiceModel.Duplex", "System.ServiceModel.Http",
        "System.ServiceModel.NetTcp", "System.ServiceModel.Primitives", "System.ServiceModel.Security",
    )},
    "RabbitMQ.Client": {_ANY: ("RabbitMQ.Client",)},
    "StackExchange.Redis": {_ANY: ("StackExchange.Redis", "StackExchange.Redis.StrongName", "Pipelines.Sockets.Unofficial")},
    "protobuf-net": {_ANY: ("protobuf-net", "protobuf-net.Core")},
    "Grpc.Core": {_ANY: ("Grpc.Core", "Grpc.Core.Api")},
    "Azure.Storage.Blobs": {_ANY: ("Azure.Storage.Blobs", "Azure.Storage.Common", "Azure.Core")},
    "Azure.Core": {_ANY: ("Azure.Core",)},
    "Dapper": {_ANY: ("Dapper",)},
    "FluentValidation": {_ANY: ("FluentValidation",)},
    "MediatR": {_ANY: ("MediatR", "MediatR.Contracts")},
    "Polly": {_ANY: ("Polly",)},
    "Unity": {_ANY: ("Unity", "Unity.Abstractions", "Unity.Container")},
    "Unity.Container": {_ANY: ("Unity.Container", "Unity.Abstractions")},
    "Ninject": {_ANY: ("Ninject",)},
    "SimpleInjector": {_ANY: ("SimpleInjector",)},
    "Autofac": {_ANY: ("Autofac",)},
    "CommonServiceLocator": {_ANY: ("CommonServiceLocator", "Microsoft.Practices.ServiceLocation")},
    "Microsoft.Extensions.DependencyInjection": {_ANY: (
        "Microsoft.Extensions.DependencyInjection", "Microsoft.Extensions.DependencyInjection.Abstractions",
    )},
    "Microsoft.Extensions.Logging": {_ANY: ("Microsoft.Extensions.Logging", "Microsoft.Extensions.Logging.Abstractions")},
    "Microsoft.Extensions.Configuration": {_ANY: (
        "Microsoft.Extensions.Configuration", "Microsoft.Extensions.Configuration.Abstractions",
    )},
    "System.IdentityModel.Tokens.Jwt": {_ANY: ("System.IdentityModel.Tokens.Jwt",)},
    "Microsoft.IdentityModel.Tokens": {_ANY: (
        "Microsoft.IdentityModel.Tokens", "Microsoft.IdentityModel.Logging", "Microsoft.IdentityModel.JsonWebTokens",
    )},
}

_TABLE_BY_ID = {package_id.lower(): patterns for package_id, patterns in FRAMEWORK_ASSEMBLIES.items()}


def is_framework_compatible(target_framework: Optional[str], pattern: Optional[str]) -> bool:
    """Check a target framework against a table pattern."""
    if not target_framework or not pattern:
        return False
    if pattern == _ANY:
        return True
    target = target_framework.lower()
    lowered = pattern.lower()
    if target == lowered:
        return True
    if lowered == "netframework":
        return target.startswith("net4") or target in ("net35", "net20")
    if lowered == "netcoreapp":
        return target.startswith("netcoreapp")
    if lowered == "net":
        return (target.startswith("net") and not target.startswith("net4")
                and not target.startswith("netcoreapp") and not target.startswith("netframework"))
    return False


# Folder families a target can consume, best first. True bounds the folder
# version by the target version within that tier.
_COMPATIBLE_TIERS = {
    FAMILY_NET: ((FAMILY_NET, True), (FAMILY_NETCOREAPP, False), (FAMILY_NETSTANDARD, False)),
    FAMILY_NETCOREAPP: ((FAMILY_NETCOREAPP, True), (FAMILY_NETSTANDARD, False)),
    FAMILY_NETFRAMEWORK: ((FAMILY_NETFRAMEWORK, True), (FAMILY_NETSTANDARD, False)),
    FAMILY_NETSTANDARD: ((FAMILY_NETSTANDARD, True),),
}
_DEFAULT_TIERS = ((FAMILY_NETSTANDARD, False),)


def select_lib_folder(folders: Iterable[str], target_framework: Optional[str]) -> Optional[str]:
    """Choose the best ``lib/<tfm>`` folder name for ``target_framework``.

    Preference: exact TFM, then each compatible family in turn at its highest
    usable version (a ``net6.0`` target takes ``net5.0``, then ``netcoreapp3.1``,
    then ``netstandard2.0``), then portable, then the first folder in sorted
    order. A .NET Framework folder is never chosen for a modern .NET target
    while a compatible folder exists.
    """
    names = sorted(folders, key=str.lower)
    if not names:
        return None
    target = normalize_framework(target_framework)
    tiers = _DEFAULT_TIERS
    target_version: Tuple[int, ...] = ()
    if target:
        for name in names:
            if normalize_framework(name) == target:
                return name
        tiers = _COMPATIBLE_TIERS.get(framework_family(target), _DEFAULT_TIERS)
        target_version = framework_version(target)
    for family, bounded in tiers:
        candidates = [
            (framework_version(name), name) for name in names
            if framework_family(name) == family and (not bounded or framework_version(name) <= target_version)
        ]
        if candidates:
            return max(candidates)[1]
    for name in names:
        if name.lower().startswith("portable"):
            return name
    return names[0]


def _child_dir(parent: str, name: str) -> Optional[str]:
    """Case-insensitive lookup of a directory entry."""
    direct = os.path.join(parent, name)
    if os.path.isdir(direct):
        return direct
    try:
        entries = os.listdir(parent)
    except OSError:
        return None
    wanted = name.lower()
    for entry in entries:
        path = os.path.join(parent, entry)
        if entry.lower() == wanted and os.path.isdir(path):
            return path
    return None


def default_global_packages_path() -> str:
    return os.environ.get(Constants.NUGET_PACKAGES_ENV) or os.path.join(os.path.expanduser("~"), ".nuget", "packages")


class AssemblyProviderResolver:
    """Answer which assemblies a package provides.

    Sources, unioned in order: the static framework table, the package's
    ``lib`` folder in a local packages directory, and finally a reverse lookup
    through a resolver.
    """

    def __init__(
        self,
        resolver: Optional[PackageResolver] = None,
        packages_path: Optional[str] = None,
        global_packages_path: Optional[str] = None,
    ):
        self.resolver = resolver
        self.packages_path = packages_path
        self.global_packages_path = global_packages_path if global_packages_path is not None \
            else default_global_packages_path()

    def _table_assemblies(self, package_id: str, target_framework: Optional[str]) -> Set[str]:
        found: Set[str] = set()
        for pattern, names in _TABLE_BY_ID.get(package_id.lower(), {}).items():
            if pattern == _ANY or is_framework_compatible(target_framework, pattern):
                found.update(names)
        return found

    def _lib_dirs(self, package_id: str, version: str) -> List[str]:
        dirs = []
        if self.packages_path and os.path.isdir(self.packages_path):
            package_dir = _child_dir(self.packages_path, f"{package_id}.{version}")
            if package_dir:
                dirs.append(os.path.join(package_dir, "lib"))
        if self.global_packages_path and os.path.isdir(self.global_packages_path):
            id_dir = _child_dir(self.global_packages_path, package_id)
            version_dir = _child_dir(id_dir, version) if id_dir else None
            if version_dir:
                dirs.append(os.path.join(version_dir, "lib"))
        return [d for d in dirs if os.path.isdir(d)]

    def _folder_assemblies(self, package_id: str, version: str, target_framework: Optional[str]) -> Set[str]:
        found: Set[str] = set()
        for lib_dir in self._lib_dirs(package_id, version):
            try:
                entries = os.listdir(lib_dir)
            except OSError as exc:
                logger.warning("Error reading assemblies from package folder %s: %s", lib_dir, exc)
                continue
            folders = [e for e in entries if os.path.isdir(os.path.join(lib_dir, e))]
            best = select_lib_folder(folders, target_framework)
            search_dir = os.path.join(lib_dir, best) if best else lib_dir
            for entry in sorted(os.listdir(search_dir)):
                if entry.lower().endswith(".dll"):
                    found.add(entry[:-4])
            logger.debug("Found %d assemblies for package %s from local folder %s", len(found), package_id, search_dir)
        return found

    def assemblies_for(
        self,
        package_id: str,
        version: Optional[str],
        target_framework: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Set[str]:
        """Assembly names provided by one package version."""
        assemblies = self._table_assemblies(package_id, target_framework)
        if version:
            assemblies |= self._folder_assemblies(package_id, version, target_framework)
        if not assemblies and self.resolver is not None:
            check_cancelled(cancel_event)
            result = self.resolver.resolve_assembly_to_package(package_id, target_framework, cancel_event=cancel_event)
            if result is not None and result.package_id.lower() == package_id.lower():
                assemblies.add(package_id)
        return assemblies

    def assemblies_for_packages(
        self,
        references: Iterable[ProjectPackageReference],
        target_framework: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Set[str]:
        """Union of assemblies provided by several packages.

        Each (id, version) is looked up once per call. A reference's own target
        framework wins over ``target_framework``.
        """
        memo: Dict[Tuple[PackageIdentity, str], Set[str]] = {}
        result: Set[str] = set()
        for ref in references:
            tfm = ref.target_framework or target_framework
            key = (PackageIdentity(ref.package_id, ref.version or ""), (tfm or "").lower())
            if key not in memo:
                memo[key] = self.assemblies_for(ref.package_id, ref.version, tfm, cancel_event)
            result |= memo[key]
        return result

    @staticmethod
    def is_assembly_provided(assembly_name: str, provided: Iterable[str]) -> bool:
        """Match an assembly name (optionally ``Name, Version=...``) case-insensitively."""
        lowered = {name.lower() for name in provided}
        if assembly_name.lower() in lowered:
            return True
        simple = assembly_name.split(",", 1)[0].strip().lower()
        return simple in lowered
