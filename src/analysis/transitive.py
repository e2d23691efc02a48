"""Heuristic detection of declared packages that are really transitive dependencies."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from common.logging_utils import extra_context, is_debug_enabled
from versioning.models import ProjectPackageMap, ProjectPackageReference
from versioning.parser import is_floating, parse_version
from versioning.resolvers.base import PackageResolver, check_cancelled

logger = logging.getLogger(__name__)

# Packages a project references on purpose; never reported as transitive.
ESSENTIAL_PACKAGES = (
    # Test framework packages
    "Microsoft.NET.Test.Sdk", "xunit.runner.visualstudio", "NUnit3TestAdapter", "MSTest.TestAdapter",
    "coverlet.collector", "xunit", "NUnit", "MSTest.TestFramework", "FluentAssertions", "Moq",
    "NSubstitute", "FakeItEasy", "Shouldly",
    # Build/Development packages
    "Microsoft.SourceLink.GitHub", "Microsoft.SourceLink.AzureRepos.Git", "Microsoft.SourceLink.GitLab",
    "Microsoft.SourceLink.Bitbucket.Git",
    # Analyzer packages
    "StyleCop.Analyzers", "SonarAnalyzer.CSharp", "Microsoft.CodeAnalysis.NetAnalyzers",
    "Microsoft.CodeAnalysis.FxCopAnalyzers", "Roslynator.Analyzers",
    # Framework packages
    "Microsoft.AspNetCore.App", "Microsoft.NETCore.App", "NETStandard.Library",
    # Commonly directly used packages
    "Newtonsoft.Json", "System.Text.Json", "Microsoft.Extensions.DependencyInjection",
    "Microsoft.Extensions.Logging", "Microsoft.Extensions.Configuration", "Microsoft.Extensions.Options",
    "Microsoft.Extensions.Http", "Microsoft.Extensions.Hosting", "Microsoft.EntityFrameworkCore",
    "Microsoft.EntityFrameworkCore.SqlServer", "Microsoft.EntityFrameworkCore.Sqlite",
    "Microsoft.EntityFrameworkCore.InMemory", "Dapper", "AutoMapper", "MediatR", "FluentValidation",
    "Polly", "Serilog", "NLog", "log4net",
)

# Low-level runtime packages that are almost always pulled in by something else.
COMMON_TRANSITIVE_PACKAGES = (
    "System.Runtime", "System.Collections", "System.Linq", "System.Threading", "System.Threading.Tasks",
    "System.IO", "System.Text.Encoding", "System.Runtime.Extensions", "System.Reflection",
    "System.Diagnostics.Debug", "System.Globalization", "System.Resources.ResourceManager",
    "System.Memory", "System.Buffers", "System.Numerics.Vectors",
    "System.Runtime.CompilerServices.Unsafe", "System.Threading.Tasks.Extensions", "System.ValueTuple",
)

KNOWN_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "Microsoft.AspNetCore.App": (
        "Microsoft.Extensions.DependencyInjection", "Microsoft.Extensions.Logging",
        "Microsoft.Extensions.Configuration", "Newtonsoft.Json",
    ),
    "Microsoft.EntityFrameworkCore": (
        "Microsoft.EntityFrameworkCore.Abstractions", "Microsoft.EntityFrameworkCore.Analyzers",
        "Microsoft.Extensions.Caching.Memory", "Microsoft.Extensions.DependencyInjection",
        "Microsoft.Extensions.Logging",
    ),
    "NUnit": ("NUnit.Framework",),
    "xunit": (
        "xunit.abstractions", "xunit.analyzers", "xunit.assert", "xunit.core",
        "xunit.extensibility.core", "xunit.extensibility.execution",
    ),
}


def _lowered(ids: Iterable[str]) -> Set[str]:
    return {i.lower() for i in ids}


@dataclass
class TransitiveRules:
    """Plain-data rule tables; all ids are stored lower-cased."""

    essential: Set[str] = field(default_factory=lambda: _lowered(ESSENTIAL_PACKAGES))
    common_transitive: Set[str] = field(default_factory=lambda: _lowered(COMMON_TRANSITIVE_PACKAGES))
    known_dependencies: Dict[str, Set[str]] = field(
        default_factory=lambda: {k.lower(): _lowered(v) for k, v in KNOWN_DEPENDENCIES.items()}
    )
    low_level_prefix: str = "system."
    high_level_prefix: str = "microsoft."

    def extend(
        self,
        essential: Optional[Iterable[str]] = None,
        common_transitive: Optional[Iterable[str]] = None,
        known_dependencies: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> "TransitiveRules":
        """Return a copy with extra entries merged in."""
        merged = {k: set(v) for k, v in self.known_dependencies.items()}
        for parent, children in (known_dependencies or {}).items():
            merged.setdefault(parent.lower(), set()).update(_lowered(children))
        return TransitiveRules(
            essential=self.essential | _lowered(essential or ()),
            common_transitive=self.common_transitive | _lowered(common_transitive or ()),
            known_dependencies=merged,
            low_level_prefix=self.low_level_prefix,
            high_level_prefix=self.high_level_prefix,
        )


class TransitiveClassifier:
    """Mark project references that are likely pulled in by another declared package.

    Rule order per reference: essential allow-list (never transitive), common
    transitive list, child of another declared package, then the namespace
    heuristic. References are annotated in place; nothing is removed.
    """

    def __init__(
        self,
        rules: Optional[TransitiveRules] = None,
        resolver: Optional[PackageResolver] = None,
        use_registry_dependencies: bool = False,
    ):
        self.rules = rules or TransitiveRules()
        self.resolver = resolver
        self.use_registry_dependencies = use_registry_dependencies and resolver is not None

    def _registry_children(
        self,
        references: List[ProjectPackageReference],
        cancel_event: Optional[threading.Event],
    ) -> Dict[str, Set[str]]:
        """One level of registry-reported dependencies for each declared package."""
        children: Dict[str, Set[str]] = {}
        if not self.use_registry_dependencies:
            return children
        for ref in references:
            if not ref.version or is_floating(ref.version) or parse_version(ref.version) is None:
                continue
            check_cancelled(cancel_event)
            deps = self.resolver.get_package_dependencies(  # type: ignore[union-attr]
                ref.package_id, ref.version, ref.target_framework, cancel_event=cancel_event
            )
            children.setdefault(ref.package_id.lower(), set()).update(dep_id.lower() for dep_id, _ in deps)
        return children

    def _parent_of(self, package_id: str, declared: Set[str], registry_children: Dict[str, Set[str]]) -> Optional[str]:
        for parent in sorted(declared):
            if parent == package_id:
                continue
            if package_id in self.rules.known_dependencies.get(parent, ()):
                return parent
            if package_id in registry_children.get(parent, ()):
                return parent
        return None

    def classify(
        self,
        references: List[ProjectPackageReference],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ProjectPackageReference]:
        """Annotate ``is_transitive`` on one project's references and return them."""
        rules = self.rules
        declared = {ref.package_id.lower() for ref in references}
        has_high_level = any(pid.startswith(rules.high_level_prefix) for pid in declared)
        registry_children = self._registry_children(references, cancel_event)

        marked = 0
        for ref in references:
            pid = ref.package_id.lower()
            reason = None
            if pid in rules.essential:
                ref.is_transitive = False
                continue
            if pid in rules.common_transitive:
                reason = "common transitive dependency"
            else:
                parent = self._parent_of(pid, declared, registry_children)
                if parent is not None:
                    reason = f"dependency of {parent}"
                elif pid.startswith(rules.low_level_prefix) and has_high_level:
                    reason = "System package with Microsoft packages present"
            ref.is_transitive = reason is not None
            if reason is not None:
                marked += 1
                if is_debug_enabled(logger):
                    logger.debug("Marked %s as potentially transitive (%s)", ref.package_id, reason,
                                 extra=extra_context(event="classify", component="transitive",
                                                     package_id=ref.package_id, outcome="transitive"))

        logger.info("Detected %d potentially transitive dependencies out of %d packages", marked, len(references))
        return references

    def classify_projects(
        self,
        project_packages: ProjectPackageMap,
        cancel_event: Optional[threading.Event] = None,
    ) -> ProjectPackageMap:
        """Classify every project in the map; returns the same map."""
        for references in project_packages.values():
            check_cancelled(cancel_event)
            self.classify(references, cancel_event)
        return project_packages


def transitive_packages(project_packages: ProjectPackageMap) -> Dict[str, List[str]]:
    """Project path -> ids marked transitive, in declaration order."""
    return {
        project: [ref.package_id for ref in refs if ref.is_transitive]
        for project, refs in project_packages.items()
    }
