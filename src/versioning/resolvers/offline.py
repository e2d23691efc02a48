"""Resolver answering from a fixed table of pinned package versions."""

import logging
from typing import Dict, Optional

from ..models import PackageResolutionResult
from .base import PackageResolver, check_cancelled
from .nuget import KnownMapping, known_mapping

logger = logging.getLogger(__name__)

# Pinned versions are returned as-is, prerelease or not.
OFFLINE_PACKAGE_VERSIONS: Dict[str, str] = {
    # Test frameworks
    "MSTest.TestFramework": "3.1.1",
    "MSTest.TestAdapter": "3.1.1",
    "xunit": "2.6.6",
    "xunit.runner.visualstudio": "2.5.6",
    "NUnit": "3.13.3",
    "NUnit3TestAdapter": "4.5.0",
    # Mocking and testing tools
    "Moq": "4.20.70",
    "Castle.Core": "5.1.1",
    "FluentAssertions": "6.12.0",
    # Logging
    "log4net": "2.0.15",
    "Serilog": "3.1.1",
    "NLog": "5.2.7",
    # JSON and serialization
    "Newtonsoft.Json": "13.0.3",
    "System.Text.Json": "8.0.0",
    # Data access
    "EntityFramework": "6.4.4",
    "Microsoft.EntityFrameworkCore": "8.0.0",
    "Dapper": "2.1.24",
    "Microsoft.Data.SqlClient": "5.1.2",
    "System.Data.SqlClient": "4.8.6",
    # Web frameworks
    "Microsoft.AspNet.Mvc": "5.2.9",
    "Microsoft.AspNet.WebApi.Core": "5.2.9",
    "Microsoft.AspNet.WebApi.WebHost": "5.2.9",
    "Microsoft.AspNet.WebApi.Client": "5.2.9",
    # Dependency injection
    "Unity": "5.11.10",
    "Ninject": "3.3.6",
    "SimpleInjector": "5.4.3",
    "CommonServiceLocator": "2.0.7",
    # Other common packages
    "AutoMapper": "12.0.1",
    "FluentValidation": "11.8.1",
    "Polly": "8.2.0",
    "MediatR": "12.2.0",
    "StackExchange.Redis": "2.7.10",
    "RabbitMQ.Client": "6.8.1",
    # System packages
    "System.Configuration.ConfigurationManager": "8.0.0",
    "System.Drawing.Common": "8.0.0",
    "System.Windows.Forms": "4.0.0-preview3.19504.8",
}

# Web stack assemblies that only resolve through the offline table.
_OFFLINE_ONLY_MAPPINGS: Dict[str, KnownMapping] = {
    "system.net.http.formatting": KnownMapping("Microsoft.AspNet.WebApi.Client"),
    "system.web.mvc": KnownMapping("Microsoft.AspNet.Mvc"),
    "system.web.http": KnownMapping("Microsoft.AspNet.WebApi.Core"),
    "system.web.http.webhost": KnownMapping("Microsoft.AspNet.WebApi.WebHost"),
}


class OfflinePackageResolver(PackageResolver):
    """Registry-free resolver for air-gapped runs."""

    def __init__(self, extra_versions: Optional[Dict[str, str]] = None):
        table = dict(OFFLINE_PACKAGE_VERSIONS)
        table.update(extra_versions or {})
        self._versions = {package_id.lower(): version for package_id, version in table.items()}
        logger.info("Using offline package resolver with %d hardcoded package versions", len(self._versions))

    def get_latest_stable_version(self, package_id, cancel_event=None):
        check_cancelled(cancel_event)
        version = self._versions.get(package_id.lower())
        if version is None:
            logger.warning("Package %s not found in offline cache", package_id)
        return version

    def get_latest_version(self, package_id, include_prerelease=False, cancel_event=None):
        return self.get_latest_stable_version(package_id, cancel_event=cancel_event)

    def get_all_versions(self, package_id, include_prerelease=False, cancel_event=None):
        check_cancelled(cancel_event)
        version = self._versions.get(package_id.lower())
        return [version] if version else []

    def resolve_assembly_to_package(self, assembly_name, target_framework=None, cancel_event=None):
        check_cancelled(cancel_event)
        mapping = _OFFLINE_ONLY_MAPPINGS.get(assembly_name.lower()) or known_mapping(assembly_name)
        if mapping is not None:
            version = self._versions.get(mapping.package_id.lower())
            if version is not None:
                return PackageResolutionResult(
                    package_id=mapping.package_id,
                    version=version,
                    additional_packages=list(mapping.companions),
                    notes=mapping.notes,
                )

        version = self._versions.get(assembly_name.lower())
        if version is not None:
            return PackageResolutionResult(package_id=assembly_name, version=version)

        logger.warning("Could not resolve assembly %s to a package in offline mode", assembly_name)
        return None
