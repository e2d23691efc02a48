"""NuGet registry package.

This package provides NuGet registry access:
- sources.py: package source configuration (YAML entries and nuget.config)
- client.py: HTTP interactions with the NuGet V3 API (primary) and V2 OData feeds
"""

from .client import (  # noqa: F401
    dependency_pairs,
    fetch_flat_container_versions,
    fetch_registration_entry,
    fetch_registration_versions,
    fetch_service_index,
    fetch_v2_dependency_groups,
    fetch_v2_versions,
    find_resource,
)
from .sources import (  # noqa: F401
    PackageSource,
    default_sources,
    enabled_sources,
    load_nuget_config,
    resolve_sources,
    sources_from_config,
)

__all__ = [
    # Client
    "dependency_pairs",
    "fetch_flat_container_versions",
    "fetch_registration_entry",
    "fetch_registration_versions",
    "fetch_service_index",
    "fetch_v2_dependency_groups",
    "fetch_v2_versions",
    "find_resource",
    # Sources
    "PackageSource",
    "default_sources",
    "enabled_sources",
    "load_nuget_config",
    "resolve_sources",
    "sources_from_config",
]
