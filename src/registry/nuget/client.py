"""NuGet registry client: version lists and dependency metadata via V3 and V2 feeds.

V3 sources are discovered through their service index; versions come from the
flat container (``PackageBaseAddress``) with registration pages as fallback.
Non-V3 URLs are treated as V2 OData feeds.

Fetch helpers return None when the source could not be queried (transport error,
5xx, malformed payload) and an empty list when the source answered but does not
know the package.
"""
from __future__ import annotations

import logging
import urllib.parse
from typing import Any, Dict, FrozenSet, List, Optional
from xml.etree import ElementTree as ET

from constants import Constants
from common.frameworks import framework_family, framework_version, normalize_framework
from common.http_client import get_json, robust_get
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from versioning.models import DependencyPair
from versioning.parser import min_version_of_range, parse_version

from .sources import PackageSource

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}
HEADERS_ATOM = {"Accept": "application/atom+xml,application/xml"}

_ATOM = "{http://www.w3.org/2005/Atom}"
_DATA = "{http://schemas.microsoft.com/ado/2007/08/dataservices}"
_META = "{http://schemas.microsoft.com/ado/2007/08/dataservices/metadata}"

# Upper bound on followed V2 "next" links per query.
_V2_MAX_PAGES = 50


def _log_failure(action: str, url: str, status: int) -> None:
    logger.warning(
        "NuGet request failed",
        extra=extra_context(
            event="http_response",
            component="nuget_client",
            action=action,
            outcome="failure",
            status_code=status,
            target=safe_url(url),
        ),
    )


def fetch_service_index(source: PackageSource) -> Optional[Dict[str, Any]]:
    """Fetch and parse a V3 service index.

    Returns:
        Service index dictionary or None if unavailable
    """
    status, _, data = get_json(source.url, headers=HEADERS_JSON, **source.request_kwargs())
    if status != 200 or not isinstance(data, dict):
        _log_failure("service_index", source.url, status)
        return None
    return data


def find_resource(service_index: Dict[str, Any], resource_type: str) -> Optional[str]:
    """Return the ``@id`` of a resource, preferring an exact ``@type`` match.

    Falls back to any resource whose type shares the same base name
    (``RegistrationsBaseUrl/3.4.0`` for ``RegistrationsBaseUrl/3.6.0``).
    """
    resources = service_index.get("resources", []) or []
    base_name = resource_type.split("/", 1)[0]
    fallback = None
    for resource in resources:
        rtype = str(resource.get("@type", ""))
        rid = resource.get("@id")
        if not rid:
            continue
        if rtype == resource_type:
            return rid
        if fallback is None and rtype.split("/", 1)[0] == base_name:
            fallback = rid
    return fallback


def _package_url(base_url: str, package_id: str, leaf: str) -> str:
    if not base_url.endswith("/"):
        base_url += "/"
    encoded_id = urllib.parse.quote(package_id.lower(), safe="")
    return f"{base_url}{encoded_id}/{leaf}"


def fetch_flat_container_versions(
    base_url: str, package_id: str, source: PackageSource
) -> Optional[List[str]]:
    """Fetch the version list from a ``PackageBaseAddress`` flat container."""
    url = _package_url(base_url, package_id, "index.json")
    status, _, data = get_json(url, headers=HEADERS_JSON, **source.request_kwargs())
    if status == 404:
        return []
    if status != 200 or not isinstance(data, dict):
        _log_failure("flat_container", url, status)
        return None
    return [str(v) for v in data.get("versions", []) or [] if v]


def _registration_leaves(
    base_url: str, package_id: str, source: PackageSource
) -> Optional[List[Dict[str, Any]]]:
    """Collect catalog entries from a registration index, following non-inlined pages."""
    url = _package_url(base_url, package_id, "index.json")
    status, _, data = get_json(url, headers=HEADERS_JSON, **source.request_kwargs())
    if status == 404:
        return []
    if status != 200 or not isinstance(data, dict):
        _log_failure("registration", url, status)
        return None

    entries: List[Dict[str, Any]] = []
    for page in data.get("items", []) or []:
        leaves = page.get("items")
        if leaves is None and page.get("@id"):
            page_status, _, page_data = get_json(page["@id"], headers=HEADERS_JSON, **source.request_kwargs())
            if page_status != 200 or not isinstance(page_data, dict):
                _log_failure("registration_page", page["@id"], page_status)
                continue
            leaves = page_data.get("items", [])
        for leaf in leaves or []:
            entry = leaf.get("catalogEntry") or {}
            if entry.get("version"):
                entries.append(entry)
    return entries


def fetch_registration_versions(
    base_url: str, package_id: str, source: PackageSource
) -> Optional[List[str]]:
    """Fetch listed versions from registration pages."""
    entries = _registration_leaves(base_url, package_id, source)
    if entries is None:
        return None
    return [str(e["version"]) for e in entries if e.get("listed", True) is not False]


def fetch_registration_entry(
    base_url: str, package_id: str, version: str, source: PackageSource
) -> Optional[Dict[str, Any]]:
    """Return the catalog entry for one package version, or None."""
    wanted = parse_version(version)
    entries = _registration_leaves(base_url, package_id, source) or []
    for entry in entries:
        candidate = parse_version(str(entry.get("version")))
        if wanted is not None and candidate == wanted:
            return entry
        if wanted is None and str(entry.get("version")).lower() == version.lower():
            return entry
    return None


def _v2_entries(url: str, source: PackageSource) -> Optional[List[ET.Element]]:
    """Fetch an OData Atom feed, following ``next`` links."""
    entries: List[ET.Element] = []
    next_url: Optional[str] = url
    pages = 0
    while next_url and pages < _V2_MAX_PAGES:
        pages += 1
        status, _, text = robust_get(next_url, headers=HEADERS_ATOM, **source.request_kwargs())
        if status == 404:
            return entries
        if status != 200:
            _log_failure("v2_feed", next_url, status)
            return None if not entries else entries
        try:
            root = ET.fromstring(text)
        except ET.ParseError:
            if is_debug_enabled(logger):
                logger.debug("Malformed V2 feed", extra=extra_context(
                    event="parse", component="nuget_client", action="v2_feed",
                    outcome="xml_error", target=safe_url(next_url)
                ))
            return None
        if root.tag == f"{_ATOM}entry":
            entries.append(root)
            break
        entries.extend(root.findall(f"{_ATOM}entry"))
        next_url = None
        for link in root.findall(f"{_ATOM}link"):
            if link.get("rel") == "next" and link.get("href"):
                next_url = link.get("href")
    return entries


def _v2_property(entry: ET.Element, name: str) -> Optional[str]:
    props = entry.find(f"{_META}properties")
    if props is None:
        props = entry.find(f".//{_META}properties")
    if props is None:
        return None
    el = props.find(f"{_DATA}{name}")
    return el.text if el is not None and el.text else None


def fetch_v2_versions(source: PackageSource, package_id: str) -> Optional[List[str]]:
    """Fetch every version of a package from a V2 OData feed."""
    base = source.url.rstrip("/")
    quoted = urllib.parse.quote(f"'{package_id}'", safe="'")
    entries = _v2_entries(f"{base}/FindPackagesById()?id={quoted}", source)
    if entries is None:
        return None
    versions = []
    for entry in entries:
        version = _v2_property(entry, "Version")
        if version:
            versions.append(version)
    return versions


def parse_v2_dependencies(text: Optional[str]) -> List[Dict[str, Any]]:
    """Convert the V2 ``Dependencies`` string into V3-shaped dependency groups.

    The V2 format is ``id:range:framework`` items separated by ``|``; an item
    with an empty id declares an empty group for its framework.
    """
    groups: Dict[str, List[Dict[str, str]]] = {}
    for item in (text or "").split("|"):
        if not item.strip():
            continue
        parts = item.split(":")
        dep_id = parts[0].strip()
        dep_range = parts[1].strip() if len(parts) > 1 else ""
        framework = parts[2].strip() if len(parts) > 2 else ""
        group = groups.setdefault(framework, [])
        if dep_id:
            group.append({"id": dep_id, "range": dep_range})
    return [
        {"targetFramework": framework, "dependencies": deps} if framework else {"dependencies": deps}
        for framework, deps in groups.items()
    ]


def fetch_v2_dependency_groups(
    source: PackageSource, package_id: str, version: str
) -> Optional[List[Dict[str, Any]]]:
    """Fetch dependency groups for one package version from a V2 feed."""
    base = source.url.rstrip("/")
    key = f"Id='{urllib.parse.quote(package_id)}',Version='{urllib.parse.quote(version)}'"
    entries = _v2_entries(f"{base}/Packages({key})", source)
    if not entries:
        return None
    return parse_v2_dependencies(_v2_property(entries[0], "Dependencies"))


def select_dependency_group(
    groups: List[Dict[str, Any]], target_framework: Optional[str]
) -> List[Dict[str, Any]]:
    """Pick the dependency list matching ``target_framework``.

    Order: exact framework, then the highest group of the same family not newer
    than the target, then the framework-less group. Without a target every
    group's dependencies are returned.
    """
    if not groups:
        return []
    if not target_framework:
        merged: List[Dict[str, Any]] = []
        for group in groups:
            merged.extend(group.get("dependencies", []) or [])
        return merged

    target = normalize_framework(target_framework)
    family = framework_family(target)
    target_version = framework_version(target)
    generic = None
    same_family = []
    for group in groups:
        tfm = normalize_framework(group.get("targetFramework"))
        if not tfm:
            generic = group
        elif tfm == target:
            return group.get("dependencies", []) or []
        elif framework_family(tfm) == family and framework_version(tfm) <= target_version:
            same_family.append((framework_version(tfm), group))
    if same_family:
        same_family.sort(key=lambda pair: pair[0], reverse=True)
        return same_family[0][1].get("dependencies", []) or []
    if generic is not None:
        return generic.get("dependencies", []) or []
    return []


def dependency_pairs(
    groups: List[Dict[str, Any]], target_framework: Optional[str]
) -> FrozenSet[DependencyPair]:
    """Reduce dependency groups to ``(id, minimum version)`` pairs."""
    pairs = set()
    for dep in select_dependency_group(groups, target_framework):
        dep_id = dep.get("id")
        if not dep_id:
            continue
        pairs.add((str(dep_id), min_version_of_range(dep.get("range")) or Constants.WILDCARD_VERSION))
    return frozenset(pairs)
