"""NuGet package source configuration.

Sources come from the YAML config ``sources`` list and/or a ``nuget.config``
file. When nothing enabled is configured the public nuget.org feed is used.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
from xml.etree import ElementTree as ET

from constants import Constants
from common.logging_utils import safe_url

logger = logging.getLogger(__name__)

_NUGET_CONFIG_NAMES = (Constants.NUGET_CONFIG_FILE, "NuGet.Config", "NuGet.config")


@dataclass
class PackageSource:
    """A named registry endpoint with optional basic-auth credentials."""

    name: str
    url: str
    enabled: bool = True
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def is_v3(self) -> bool:
        """V3 feeds are addressed through their service index document."""
        return self.url.lower().rstrip("/").endswith("index.json")

    @property
    def auth(self) -> Optional[Tuple[str, str]]:
        if self.username and self.password is not None:
            return (self.username, self.password)
        return None

    def request_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments to pass through to ``requests.get``."""
        return {"auth": self.auth} if self.auth else {}

    def __repr__(self) -> str:
        return f"PackageSource(name={self.name!r}, url={safe_url(self.url)!r}, enabled={self.enabled})"


def default_sources() -> List[PackageSource]:
    return [PackageSource(Constants.REGISTRY_NAME_NUGET, Constants.REGISTRY_URL_NUGET_V3)]


def sources_from_config(items: Optional[Iterable[Any]]) -> List[PackageSource]:
    """Build sources from the YAML ``sources`` list.

    Each item is either a URL string or a mapping with ``url`` and optional
    ``name``, ``enabled``, ``username`` and ``password`` keys.

    Raises:
        ValueError: an item has no usable URL.
    """
    result: List[PackageSource] = []
    for index, item in enumerate(items or []):
        if isinstance(item, str):
            result.append(PackageSource(name=item, url=item))
            continue
        if not isinstance(item, dict) or not item.get("url"):
            raise ValueError(f"sources[{index}] must be a URL or a mapping with a 'url' key")
        url = str(item["url"])
        result.append(
            PackageSource(
                name=str(item.get("name") or url),
                url=url,
                enabled=bool(item.get("enabled", True)),
                username=item.get("username"),
                password=item.get("password"),
            )
        )
    return result


def find_nuget_config(start_dir: Optional[str] = None) -> Optional[str]:
    """Search ``start_dir`` and its parents for a nuget.config file."""
    current = os.path.abspath(start_dir or os.getcwd())
    while True:
        for name in _NUGET_CONFIG_NAMES:
            candidate = os.path.join(current, name)
            if os.path.isfile(candidate):
                return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def _adds(section: Optional[ET.Element]) -> List[Tuple[str, str]]:
    if section is None:
        return []
    return [
        (el.get("key", ""), el.get("value", ""))
        for el in section
        if el.tag == "add" and el.get("key")
    ]


def _credential_tag(name: str) -> str:
    # nuget.config encodes spaces in element names as _x0020_
    return name.replace(" ", "_x0020_")


def load_nuget_config(path: str) -> List[PackageSource]:
    """Parse packageSources, disabledPackageSources and credentials from nuget.config.

    Only clear-text passwords are supported; encrypted ``Password`` values are
    ignored with a warning. Unreadable files yield an empty list.
    """
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as exc:
        logger.warning("Failed to read NuGet configuration %s: %s", path, exc)
        return []

    sources: List[PackageSource] = []
    package_sources = root.find("packageSources")
    if package_sources is not None:
        for el in package_sources:
            if el.tag == "clear":
                sources.clear()
            elif el.tag == "add" and el.get("key") and el.get("value"):
                sources.append(PackageSource(name=el.get("key", ""), url=el.get("value", "")))

    disabled = {key.lower() for key, value in _adds(root.find("disabledPackageSources"))
                if value.strip().lower() == "true"}

    credentials = root.find("packageSourceCredentials")
    for source in sources:
        if source.name.lower() in disabled:
            source.enabled = False
        if credentials is None:
            continue
        section = credentials.find(_credential_tag(source.name))
        if section is None:
            continue
        values = {key.lower(): value for key, value in _adds(section)}
        source.username = values.get("username")
        if "cleartextpassword" in values:
            source.password = values["cleartextpassword"]
        elif "password" in values:
            logger.warning("Encrypted password for source %s is not supported; ignoring", source.name)
        if source.username:
            logger.info("Source %s has credentials configured for user: %s", source.name, source.username)

    logger.debug("Loaded %d package sources from %s", len(sources), path)
    return sources


def enabled_sources(sources: Iterable[PackageSource]) -> List[PackageSource]:
    """Enabled sources deduplicated by URL; nuget.org when none are left."""
    result: List[PackageSource] = []
    seen = set()
    for source in sources:
        key = source.url.rstrip("/").lower()
        if not source.enabled or key in seen:
            continue
        seen.add(key)
        result.append(source)
    if not result:
        logger.warning("No NuGet sources found in configuration, adding default NuGet.org source")
        return default_sources()
    return result


def resolve_sources(
    configured: Optional[Iterable[PackageSource]] = None,
    nuget_config_path: Optional[str] = None,
    search_dir: Optional[str] = None,
) -> List[PackageSource]:
    """Combine YAML-configured sources with those from a nuget.config file.

    ``nuget_config_path`` wins over discovery from ``search_dir``; discovery only
    happens when ``search_dir`` is given.
    """
    combined = list(configured or [])
    path = nuget_config_path
    if path is None and search_dir is not None:
        path = find_nuget_config(search_dir)
    if path:
        logger.info("Loading NuGet configuration from %s", path)
        combined.extend(load_nuget_config(path))
    sources = enabled_sources(combined)
    logger.info("NuGet package resolver initialized with %d sources", len(sources))
    for source in sources:
        logger.info("  - %s: %s", source.name, safe_url(source.url))
    return sources
