"""NuGet version parsing, ordering and floating-spec helpers."""

import functools
import logging
import re
from typing import Iterable, List, Optional, Tuple

import semantic_version

from constants import Constants

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(
    r"^\s*[vV]?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?"
    r"(?:-([0-9A-Za-z\-\.]+))?(?:\+([0-9A-Za-z\-\.]+))?\s*$"
)


@functools.total_ordering
class NuGetVersion:
    """A parsed NuGet version: up to four numeric parts plus optional labels.

    Ordering compares the release parts numerically (missing parts are zero),
    then prerelease labels by semantic-version precedence, case-insensitively.
    Build metadata is ignored for ordering and equality.
    """

    __slots__ = ("release", "prerelease", "metadata", "original")

    def __init__(self, release: Tuple[int, int, int, int], prerelease: Tuple[str, ...] = (),
                 metadata: Optional[str] = None, original: Optional[str] = None):
        self.release = release
        self.prerelease = prerelease
        self.metadata = metadata
        self.original = original

    @classmethod
    def parse(cls, text: str) -> "NuGetVersion":
        """Parse a version string, raising ValueError when it is not a version."""
        if not isinstance(text, str):
            raise ValueError(f"Invalid version: {text!r}")
        m = _VERSION_RE.match(text)
        if not m:
            raise ValueError(f"Invalid version: {text!r}")
        release = tuple(int(part) if part else 0 for part in m.group(1, 2, 3, 4))
        labels: Tuple[str, ...] = ()
        if m.group(5):
            labels = tuple(m.group(5).split("."))
            # Validate through semantic_version so precedence rules hold later.
            semantic_version.Version(major=0, minor=0, patch=0, prerelease=labels)
        return cls(release, labels, m.group(6), text.strip())  # type: ignore[arg-type]

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def normalized(self) -> str:
        """NuGet normalized form: three parts, a fourth only when non-zero."""
        parts = self.release if self.release[3] else self.release[:3]
        text = ".".join(str(p) for p in parts)
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        return text

    def _precedence(self) -> semantic_version.Version:
        labels = tuple(label.lower() for label in self.prerelease)
        return semantic_version.Version(major=0, minor=0, patch=0, prerelease=labels)

    def _key(self):
        return (self.release, self._precedence())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "NuGetVersion") -> bool:
        if not isinstance(other, NuGetVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash((self.release, tuple(label.lower() for label in self.prerelease)))

    def __str__(self) -> str:
        return self.original or self.normalized

    def __repr__(self) -> str:
        return f"NuGetVersion({self.normalized!r})"


def parse_version(text: Optional[str]) -> Optional[NuGetVersion]:
    """Safely parse a version string, returning None when it is not a version."""
    if text is None:
        return None
    try:
        return NuGetVersion.parse(text)
    except ValueError:
        return None


def is_wildcard(version: Optional[str]) -> bool:
    """True for a missing version or the unconstrained ``*``."""
    return version is None or version.strip() in ("", Constants.WILDCARD_VERSION)


def is_floating(version: Optional[str]) -> bool:
    """True for ``*`` and floating specs such as ``1.*`` or ``2.1.*``."""
    return version is not None and "*" in version


def is_prerelease(version: str) -> bool:
    """True when the version carries a prerelease label (``1.0.0-beta``)."""
    parsed = parse_version(version)
    if parsed is not None:
        return parsed.is_prerelease
    return "-" in version.split("+", 1)[0]


def sort_versions_desc(versions: Iterable[str], include_prerelease: bool = True) -> List[str]:
    """Parse, dedupe and sort version strings, highest first.

    Unparseable strings are logged and dropped. Returned strings are in NuGet
    normalized form so equal versions from different sources collapse.
    """
    unique = set()
    for raw in versions:
        parsed = parse_version(raw)
        if parsed is None:
            logger.debug("Ignoring unparseable version %r", raw)
            continue
        if parsed.is_prerelease and not include_prerelease:
            continue
        unique.add(parsed)
    return [v.normalized for v in sorted(unique, reverse=True)]


def min_version_of_range(spec: Optional[str]) -> Optional[str]:
    """Return the lower bound of a NuGet range (``[1.0, 2.0)``) or plain version."""
    if not spec:
        return None
    s = spec.strip()
    if s[:1] in ("[", "("):
        lower = s[1:].split(",", 1)[0].strip().rstrip("])")
        parsed = parse_version(lower)
        return parsed.normalized if parsed else None
    parsed = parse_version(s)
    return parsed.normalized if parsed else None


def _normalize_floating(spec_str: str) -> str:
    """Normalize floating syntax into a SimpleSpec-compatible comparator pair."""
    s = spec_str.strip().lower().replace("*", "x")

    m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

    m = re.match(r'^\s*(\d+)\.x\s*$', s)
    if m:
        major = int(m.group(1))
        return f">={major}.0.0,<{major + 1}.0.0"

    if s == "x":
        return ">=0.0.0"
    return spec_str


def matches_floating(spec: str, version: str) -> bool:
    """Check whether ``version`` satisfies a floating spec such as ``1.*``."""
    parsed = parse_version(version)
    if parsed is None:
        return False
    try:
        simple = semantic_version.SimpleSpec(_normalize_floating(spec))
    except ValueError:
        return False
    major, minor, patch, _ = parsed.release
    return semantic_version.Version(major=major, minor=minor, patch=patch) in simple
