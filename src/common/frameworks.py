"""Target framework moniker (TFM) helpers.

Registries and package folders spell frameworks two ways: the short folder form
(``net461``, ``netstandard2.0``, ``net6.0``) and the long form used in package
metadata (``.NETFramework4.6.1``, ``.NETStandard2.0``). Everything here works on
the short, lower-cased form.
"""

import re
from typing import Optional, Tuple

FAMILY_NETFRAMEWORK = "netframework"
FAMILY_NETCOREAPP = "netcoreapp"
FAMILY_NETSTANDARD = "netstandard"
FAMILY_NET = "net"
FAMILY_PORTABLE = "portable"
FAMILY_UNKNOWN = "unknown"

_LONG_PREFIXES = (
    (".netstandard", "netstandard"),
    (".netcoreapp", "netcoreapp"),
    (".netportable", "portable"),
)

_NET_RE = re.compile(r"^net(\d+(?:\.\d+)*)$")
_NUMERIC_RE = re.compile(r"(\d+(?:\.\d+)*)")


def normalize_framework(name: Optional[str]) -> str:
    """Return the short lower-case TFM for ``name`` (long or short form)."""
    if not name:
        return ""
    s = name.strip().lower()
    if s.startswith(".netframework"):
        return "net" + s[len(".netframework"):].lstrip("v").replace(".", "")
    for prefix, short in _LONG_PREFIXES:
        if s.startswith(prefix):
            return short + s[len(prefix):].lstrip("v")
    return s


def _platform_stripped(tfm: str) -> str:
    # net6.0-windows -> net6.0
    return tfm.split("-", 1)[0] if not tfm.startswith(FAMILY_PORTABLE) else tfm


def framework_family(name: Optional[str]) -> str:
    """Classify a TFM as netframework, netcoreapp, netstandard, net, portable or unknown."""
    tfm = _platform_stripped(normalize_framework(name))
    if tfm.startswith("netstandard"):
        return FAMILY_NETSTANDARD
    if tfm.startswith("netcoreapp"):
        return FAMILY_NETCOREAPP
    if tfm.startswith("portable"):
        return FAMILY_PORTABLE
    m = _NET_RE.match(tfm)
    if not m:
        return FAMILY_UNKNOWN
    digits = m.group(1)
    if "." in digits:
        return FAMILY_NET
    if len(digits) == 1 and int(digits) >= 5:
        return FAMILY_NET
    return FAMILY_NETFRAMEWORK


def framework_version(name: Optional[str]) -> Tuple[int, ...]:
    """Numeric version of a TFM: ``net461`` -> (4, 6, 1), ``net6.0`` -> (6, 0)."""
    tfm = _platform_stripped(normalize_framework(name))
    family = framework_family(tfm)
    if family == FAMILY_NETFRAMEWORK:
        return tuple(int(ch) for ch in tfm[3:])
    m = _NUMERIC_RE.search(tfm)
    if not m:
        return ()
    return tuple(int(part) for part in m.group(1).split("."))
