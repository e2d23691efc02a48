"""Package resolvers: live NuGet feeds, cached and offline variants."""

from .base import PackageResolver, ResolutionCancelled, check_cancelled
from .cached import CachedPackageResolver
from .nuget import NuGetPackageResolver
from .offline import OfflinePackageResolver

__all__ = [
    "PackageResolver",
    "ResolutionCancelled",
    "check_cancelled",
    "CachedPackageResolver",
    "NuGetPackageResolver",
    "OfflinePackageResolver",
]
