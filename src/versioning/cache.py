"""TTL cache for package version facts shared by concurrent resolvers."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Generic, Hashable, List, Optional, Tuple, TypeVar

from constants import CacheKind, Constants
from common.logging_utils import extra_context, is_debug_enabled
from versioning.models import DependencyPair, PackageResolutionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry with an absolute expiry timestamp."""

    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired at clock time ``now``."""
        return now > self.expires_at


class _StripedMap(Generic[T]):
    """Dictionary split into buckets, each guarded by its own lock.

    Writers and the sweep only ever hold one bucket lock at a time, so a
    sweep never stalls readers of other buckets.
    """

    def __init__(self, buckets: int):
        self._buckets: List[Tuple[Dict[Hashable, CacheEntry[T]], threading.Lock]] = [
            ({}, threading.Lock()) for _ in range(max(1, buckets))
        ]

    def _bucket(self, key: Hashable) -> Tuple[Dict[Hashable, CacheEntry[T]], threading.Lock]:
        return self._buckets[hash(key) % len(self._buckets)]

    def get(self, key: Hashable) -> Optional[CacheEntry[T]]:
        data, lock = self._bucket(key)
        with lock:
            return data.get(key)

    def put(self, key: Hashable, entry: CacheEntry[T]) -> None:
        data, lock = self._bucket(key)
        with lock:
            data[key] = entry

    def clear(self) -> None:
        for data, lock in self._buckets:
            with lock:
                data.clear()

    def remove_expired(self, now: float) -> int:
        removed = 0
        for data, lock in self._buckets:
            with lock:
                expired = [k for k, entry in data.items() if entry.is_expired(now)]
                for key in expired:
                    del data[key]
            removed += len(expired)
        return removed

    def __len__(self) -> int:
        return sum(len(data) for data, _ in self._buckets)


@dataclass
class CacheStatistics:
    """Snapshot of cache counters; eventually consistent with concurrent traffic."""

    total_entries: int = 0
    version_hits: int = 0
    version_misses: int = 0
    version_list_hits: int = 0
    version_list_misses: int = 0
    resolution_hits: int = 0
    resolution_misses: int = 0
    dependency_hits: int = 0
    dependency_misses: int = 0
    uptime_seconds: float = 0.0

    @property
    def total_hits(self) -> int:
        return self.version_hits + self.version_list_hits + self.resolution_hits + self.dependency_hits

    @property
    def total_misses(self) -> int:
        return self.version_misses + self.version_list_misses + self.resolution_misses + self.dependency_misses

    @property
    def total_requests(self) -> int:
        return self.total_hits + self.total_misses

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage of all lookups."""
        if not self.total_requests:
            return 0.0
        return self.total_hits / self.total_requests * 100

    def as_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data.update(
            total_hits=self.total_hits,
            total_misses=self.total_misses,
            total_requests=self.total_requests,
            hit_rate=round(self.hit_rate, 1),
        )
        return data


class _Sweeper(threading.Thread):
    """Daemon thread removing expired cache entries on a fixed interval."""

    def __init__(self, cache: "VersionCache", interval: float):
        super().__init__(name="version-cache-sweep", daemon=True)
        self._cache = cache
        self._interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self._cache.sweep()

    def stop(self) -> None:
        self._stop_event.set()


class VersionCache:
    """In-memory cache of version facts with a fixed TTL.

    Holds four independent maps (latest version, version list, assembly
    resolution, dependency set). Entries get an absolute expiry at write time;
    ``get_*`` treats an expired entry as absent but leaves its removal to the
    periodic sweep. Safe for concurrent use without caller-side locking.
    """

    def __init__(
        self,
        ttl_minutes: int = Constants.CACHE_TTL_MINUTES,
        sweep_interval: Optional[float] = Constants.CACHE_SWEEP_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic,
        buckets: int = Constants.CACHE_BUCKETS,
    ):
        """Initialize the cache.

        Args:
            ttl_minutes: Time-to-live for every entry, in minutes.
            sweep_interval: Seconds between background sweeps; None disables the
                sweep thread (``sweep()`` can still be called directly).
            clock: Monotonic time source in seconds; injectable for tests.
            buckets: Number of lock stripes per map.
        """
        self._ttl_seconds = ttl_minutes * 60
        self._clock = clock
        self._started_at = clock()
        self._versions: _StripedMap[str] = _StripedMap(buckets)
        self._version_lists: _StripedMap[Tuple[str, ...]] = _StripedMap(buckets)
        self._resolutions: _StripedMap[PackageResolutionResult] = _StripedMap(buckets)
        self._dependencies: _StripedMap[FrozenSet[DependencyPair]] = _StripedMap(buckets)
        self._counters: Dict[CacheKind, List[int]] = {kind: [0, 0] for kind in CacheKind}
        self._counters_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._closed = False
        self._sweeper: Optional[_Sweeper] = None
        if sweep_interval:
            self._sweeper = _Sweeper(self, sweep_interval)
            self._sweeper.start()

        logger.info("Package version cache initialized with TTL: %s minutes", ttl_minutes)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    @staticmethod
    def _framework_key(target_framework: Optional[str]) -> str:
        return (target_framework or Constants.ANY_FRAMEWORK).lower()

    def _record(self, kind: CacheKind, hit: bool) -> None:
        with self._counters_lock:
            self._counters[kind][0 if hit else 1] += 1

    def _lookup(self, store: _StripedMap[T], kind: CacheKind, key: Tuple[Any, ...]) -> Optional[T]:
        entry = store.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            self._record(kind, hit=True)
            if is_debug_enabled(logger):
                logger.debug("Cache hit", extra=extra_context(
                    event="cache_hit", component="version_cache", action="get",
                    target=":".join(str(part) for part in key)
                ))
            return entry.value
        self._record(kind, hit=False)
        return None

    def _store(self, store: _StripedMap[T], key: Tuple[Any, ...], value: T) -> None:
        store.put(key, CacheEntry(value=value, expires_at=self._clock() + self._ttl_seconds))

    def get_version(self, package_id: str, target_framework: Optional[str] = None,
                    include_prerelease: bool = False) -> Optional[str]:
        key = (CacheKind.VERSION.value, package_id.lower(), self._framework_key(target_framework), include_prerelease)
        return self._lookup(self._versions, CacheKind.VERSION, key)

    def set_version(self, package_id: str, version: str, target_framework: Optional[str] = None,
                    include_prerelease: bool = False) -> None:
        key = (CacheKind.VERSION.value, package_id.lower(), self._framework_key(target_framework), include_prerelease)
        self._store(self._versions, key, version)

    def get_all_versions(self, package_id: str, include_prerelease: bool = False) -> Optional[List[str]]:
        key = (CacheKind.VERSION_LIST.value, package_id.lower(), include_prerelease)
        versions = self._lookup(self._version_lists, CacheKind.VERSION_LIST, key)
        return list(versions) if versions is not None else None

    def set_all_versions(self, package_id: str, versions: List[str], include_prerelease: bool = False) -> None:
        key = (CacheKind.VERSION_LIST.value, package_id.lower(), include_prerelease)
        self._store(self._version_lists, key, tuple(versions))

    def get_resolution(self, assembly_name: str,
                       target_framework: Optional[str] = None) -> Optional[PackageResolutionResult]:
        key = (CacheKind.RESOLUTION.value, assembly_name.lower(), self._framework_key(target_framework))
        result = self._lookup(self._resolutions, CacheKind.RESOLUTION, key)
        if result is None:
            return None
        return dataclasses.replace(result, additional_packages=list(result.additional_packages))

    def set_resolution(self, assembly_name: str, result: PackageResolutionResult,
                       target_framework: Optional[str] = None) -> None:
        key = (CacheKind.RESOLUTION.value, assembly_name.lower(), self._framework_key(target_framework))
        stored = dataclasses.replace(result, additional_packages=list(result.additional_packages))
        self._store(self._resolutions, key, stored)

    def get_dependencies(self, package_id: str, version: str,
                         target_framework: Optional[str] = None) -> Optional[FrozenSet[DependencyPair]]:
        key = (CacheKind.DEPENDENCY.value, package_id.lower(), version.lower(), self._framework_key(target_framework))
        return self._lookup(self._dependencies, CacheKind.DEPENDENCY, key)

    def set_dependencies(self, package_id: str, version: str, dependencies: FrozenSet[DependencyPair],
                         target_framework: Optional[str] = None) -> None:
        key = (CacheKind.DEPENDENCY.value, package_id.lower(), version.lower(), self._framework_key(target_framework))
        self._store(self._dependencies, key, frozenset(dependencies))

    def _maps(self) -> Tuple[_StripedMap[Any], ...]:
        return (self._versions, self._version_lists, self._resolutions, self._dependencies)

    def clear(self) -> None:
        """Drop every entry; cumulative statistics are kept."""
        for store in self._maps():
            store.clear()
        logger.info("Package version cache cleared")

    def sweep(self) -> int:
        """Remove expired entries from every map and return how many went."""
        try:
            now = self._clock()
            removed = sum(store.remove_expired(now) for store in self._maps())
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Error during cache cleanup")
            return 0
        if removed:
            logger.debug("Cleaned up %d expired cache entries", removed)
        return removed

    def stats(self) -> CacheStatistics:
        """Return a statistics snapshot."""
        with self._counters_lock:
            counters = {kind: tuple(values) for kind, values in self._counters.items()}
        return CacheStatistics(
            total_entries=sum(len(store) for store in self._maps()),
            version_hits=counters[CacheKind.VERSION][0],
            version_misses=counters[CacheKind.VERSION][1],
            version_list_hits=counters[CacheKind.VERSION_LIST][0],
            version_list_misses=counters[CacheKind.VERSION_LIST][1],
            resolution_hits=counters[CacheKind.RESOLUTION][0],
            resolution_misses=counters[CacheKind.RESOLUTION][1],
            dependency_hits=counters[CacheKind.DEPENDENCY][0],
            dependency_misses=counters[CacheKind.DEPENDENCY][1],
            uptime_seconds=self._clock() - self._started_at,
        )

    def shutdown(self) -> None:
        """Stop the sweep thread and log final statistics. Safe to call twice."""
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
        if self._sweeper is not None:
            self._sweeper.stop()
            if self._sweeper is not threading.current_thread():
                self._sweeper.join(timeout=5.0)
        stats = self.stats()
        logger.info(
            "Package cache shutting down. Statistics - Total entries: %d, Hit rate: %.1f%%, "
            "Version hits: %d, Version list hits: %d, Resolution hits: %d, Dependency hits: %d",
            stats.total_entries, stats.hit_rate, stats.version_hits, stats.version_list_hits,
            stats.resolution_hits, stats.dependency_hits,
        )

    def __enter__(self) -> "VersionCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
