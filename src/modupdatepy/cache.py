"""
cache.py

In-memory result cache for source lookups.

Entries are keyed by (source, identifier), never by mod ID, so two mods sharing an
update key share one entry and one network call. Successes and failures expire on
separate clocks:

    success TTL (default 60 min)  a confirmed version is cheap to trust for a while
    error TTL   (default 5 min)   a failing site is retried reasonably soon

Concurrent misses on the same key collapse into one fetch: the first caller registers
a `concurrent.futures.Future` in the in-flight table and runs the fetch; everyone else
arriving before it finishes waits on that same future and gets the same outcome.
Only the two small dicts are guarded by the lock, so unrelated keys never serialize.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from datetime import datetime, timedelta
from typing import *

from .exceptions import FetchError, FetchFailureKind
from .types_models import CacheEntry, FetchFailure, FetchSuccess, Outcome, VersionInfo
from .update_keys import ModSource
from .utils import utc_now

logger = logging.getLogger(__name__)

__all__ = ["ResultCache", "DEFAULT_SUCCESS_TTL", "DEFAULT_ERROR_TTL"]

DEFAULT_SUCCESS_TTL = timedelta(minutes=60)
DEFAULT_ERROR_TTL = timedelta(minutes=5)

CacheKey = Tuple[ModSource, str]
FetchFn = Callable[[str], VersionInfo]


class ResultCache:
    """
    Thread-safe TTL cache with in-flight request collapsing.

    Parameters
    ----------
    success_ttl : timedelta
        How long a successful lookup is served from cache.
    error_ttl : timedelta
        How long a failed lookup (not found, rate limited, unavailable, malformed) is served.
    clock : Callable[[], datetime], optional
        Returns the current aware datetime; injectable for tests.
    max_workers : int
        Worker threads used only when a caller passes `timeout` to `get_or_fetch`.
    """

    def __init__(self,
                 success_ttl: timedelta = DEFAULT_SUCCESS_TTL,
                 error_ttl: timedelta = DEFAULT_ERROR_TTL,
                 *,
                 clock: Optional[Callable[[], datetime]] = None,
                 max_workers: int = 4):
        if success_ttl <= timedelta(0) or error_ttl <= timedelta(0):
            raise ValueError("cache TTLs must be positive")
        self.success_ttl = success_ttl
        self.error_ttl = error_ttl
        self._clock = clock or utc_now
        self._max_workers = max(1, int(max_workers))

        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._in_flight: Dict[CacheKey, "Future[Outcome]"] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

        self._hits = 0
        self._misses = 0
        self._collapsed = 0

    def get_or_fetch(self,
                     source: ModSource,
                     identifier: str,
                     fetch_fn: FetchFn,
                     timeout: Optional[float] = None) -> Outcome:
        """
        Return the cached outcome for (source, identifier), fetching it on a miss.

        Parameters
        ----------
        source : ModSource
        identifier : str
            Site-specific ID; passed unchanged to `fetch_fn`.
        fetch_fn : Callable[[str], VersionInfo]
            Usually `adapter.fetch`. May raise FetchError.
        timeout : float, optional
            Upper bound on how long this caller blocks. If it elapses, this call gets an
            Unavailable failure (not cached); the fetch keeps running on a cache worker
            thread and stores its outcome when done.

        Returns
        -------
        FetchSuccess | FetchFailure
        """
        key: CacheKey = (source, identifier)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_live(self._clock()):
                self._hits += 1
                logger.debug("cache hit %s:%s", source.value, identifier)
                return entry.outcome

            future = self._in_flight.get(key)
            is_owner = future is None
            if is_owner:
                future = Future()
                self._in_flight[key] = future
                self._misses += 1
                logger.debug("cache miss %s:%s", source.value, identifier)
            else:
                self._collapsed += 1
                logger.debug("joining in-flight fetch for %s:%s", source.value, identifier)

        if is_owner:
            if timeout is None:
                self._run_fetch(key, fetch_fn, future)
            else:
                self._get_executor().submit(self._run_fetch, key, fetch_fn, future)

        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            logger.warning("%s:%s didn't respond within %.1fs", source.value, identifier, timeout)
            return FetchFailure(
                kind=FetchFailureKind.UNAVAILABLE,
                reason=f"{source.value} didn't respond within {timeout:g}s",
                fetched_at=self._clock(),
            )

    def _run_fetch(self, key: CacheKey, fetch_fn: FetchFn, future: "Future[Outcome]") -> None:
        source, identifier = key
        try:
            outcome: Outcome = FetchSuccess(info=fetch_fn(identifier), fetched_at=self._clock())
        except FetchError as exc:
            logger.debug("%s:%s failed: %s", source.value, identifier, exc)
            outcome = FetchFailure(kind=exc.kind, reason=str(exc), fetched_at=self._clock())
        except Exception as exc:
            # a broken adapter must still release every waiter
            logger.exception("unexpected error fetching %s:%s", source.value, identifier)
            outcome = FetchFailure(
                kind=FetchFailureKind.UNAVAILABLE,
                reason=f"unexpected error: {exc}",
                fetched_at=self._clock(),
            )

        ttl = self.success_ttl if outcome.ok else self.error_ttl
        entry = CacheEntry(key=key, outcome=outcome, expires_at=outcome.fetched_at + ttl)
        with self._lock:
            self._entries[key] = entry
            self._in_flight.pop(key, None)
        future.set_result(outcome)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="modupdate-cache"
                )
            return self._executor

    def peek(self, source: ModSource, identifier: str) -> Optional[CacheEntry]:
        """Return the live entry for (source, identifier) without fetching, or None."""
        with self._lock:
            entry = self._entries.get((source, identifier))
            if entry is not None and entry.is_live(self._clock()):
                return entry
            return None

    def clear(self) -> int:
        """Drop every entry (in-flight fetches are unaffected). Returns the number removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.debug("cleared %d cache entries", removed)
        return removed

    def stats(self) -> Dict[str, int]:
        """
        Return summary counters.

        Returns
        -------
        dict with keys: hits, misses, collapsed, live, in_flight
        """
        now = self._clock()
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "collapsed": self._collapsed,
                "live": sum(1 for e in self._entries.values() if e.is_live(now)),
                "in_flight": len(self._in_flight),
            }

    def close(self) -> None:
        """Stop the worker pool used for timed fetches (running fetches finish first)."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

    def __len__(self) -> int:
        return self.stats()["live"]
