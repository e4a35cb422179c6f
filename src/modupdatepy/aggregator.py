"""
aggregator.py - Update aggregation for one mod (or many)

`UpdateAggregator.check_for_update` is the entry point. For one mod it:

  1. resolves the mod's override rule,
  2. builds the effective update-key list (declared keys, else the rule's default key,
     plus the rule's beta keys on the beta channel), deduplicated by (source, identifier),
  3. looks every usable key up through the result cache, concurrently,
  4. parses each returned version with the rule's tolerance,
  5. drops prereleases unless the beta channel is on,
  6. keeps each key's own best version, then the best across keys (earlier key wins ties),
  7. compares that against the installed version.

Nothing in here raises for a single mod: unknown keys, unparseable versions and site
failures all become warning strings on the returned `UpdateCheckResult`.

Example
-------
>>> agg = UpdateAggregator(build_adapters())
>>> result = agg.check_for_update("Pathoschild.ContentPatcher", "1.9.0",
...                               ["Nexus:1915", "GitHub:Pathoschild/StardewMods"], False)
>>> result.recommendation.has_update
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout, as_completed
from datetime import datetime, timezone
from types import MappingProxyType
from typing import *

from tqdm import tqdm

from .cache import ResultCache
from .exceptions import FetchFailureKind, MalformedKeyError, ParseError
from .overrides import OverridePolicy, OverrideRule
from .semver import SemanticVersion
from .sources import SourceAdapter
from .types_models import (
    FetchFailure,
    ModUpdateRequest,
    Outcome,
    UpdateCandidate,
    UpdateCheckResult,
    UpdateRecommendation,
)
from .update_keys import ModSource, UpdateKey
from .utils import utc_now

logger = logging.getLogger(__name__)

__all__ = ["UpdateAggregator"]

Deadline = Union[float, datetime, None]


class UpdateAggregator:
    """
    Consolidates update-key lookups into one recommendation per mod.

    Parameters
    ----------
    adapters : Mapping[ModSource, SourceAdapter]
        One adapter per site (see `sources.build_adapters`).
    cache : ResultCache, optional
        Shared result cache; a default one (60/5 minute TTLs) is created if omitted.
    overrides : OverridePolicy, optional
        Per-mod override rules; empty if omitted.
    max_workers : int
        Concurrent key lookups across all in-flight checks.
    fetch_timeout : float, optional
        Seconds to wait for any single key before treating it as Unavailable.
    suppressed_mod_ids : Iterable[str]
        Mod IDs that are never checked (case-insensitive).
    enabled : bool
        Master switch. When False every check returns "no update" without calling any source.
    """

    def __init__(self,
                 adapters: Mapping[ModSource, SourceAdapter],
                 cache: Optional[ResultCache] = None,
                 overrides: Optional[OverridePolicy] = None,
                 *,
                 max_workers: int = 8,
                 fetch_timeout: Optional[float] = None,
                 suppressed_mod_ids: Iterable[str] = (),
                 enabled: bool = True):
        self._adapters: Mapping[ModSource, SourceAdapter] = MappingProxyType(dict(adapters))
        self.cache = cache or ResultCache()
        self.overrides = overrides or OverridePolicy()
        self.fetch_timeout = float(fetch_timeout) if fetch_timeout is not None else None
        self.suppressed_mod_ids = frozenset(m.strip().lower() for m in suppressed_mod_ids)
        self.enabled = bool(enabled)
        self._max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="modupdate-lookup")

    # Single mod
    def check_for_update(self,
                         mod_id: str,
                         installed_version: Union[SemanticVersion, str],
                         declared_update_keys: Iterable[Union[str, UpdateKey]],
                         beta_channel_enabled: bool,
                         *,
                         deadline: Deadline = None) -> UpdateCheckResult:
        """
        Check one mod for a newer version across all of its update keys.

        Parameters
        ----------
        mod_id : str
            Mod's unique ID; used for override lookup and suppression.
        installed_version : SemanticVersion | str
            The installed version. Strings are parsed with the mod's tolerance.
        declared_update_keys : Iterable[str | UpdateKey]
            Update keys from the mod's manifest, in declared order.
        beta_channel_enabled : bool
            Whether prerelease versions (and the rule's beta keys) are eligible.
        deadline : float | datetime, optional
            Overall limit: seconds from now, or an absolute datetime (naive means UTC).
            Keys still pending when it passes count as Unavailable for this call only.

        Returns
        -------
        UpdateCheckResult
            The recommendation plus warnings in effective-key order.
        """
        if not self.enabled:
            return UpdateCheckResult(mod_id=mod_id, recommendation=UpdateRecommendation.none())
        if mod_id and mod_id.strip().lower() in self.suppressed_mod_ids:
            logger.debug("update checks suppressed for %s", mod_id)
            return UpdateCheckResult(mod_id=mod_id, recommendation=UpdateRecommendation.none())

        rule = self.overrides.resolve(mod_id)
        keys = self._effective_keys(declared_update_keys, rule, beta_channel_enabled)
        if not keys:
            return UpdateCheckResult(mod_id=mod_id, recommendation=UpdateRecommendation.none())

        warnings: List[str] = []
        installed = self._coerce_installed(installed_version, rule, warnings)

        # dispatch every usable key before waiting on any of them
        end = self._deadline_to_monotonic(deadline)
        started = time.monotonic()
        pending: List[Tuple[UpdateKey, bool, Optional["Future[Outcome]"], Optional[str]]] = []
        for key, is_beta in keys:
            try:
                key.require_valid()
            except MalformedKeyError:
                pending.append((key, is_beta, None, f"{key}: unknown update key"))
                continue
            adapter = self._adapters.get(key.source)
            if adapter is None:
                pending.append((key, is_beta, None, f"{key}: no adapter configured for {key.source.value}"))
                continue
            source, identifier = key.cache_key
            future = self._executor.submit(self.cache.get_or_fetch, source, identifier, adapter.fetch)
            pending.append((key, is_beta, future, None))

        # reduce in effective-key order, never completion order
        best: Optional[UpdateCandidate] = None
        for index, (key, is_beta, future, problem) in enumerate(pending):
            if future is None:
                warnings.append(problem)
                continue
            outcome = self._wait(key, future, started, end)
            candidate = self._best_candidate(key, index, is_beta, outcome, rule, beta_channel_enabled, warnings)
            if candidate is not None and (best is None or candidate.version > best.version):
                best = candidate

        recommendation = UpdateRecommendation.none()
        if best is not None and installed is not None and best.version.is_newer_than(installed):
            recommendation = UpdateRecommendation(
                has_update=True,
                version=best.version,
                info_url=rule.forced_info_url or best.info_url,
                source=best.source,
            )
            logger.info("%s: update available %s -> %s (%s)", mod_id, installed, best.version, best.source.value)

        for warning in warnings:
            logger.debug("%s: %s", mod_id, warning)
        return UpdateCheckResult(mod_id=mod_id, recommendation=recommendation, warnings=tuple(warnings))

    # Many mods
    def check_all(self,
                  mods: Iterable[Union[ModUpdateRequest, Dict[str, Any]]],
                  beta_channel_enabled: bool,
                  *,
                  show_progress: bool = False,
                  concurrency: int = 4,
                  deadline: Deadline = None) -> List[UpdateCheckResult]:
        """
        Check many mods in parallel.

        Mods sharing an update key share one fetch through the cache.

        Returns
        -------
        List[UpdateCheckResult]
            One result per request, in input order.
        """
        items = [r if isinstance(r, ModUpdateRequest) else ModUpdateRequest.from_dict(r) for r in mods]
        results: List[Optional[UpdateCheckResult]] = [None] * len(items)

        def _worker(request: ModUpdateRequest) -> UpdateCheckResult:
            return self.check_for_update(
                request.mod_id,
                request.installed_version,
                request.update_keys,
                beta_channel_enabled,
                deadline=deadline,
            )

        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as ex, \
                tqdm(total=len(items), desc="Checking for updates", unit="mod", disable=not show_progress) as bar:
            futures = {ex.submit(_worker, item): i for i, item in enumerate(items)}
            for fut in as_completed(futures):
                results[futures[fut]] = fut.result()
                bar.update(1)

        found = sum(1 for r in results if r is not None and r.has_update)
        logger.info("checked %d mods, %d update(s) available", len(items), found)
        return [r for r in results if r is not None]

    # Helpers
    @staticmethod
    def _effective_keys(declared: Iterable[Union[str, UpdateKey]],
                        rule: OverrideRule,
                        beta_channel_enabled: bool) -> List[Tuple[UpdateKey, bool]]:
        keys: List[Tuple[UpdateKey, bool]] = []
        for token in declared or ():
            if isinstance(token, UpdateKey):
                keys.append((token, False))
            elif token is not None and str(token).strip():
                keys.append((UpdateKey.parse(str(token)), False))

        # declared keys always win over the default; beta keys are additive either way
        if not keys and rule.default_update_key is not None:
            keys.append((rule.default_update_key, False))
        if beta_channel_enabled:
            keys.extend((key, True) for key in rule.additional_beta_keys)

        unique: List[Tuple[UpdateKey, bool]] = []
        seen: Set[Tuple[Any, str]] = set()
        for key, is_beta in keys:
            identity = key.cache_key if key.is_valid else (None, key.raw_text)
            if identity in seen:
                continue
            seen.add(identity)
            unique.append((key, is_beta))
        return unique

    @staticmethod
    def _coerce_installed(installed: Union[SemanticVersion, str],
                          rule: OverrideRule,
                          warnings: List[str]) -> Optional[SemanticVersion]:
        if isinstance(installed, SemanticVersion):
            return installed
        try:
            return SemanticVersion.parse(installed, tolerant=rule.allow_non_standard_versions)
        except ParseError:
            warnings.append(f"installed version '{installed}' isn't a valid version")
            return None

    @staticmethod
    def _best_candidate(key: UpdateKey,
                        index: int,
                        is_beta: bool,
                        outcome: Outcome,
                        rule: OverrideRule,
                        beta_channel_enabled: bool,
                        warnings: List[str]) -> Optional[UpdateCandidate]:
        """Reduce one key's releases to its own best eligible candidate."""
        if not outcome.ok:
            warnings.append(f"{key}: {outcome.reason}")
            return None

        info = outcome.info
        if not info.releases:
            if key.source is not ModSource.PASTEBIN:
                warnings.append(f"{key}: no versions found")
            return None

        best: Optional[UpdateCandidate] = None
        for release in info.releases:
            try:
                version = SemanticVersion.parse(release.version, tolerant=rule.allow_non_standard_versions)
            except ParseError:
                warnings.append(f"{key}: couldn't parse version '{release.version}'")
                continue
            if not beta_channel_enabled and (version.is_prerelease() or release.is_prerelease):
                continue
            if best is None or version > best.version:
                best = UpdateCandidate(
                    source=key.source,
                    version=version,
                    info_url=release.url or info.url,
                    is_from_beta_key=is_beta,
                    key_index=index,
                )
        return best

    def _wait(self, key: UpdateKey, future: "Future[Outcome]", started: float, end: Optional[float]) -> Outcome:
        limits = [end] if end is not None else []
        if self.fetch_timeout is not None:
            limits.append(started + self.fetch_timeout)
        timeout = max(0.0, min(limits) - time.monotonic()) if limits else None
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            # the lookup keeps running and still fills the cache for later checks
            return FetchFailure(
                kind=FetchFailureKind.UNAVAILABLE,
                reason=f"{key.source.value} didn't respond in time",
                fetched_at=utc_now(),
            )

    @staticmethod
    def _deadline_to_monotonic(deadline: Deadline) -> Optional[float]:
        if deadline is None:
            return None
        if isinstance(deadline, datetime):
            if deadline.tzinfo is None:
                deadline = deadline.replace(tzinfo=timezone.utc)
            seconds = (deadline - utc_now()).total_seconds()
        else:
            seconds = float(deadline)
        return time.monotonic() + max(0.0, seconds)

    # Lifecycle
    def close(self) -> None:
        """Stop the lookup pool. Lookups already running finish and still fill the cache."""
        self._executor.shutdown(wait=False)
        self.cache.close()

    def __enter__(self) -> "UpdateAggregator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
