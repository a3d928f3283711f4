"""
End-to-end harvesting of a single target.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional

import structlog

from rankharvest.cache.store import GLOBAL_KEY, CacheStore
from rankharvest.change.estimator import ChangeEstimator, FreshSample
from rankharvest.config.config import Config
from rankharvest.crawler.permission import PermissionPolicy
from rankharvest.errors import ErrorKind, HarvestError, PolicyDeniedError, error_kind
from rankharvest.observability.metrics import increment, observe
from rankharvest.protocols import (
    Digest,
    HarvestOutcome,
    HarvestStatus,
    PageWalkerProtocol,
    Record,
    SnapshotStoreProtocol,
    Target,
)
from rankharvest.recovery.retry import RetryPolicy

logger = structlog.get_logger(__name__)


class TargetHarvester:
    """
    Orchestrates one target: politeness check, cache check, change estimate,
    page walk under the retry policy, then write-through to cache and store.

    ``harvest`` never raises for a target-level failure; it returns a
    classified HarvestOutcome instead. Cancellation still propagates.
    """

    def __init__(
        self,
        config: Config,
        store: SnapshotStoreProtocol,
        cache: CacheStore,
        walker: PageWalkerProtocol,
        estimator: Optional[ChangeEstimator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        permission: Optional[PermissionPolicy] = None,
        source_tag: str = "browser",
    ) -> None:
        self.config = config
        self.store = store
        self.cache = cache
        self.walker = walker
        self.estimator = estimator or ChangeEstimator(config.change_detection)
        self.retry_policy = retry_policy or RetryPolicy.from_config(config.browser)
        self.permission = permission
        self.source_tag = source_tag

    async def harvest(self, target: Target, force_refresh: bool = False) -> HarvestOutcome:
        started = time.monotonic()
        log = logger.bind(target=target.key)
        self.retry_policy.last_attempts = 0
        try:
            outcome = await self._harvest(target, force_refresh, log)
        except Exception as exc:
            outcome = await self._failed(target, exc, log)
        outcome.duration = time.monotonic() - started
        increment("harvests", status=outcome.status.value)
        observe("harvest_duration", outcome.duration)
        return outcome

    async def _harvest(self, target: Target, force_refresh: bool, log) -> HarvestOutcome:
        await self._check_permission(target)

        digest: Optional[Digest] = None
        if not force_refresh:
            cached = self.cache.get_target(target.key)
            if cached is not None:
                log.debug("Serving target from cache", records=len(cached))
                return HarvestOutcome(target, HarvestStatus.SKIPPED, records=list(cached), from_cache=True)
            digest = await self.store.get_digest(target.key, self.estimator.config.sample_size)

        if digest is None:
            records = await self.retry_policy.call(self.walker.walk, target)
        else:
            needs_full_walk = self._estimate_against(digest, log)
            records = await self.retry_policy.call(self.walker.walk_if_changed, target, needs_full_walk)
            if records is None:
                reused = await self._reuse_stored(target, log)
                if reused is not None:
                    return reused
                records = await self.retry_policy.call(self.walker.walk, target)
        attempts = self.retry_policy.last_attempts

        if not records:
            log.warning("Target returned no records, marking inactive")
            await self.store.mark_target_inactive(target.key, "no records returned")
            self.cache.invalidate(GLOBAL_KEY)
            return HarvestOutcome(
                target,
                HarvestStatus.EMPTY,
                attempts=attempts,
                error_kind=ErrorKind.PERMANENT.value,
                error_message="no records returned",
            )

        await self.store.replace_snapshot(target.key, records, self.source_tag)
        self.cache.set_target(target.key, records)
        self.cache.invalidate(GLOBAL_KEY)
        log.info("Target harvested", records=len(records), attempts=attempts)
        return HarvestOutcome(target, HarvestStatus.SUCCESS, records=records, attempts=attempts)

    async def _check_permission(self, target: Target) -> None:
        if self.permission is None or not self.config.browser.respect_permission_policy:
            return
        url = self.walker.target_url(target)
        if not await self.permission.is_allowed(url):
            raise PolicyDeniedError(f"crawling {url} is disallowed by robots.txt", target_key=target.key)

    def _estimate_against(self, digest: Digest, log) -> Callable[[FreshSample], bool]:
        def needs_full_walk(sample: FreshSample) -> bool:
            estimate = self.estimator.evaluate(sample, digest)
            if estimate.full_scrape:
                log.info("Full walk required", reason=estimate.reason, similarity=estimate.similarity)
            else:
                log.info("Ranking unchanged", similarity=estimate.similarity)
            return estimate.full_scrape

        return needs_full_walk

    async def _reuse_stored(self, target: Target, log) -> Optional[HarvestOutcome]:
        """The stored dataset, re-tagged with the target, after an unchanged first page."""
        snapshot = await self.store.get_latest_snapshot(target.key)
        if snapshot is None:
            log.warning("Digest without a stored snapshot, walking instead")
            return None

        records = [r.with_target(target) for r in snapshot.records]
        self.cache.set_target(target.key, records)
        increment("estimator_skips")
        log.info("Reusing stored snapshot", records=len(records))
        return HarvestOutcome(target, HarvestStatus.SKIPPED, records=records)

    async def _failed(self, target: Target, exc: Exception, log) -> HarvestOutcome:
        kind = error_kind(exc)
        exhausted = getattr(exc, "retry_exhausted", False)
        log.error(
            "Target harvest failed",
            error_kind=kind.value,
            retry_exhausted=exhausted,
            error=str(exc),
            exc_info=not isinstance(exc, HarvestError),
        )
        try:
            await self.store.mark_target_inactive(target.key, f"{kind.value}: {exc}")
        except Exception as store_exc:
            log.error("Could not mark target inactive", error=str(store_exc))
        return HarvestOutcome(
            target,
            HarvestStatus.FAILED,
            attempts=self.retry_policy.last_attempts,
            error_kind=kind.value,
            error_message=str(exc),
        )

    async def global_dataset(self, targets: Optional[List[Target]] = None) -> List[Record]:
        """Latest records of every target, cached under the global key."""
        cached = self.cache.get(GLOBAL_KEY)
        if cached is not None:
            return cached

        records: List[Record] = []
        for target in targets if targets is not None else self.config.iter_targets():
            snapshot = await self.store.get_latest_snapshot(target.key)
            if snapshot is not None:
                records.extend(r.with_target(target) for r in snapshot.records)
        records.sort(key=lambda r: (-r.power_score, r.rank))
        self.cache.set(GLOBAL_KEY, records)
        return records
