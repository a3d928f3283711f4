"""
Dependency injection container owning the engine's long-lived components.
"""

from __future__ import annotations

import inspect
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Generic, Optional, TypeVar

import structlog

from rankharvest.artifacts import ArtifactStore
from rankharvest.cache.store import CacheStore
from rankharvest.change.estimator import ChangeEstimator
from rankharvest.config.config import Config
from rankharvest.crawler.page_walker import PageWalker
from rankharvest.crawler.permission import PermissionPolicy
from rankharvest.extractor.ranking_extractor import RankingExtractor
from rankharvest.harvester import TargetHarvester
from rankharvest.recovery.failed_targets import FailedTargetQueue
from rankharvest.recovery.retry import RetryPolicy
from rankharvest.scheduler import ContinuationCallback, SweepScheduler, always_continue
from rankharvest.storage.snapshot_store import SnapshotStore

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazily built instance with lifecycle management.

    The factory may be a coroutine function, so one component can await
    another one from the container while being built.
    """

    def __init__(self, factory: Callable[[], Any]) -> None:
        self._factory = factory
        self._instance: Optional[T] = None
        self._initialized = False

    async def get(self) -> T:
        if not self._initialized:
            instance = self._factory()
            if inspect.isawaitable(instance):
                instance = await instance
            if callable(getattr(instance, "initialize", None)):
                await instance.initialize()
            self._instance = instance
            self._initialized = True
        assert self._instance is not None
        return self._instance

    async def cleanup(self) -> None:
        if self._instance is not None and callable(getattr(self._instance, "close", None)):
            result = self._instance.close()
            if inspect.isawaitable(result):
                await result
        self._instance = None
        self._initialized = False


class DependencyContainer:
    """
    Builds the store, cache, crawler and scheduler from one Config and tears
    them down together.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[Config] = None,
        continuation: ContinuationCallback = always_continue,
        install_signal_handlers: bool = False,
    ) -> None:
        self.config_path = config_path
        self.config = config
        self.continuation = continuation
        self.install_signal_handlers = install_signal_handlers
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._instances: Dict[str, LazyInstance[Any]] = {}
        self.is_running = False

    async def initialize(self) -> None:
        if self.config is None:
            self.load_config()
        self._create_instances()
        self.is_running = True
        self.logger.info(
            "Dependency container initialized",
            config_path=str(self.config_path) if self.config_path else "default",
            targets=len(self.config.iter_targets()),
        )

    def load_config(self) -> None:
        if self.config_path and self.config_path.exists():
            self.config = Config.from_yaml(self.config_path)
        else:
            self.config = Config()

    def _create_instances(self) -> None:
        config = self.config
        if config is None:
            raise RuntimeError("Configuration must be loaded before creating instances")

        artifacts = ArtifactStore(config.debug)

        async def build_harvester() -> TargetHarvester:
            return TargetHarvester(
                config=config,
                store=await self.get_store(),
                cache=await self.get_cache(),
                walker=await self.get_walker(),
                estimator=ChangeEstimator(config.change_detection),
                retry_policy=RetryPolicy.from_config(config.browser),
                permission=await self.get_permission() if config.browser.respect_permission_policy else None,
            )

        async def build_scheduler() -> SweepScheduler:
            return SweepScheduler(
                config=config,
                harvester=await self.get_harvester(),
                store=await self.get_store(),
                failed_queue=await self.get_failed_queue(),
                continuation=self.continuation,
                install_signal_handlers=self.install_signal_handlers,
            )

        self._instances = {
            "store": LazyInstance(lambda: SnapshotStore(config.storage)),
            "cache": LazyInstance(lambda: CacheStore(config.cache)),
            "permission": LazyInstance(lambda: PermissionPolicy(config.source.user_agent)),
            "artifacts": LazyInstance(lambda: artifacts),
            "walker": LazyInstance(
                lambda: PageWalker(
                    source=config.source,
                    selectors=config.selectors,
                    browser=config.browser,
                    extractor=RankingExtractor(config.selectors),
                    artifacts=artifacts,
                )
            ),
            "failed_queue": LazyInstance(
                lambda: FailedTargetQueue(config.sweep.failed_targets_file, config.sweep.failed_targets_max)
            ),
            "harvester": LazyInstance(build_harvester),
            "scheduler": LazyInstance(build_scheduler),
        }

    async def _get(self, name: str) -> Any:
        if name not in self._instances:
            raise RuntimeError("Container is not initialized")
        return await self._instances[name].get()

    async def get_store(self) -> SnapshotStore:
        return await self._get("store")

    async def get_cache(self) -> CacheStore:
        return await self._get("cache")

    async def get_permission(self) -> PermissionPolicy:
        return await self._get("permission")

    async def get_artifacts(self) -> ArtifactStore:
        return await self._get("artifacts")

    async def get_walker(self) -> PageWalker:
        return await self._get("walker")

    async def get_failed_queue(self) -> FailedTargetQueue:
        return await self._get("failed_queue")

    async def get_harvester(self) -> TargetHarvester:
        return await self._get("harvester")

    async def get_scheduler(self) -> SweepScheduler:
        return await self._get("scheduler")

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self.is_running:
            return
        self.logger.info("Shutting down dependency container")
        for name, instance in reversed(list(self._instances.items())):
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error("Error cleaning up instance", instance=name, error=str(e))
        self.is_running = False
        self.logger.info("Dependency container shutdown complete")
