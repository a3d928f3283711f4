"""
Sequential multi-target sweeps with throttling, checkpoints and a breaker.
"""

from __future__ import annotations

import asyncio
import signal
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field, ValidationError

from rankharvest.config.config import Config
from rankharvest.errors import ErrorKind
from rankharvest.harvester import TargetHarvester
from rankharvest.observability.metrics import observe
from rankharvest.protocols import HarvestOutcome, HarvestStatus, Target, utcnow
from rankharvest.recovery.failed_targets import FailedTargetQueue
from rankharvest.storage.snapshot_store import SnapshotStore
from rankharvest.utils.atomic import atomic_json_dump, read_json

logger = structlog.get_logger(__name__)


class SweepError(BaseModel):
    target: str
    message: str
    kind: str = ErrorKind.PERMANENT.value
    timestamp: str = Field(default_factory=lambda: utcnow().isoformat())


class SweepState(BaseModel):
    """Process-wide sweep progress, persisted as the checkpoint document."""

    sweep_id: Optional[str] = None
    is_running: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    targets_total: int = Field(default=0, ge=0)
    targets_processed: int = Field(default=0, ge=0)
    targets_skipped: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    paused: bool = False
    pause_reason: Optional[str] = None
    errors: List[SweepError] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "targets_total": self.targets_total,
            "targets_processed": self.targets_processed,
            "targets_skipped": self.targets_skipped,
            "errors": [e.model_dump() for e in self.errors],
            "paused": self.paused,
        }


ContinuationCallback = Callable[[SweepState, HarvestOutcome], Awaitable[bool]]


async def always_continue(state: SweepState, outcome: HarvestOutcome) -> bool:
    return True


class SweepScheduler:
    """
    Sweeps all configured targets one at a time.

    Only one sweep runs at a time; a second call while one is running returns
    the live state immediately. ``paused`` is checked between targets, so a
    pause requested mid-target takes effect once that target finishes.
    """

    def __init__(
        self,
        config: Config,
        harvester: TargetHarvester,
        store: Optional[SnapshotStore] = None,
        failed_queue: Optional[FailedTargetQueue] = None,
        continuation: ContinuationCallback = always_continue,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        install_signal_handlers: bool = False,
    ) -> None:
        self.config = config
        self.settings = config.sweep
        self.harvester = harvester
        self.store = store
        self.failed_queue = failed_queue
        self.continuation = continuation
        self._sleep = sleep
        self._install_signal_handlers = install_signal_handlers
        self._original_handlers: dict[int, Any] = {}
        self.state = SweepState()

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    @property
    def state_file(self) -> Path:
        return Path(self.settings.state_file)

    def pause(self, reason: str = "requested") -> None:
        """Ask a running sweep to stop at the next target boundary."""
        if self.state.is_running and not self.state.paused:
            self.state.paused = True
            self.state.pause_reason = reason
            logger.warning("Sweep pause requested", reason=reason)

    def last_state(self) -> Optional[SweepState]:
        """The persisted checkpoint, if any."""
        data = read_json(self.state_file)
        if not data:
            return None
        try:
            return SweepState.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid sweep checkpoint", path=str(self.state_file), error=str(e))
            return None

    async def sweep(
        self,
        interactive: bool = False,
        confirm_every: Optional[int] = None,
        force_update: bool = False,
        max_consecutive_failures: Optional[int] = None,
        targets: Optional[List[Target]] = None,
    ) -> SweepState:
        if self.state.is_running:
            logger.warning("Sweep already running, not starting another", sweep_id=self.state.sweep_id)
            return self.state

        previous = self.last_state()
        if previous is not None and previous.is_running:
            logger.warning(
                "Previous sweep did not finish, starting a fresh pass",
                previous_sweep_id=previous.sweep_id,
                processed=previous.targets_processed,
                total=previous.targets_total,
            )

        ordered = list(targets) if targets is not None else self.config.iter_targets()
        self.state = SweepState(
            sweep_id=uuid4().hex,
            is_running=True,
            started_at=utcnow().isoformat(),
            targets_total=len(ordered),
        )
        structlog.contextvars.bind_contextvars(sweep_id=self.state.sweep_id)
        started = time.monotonic()
        log_id: Optional[int] = None
        status = "failed"
        error_message: Optional[str] = None

        try:
            self._setup_signal_handlers()
            logger.info("Sweep started", targets=len(ordered), force_update=force_update, interactive=interactive)
            if self.store is not None:
                await self.store.register_targets(ordered)
                log_id = await self.store.start_update_log("sweep")
            await self._save_checkpoint()

            await self._run(
                ordered,
                interactive=interactive,
                confirm_every=confirm_every or self.settings.confirm_every,
                force_update=force_update,
                max_failures=max_consecutive_failures or self.settings.max_consecutive_failures,
            )
            status = "paused" if self.state.paused else "completed"
        except Exception as e:
            error_message = str(e)
            logger.error("Sweep aborted", error=error_message, exc_info=True)
            raise
        finally:
            self.state.is_running = False
            self.state.completed_at = utcnow().isoformat()
            self._cleanup_signal_handlers()
            await self._save_checkpoint()
            if self.store is not None and log_id is not None:
                await self.store.finish_update_log(
                    log_id,
                    status,
                    affected_targets=self.state.targets_processed,
                    error_message=error_message or self.state.pause_reason,
                )
            duration = time.monotonic() - started
            observe("sweep_duration", duration)
            logger.info("Sweep finished", status=status, duration=round(duration, 2), **self.state.summary())
            structlog.contextvars.unbind_contextvars("sweep_id")

        return self.state

    async def _run(
        self,
        targets: List[Target],
        interactive: bool,
        confirm_every: int,
        force_update: bool,
        max_failures: int,
    ) -> None:
        for index, target in enumerate(targets):
            if self.state.paused:
                logger.info("Sweep paused, stopping early", reason=self.state.pause_reason)
                break

            outcome = await self._harvest_with_timeout(target, force_update)
            self._record(outcome)

            if self.state.consecutive_failures >= max_failures:
                self.state.paused = True
                self.state.pause_reason = "circuit_breaker"
                logger.error(
                    "Too many consecutive failures, pausing sweep",
                    consecutive_failures=self.state.consecutive_failures,
                    threshold=max_failures,
                )
                break

            if self.state.targets_processed % self.settings.checkpoint_every == 0:
                await self._save_checkpoint()

            if interactive and self._needs_confirmation(outcome, confirm_every):
                if not await self.continuation(self.state, outcome):
                    self.state.paused = True
                    self.state.pause_reason = "operator"
                    logger.info("Operator declined to continue")
                    break

            if index < len(targets) - 1 and not self.state.paused:
                await self._sleep(self.settings.delay_between_targets_seconds)

    async def _harvest_with_timeout(self, target: Target, force_update: bool) -> HarvestOutcome:
        timeout = self.settings.target_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await self.harvester.harvest(target, force_refresh=force_update)
        except TimeoutError:
            logger.error("Target harvest timed out", target=target.key, timeout=timeout)
            kind, message = ErrorKind.TRANSIENT, f"timed out after {timeout}s"
        except Exception as e:
            logger.error("Unexpected harvest error", target=target.key, error=str(e), exc_info=True)
            kind, message = ErrorKind.PERMANENT, str(e)

        await self._mark_inactive(target, f"{kind.value}: {message}")
        return HarvestOutcome(target, HarvestStatus.FAILED, error_kind=kind.value, error_message=message)

    async def _mark_inactive(self, target: Target, reason: str) -> None:
        if self.store is None:
            return
        try:
            await self.store.mark_target_inactive(target.key, reason)
        except Exception as e:
            logger.error("Could not mark target inactive", target=target.key, error=str(e))

    def _record(self, outcome: HarvestOutcome) -> None:
        self.state.targets_processed += 1
        key = outcome.target.key

        if outcome.status in (HarvestStatus.FAILED, HarvestStatus.EMPTY):
            self.state.consecutive_failures += 1
            message = outcome.error_message or "unknown error"
            kind = outcome.error_kind or ErrorKind.PERMANENT.value
            self.state.errors.append(SweepError(target=key, message=message, kind=kind))
            if self.failed_queue is not None:
                self.failed_queue.record(key, kind, message, outcome.attempts)
            return

        self.state.consecutive_failures = 0
        if outcome.status is HarvestStatus.SKIPPED:
            self.state.targets_skipped += 1
        if self.failed_queue is not None:
            self.failed_queue.remove(key)

    def _needs_confirmation(self, outcome: HarvestOutcome, confirm_every: int) -> bool:
        if outcome.status in (HarvestStatus.EMPTY, HarvestStatus.FAILED):
            return True
        return self.state.targets_processed % confirm_every == 0

    async def _save_checkpoint(self) -> None:
        ok = await atomic_json_dump(self.state.model_dump(mode="json"), self.state_file)
        if ok:
            logger.debug(
                "Sweep checkpoint saved",
                path=str(self.state_file),
                processed=self.state.targets_processed,
                total=self.state.targets_total,
            )
        else:
            logger.error("Failed to save sweep checkpoint", path=str(self.state_file))

    def _setup_signal_handlers(self) -> None:
        if not self._install_signal_handlers:
            return

        def signal_handler(signum: int, frame: Any) -> None:
            logger.info("Received signal, pausing sweep", signal=signum)
            self.pause(f"signal_{signum}")

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._original_handlers[signum] = signal.signal(signum, signal_handler)

    def _cleanup_signal_handlers(self) -> None:
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()
