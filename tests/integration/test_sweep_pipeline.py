"""
End-to-end sweep over a real snapshot store with an in-memory browser.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from rankharvest.artifacts import ArtifactStore
from rankharvest.cache import CacheStore
from rankharvest.change import ChangeClassification, ChangeEstimator, SnapshotDiffEngine
from rankharvest.crawler import PageWalker
from rankharvest.harvester import TargetHarvester
from rankharvest.recovery import FailedTargetQueue, RetryPolicy
from rankharvest.scheduler import SweepScheduler
from rankharvest.storage import SnapshotStore

from tests.helpers.fake_browser import FakePage, FakeSession, numbered_rows, ranking_page, ranking_row

MIDDAY = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


async def no_sleep(delay):
    return None


class MarkupSource:
    """Hands out a fresh FakePage per browser session, serving the current markups."""

    def __init__(self, markups):
        self.markups = markups
        self.sessions = 0

    def __call__(self):
        self.sessions += 1
        return FakeSession(FakePage(self.markups))


@pytest_asyncio.fixture
async def store(test_config):
    store = SnapshotStore(test_config.storage)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def source(three_page_markups):
    return MarkupSource(three_page_markups)


@pytest.fixture
def scheduler(test_config, store, source):
    walker = PageWalker(
        source=test_config.source,
        selectors=test_config.selectors,
        browser=test_config.browser,
        artifacts=ArtifactStore(test_config.debug),
        session_factory=source,
    )
    harvester = TargetHarvester(
        config=test_config,
        store=store,
        cache=CacheStore(test_config.cache),
        walker=walker,
        estimator=ChangeEstimator(test_config.change_detection, now=lambda: MIDDAY),
        retry_policy=RetryPolicy.from_config(test_config.browser, sleep=no_sleep),
    )
    return SweepScheduler(
        test_config,
        harvester,
        store=store,
        failed_queue=FailedTargetQueue(test_config.sweep.failed_targets_file),
        sleep=no_sleep,
    )


@pytest.mark.integration
class TestSweepPipeline:
    @pytest.mark.asyncio
    async def test_first_sweep_stores_every_target(self, scheduler, store, test_config):
        state = await scheduler.sweep()

        assert state.targets_processed == 3
        assert state.errors == []
        for target in test_config.iter_targets():
            snapshot = await store.get_latest_snapshot(target.key)
            assert snapshot.record_count == 30
            assert snapshot.records[0].region == target.region
        assert len(await store.list_active_targets()) == 3
        logs = await store.recent_update_logs()
        assert logs[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_second_sweep_served_from_cache(self, scheduler, source):
        await scheduler.sweep()
        sessions_after_first = source.sessions

        state = await scheduler.sweep()

        assert state.targets_skipped == 3
        assert source.sessions == sessions_after_first

    @pytest.mark.asyncio
    async def test_unchanged_first_page_skips_full_walk(self, scheduler, source):
        await scheduler.sweep()
        scheduler.harvester.cache.invalidate_all()

        state = await scheduler.sweep()

        assert state.targets_skipped == 3
        assert source.sessions == 6

    @pytest.mark.asyncio
    async def test_changed_first_page_walks_in_one_session(self, scheduler, store, source, target):
        await scheduler.sweep()
        scheduler.harvester.cache.invalidate_all()
        source.markups = [ranking_page([ranking_row(i, f"Fresh{i}") for i in range(1, 31)])]

        state = await scheduler.sweep()

        assert state.targets_skipped == 0
        assert source.sessions == 6
        snapshot = await store.get_latest_snapshot(target.key)
        assert snapshot.records[0].name == "Fresh1"

    @pytest.mark.asyncio
    async def test_forced_sweep_then_diff(self, scheduler, store, source, target):
        await scheduler.sweep()
        rows = numbered_rows(1, 30)
        rows[0] = ranking_row(1, "Player1", power=200000)
        rows.append(ranking_row(30, "Newcomer", power=1))
        source.markups = [ranking_page(rows)]

        state = await scheduler.sweep(force_update=True)

        assert state.targets_processed == 3
        report = SnapshotDiffEngine().diff(
            await store.get_previous_snapshot(target.key), await store.get_latest_snapshot(target.key)
        )
        assert report.classification is ChangeClassification.CHANGES
        assert [r.name for r in report.added] == ["Newcomer"]
        assert [r.name for r in report.removed] == ["Player30"]
        assert report.changed[0].name == "Player1"
        assert report.changed[0].significant is True

    @pytest.mark.asyncio
    async def test_empty_target_is_marked_inactive(self, scheduler, store, source, target):
        source.markups = [ranking_page([])]

        state = await scheduler.sweep(targets=[target])

        assert state.targets_processed == 1
        assert await store.is_target_active(target.key) is False
        assert state.consecutive_failures == 1
        assert state.errors[0].kind == "permanent"
