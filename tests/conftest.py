"""
Shared test configuration for RankHarvest.

Provides an isolated Config rooted in a temporary directory, ranking markup
builders and task cleanup so that async tests cannot leak into each other.
"""

# Standard library imports
import asyncio
import os
from pathlib import Path
from typing import AsyncGenerator, List

# Third-party imports
import pytest
import pytest_asyncio

# Local imports
from rankharvest.config import (
    BrowserConfig,
    CacheConfig,
    Config,
    DebugConfig,
    RegionConfig,
    SQLiteConfig,
    SweepConfig,
)
from rankharvest.protocols import Record, Target
from tests.helpers.factories import make_records
from tests.helpers.fake_browser import numbered_rows, ranking_page

os.environ["RANKHARVEST_TEST_MODE"] = "1"

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel any task a test left behind."""
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Config with every path under tmp_path and no politeness delays."""
    return Config(
        targets={
            "ASIA1": RegionConfig(id=11, servers={"ASIA011": 101, "ASIA012": 102}),
            "INMENA1": RegionConfig(id=21, servers={"INMENA011": 201}),
        },
        browser=BrowserConfig(
            respect_permission_policy=False,
            retry_delay_ms=0,
            max_retry_delay_ms=0,
            jitter=False,
            resource_cooldown_ms=0,
            wait_between_pages_ms=0,
        ),
        cache=CacheConfig(global_ttl_seconds=60, target_ttl_seconds=60, max_entries=10),
        sweep=SweepConfig(
            delay_between_targets_seconds=0,
            target_timeout_seconds=5,
            state_file=tmp_path / "state" / "sweep_state.json",
            failed_targets_file=tmp_path / "state" / "failed_targets.json",
        ),
        storage=SQLiteConfig(db_path=tmp_path / "db" / "rankings.db", pool_size=2),
        debug=DebugConfig(html_dir=tmp_path / "artifacts", save_html=False, screenshot_on_error=True),
    )


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
def target() -> Target:
    return Target(region="ASIA1", server="ASIA011", region_id=11, server_id=101)


@pytest.fixture
def sample_records() -> List[Record]:
    return make_records(20)


@pytest.fixture
def three_page_markups() -> List[str]:
    """Cumulative markup after navigation and after each of two load-more clicks."""
    return [
        ranking_page(numbered_rows(1, 11)),
        ranking_page(numbered_rows(1, 21)),
        ranking_page(numbered_rows(1, 31)),
    ]
