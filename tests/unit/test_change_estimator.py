"""
Tests for the first-page change estimator.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest
from rankharvest.change import ChangeEstimator, FreshSample
from rankharvest.config import ChangeDetectionConfig
from rankharvest.protocols import Digest

from tests.helpers.factories import make_records, make_snapshot

MIDDAY = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def digest_of(count: int) -> Digest:
    return Digest.from_snapshot(make_snapshot(make_records(count)), top_n=10)


@pytest.fixture
def estimator():
    return ChangeEstimator(ChangeDetectionConfig(), now=lambda: MIDDAY)


@pytest.mark.unit
class TestShouldFullyScrape:
    def test_no_previous_digest(self, estimator):
        assert estimator.should_fully_scrape(make_records(10), None) is True
        assert estimator.evaluate(make_records(10), None).reason == "no_previous_digest"

    def test_empty_previous_digest(self, estimator):
        empty = Digest(target_key="ASIA1_ASIA011", record_count=0, top_records=(), hash="x")

        assert estimator.should_fully_scrape(make_records(10), empty) is True

    def test_count_doubled_requires_full_scrape(self, estimator):
        estimate = estimator.evaluate(make_records(200), digest_of(100))

        assert estimate.full_scrape is True
        assert estimate.reason == "record_count_delta"

    def test_identical_top_records_skip_walk(self, estimator):
        estimate = estimator.evaluate(make_records(103), digest_of(100))

        assert estimate.full_scrape is False
        assert estimate.reason == "top_k_unchanged"
        assert estimate.similarity == 100.0

    def test_reshuffled_top_records_require_walk(self, estimator):
        fresh = make_records(3) + make_records(97, start=500)
        fresh = [replace(r, rank=i) for i, r in enumerate(fresh, start=1)]

        estimate = estimator.evaluate(fresh, digest_of(100))

        assert estimate.full_scrape is True
        assert estimate.reason == "top_k_changed"
        assert estimate.similarity == pytest.approx(30.0)

    def test_similarity_at_threshold_counts_as_unchanged(self, estimator):
        fresh = make_records(7) + make_records(93, start=500)
        fresh = [replace(r, rank=i) for i, r in enumerate(fresh, start=1)]

        estimate = estimator.evaluate(fresh, digest_of(100))

        assert estimate.similarity == pytest.approx(70.0)
        assert estimate.full_scrape is False

    def test_incomplete_first_page_compares_prefix(self, estimator):
        sample = FreshSample(tuple(make_records(10)), complete=False)

        estimate = estimator.evaluate(sample, digest_of(100))

        assert estimate.full_scrape is False
        assert estimate.reason == "top_k_unchanged"

    def test_incomplete_page_larger_than_stored_ranking(self, estimator):
        sample = FreshSample(tuple(make_records(40)), complete=False)

        estimate = estimator.evaluate(sample, digest_of(20))

        assert estimate.full_scrape is True
        assert estimate.reason == "record_count_delta"

    def test_complete_short_page_is_a_count_change(self, estimator):
        sample = FreshSample(tuple(make_records(10)), complete=True)

        assert estimator.should_fully_scrape(sample, digest_of(100)) is True

    def test_name_comparison_ignores_case(self, estimator):
        fresh = [replace(r, name=r.name.upper()) for r in make_records(100)]

        assert estimator.should_fully_scrape(fresh, digest_of(100)) is False


@pytest.mark.unit
class TestResetWindow:
    @pytest.mark.parametrize(
        "hour,minute,expected",
        [(4, 0, True), (4, 14, True), (4, 15, False), (3, 59, False), (12, 5, False)],
    )
    def test_window_boundaries(self, hour, minute, expected):
        now = datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)
        estimator = ChangeEstimator(ChangeDetectionConfig(), now=lambda: now)

        assert estimator.in_reset_window() is expected

    def test_reset_window_forces_full_scrape(self):
        now = datetime(2026, 3, 2, 4, 5, tzinfo=timezone.utc)
        estimator = ChangeEstimator(ChangeDetectionConfig(), now=lambda: now)

        estimate = estimator.evaluate(make_records(100), digest_of(100))

        assert estimate.full_scrape is True
        assert estimate.reason == "daily_reset_window"
