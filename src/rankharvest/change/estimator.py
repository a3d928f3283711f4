"""
Decides whether a full multi-page walk of a target is worth performing.

A cheap first-page sample is compared against the digest of the last stored
snapshot. The walk is skipped only when the sample shows the ranking is
essentially unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, Union

import structlog

from rankharvest.config.config import ChangeDetectionConfig
from rankharvest.protocols import Digest, Record

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FreshSample:
    """Records seen on the first page.

    ``complete`` is False when the page offers more results, i.e. the sample
    is only a prefix of the full ranking.
    """

    records: Sequence[Record]
    complete: bool = True

    @property
    def count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class Estimate:
    full_scrape: bool
    reason: str
    similarity: Optional[float] = None


class ChangeEstimator:
    def __init__(
        self,
        config: Optional[ChangeDetectionConfig] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config or ChangeDetectionConfig()
        self._now = now

    def should_fully_scrape(
        self, fresh_sample: Union[FreshSample, Sequence[Record]], previous: Optional[Digest]
    ) -> bool:
        return self.evaluate(fresh_sample, previous).full_scrape

    def evaluate(self, fresh_sample: Union[FreshSample, Sequence[Record]], previous: Optional[Digest]) -> Estimate:
        """
        Checks run in order: missing digest, daily reset window, record-count
        delta, then top-K name overlap.

        The count delta is measured against the stored count only for a
        complete sample. A first page that offers more results is a prefix, so
        its baseline is ``min(stored count, sample count)``: a short first page
        alone never forces a full walk, but a first page larger than the whole
        stored ranking still does.
        """
        sample = fresh_sample if isinstance(fresh_sample, FreshSample) else FreshSample(tuple(fresh_sample))

        if previous is None or previous.record_count == 0:
            return self._log(Estimate(True, "no_previous_digest"))

        if self.in_reset_window():
            return self._log(Estimate(True, "daily_reset_window"))

        baseline = previous.record_count if sample.complete else min(previous.record_count, sample.count)
        delta = abs(sample.count - baseline)
        if baseline == 0 or delta / baseline > self.config.count_delta_threshold:
            return self._log(Estimate(True, "record_count_delta"))

        similarity = self.top_k_similarity(sample.records, previous.top_records)
        if similarity >= self.config.similarity_threshold:
            return self._log(Estimate(False, "top_k_unchanged", similarity))
        return self._log(Estimate(True, "top_k_changed", similarity))

    def in_reset_window(self) -> bool:
        now = self._now().astimezone(timezone.utc)
        return now.hour == self.config.reset_hour_utc and now.minute < self.config.reset_window_minutes

    def top_k_similarity(self, sample: Sequence[Record], previous_top: Sequence[Record]) -> float:
        """Percentage of the previous top-K names that are still in the sample's top-K."""
        k = self.config.sample_size
        fresh_names = {r.name.strip().lower() for r in sorted(sample, key=lambda r: r.rank)[:k]}
        previous_names = [r.name.strip().lower() for r in sorted(previous_top, key=lambda r: r.rank)[:k]]
        compared = min(len(previous_names), k)
        if compared == 0:
            return 0.0
        matches = sum(1 for name in previous_names if name in fresh_names)
        return matches * 100 / compared

    def _log(self, estimate: Estimate) -> Estimate:
        logger.debug(
            "Change estimate",
            full_scrape=estimate.full_scrape,
            reason=estimate.reason,
            similarity=estimate.similarity,
        )
        return estimate
