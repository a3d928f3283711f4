"""
Tests for the file-backed failed target queue.
"""

import json

import pytest
from rankharvest.recovery import FailedTargetQueue


@pytest.fixture
def queue(tmp_path):
    return FailedTargetQueue(tmp_path / "failed.json", max_size=3)


@pytest.mark.unit
class TestFailedTargetQueue:
    def test_empty_when_file_missing(self, queue):
        assert queue.pending() == []

    def test_record_persists(self, queue):
        entry = queue.record("ASIA1_ASIA011", "transient", "session lost", attempts=6)

        assert entry.failure_count == 1
        stored = json.loads(queue.path.read_text())
        assert stored[0]["target_key"] == "ASIA1_ASIA011"
        assert stored[0]["attempts"] == 6

    def test_repeat_failure_updates_existing_entry(self, queue):
        queue.record("A_1", "transient", "first")
        queue.record("B_1", "permanent", "other")
        entry = queue.record("A_1", "resource_exhausted", "second", attempts=2)

        pending = queue.pending()
        assert [e.target_key for e in pending] == ["B_1", "A_1"]
        assert entry.failure_count == 2
        assert pending[-1].kind == "resource_exhausted"
        assert pending[-1].message == "second"

    def test_bounded_size_drops_oldest(self, queue):
        for key in ("A", "B", "C", "D"):
            queue.record(key, "transient", "x")

        assert [e.target_key for e in queue.pending()] == ["B", "C", "D"]

    def test_remove(self, queue):
        queue.record("A", "transient", "x")

        assert queue.remove("A") is True
        assert queue.remove("A") is False
        assert queue.pending() == []

    def test_trim(self, queue):
        for key in ("A", "B", "C"):
            queue.record(key, "transient", "x")

        assert queue.trim(1) == 2
        assert [e.target_key for e in queue.pending()] == ["C"]

    def test_malformed_file_is_ignored(self, queue):
        queue.path.write_text(json.dumps({"not": "a list"}))

        assert queue.pending() == []
