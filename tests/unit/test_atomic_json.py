"""
Tests for atomic JSON persistence.
"""

import json
from pathlib import Path

import pytest
from rankharvest.utils import atomic_json_dump, atomic_write_json, read_json


@pytest.mark.unit
class TestAtomicWriteJson:
    def test_writes_and_replaces(self, tmp_path: Path):
        target = tmp_path / "nested" / "state.json"

        atomic_write_json(target, {"a": 1})
        atomic_write_json(target, {"a": 2})

        assert json.loads(target.read_text()) == {"a": 2}
        assert [p.name for p in target.parent.iterdir()] == ["state.json"]

    def test_unserializable_raises_and_keeps_previous(self, tmp_path: Path):
        target = tmp_path / "state.json"
        atomic_write_json(target, {"ok": True})
        circular: dict = {}
        circular["self"] = circular

        with pytest.raises(ValueError):
            atomic_write_json(target, circular)

        assert json.loads(target.read_text()) == {"ok": True}


@pytest.mark.unit
class TestAtomicJsonDump:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path: Path):
        target = tmp_path / "dump.json"

        assert await atomic_json_dump({"items": [1, 2]}, target) is True
        assert read_json(target) == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_failure_returns_false(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("x")

        assert await atomic_json_dump({"a": 1}, blocker / "child.json") is False


@pytest.mark.unit
class TestReadJson:
    def test_missing_returns_default(self, tmp_path: Path):
        assert read_json(tmp_path / "nope.json", default=[]) == []

    def test_corrupt_returns_default(self, tmp_path: Path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        assert read_json(path, default={"fallback": True}) == {"fallback": True}
