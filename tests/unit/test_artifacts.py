"""
Tests for debug artifact handling.
"""

import os
import time

import pytest
from rankharvest.artifacts import ArtifactStore
from rankharvest.config import DebugConfig


@pytest.mark.unit
class TestArtifactStore:
    @pytest.mark.asyncio
    async def test_save_markup_disabled_by_default(self, tmp_path):
        store = ArtifactStore(DebugConfig(html_dir=tmp_path))

        assert await store.save_markup("<html></html>", "ASIA1_ASIA011_p1") is None
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_save_markup_writes_file(self, tmp_path):
        store = ArtifactStore(DebugConfig(html_dir=tmp_path / "pages", save_html=True))

        path = await store.save_markup("<html>ok</html>", "ASIA1/ASIA011 p1")

        assert path is not None
        assert path.read_text(encoding="utf-8") == "<html>ok</html>"
        assert path.name.startswith("ASIA1-ASIA011-p1_")
        assert path.suffix == ".html"

    @pytest.mark.asyncio
    async def test_save_markup_failure_returns_none(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = ArtifactStore(DebugConfig(html_dir=blocker, save_html=True))

        assert await store.save_markup("<html></html>", "x") is None

    def test_screenshot_path(self, tmp_path):
        enabled = ArtifactStore(DebugConfig(html_dir=tmp_path / "shots"))
        disabled = ArtifactStore(DebugConfig(html_dir=tmp_path, screenshot_on_error=False))

        path = enabled.screenshot_path("error_ASIA1_ASIA011")
        assert path is not None and path.suffix == ".png"
        assert path.parent.is_dir()
        assert disabled.screenshot_path("error") is None

    def test_cleanup_removes_only_old_artifacts(self, tmp_path):
        store = ArtifactStore(DebugConfig(html_dir=tmp_path, max_html_age_hours=24))
        old_html = tmp_path / "old.html"
        old_png = tmp_path / "old.png"
        fresh = tmp_path / "fresh.html"
        unrelated = tmp_path / "notes.txt"
        for path in (old_html, old_png, fresh, unrelated):
            path.write_text("x")
        two_days_ago = time.time() - 48 * 3600
        for path in (old_html, old_png, unrelated):
            os.utime(path, (two_days_ago, two_days_ago))

        assert store.cleanup_old_artifacts() == 2
        assert sorted(p.name for p in tmp_path.iterdir()) == ["fresh.html", "notes.txt"]

    def test_cleanup_missing_directory(self, tmp_path):
        assert ArtifactStore(DebugConfig(html_dir=tmp_path / "missing")).cleanup_old_artifacts(1) == 0
