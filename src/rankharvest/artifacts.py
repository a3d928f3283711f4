"""
Debug artifacts: raw page markup and failure screenshots.

Writing an artifact is best-effort. Callers are never interrupted by a
failed write; the failure is logged and ``None`` is returned instead of a path.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles
import structlog

from rankharvest.config.config import DebugConfig

logger = structlog.get_logger(__name__)

ARTIFACT_SUFFIXES = (".html", ".png")
_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


class ArtifactStore:
    def __init__(self, config: Optional[DebugConfig] = None) -> None:
        self.config = config or DebugConfig()
        self.directory = Path(self.config.html_dir)

    def path_for(self, prefix: str, suffix: str) -> Path:
        safe = _UNSAFE.sub("-", prefix).strip("-") or "page"
        return self.directory / f"{safe}_{_stamp()}{suffix}"

    async def save_markup(self, markup: str, prefix: str) -> Optional[Path]:
        """Persist raw markup when enabled; never raises."""
        if not self.config.save_html:
            return None
        path = self.path_for(prefix, ".html")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(markup)
        except OSError as e:
            logger.warning("Could not save page markup", path=str(path), error=str(e))
            return None
        logger.debug("Saved page markup", path=str(path), size=len(markup))
        return path

    def screenshot_path(self, prefix: str) -> Optional[Path]:
        """Where a failure screenshot should go, or None when disabled."""
        if not self.config.screenshot_on_error:
            return None
        path = self.path_for(prefix, ".png")
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def cleanup_old_artifacts(self, max_age_hours: Optional[float] = None) -> int:
        """Delete artifacts older than the cutoff; returns how many were removed."""
        hours = self.config.max_html_age_hours if max_age_hours is None else max_age_hours
        if not self.directory.exists():
            return 0

        cutoff = time.time() - hours * 3600
        removed = 0
        for path in self.directory.iterdir():
            if path.suffix not in ARTIFACT_SUFFIXES or not path.is_file():
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("Could not remove artifact", path=str(path), error=str(e))

        if removed:
            logger.info("Removed old debug artifacts", removed=removed, directory=str(self.directory))
        return removed
