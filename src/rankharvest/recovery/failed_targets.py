"""
Queue of targets whose last harvest failed.

Kept as a single JSON document so operators can inspect it directly. A target
that fails again updates its existing entry instead of adding a duplicate.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import structlog

from rankharvest.protocols import utcnow
from rankharvest.utils.atomic import atomic_write_json, read_json

logger = structlog.get_logger(__name__)


@dataclass
class FailedTarget:
    """A target whose most recent harvest ended in failure."""

    target_key: str
    kind: str
    message: str
    attempts: int = 0
    failure_count: int = 1
    first_failure_time: str = field(default_factory=lambda: utcnow().isoformat())
    last_failure_time: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FailedTarget:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


class FailedTargetQueue:
    """Bounded, file-backed list of failed targets, newest last."""

    def __init__(self, path: Path, max_size: int = 100) -> None:
        self.path = Path(path)
        self.max_size = max_size

    def _load(self) -> List[FailedTarget]:
        data = read_json(self.path, default=[])
        if not isinstance(data, list):
            logger.warning("Ignoring malformed failed-target file", path=str(self.path))
            return []
        return [FailedTarget.from_dict(item) for item in data if isinstance(item, dict)]

    def _save(self, entries: List[FailedTarget]) -> None:
        atomic_write_json(self.path, [entry.to_dict() for entry in entries])

    def record(self, target_key: str, kind: str, message: str, attempts: int = 0) -> FailedTarget:
        entries = self._load()
        now = utcnow().isoformat()
        existing = next((e for e in entries if e.target_key == target_key), None)
        if existing is not None:
            entries.remove(existing)
            existing.kind = kind
            existing.message = message
            existing.attempts = attempts
            existing.failure_count += 1
            existing.last_failure_time = now
            entry = existing
        else:
            entry = FailedTarget(target_key=target_key, kind=kind, message=message, attempts=attempts)
        entries.append(entry)
        self._save(entries[-self.max_size :])
        logger.info("Recorded failed target", target=target_key, kind=kind, failures=entry.failure_count)
        return entry

    def pending(self) -> List[FailedTarget]:
        return self._load()

    def remove(self, target_key: str) -> bool:
        entries = self._load()
        kept = [e for e in entries if e.target_key != target_key]
        if len(kept) == len(entries):
            return False
        self._save(kept)
        return True

    def trim(self, max_size: int | None = None) -> int:
        """Drop the oldest entries beyond ``max_size``; returns how many were dropped."""
        limit = self.max_size if max_size is None else max_size
        entries = self._load()
        excess = max(0, len(entries) - limit)
        if excess:
            self._save(entries[excess:])
        return excess

