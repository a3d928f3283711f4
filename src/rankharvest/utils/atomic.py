"""
Atomic JSON persistence for checkpoint-style files.

Both writers serialize first, write into a temporary file in the target's
directory and then ``os.replace`` it over the target, so readers only ever
see the previous or the new document.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def _write_replace(path: Path, content: str) -> None:
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".atomic_{path.name}.", suffix=".tmp")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)


async def atomic_json_dump(data: Any, path: Path, timeout: float = 2.0) -> bool:
    """
    Asynchronously write JSON data to a file atomically with timeout.

    Returns:
        bool: True if write succeeded, False otherwise. Failures are logged,
        never raised, so a checkpoint write cannot break the caller.
    """
    path = Path(path)
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        logger.warning("Cannot serialize data to JSON", path=str(path), error=str(e))
        return False

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.wait_for(asyncio.to_thread(_write_replace, path, content), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("Atomic write timed out", path=str(path), timeout=timeout)
        return False
    except OSError as e:
        logger.warning("Atomic write failed", path=str(path), error=str(e))
        return False


def atomic_write_json(target_path: Path, data: Any) -> None:
    """
    Atomically write JSON data to a file.

    Raises:
        ValueError: If data cannot be serialized to JSON
        OSError: If the file cannot be written
    """
    target_path = Path(target_path)
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize data to JSON", error=str(e))
        raise ValueError(f"Cannot serialize data to JSON: {e}") from e

    target_path.parent.mkdir(parents=True, exist_ok=True)
    _write_replace(target_path, content)
    logger.debug("Atomic write completed", target=str(target_path))


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document, returning ``default`` when it is missing or corrupt."""
    path = Path(path)
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read JSON file", path=str(path), error=str(e))
        return default
