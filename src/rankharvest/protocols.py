"""
Core contracts and dataclasses for RankHarvest.

This module defines the data structures shared by every component of the
crawl-and-reconcile engine (records, targets, snapshots, digests, harvest
outcomes) and the protocols the harvester relies on for its collaborators.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

# ============================================================================
# Enums and Constants
# ============================================================================


class CharacterClass(Enum):
    """Character classes, keyed by the class-icon file the page shows."""

    WARRIOR = "Warrior"
    SORCERER = "Sorcerer"
    TAOIST = "Taoist"
    ARBALIST = "Arbalist"
    LANCER = "Lancer"
    DARKIST = "Darkist"
    UNKNOWN = "Unknown"

    @classmethod
    def from_icon(cls, icon_name: str | None) -> CharacterClass:
        return _ICON_CLASSES.get((icon_name or "").lower(), cls.UNKNOWN)

    @classmethod
    def parse(cls, value: str | None) -> CharacterClass:
        for member in cls:
            if value and member.value.lower() == value.lower():
                return member
        return cls.UNKNOWN


_ICON_CLASSES: Dict[str, CharacterClass] = {
    "char_1.png": CharacterClass.WARRIOR,
    "char_2.png": CharacterClass.SORCERER,
    "char_3.png": CharacterClass.TAOIST,
    "char_4.png": CharacterClass.ARBALIST,
    "char_5.png": CharacterClass.LANCER,
    "char_6.png": CharacterClass.DARKIST,
}


class HarvestStatus(Enum):
    """Classified result of harvesting one target."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    EMPTY = "empty"
    FAILED = "failed"


# ============================================================================
# Data Model
# ============================================================================


@dataclass(frozen=True, slots=True)
class Target:
    """One independently crawled region/server pair."""

    region: str
    server: str
    region_id: int
    server_id: int

    @property
    def key(self) -> str:
        return f"{self.region}_{self.server}"

    def __str__(self) -> str:
        return f"{self.region}/{self.server}"


@dataclass(frozen=True, slots=True)
class Record:
    """A single leaderboard row."""

    rank: int
    name: str
    character_class: CharacterClass = CharacterClass.UNKNOWN
    server: str = ""
    clan: str = ""
    power_score: int = 0
    region: str = ""

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.name.strip().lower(), self.server.strip().lower())

    def with_target(self, target: Target) -> Record:
        """Return a copy tagged with the target's identity."""
        return replace(self, server=self.server or target.server, region=target.region)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["character_class"] = self.character_class.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Record:
        return cls(
            rank=int(data["rank"]),
            name=str(data["name"]),
            character_class=CharacterClass.parse(data.get("character_class")),
            server=str(data.get("server") or ""),
            clan=str(data.get("clan") or ""),
            power_score=int(data.get("power_score") or 0),
            region=str(data.get("region") or ""),
        )


def compute_content_hash(records: Sequence[Record]) -> str:
    """Deterministic digest over a record set, independent of input order."""
    rows = sorted(
        (r.rank, r.name, r.character_class.value, r.server, r.clan, r.power_score) for r in records
    )
    payload = json.dumps(rows, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Snapshot:
    """One immutable captured dataset for a target."""

    id: int
    target_key: str
    captured_at: datetime
    source_tag: str
    content_hash: str
    records: Tuple[Record, ...] = ()

    @property
    def record_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class Digest:
    """Compact snapshot surrogate used for cheap comparisons."""

    target_key: str
    record_count: int
    top_records: Tuple[Record, ...]
    hash: str

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, top_n: int = 10) -> Digest:
        ordered = sorted(snapshot.records, key=lambda r: r.rank)
        return cls(
            target_key=snapshot.target_key,
            record_count=snapshot.record_count,
            top_records=tuple(ordered[:top_n]),
            hash=snapshot.content_hash,
        )


@dataclass
class HarvestOutcome:
    """What happened to one target during a harvest."""

    target: Target
    status: HarvestStatus
    records: List[Record] = field(default_factory=list)
    from_cache: bool = False
    attempts: int = 0
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status in (HarvestStatus.SUCCESS, HarvestStatus.SKIPPED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Collaborator Protocols
# ============================================================================


class SnapshotStoreProtocol(Protocol):
    """Persistence used by the harvester."""

    async def replace_snapshot(self, target_key: str, records: Sequence[Record], source_tag: str) -> Snapshot: ...

    async def mark_target_active(self, target_key: str) -> None: ...

    async def mark_target_inactive(self, target_key: str, reason: str | None = None) -> None: ...

    async def get_digest(self, target_key: str, top_n: int = 10) -> Optional[Digest]: ...

    async def get_latest_snapshot(self, target_key: str) -> Optional[Snapshot]: ...


class PageWalkerProtocol(Protocol):
    """Browser-driven source of records for one target."""

    def target_url(self, target: Target) -> str: ...

    async def fetch_first_page(self, target: Target) -> Any: ...

    async def walk(self, target: Target) -> List[Record]: ...

    async def walk_if_changed(
        self, target: Target, needs_full_walk: Callable[[Any], bool]
    ) -> Optional[List[Record]]: ...
