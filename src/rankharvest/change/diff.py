"""
Structured comparison of two snapshots of the same target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from rankharvest.config.config import DiffConfig
from rankharvest.errors import InvalidSnapshotError
from rankharvest.protocols import Record, Snapshot

logger = structlog.get_logger(__name__)


class ChangeClassification(Enum):
    NO_CHANGES = "no_changes"
    MASS_CHANGE = "mass_change"
    CHANGES = "changes"


@dataclass
class FieldChange:
    old: Any
    new: Any
    significant: bool
    delta: Optional[int] = None


@dataclass
class RecordChange:
    name: str
    server: str
    fields: Dict[str, FieldChange]

    @property
    def significant(self) -> bool:
        return any(change.significant for change in self.fields.values())

    @property
    def power_delta(self) -> int:
        change = self.fields.get("power_score")
        return (change.delta or 0) if change else 0


@dataclass
class ChangeReport:
    target_key: str
    classification: ChangeClassification
    old_snapshot_id: int
    new_snapshot_id: int
    old_count: int
    new_count: int
    added: List[Record] = field(default_factory=list)
    removed: List[Record] = field(default_factory=list)
    changed: List[RecordChange] = field(default_factory=list)
    added_count: int = 0
    removed_count: int = 0
    changed_count: int = 0
    significant_count: int = 0
    average_power_gain: float = 0.0
    change_rate: float = 0.0
    changed_is_complete: bool = True

    @property
    def has_changes(self) -> bool:
        return self.classification is not ChangeClassification.NO_CHANGES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_key": self.target_key,
            "classification": self.classification.value,
            "has_changes": self.has_changes,
            "old_snapshot_id": self.old_snapshot_id,
            "new_snapshot_id": self.new_snapshot_id,
            "old_count": self.old_count,
            "new_count": self.new_count,
            "summary": {
                "added": self.added_count,
                "removed": self.removed_count,
                "changed": self.changed_count,
                "significant": self.significant_count,
                "average_power_gain": self.average_power_gain,
                "change_rate": self.change_rate,
            },
            "added": [r.to_dict() for r in self.added],
            "removed": [r.to_dict() for r in self.removed],
            "changed": [
                {
                    "name": c.name,
                    "server": c.server,
                    "significant": c.significant,
                    "fields": {
                        name: {"old": _plain(fc.old), "new": _plain(fc.new), "delta": fc.delta, "significant": fc.significant}
                        for name, fc in c.fields.items()
                    },
                }
                for c in self.changed
            ],
            "changed_is_complete": self.changed_is_complete,
        }


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SnapshotDiffEngine:
    """Compares two snapshots and classifies the differences.

    Raises InvalidSnapshotError only for structurally invalid input: a
    missing snapshot or snapshots of two different targets.
    """

    def __init__(self, config: Optional[DiffConfig] = None) -> None:
        self.config = config or DiffConfig()

    def diff(self, old: Optional[Snapshot], new: Optional[Snapshot], options: Optional[DiffConfig] = None) -> ChangeReport:
        cfg = options or self.config
        if old is None or new is None:
            raise InvalidSnapshotError("both snapshots are required for a diff")
        if old.target_key != new.target_key:
            raise InvalidSnapshotError(f"cannot compare {old.target_key} with {new.target_key}")

        report = ChangeReport(
            target_key=new.target_key,
            classification=ChangeClassification.NO_CHANGES,
            old_snapshot_id=old.id,
            new_snapshot_id=new.id,
            old_count=old.record_count,
            new_count=new.record_count,
        )

        if old.content_hash == new.content_hash:
            return report

        if self._is_mass_change(old.record_count, new.record_count, cfg):
            report.classification = ChangeClassification.MASS_CHANGE
            logger.info(
                "Mass change detected, skipping full diff",
                target=new.target_key,
                old_count=old.record_count,
                new_count=new.record_count,
            )
            return report

        old_index = _index(old.records)
        new_index = _index(new.records)

        added = [r for key, r in new_index.items() if key not in old_index]
        removed = [r for key, r in old_index.items() if key not in new_index]
        changed: List[RecordChange] = []
        for key, before in old_index.items():
            after = new_index.get(key)
            if after is None:
                continue
            change = self._compare(before, after, cfg)
            if change is not None:
                changed.append(change)

        significant = [c for c in changed if c.significant]
        gains = [c.power_delta for c in changed if c.power_delta > 0]

        report.classification = (
            ChangeClassification.CHANGES if added or removed or changed else ChangeClassification.NO_CHANGES
        )
        report.added_count = len(added)
        report.removed_count = len(removed)
        report.changed_count = len(changed)
        report.significant_count = len(significant)
        report.average_power_gain = sum(gains) / len(gains) if gains else 0.0
        report.change_rate = len(changed) / old.record_count if old.record_count else 0.0
        report.added = sorted(added, key=lambda r: r.rank)[: cfg.max_listed]
        report.removed = sorted(removed, key=lambda r: r.rank)[: cfg.max_listed]
        report.changed_is_complete = old.record_count < cfg.full_changes_below
        report.changed = changed if report.changed_is_complete else significant
        return report

    @staticmethod
    def _is_mass_change(old_count: int, new_count: int, cfg: DiffConfig) -> bool:
        if old_count == 0:
            return new_count > 0
        return abs(new_count - old_count) / old_count > cfg.mass_change_threshold

    @staticmethod
    def _compare(before: Record, after: Record, cfg: DiffConfig) -> Optional[RecordChange]:
        fields: Dict[str, FieldChange] = {}

        if before.rank != after.rank:
            delta = after.rank - before.rank
            # Both endpoint positions count towards the movement window.
            fields["rank"] = FieldChange(before.rank, after.rank, abs(delta) + 1 >= cfg.rank_threshold, delta)

        if before.power_score != after.power_score:
            delta = after.power_score - before.power_score
            if before.power_score:
                significant = abs(delta) * 100 > cfg.score_threshold_percent * before.power_score
            else:
                significant = True
            fields["power_score"] = FieldChange(before.power_score, after.power_score, significant, delta)

        if before.clan != after.clan:
            fields["clan"] = FieldChange(before.clan, after.clan, True)

        if before.character_class != after.character_class:
            fields["character_class"] = FieldChange(before.character_class, after.character_class, True)

        if not fields:
            return None
        return RecordChange(name=after.name, server=after.server, fields=fields)


def _index(records: Tuple[Record, ...] | List[Record]) -> Dict[Tuple[str, str], Record]:
    index: Dict[Tuple[str, str], Record] = {}
    for record in records:
        index.setdefault(record.identity, record)
    return index
