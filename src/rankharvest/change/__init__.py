"""Change estimation and snapshot comparison."""

from .diff import ChangeClassification, ChangeReport, FieldChange, RecordChange, SnapshotDiffEngine
from .estimator import ChangeEstimator, Estimate, FreshSample

__all__ = [
    "ChangeClassification",
    "ChangeReport",
    "ChangeEstimator",
    "Estimate",
    "FieldChange",
    "FreshSample",
    "RecordChange",
    "SnapshotDiffEngine",
]
