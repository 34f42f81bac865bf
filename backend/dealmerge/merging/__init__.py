"""Pure merge logic: quality scoring, conflict analysis, master selection, snapshots."""

from dealmerge.merging.conflicts import (
    ConflictAnalysis,
    ConflictResolutionStrategy,
    FieldConflict,
    FieldResolution,
    FieldValue,
    analyze_conflicts,
    detect_field_conflicts,
    resolve_field,
)
from dealmerge.merging.errors import MergeError, MergeNotFoundError, MergeStateError, MergeValidationError
from dealmerge.merging.quality import QualityBreakdown, calculate_data_quality_score, quality_score_breakdown
from dealmerge.merging.selection import MergeStrategy, select_master
from dealmerge.merging.snapshot import SNAPSHOT_VERSION, MergeSnapshot

__all__ = [
    "SNAPSHOT_VERSION",
    "ConflictAnalysis",
    "ConflictResolutionStrategy",
    "FieldConflict",
    "FieldResolution",
    "FieldValue",
    "MergeError",
    "MergeNotFoundError",
    "MergeSnapshot",
    "MergeStateError",
    "MergeStrategy",
    "MergeValidationError",
    "QualityBreakdown",
    "analyze_conflicts",
    "calculate_data_quality_score",
    "detect_field_conflicts",
    "quality_score_breakdown",
    "resolve_field",
    "select_master",
]
