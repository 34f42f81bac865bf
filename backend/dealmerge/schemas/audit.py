"""Merge audit response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dealmerge.schemas.common import EntityType


class MergeHistoryRead(BaseModel):
    """Serialized merge history row without the full snapshot."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    merge_type: str
    entity_type: str
    target_entity_id: str
    source_entity_ids: list[str]
    merge_strategy: str
    conflict_resolution_strategy: str
    merged_by: str
    notes: str | None
    can_unmerge: bool
    unmerged: bool
    unmerged_at: datetime | None
    unmerged_by: str | None
    unmerge_reason: str | None
    created_at: datetime


class FieldConflictRecordRead(BaseModel):
    """Serialized stored field conflict."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    merge_history_id: str
    field_name: str
    source_values: list[dict[str, Any]]
    chosen_value: Any = None
    resolution_strategy: str
    suggested_reason: str | None
    requires_manual_review: bool
    manual_override: bool
    notes: str | None
    created_at: datetime


class MergeHistoryDetails(BaseModel):
    """One merge with its snapshot, conflicts and the entities' current rows."""

    history: MergeHistoryRead
    snapshot: dict[str, Any]
    conflicts: list[FieldConflictRecordRead]
    target_entity: dict[str, Any] | None
    source_entities: list[dict[str, Any]]


class MergeTypeCount(BaseModel):
    merge_type: str
    entity_type: str
    total: int
    unmerged: int


class MergeStatistics(BaseModel):
    """Aggregates over merges created in the trailing period."""

    period_days: int
    total_merges: int
    unmerged_merges: int
    by_type: list[MergeTypeCount]
    total_conflicts: int
    manually_resolved_conflicts: int
    pending_manual_review: int
    recent_activity: list[MergeHistoryRead]


class MergeAuditFilter(BaseModel):
    """Optional filters for the CSV audit export."""

    start_date: datetime | None = None
    end_date: datetime | None = None
    merged_by: str | None = None
    entity_type: EntityType | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "MergeAuditFilter":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class QualityScoreRead(BaseModel):
    entity_id: str
    entity_type: EntityType
    quality_score: float
    breakdown: dict[str, float]


class StrategyDefaults(BaseModel):
    merge_strategy: str
    conflict_resolution: str
    auto_merge_threshold: float


class StrategiesRead(BaseModel):
    merge_strategies: list[str]
    conflict_resolution_strategies: list[str]
    defaults: StrategyDefaults


class ConflictResolution(BaseModel):
    conflict: FieldConflictRecordRead
    target_entity_id: str
    target_updated: bool = Field(default=False)
