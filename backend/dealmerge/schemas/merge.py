"""Merge operation options, results and request payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from dealmerge.merging.conflicts import ConflictResolutionStrategy, FieldConflict
from dealmerge.merging.selection import MergeStrategy
from dealmerge.schemas.common import EntityType


class MergeOptions(BaseModel):
    """Caller-selectable knobs for one merge."""

    merge_strategy: MergeStrategy = MergeStrategy.KEEP_HIGHEST_QUALITY
    conflict_resolution: ConflictResolutionStrategy = ConflictResolutionStrategy.PREFER_COMPLETE
    preserve_source: bool = False
    merged_by: str = "system"
    notes: str | None = None
    entity_type: EntityType = "deal"
    merge_type: Literal["manual", "automatic"] = "manual"


class FieldValueRead(BaseModel):
    entity_id: str
    value: Any = None
    confidence: float | None = None
    updated_at: datetime | None = None
    is_validated: bool = False


class FieldConflictRead(BaseModel):
    """Serialized field conflict with suggestion."""

    field_name: str
    values: list[FieldValueRead]
    suggested_value: Any = None
    suggested_reason: str
    requires_manual_review: bool

    @classmethod
    def from_conflict(cls, conflict: FieldConflict) -> "FieldConflictRead":
        return cls.model_validate(conflict.as_dict())


class MergePreview(BaseModel):
    """Read-only merge recommendation."""

    entity_type: EntityType
    source_data: list[dict[str, Any]]
    conflicts: list[FieldConflictRead]
    resolved_fields: dict[str, Any]
    suggested_master: str
    suggested_master_reason: str
    quality_scores: dict[str, float]
    confidence: float
    warnings: list[str]


class MergeResult(BaseModel):
    """Outcome of one executed merge."""

    success: bool
    merged_entity_id: str
    source_entity_ids: list[str]
    merge_history_id: str
    merged_data: dict[str, Any]
    conflicts_resolved: int
    conflicts_pending: int
    warnings: list[str] = Field(default_factory=list)
    timestamp: datetime


class UnmergeResult(BaseModel):
    """Outcome of reversing one merge."""

    success: bool
    restored_entity_ids: list[str]
    merge_history_id: str
    reason: str
    timestamp: datetime


class ClusterMergeError(BaseModel):
    cluster_id: str
    error: str


class BatchMergeResult(BaseModel):
    """Outcome of an auto-merge sweep."""

    success: bool
    dry_run: bool
    total_clusters: int
    merged_clusters: int
    failed_clusters: int
    candidate_cluster_ids: list[str]
    merge_results: list[MergeResult]
    errors: list[ClusterMergeError]
    timestamp: datetime


class SuggestedEntity(BaseModel):
    id: str
    name: str | None


class MergeSuggestion(BaseModel):
    """Ranked candidate pair with a recommended action."""

    entities: list[SuggestedEntity]
    confidence: float
    reasoning: str
    suggested_action: Literal["auto_merge", "manual_review", "ignore"]


class MergePreviewRequest(BaseModel):
    entity_ids: list[str] = Field(min_length=2)
    entity_type: EntityType = "deal"


class MergeExecuteRequest(BaseModel):
    source_entity_ids: list[str] = Field(min_length=1)
    target_entity_id: str = Field(min_length=1)
    merge_strategy: MergeStrategy = MergeStrategy.KEEP_HIGHEST_QUALITY
    conflict_resolution: ConflictResolutionStrategy = ConflictResolutionStrategy.PREFER_COMPLETE
    preserve_source: bool = False
    merged_by: str = "user"
    notes: str | None = None
    entity_type: EntityType = "deal"

    def to_options(self) -> MergeOptions:
        return MergeOptions(
            merge_strategy=self.merge_strategy,
            conflict_resolution=self.conflict_resolution,
            preserve_source=self.preserve_source,
            merged_by=self.merged_by,
            notes=self.notes,
            entity_type=self.entity_type,
        )


class ClusterMergeRequest(BaseModel):
    master_entity_id: str | None = None
    merge_strategy: MergeStrategy = MergeStrategy.KEEP_HIGHEST_QUALITY
    conflict_resolution: ConflictResolutionStrategy = ConflictResolutionStrategy.PREFER_COMPLETE
    merged_by: str = "user"

    def to_options(self) -> MergeOptions:
        return MergeOptions(
            merge_strategy=self.merge_strategy,
            conflict_resolution=self.conflict_resolution,
            merged_by=self.merged_by,
        )


class AutoMergeRequest(BaseModel):
    threshold: float = Field(default=0.95, ge=0.5, le=1.0)
    dry_run: bool = True
    entity_type: EntityType = "deal"


class UnmergeRequest(BaseModel):
    reason: str = Field(default="Unmerge requested by user", min_length=1)
    unmerged_by: str = "user"

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("reason must not be blank")
        return cleaned


class ConflictResolveRequest(BaseModel):
    chosen_value: Any
    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.MANUAL
    notes: str | None = None
