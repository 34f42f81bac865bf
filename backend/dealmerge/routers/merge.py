"""Merge management routes."""

from datetime import datetime
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.db.dependencies import get_db
from dealmerge.merging.conflicts import ConflictResolutionStrategy
from dealmerge.merging.errors import MergeError, MergeNotFoundError, MergeStateError
from dealmerge.merging.selection import MergeStrategy
from dealmerge.schemas.audit import (
    ConflictResolution,
    FieldConflictRecordRead,
    MergeAuditFilter,
    MergeHistoryDetails,
    MergeHistoryRead,
    MergeStatistics,
    QualityScoreRead,
    StrategiesRead,
    StrategyDefaults,
)
from dealmerge.schemas.common import ApiResponse, EntityType
from dealmerge.schemas.merge import (
    AutoMergeRequest,
    BatchMergeResult,
    ClusterMergeRequest,
    ConflictResolveRequest,
    MergeExecuteRequest,
    MergePreview,
    MergePreviewRequest,
    MergeResult,
    MergeSuggestion,
    UnmergeRequest,
    UnmergeResult,
)
from dealmerge.services.audit import (
    export_merge_history_csv,
    get_merge_history_details,
    get_merge_statistics,
    list_entity_merge_history,
    list_field_conflicts,
    list_merge_history,
    resolve_field_conflict,
)
from dealmerge.services.auto_merge import auto_merge_high_confidence_duplicates
from dealmerge.services.clusters import merge_cluster
from dealmerge.services.entities import score_entity
from dealmerge.services.merge_executor import merge_entities
from dealmerge.services.preview import preview_merge
from dealmerge.services.suggestions import get_smart_merge_suggestions
from dealmerge.services.unmerge import unmerge_entities

router = APIRouter(prefix="/merge")


def _raise_http(exc: MergeError) -> NoReturn:
    if isinstance(exc, MergeNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, MergeStateError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/preview", response_model=ApiResponse[MergePreview])
def post_preview(
    payload: MergePreviewRequest,
    db: Session = Depends(get_db),
) -> ApiResponse[MergePreview]:
    """Preview a merge without changing anything."""

    try:
        return ApiResponse(data=preview_merge(db, payload.entity_ids, payload.entity_type))
    except MergeError as exc:
        _raise_http(exc)


@router.post("/execute", response_model=ApiResponse[MergeResult])
def post_execute(
    payload: MergeExecuteRequest,
    db: Session = Depends(get_db),
) -> ApiResponse[MergeResult]:
    """Merge source entities into a target."""

    try:
        result = merge_entities(db, payload.source_entity_ids, payload.target_entity_id, payload.to_options())
    except MergeError as exc:
        _raise_http(exc)
    return ApiResponse(data=result)


@router.post("/cluster/{cluster_id}", response_model=ApiResponse[MergeResult])
def post_cluster_merge(
    payload: ClusterMergeRequest,
    cluster_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[MergeResult]:
    """Merge every member of a duplicate cluster."""

    try:
        result = merge_cluster(db, cluster_id, payload.master_entity_id, payload.to_options())
    except MergeError as exc:
        _raise_http(exc)
    return ApiResponse(data=result)


@router.post("/auto", response_model=ApiResponse[BatchMergeResult])
def post_auto_merge(
    payload: AutoMergeRequest,
    db: Session = Depends(get_db),
) -> ApiResponse[BatchMergeResult]:
    """Merge high-confidence clusters; dry run by default."""

    try:
        result = auto_merge_high_confidence_duplicates(
            db,
            threshold=payload.threshold,
            dry_run=payload.dry_run,
            entity_type=payload.entity_type,
        )
    except MergeError as exc:
        _raise_http(exc)
    return ApiResponse(data=result)


@router.post("/unmerge/{merge_history_id}", response_model=ApiResponse[UnmergeResult])
def post_unmerge(
    payload: UnmergeRequest,
    merge_history_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[UnmergeResult]:
    """Reverse a merge inside the undo window."""

    try:
        result = unmerge_entities(db, merge_history_id, payload.reason, payload.unmerged_by)
    except MergeError as exc:
        _raise_http(exc)
    return ApiResponse(data=result)


@router.get("/suggestions", response_model=ApiResponse[list[MergeSuggestion]])
def get_suggestions(
    entity_type: EntityType = Query(default="deal"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> ApiResponse[list[MergeSuggestion]]:
    """Ranked candidate pairs with a recommended action."""

    return ApiResponse(data=get_smart_merge_suggestions(db, entity_type=entity_type, limit=limit))


@router.get("/history", response_model=ApiResponse[list[MergeHistoryRead]])
def get_history(
    entity_type: EntityType | None = Query(default=None),
    merge_type: str | None = Query(default=None),
    unmerged_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> ApiResponse[list[MergeHistoryRead]]:
    """List merge history, newest first."""

    return ApiResponse(
        data=list_merge_history(
            db,
            entity_type=entity_type,
            merge_type=merge_type,
            unmerged_only=unmerged_only,
            limit=limit,
        )
    )


@router.get("/history/{merge_history_id}/details", response_model=ApiResponse[MergeHistoryDetails])
def get_history_details(
    merge_history_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[MergeHistoryDetails]:
    """One merge with snapshot, conflicts and current entity rows."""

    try:
        return ApiResponse(data=get_merge_history_details(db, merge_history_id))
    except MergeError as exc:
        _raise_http(exc)


@router.get("/entities/{entity_id}/history", response_model=ApiResponse[list[MergeHistoryRead]])
def get_entity_history(
    entity_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[MergeHistoryRead]]:
    """Merges an entity took part in."""

    return ApiResponse(data=list_entity_merge_history(db, entity_id))


@router.get("/conflicts/{merge_history_id}", response_model=ApiResponse[list[FieldConflictRecordRead]])
def get_conflicts(
    merge_history_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[FieldConflictRecordRead]]:
    """Field conflicts recorded for one merge."""

    return ApiResponse(data=list_field_conflicts(db, merge_history_id))


@router.post("/conflicts/{conflict_id}/resolve", response_model=ApiResponse[ConflictResolution])
def post_resolve_conflict(
    payload: ConflictResolveRequest,
    conflict_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[ConflictResolution]:
    """Record a manual value for one conflict and apply it to the merge target."""

    try:
        result = resolve_field_conflict(
            db,
            conflict_id,
            payload.chosen_value,
            strategy=payload.strategy,
            notes=payload.notes,
        )
    except MergeError as exc:
        _raise_http(exc)
    return ApiResponse(data=result)


@router.get("/statistics", response_model=ApiResponse[MergeStatistics])
def get_statistics(
    days: int = Query(default=30, ge=1, le=3650),
    db: Session = Depends(get_db),
) -> ApiResponse[MergeStatistics]:
    """Merge and conflict totals for the trailing period."""

    return ApiResponse(data=get_merge_statistics(db, days=days))


@router.get("/quality-score/{entity_id}", response_model=ApiResponse[QualityScoreRead])
def get_quality_score(
    entity_id: str = Path(..., min_length=1),
    entity_type: EntityType = Query(default="deal"),
    db: Session = Depends(get_db),
) -> ApiResponse[QualityScoreRead]:
    """Quality score and component breakdown for one entity."""

    try:
        return ApiResponse(data=score_entity(db, entity_id, entity_type))
    except MergeError as exc:
        _raise_http(exc)


@router.get("/strategies", response_model=ApiResponse[StrategiesRead])
def get_strategies() -> ApiResponse[StrategiesRead]:
    """Available strategies and their defaults."""

    return ApiResponse(
        data=StrategiesRead(
            merge_strategies=[strategy.value for strategy in MergeStrategy],
            conflict_resolution_strategies=[strategy.value for strategy in ConflictResolutionStrategy],
            defaults=StrategyDefaults(
                merge_strategy=MergeStrategy.KEEP_HIGHEST_QUALITY.value,
                conflict_resolution=ConflictResolutionStrategy.PREFER_COMPLETE.value,
                auto_merge_threshold=get_settings().auto_merge_threshold,
            ),
        )
    )


@router.get("/audit/export", response_class=PlainTextResponse)
def get_audit_export(
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    merged_by: str | None = Query(default=None),
    entity_type: EntityType | None = Query(default=None),
    db: Session = Depends(get_db),
) -> PlainTextResponse:
    """Download merge history as CSV."""

    try:
        audit_filter = MergeAuditFilter(
            start_date=start_date,
            end_date=end_date,
            merged_by=merged_by,
            entity_type=entity_type,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    content = export_merge_history_csv(db, audit_filter)
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="merge-audit.csv"'},
    )


@router.get("/health")
def merge_health() -> dict[str, str]:
    """Merge service health check."""

    return {"status": "ok", "service": "merge"}
