"""Merge history queries, manual conflict resolution and audit export."""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import String, case, cast, func, or_, select
from sqlalchemy.orm import Session

from dealmerge.db.transaction import unit_of_work
from dealmerge.merging.conflicts import ConflictResolutionStrategy
from dealmerge.merging.errors import MergeNotFoundError, MergeStateError, MergeValidationError
from dealmerge.merging.records import (
    LIKE_ESCAPE,
    RESERVED_FIELDS,
    column_names,
    entity_model_for,
    entity_to_record,
    from_json_value,
    json_member_pattern,
    to_json_record,
    to_json_value,
)
from dealmerge.models.field_conflict import FieldConflictRecord
from dealmerge.models.merge_history import MergeHistory
from dealmerge.schemas.audit import (
    ConflictResolution,
    FieldConflictRecordRead,
    MergeAuditFilter,
    MergeHistoryDetails,
    MergeHistoryRead,
    MergeStatistics,
    MergeTypeCount,
)

logger = logging.getLogger(__name__)

AUDIT_CSV_COLUMNS = [
    "id",
    "mergeDate",
    "mergedBy",
    "entityType",
    "mergeType",
    "strategy",
    "targetId",
    "sourceCount",
    "isUnmerged",
    "unmergedDate",
    "unmergeReason",
]


def list_merge_history(
    db: Session,
    entity_type: str | None = None,
    merge_type: str | None = None,
    unmerged_only: bool = False,
    limit: int = 50,
) -> list[MergeHistoryRead]:
    stmt = select(MergeHistory)
    if entity_type:
        stmt = stmt.where(MergeHistory.entity_type == entity_type)
    if merge_type:
        stmt = stmt.where(MergeHistory.merge_type == merge_type)
    if unmerged_only:
        stmt = stmt.where(MergeHistory.unmerged.is_(True))
    stmt = stmt.order_by(MergeHistory.created_at.desc(), MergeHistory.id.asc()).limit(max(1, min(limit, 500)))
    return [MergeHistoryRead.model_validate(row) for row in db.scalars(stmt).all()]


def get_merge_history_details(db: Session, merge_history_id: str) -> MergeHistoryDetails:
    """Return the history row, its snapshot, its conflicts and the current entity rows."""

    history = db.get(MergeHistory, merge_history_id)
    if history is None:
        raise MergeNotFoundError(f"Merge history {merge_history_id} not found")

    model = entity_model_for(history.entity_type)
    target = db.get(model, history.target_entity_id)
    sources = [db.get(model, source_id) for source_id in history.source_entity_ids]
    return MergeHistoryDetails(
        history=MergeHistoryRead.model_validate(history),
        snapshot=dict(history.merged_data or {}),
        conflicts=list_field_conflicts(db, merge_history_id),
        target_entity=to_json_record(entity_to_record(target)) if target is not None else None,
        source_entities=[to_json_record(entity_to_record(row)) for row in sources if row is not None],
    )


def list_entity_merge_history(db: Session, entity_id: str) -> list[MergeHistoryRead]:
    """Merges where the entity was the target or one of the sources."""

    rows = db.scalars(
        select(MergeHistory)
        .where(
            or_(
                MergeHistory.target_entity_id == entity_id,
                cast(MergeHistory.source_entity_ids, String).like(
                    json_member_pattern(entity_id), escape=LIKE_ESCAPE
                ),
            )
        )
        .order_by(MergeHistory.created_at.desc(), MergeHistory.id.asc())
    ).all()
    return [
        MergeHistoryRead.model_validate(row)
        for row in rows
        if row.target_entity_id == entity_id or entity_id in (row.source_entity_ids or [])
    ]


def list_field_conflicts(db: Session, merge_history_id: str) -> list[FieldConflictRecordRead]:
    rows = db.scalars(
        select(FieldConflictRecord)
        .where(FieldConflictRecord.merge_history_id == merge_history_id)
        .order_by(FieldConflictRecord.field_name.asc())
    ).all()
    return [FieldConflictRecordRead.model_validate(row) for row in rows]


def resolve_field_conflict(
    db: Session,
    conflict_id: str,
    chosen_value: Any,
    strategy: ConflictResolutionStrategy | str = ConflictResolutionStrategy.MANUAL,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> ConflictResolution:
    """Record a human choice for one conflict and write it onto the merge target."""

    strategy = ConflictResolutionStrategy(strategy)
    timestamp = now or datetime.now(timezone.utc)
    with unit_of_work(db, operation="resolve_field_conflict"):
        conflict = db.get(FieldConflictRecord, conflict_id)
        if conflict is None:
            raise MergeNotFoundError(f"Conflict {conflict_id} not found")
        history = db.get(MergeHistory, conflict.merge_history_id)
        if history is None:
            raise MergeNotFoundError(f"Merge history {conflict.merge_history_id} not found")
        if history.unmerged:
            raise MergeStateError("Cannot resolve conflicts of a merge that was unmerged")

        model = entity_model_for(history.entity_type)
        field_name = conflict.field_name
        if field_name in RESERVED_FIELDS or field_name not in column_names(model):
            raise MergeValidationError(f"Field '{field_name}' cannot be written on {history.entity_type}")

        conflict.chosen_value = to_json_value(chosen_value)
        conflict.resolution_strategy = strategy.value
        conflict.manual_override = True
        conflict.requires_manual_review = False
        conflict.notes = notes

        target = db.get(model, history.target_entity_id)
        target_updated = target is not None and target.status == "active"
        if target_updated:
            setattr(target, field_name, from_json_value(model, field_name, chosen_value))
            target.updated_at = timestamp
        db.flush()
        resolution = ConflictResolution(
            conflict=FieldConflictRecordRead.model_validate(conflict),
            target_entity_id=history.target_entity_id,
            target_updated=target_updated,
        )

    logger.info(
        "merge.conflict_resolved conflict_id=%s field=%s target_id=%s target_updated=%s",
        conflict_id,
        field_name,
        resolution.target_entity_id,
        resolution.target_updated,
    )
    return resolution


def get_merge_statistics(db: Session, days: int = 30, *, now: datetime | None = None) -> MergeStatistics:
    """Merge and conflict totals for merges created in the last `days` days."""

    if days < 1:
        raise MergeValidationError("days must be at least 1")
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    unmerged_flag = case((MergeHistory.unmerged.is_(True), 1), else_=0)

    grouped = db.execute(
        select(
            MergeHistory.merge_type,
            MergeHistory.entity_type,
            func.count(MergeHistory.id),
            func.coalesce(func.sum(unmerged_flag), 0),
        )
        .where(MergeHistory.created_at >= cutoff)
        .group_by(MergeHistory.merge_type, MergeHistory.entity_type)
        .order_by(MergeHistory.merge_type.asc(), MergeHistory.entity_type.asc())
    ).all()
    by_type = [
        MergeTypeCount(
            merge_type=merge_type,
            entity_type=entity_type,
            total=int(total),
            unmerged=int(unmerged),
        )
        for merge_type, entity_type, total, unmerged in grouped
    ]

    total_conflicts, manually_resolved, pending_review = db.execute(
        select(
            func.count(FieldConflictRecord.id),
            func.coalesce(func.sum(case((FieldConflictRecord.manual_override.is_(True), 1), else_=0)), 0),
            func.coalesce(
                func.sum(case((FieldConflictRecord.requires_manual_review.is_(True), 1), else_=0)),
                0,
            ),
        )
        .join(MergeHistory, MergeHistory.id == FieldConflictRecord.merge_history_id)
        .where(MergeHistory.created_at >= cutoff)
    ).one()

    recent = db.scalars(
        select(MergeHistory)
        .where(MergeHistory.created_at >= cutoff)
        .order_by(MergeHistory.created_at.desc(), MergeHistory.id.asc())
        .limit(20)
    ).all()
    return MergeStatistics(
        period_days=days,
        total_merges=sum(item.total for item in by_type),
        unmerged_merges=sum(item.unmerged for item in by_type),
        by_type=by_type,
        total_conflicts=int(total_conflicts or 0),
        manually_resolved_conflicts=int(manually_resolved or 0),
        pending_manual_review=int(pending_review or 0),
        recent_activity=[MergeHistoryRead.model_validate(row) for row in recent],
    )


def export_merge_history_csv(db: Session, audit_filter: MergeAuditFilter | None = None) -> str:
    """Render matching merge history rows as CSV, newest first; empty string when none match."""

    audit_filter = audit_filter or MergeAuditFilter()
    stmt = select(MergeHistory)
    if audit_filter.start_date is not None:
        stmt = stmt.where(MergeHistory.created_at >= audit_filter.start_date)
    if audit_filter.end_date is not None:
        stmt = stmt.where(MergeHistory.created_at <= audit_filter.end_date)
    if audit_filter.merged_by:
        stmt = stmt.where(MergeHistory.merged_by == audit_filter.merged_by)
    if audit_filter.entity_type:
        stmt = stmt.where(MergeHistory.entity_type == audit_filter.entity_type)
    rows = db.scalars(stmt.order_by(MergeHistory.created_at.desc(), MergeHistory.id.asc())).all()
    if not rows:
        return ""

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=AUDIT_CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(
            {
                "id": row.id,
                "mergeDate": _iso(row.created_at),
                "mergedBy": row.merged_by,
                "entityType": row.entity_type,
                "mergeType": row.merge_type,
                "strategy": row.merge_strategy,
                "targetId": row.target_entity_id,
                "sourceCount": len(row.source_entity_ids or []),
                "isUnmerged": "true" if row.unmerged else "false",
                "unmergedDate": _iso(row.unmerged_at),
                "unmergeReason": row.unmerge_reason or "",
            }
        )
    logger.info("merge.audit_export rows=%d", len(rows))
    return buffer.getvalue()


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""
