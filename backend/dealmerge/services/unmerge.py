"""Reversal of an executed merge from its history snapshot."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.db.transaction import unit_of_work
from dealmerge.merging.errors import MergeNotFoundError, MergeStateError
from dealmerge.merging.records import (
    LINEAGE_FIELDS,
    coerce_datetime,
    column_names,
    comparison_key,
    entity_model_for,
    from_json_value,
    to_json_value,
)
from dealmerge.merging.snapshot import MergeSnapshot
from dealmerge.models.duplicates import DuplicateCluster, DuplicateDetection
from dealmerge.models.entities import MergeableEntityMixin
from dealmerge.models.merge_history import MergeHistory
from dealmerge.schemas.merge import UnmergeResult

logger = logging.getLogger(__name__)


def unmerge_entities(
    db: Session,
    merge_history_id: str,
    reason: str = "Unmerge requested",
    unmerged_by: str = "system",
    *,
    now: datetime | None = None,
) -> UnmergeResult:
    """Restore the sources of one merge and mark its history row unmerged."""

    timestamp = now or datetime.now(timezone.utc)
    try:
        with unit_of_work(db, operation="unmerge_entities"):
            history = _lookup_history(db, merge_history_id)
            _validate_reversible(history, timestamp)
            snapshot = MergeSnapshot.from_json(history.merged_data)
            restored_ids = _restore_sources(db, history, snapshot, timestamp)
            _restore_target_fields(db, history, snapshot, timestamp)

            history.unmerged = True
            history.unmerged_at = timestamp
            history.unmerged_by = unmerged_by
            history.unmerge_reason = reason
            db.flush()

            _restore_duplicate_links(db, history.id)
            _restore_clusters(db, history.id, timestamp)
    except Exception:
        logger.exception("merge.unmerge_failed merge_history_id=%s", merge_history_id)
        raise

    logger.info(
        "merge.unmerged merge_history_id=%s restored_count=%d unmerged_by=%s",
        merge_history_id,
        len(restored_ids),
        unmerged_by,
    )
    return UnmergeResult(
        success=True,
        restored_entity_ids=restored_ids,
        merge_history_id=merge_history_id,
        reason=reason,
        timestamp=timestamp,
    )


def _lookup_history(db: Session, merge_history_id: str) -> MergeHistory:
    history = db.scalar(
        select(MergeHistory)
        .where(MergeHistory.id == merge_history_id, MergeHistory.unmerged.is_(False))
        .with_for_update()
    )
    if history is None:
        raise MergeNotFoundError("Merge history not found or already unmerged")
    return history


def _validate_reversible(history: MergeHistory, timestamp: datetime) -> None:
    if not history.can_unmerge:
        raise MergeStateError("This merge cannot be unmerged (marked as irreversible)")
    window_hours = get_settings().merge_undo_window_hours
    merged_at = coerce_datetime(history.created_at)
    if merged_at is None or timestamp - merged_at > timedelta(hours=window_hours):
        raise MergeStateError(f"Merge cannot be undone after {window_hours} hours")


def _restore_sources(
    db: Session,
    history: MergeHistory,
    snapshot: MergeSnapshot,
    timestamp: datetime,
) -> list[str]:
    model = entity_model_for(history.entity_type)
    columns = column_names(model)
    restored: list[str] = []
    for source_id in history.source_entity_ids:
        record = snapshot.pre_merge.get(source_id)
        row = db.get(model, source_id)
        if row is None:
            if record is None:
                raise MergeStateError(f"Merge snapshot has no record for source entity {source_id}")
            row = model(**_restorable_values(model, columns, record))
            db.add(row)
        elif record is not None:
            row.notes = record.get("notes")
        row.status = "active"
        row.updated_at = timestamp
        restored.append(source_id)
    db.flush()
    return restored


def _restore_target_fields(
    db: Session,
    history: MergeHistory,
    snapshot: MergeSnapshot,
    timestamp: datetime,
) -> None:
    model = entity_model_for(history.entity_type)
    target = db.get(model, history.target_entity_id)
    record = snapshot.pre_merge.get(history.target_entity_id)
    if target is None or record is None:
        return
    for field_name, resolution in (history.conflict_resolution or {}).items():
        if field_name not in record:
            continue
        current = getattr(target, field_name)
        if field_name in LINEAGE_FIELDS:
            setattr(target, field_name, _strip_lineage(db, history, snapshot, field_name, current, record[field_name]))
            continue
        applied = resolution.get("value") if isinstance(resolution, dict) else None
        # Changed by a later merge or a manual resolution since this merge.
        if comparison_key(to_json_value(current)) != comparison_key(applied):
            continue
        setattr(target, field_name, from_json_value(model, field_name, record[field_name]))
    target.updated_at = timestamp
    db.flush()


def _strip_lineage(
    db: Session,
    history: MergeHistory,
    snapshot: MergeSnapshot,
    field_name: str,
    current: Any,
    target_before: Any,
) -> list[Any]:
    """Drop only the lineage entries this merge's sources brought in."""

    contributed = {
        comparison_key(item)
        for source_id in history.source_entity_ids
        for item in (snapshot.pre_merge.get(source_id) or {}).get(field_name) or []
    }
    keep = {comparison_key(item) for item in target_before or []}
    keep |= _later_lineage(db, history, field_name)
    removed = contributed - keep
    return [item for item in current or [] if comparison_key(item) not in removed]


def _later_lineage(db: Session, history: MergeHistory, field_name: str) -> set[str]:
    later = db.scalars(
        select(MergeHistory).where(
            MergeHistory.entity_type == history.entity_type,
            MergeHistory.target_entity_id == history.target_entity_id,
            MergeHistory.unmerged.is_(False),
            MergeHistory.id != history.id,
            MergeHistory.created_at >= history.created_at,
        )
    ).all()
    keys: set[str] = set()
    for row in later:
        pre_merge = MergeSnapshot.from_json(row.merged_data).pre_merge
        for source_id in row.source_entity_ids:
            keys.update(comparison_key(item) for item in (pre_merge.get(source_id) or {}).get(field_name) or [])
    return keys


def _restorable_values(
    model: type[MergeableEntityMixin],
    columns: set[str],
    record: dict[str, object],
) -> dict[str, object]:
    return {
        key: from_json_value(model, key, value)
        for key, value in record.items()
        if key in columns
    }


def _restore_duplicate_links(db: Session, merge_history_id: str) -> int:
    result = db.execute(
        update(DuplicateDetection)
        .where(
            DuplicateDetection.merge_history_id == merge_history_id,
            DuplicateDetection.status == "merged",
        )
        .values(status="pending", merge_history_id=None, resolved_at=None, resolved_by=None)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def _restore_clusters(db: Session, merge_history_id: str, timestamp: datetime) -> int:
    clusters = db.scalars(
        select(DuplicateCluster).where(DuplicateCluster.merge_history_id == merge_history_id)
    ).all()
    for cluster in clusters:
        cluster.status = "active"
        cluster.master_entity_id = None
        cluster.merge_history_id = None
        cluster.updated_at = timestamp
    db.flush()
    return len(clusters)
