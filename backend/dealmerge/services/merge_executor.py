"""Transactional merge execution.

One merge runs FETCH, RESOLVE, APPLY_TARGET, WRITE_HISTORY, UPDATE_SOURCES,
UPDATE_DUPLICATE_LINKS and UPDATE_CLUSTER_LINKS inside a single transaction.
Any failure rolls the whole unit back and re-raises the original exception.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import String, cast, or_, select, update
from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.db.transaction import unit_of_work
from dealmerge.merging.conflicts import FieldConflict, FieldResolution, analyze_conflicts, resolve_field
from dealmerge.merging.errors import MergeNotFoundError, MergeValidationError
from dealmerge.merging.records import (
    LIKE_ESCAPE,
    entity_model_for,
    entity_to_record,
    json_member_pattern,
    to_json_record,
    to_json_value,
)
from dealmerge.merging.snapshot import MergeSnapshot
from dealmerge.models.duplicates import DuplicateCluster, DuplicateDetection
from dealmerge.models.entities import MergeableEntityMixin
from dealmerge.models.field_conflict import FieldConflictRecord
from dealmerge.models.merge_history import MergeHistory
from dealmerge.schemas.merge import MergeOptions, MergeResult
from dealmerge.services.entities import load_active_entities, unique_ids

logger = logging.getLogger(__name__)


def merge_entities(
    db: Session,
    source_entity_ids: Sequence[str],
    target_entity_id: str,
    options: MergeOptions | None = None,
    *,
    now: datetime | None = None,
) -> MergeResult:
    """Merge the source entities into the target in one transaction."""

    options = options or MergeOptions()
    target_id = str(target_entity_id or "").strip()
    source_ids = [entity_id for entity_id in unique_ids(source_entity_ids) if entity_id != target_id]
    if not source_ids:
        raise MergeValidationError("At least 1 source entity required")
    if not target_id:
        raise MergeValidationError("Target entity id is required")

    started = perf_counter()
    try:
        with unit_of_work(db, operation="merge_entities"):
            result = apply_merge(db, source_ids, target_id, options, now=now)
    except Exception:
        logger.exception(
            "merge.failed target_id=%s source_ids=%s elapsed_ms=%.2f",
            target_id,
            ",".join(source_ids),
            (perf_counter() - started) * 1000.0,
        )
        raise

    logger.info(
        (
            "merge.executed entity_type=%s target_id=%s source_count=%d merge_history_id=%s "
            "conflicts_resolved=%d conflicts_pending=%d strategy=%s total_ms=%.2f"
        ),
        options.entity_type,
        target_id,
        len(result.source_entity_ids),
        result.merge_history_id,
        result.conflicts_resolved,
        result.conflicts_pending,
        options.conflict_resolution.value,
        (perf_counter() - started) * 1000.0,
    )
    return result


def apply_merge(
    db: Session,
    source_ids: Sequence[str],
    target_id: str,
    options: MergeOptions,
    *,
    now: datetime | None = None,
) -> MergeResult:
    """Run every merge step on the caller's open transaction without committing."""

    settings = get_settings()
    timestamp = now or datetime.now(timezone.utc)
    model = entity_model_for(options.entity_type)

    rows = load_active_entities(db, model, [target_id, *source_ids], for_update=True)
    target_row = next((row for row in rows if row.id == target_id), None)
    if target_row is None:
        raise MergeNotFoundError(f"Target entity {target_id} not found")
    if len(rows) < 2:
        raise MergeValidationError(f"Only {len(rows)} active entity found, need at least 2")
    source_rows = [row for row in rows if row.id != target_id]
    merged_source_ids = [row.id for row in source_rows]

    warnings: list[str] = []
    skipped = [entity_id for entity_id in source_ids if entity_id not in merged_source_ids]
    if skipped:
        warnings.append(f"Skipped {len(skipped)} source entities that are missing or no longer active")

    pre_merge = {row.id: entity_to_record(row) for row in rows}
    analysis = analyze_conflicts(list(pre_merge.values()), confidence_epsilon=settings.confidence_epsilon)
    resolutions = [
        resolve_field(
            conflict,
            options.conflict_resolution,
            target_id=target_id,
            source_ids=merged_source_ids,
        )
        for conflict in analysis.conflicts
    ]

    _apply_target(target_row, resolutions, timestamp)
    db.flush()
    merged_data = to_json_record(entity_to_record(target_row))

    snapshot = MergeSnapshot(
        target_entity_id=target_id,
        source_entity_ids=tuple(merged_source_ids),
        merged_data=merged_data,
        pre_merge={entity_id: to_json_record(record) for entity_id, record in pre_merge.items()},
        conflicts=tuple(conflict.as_dict() for conflict in analysis.conflicts),
        merge_strategy=options.merge_strategy.value,
        conflict_resolution_strategy=options.conflict_resolution.value,
        preserve_source=options.preserve_source,
    )
    history = _write_history(db, snapshot, analysis.conflicts, resolutions, options, timestamp)

    _update_sources(db, source_rows, target_id, options.preserve_source, timestamp)
    _update_duplicate_links(
        db,
        options.entity_type,
        [target_id, *merged_source_ids],
        history.id,
        options.merged_by,
        timestamp,
    )
    _update_cluster_links(db, options.entity_type, [target_id, *merged_source_ids], target_id, history.id, timestamp)
    db.flush()

    pending = sum(1 for resolution in resolutions if resolution.pending)
    if pending:
        warnings.append(f"{pending} conflicting fields need manual verification")
    return MergeResult(
        success=True,
        merged_entity_id=target_id,
        source_entity_ids=merged_source_ids,
        merge_history_id=history.id,
        merged_data=merged_data,
        conflicts_resolved=len(resolutions) - pending,
        conflicts_pending=pending,
        warnings=warnings,
        timestamp=timestamp,
    )


def _apply_target(
    target_row: MergeableEntityMixin,
    resolutions: Sequence[FieldResolution],
    timestamp: datetime,
) -> None:
    for resolution in resolutions:
        setattr(target_row, resolution.field_name, resolution.value)
    target_row.updated_at = timestamp


def _write_history(
    db: Session,
    snapshot: MergeSnapshot,
    conflicts: Sequence[FieldConflict],
    resolutions: Sequence[FieldResolution],
    options: MergeOptions,
    timestamp: datetime,
) -> MergeHistory:
    history = MergeHistory(
        merge_type=options.merge_type,
        entity_type=options.entity_type,
        target_entity_id=snapshot.target_entity_id,
        source_entity_ids=list(snapshot.source_entity_ids),
        merge_strategy=snapshot.merge_strategy,
        conflict_resolution_strategy=snapshot.conflict_resolution_strategy,
        conflict_resolution={
            resolution.field_name: {
                "value": to_json_value(resolution.value),
                "pending": resolution.pending,
                "reason": resolution.reason,
            }
            for resolution in resolutions
        },
        merged_data=snapshot.to_json(),
        snapshot_version=snapshot.version,
        merged_by=options.merged_by,
        notes=options.notes,
        can_unmerge=True,
        unmerged=False,
        created_at=timestamp,
    )
    db.add(history)
    db.flush()

    for conflict, resolution in zip(conflicts, resolutions):
        db.add(
            FieldConflictRecord(
                merge_history_id=history.id,
                field_name=conflict.field_name,
                source_values=[item.as_dict() for item in conflict.values],
                chosen_value=to_json_value(resolution.value),
                resolution_strategy=resolution.strategy.value,
                suggested_reason=conflict.suggested_reason[:255],
                requires_manual_review=resolution.pending,
                manual_override=False,
                created_at=timestamp,
            )
        )
    db.flush()
    return history


def _update_sources(
    db: Session,
    source_rows: Sequence[MergeableEntityMixin],
    target_id: str,
    preserve_source: bool,
    timestamp: datetime,
) -> None:
    for row in source_rows:
        if preserve_source:
            row.status = "merged"
            note = f"Merged into {target_id}"
            row.notes = f"{row.notes}\n{note}" if row.notes else note
            row.updated_at = timestamp
        else:
            # Pre-merge state lives in the history snapshot for reversal.
            db.delete(row)
    db.flush()


def _update_duplicate_links(
    db: Session,
    entity_type: str,
    entity_ids: Sequence[str],
    merge_history_id: str,
    merged_by: str,
    timestamp: datetime,
) -> int:
    result = db.execute(
        update(DuplicateDetection)
        .where(
            DuplicateDetection.entity_type == entity_type,
            DuplicateDetection.status == "pending",
            or_(
                DuplicateDetection.entity_id_1.in_(list(entity_ids)),
                DuplicateDetection.entity_id_2.in_(list(entity_ids)),
            ),
        )
        .values(
            status="merged",
            merge_history_id=merge_history_id,
            resolved_at=timestamp,
            resolved_by=merged_by,
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def _update_cluster_links(
    db: Session,
    entity_type: str,
    entity_ids: Sequence[str],
    target_id: str,
    merge_history_id: str,
    timestamp: datetime,
) -> int:
    involved = set(entity_ids)
    members = cast(DuplicateCluster.entity_ids, String)
    membership = [members.like(json_member_pattern(entity_id), escape=LIKE_ESCAPE) for entity_id in sorted(involved)]
    clusters = db.scalars(
        select(DuplicateCluster).where(
            DuplicateCluster.entity_type == entity_type,
            DuplicateCluster.status == "active",
            or_(*membership),
        )
    ).all()
    touched = 0
    for cluster in clusters:
        if not involved.intersection(cluster.entity_ids or []):
            continue
        cluster.status = "merged"
        cluster.master_entity_id = target_id
        cluster.merge_history_id = merge_history_id
        cluster.updated_at = timestamp
        touched += 1
    db.flush()
    return touched
