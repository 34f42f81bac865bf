"""Read-only merge preview."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.merging.conflicts import analyze_conflicts
from dealmerge.merging.errors import MergeValidationError
from dealmerge.merging.quality import calculate_data_quality_score
from dealmerge.merging.records import entity_model_for, entity_to_record, to_json_record
from dealmerge.merging.selection import MergeStrategy, select_master
from dealmerge.schemas.merge import FieldConflictRead, MergePreview
from dealmerge.services.entities import load_active_entities, unique_ids

logger = logging.getLogger(__name__)


def preview_merge(
    db: Session,
    entity_ids: Sequence[str],
    entity_type: str = "deal",
    *,
    as_of: datetime | None = None,
) -> MergePreview:
    """Recommend a master and per-field values without writing anything."""

    settings = get_settings()
    requested = unique_ids(entity_ids)
    if len(requested) < 2:
        raise MergeValidationError("At least 2 entities required for merge preview")

    model = entity_model_for(entity_type)
    rows = load_active_entities(db, model, requested)
    if len(rows) < 2:
        raise MergeValidationError(
            f"At least 2 entities required for merge preview; only {len(rows)} found"
        )

    reference = as_of or datetime.now(timezone.utc)
    records = [entity_to_record(row) for row in rows]
    analysis = analyze_conflicts(records, confidence_epsilon=settings.confidence_epsilon)
    master, master_reason = select_master(
        records,
        MergeStrategy.KEEP_HIGHEST_QUALITY,
        entity_type=entity_type,
        as_of=reference,
        recency_horizon_days=settings.recency_horizon_days,
    )

    resolved_fields = dict(master)
    for conflict in analysis.conflicts:
        resolved_fields[conflict.field_name] = conflict.suggested_value

    quality_scores = {
        str(record["id"]): calculate_data_quality_score(
            record,
            entity_type=entity_type,
            as_of=reference,
            recency_horizon_days=settings.recency_horizon_days,
        )
        for record in records
    }
    confidence = merge_confidence(
        conflict_count=len(analysis.conflicts),
        compared_field_count=len(analysis.compared_fields),
        quality_scores=list(quality_scores.values()),
    )

    warnings: list[str] = []
    if len(analysis.conflicts) > settings.preview_conflict_warning_threshold:
        warnings.append(
            f"High number of conflicts ({len(analysis.conflicts)}). Manual review recommended."
        )
    if analysis.manual_review_count:
        warnings.append(f"{analysis.manual_review_count} conflicts require manual review")
    if confidence < settings.preview_low_confidence_threshold:
        warnings.append(f"Low merge confidence ({confidence:.2f}). Verify results carefully.")

    logger.info(
        "merge.preview entity_type=%s entity_count=%d conflicts=%d suggested_master=%s confidence=%.3f",
        entity_type,
        len(records),
        len(analysis.conflicts),
        master["id"],
        confidence,
    )
    return MergePreview(
        entity_type=entity_type,
        source_data=[to_json_record(record) for record in records],
        conflicts=[FieldConflictRead.from_conflict(conflict) for conflict in analysis.conflicts],
        resolved_fields=to_json_record(resolved_fields),
        suggested_master=str(master["id"]),
        suggested_master_reason=master_reason,
        quality_scores=quality_scores,
        confidence=confidence,
        warnings=warnings,
    )


def merge_confidence(
    *,
    conflict_count: int,
    compared_field_count: int,
    quality_scores: Sequence[float],
) -> float:
    """Blend conflict density and average quality into one figure in [0, 1]."""

    density = conflict_count / compared_field_count if compared_field_count else 0.0
    average_quality = sum(quality_scores) / len(quality_scores) if quality_scores else 0.0
    blended = 0.5 * (1.0 - min(density, 1.0)) + 0.5 * average_quality
    return max(0.0, min(1.0, blended))
