"""Entity row lookups shared by merge services."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.merging.errors import MergeNotFoundError
from dealmerge.merging.quality import quality_score_breakdown
from dealmerge.merging.records import entity_model_for, entity_to_record
from dealmerge.models.entities import MergeableEntityMixin
from dealmerge.schemas.audit import QualityScoreRead


def unique_ids(values: Iterable[str]) -> list[str]:
    """Strip, drop blanks and deduplicate ids while keeping order."""

    cleaned: list[str] = []
    seen: set[str] = set()
    for raw in values:
        value = str(raw).strip()
        if not value or value in seen:
            continue
        seen.add(value)
        cleaned.append(value)
    return cleaned


def load_active_entities(
    db: Session,
    model: type[MergeableEntityMixin],
    entity_ids: Sequence[str],
    *,
    for_update: bool = False,
) -> list[MergeableEntityMixin]:
    """Fetch active rows for the ids in one statement, ordered like the input."""

    if not entity_ids:
        return []
    stmt = select(model).where(model.id.in_(list(entity_ids)), model.status == "active")
    if for_update:
        stmt = stmt.with_for_update()
    rows = {row.id: row for row in db.scalars(stmt).all()}
    return [rows[entity_id] for entity_id in entity_ids if entity_id in rows]


def score_entity(
    db: Session,
    entity_id: str,
    entity_type: str = "deal",
    *,
    as_of: datetime | None = None,
) -> QualityScoreRead:
    """Quality score with per-component breakdown for one stored entity."""

    model = entity_model_for(entity_type)
    row = db.get(model, entity_id)
    if row is None:
        raise MergeNotFoundError(f"Entity {entity_id} not found")
    breakdown = quality_score_breakdown(
        entity_to_record(row),
        entity_type=entity_type,
        as_of=as_of,
        recency_horizon_days=get_settings().recency_horizon_days,
    )
    return QualityScoreRead(
        entity_id=entity_id,
        entity_type=entity_type,
        quality_score=breakdown.total,
        breakdown=breakdown.as_dict(),
    )
