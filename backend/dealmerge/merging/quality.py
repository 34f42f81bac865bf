"""Deterministic data quality scoring for one entity record."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from dealmerge.merging.records import coerce_datetime, has_meaningful_value

COMPLETENESS_WEIGHT = 0.4
CONFIDENCE_WEIGHT = 0.3
VALIDATION_WEIGHT = 0.2
RECENCY_WEIGHT = 0.1

DEFAULT_RECENCY_HORIZON_DAYS = 180
_NEUTRAL_RECENCY = 0.5
_NEUTRAL_VALIDATION = 0.5

CORE_FIELDS: dict[str, tuple[str, ...]] = {
    "deal": ("deal_name", "customer_name", "deal_value", "currency", "close_date", "vendor_id"),
    "vendor": ("name", "website", "industry", "country", "email_domains"),
    "contact": ("name", "email", "phone", "job_title", "vendor_id"),
}


@dataclass(frozen=True, slots=True)
class QualityBreakdown:
    """Per-factor quality values in [0, 1] and their weighted total."""

    completeness: float
    confidence: float
    validation: float
    recency: float
    total: float

    def as_dict(self) -> dict[str, float]:
        return {
            "completeness": self.completeness,
            "confidence": self.confidence,
            "validation": self.validation,
            "recency": self.recency,
            "total": self.total,
        }


def calculate_data_quality_score(
    entity: Mapping[str, Any] | None,
    *,
    entity_type: str = "deal",
    as_of: datetime | None = None,
    recency_horizon_days: int = DEFAULT_RECENCY_HORIZON_DAYS,
) -> float:
    """Score completeness and trust of one entity in [0, 1].

    The score depends only on the entity fields and the `as_of` reference
    instant (defaults to now), so repeated calls with the same inputs agree.
    """

    return quality_score_breakdown(
        entity,
        entity_type=entity_type,
        as_of=as_of,
        recency_horizon_days=recency_horizon_days,
    ).total


def quality_score_breakdown(
    entity: Mapping[str, Any] | None,
    *,
    entity_type: str = "deal",
    as_of: datetime | None = None,
    recency_horizon_days: int = DEFAULT_RECENCY_HORIZON_DAYS,
) -> QualityBreakdown:
    record: Mapping[str, Any] = entity if isinstance(entity, Mapping) else {}
    reference = coerce_datetime(as_of) or datetime.now(timezone.utc)

    completeness = _completeness(record, entity_type)
    confidence = _confidence(record)
    validation = _validation(record)
    recency = _recency(record, reference, recency_horizon_days)
    total = (
        completeness * COMPLETENESS_WEIGHT
        + confidence * CONFIDENCE_WEIGHT
        + validation * VALIDATION_WEIGHT
        + recency * RECENCY_WEIGHT
    )
    return QualityBreakdown(
        completeness=completeness,
        confidence=confidence,
        validation=validation,
        recency=recency,
        total=_clamp(total),
    )


def _completeness(record: Mapping[str, Any], entity_type: str) -> float:
    fields = CORE_FIELDS.get(str(entity_type or "").lower(), CORE_FIELDS["deal"])
    filled = sum(1 for field_name in fields if has_meaningful_value(record.get(field_name)))
    return filled / len(fields)


def _confidence(record: Mapping[str, Any]) -> float:
    raw = record.get("ai_confidence_score")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.0
    if raw != raw:
        return 0.0
    return _clamp(float(raw))


def _validation(record: Mapping[str, Any]) -> float:
    status = record.get("validation_status")
    if status == "passed":
        return 1.0
    if status == "failed":
        return 0.0
    return _NEUTRAL_VALIDATION


def _recency(record: Mapping[str, Any], reference: datetime, horizon_days: int) -> float:
    """1.0 within a day, then linear decay reaching 0.0 at the horizon."""

    updated_at = coerce_datetime(record.get("updated_at")) or coerce_datetime(record.get("created_at"))
    if updated_at is None:
        return _NEUTRAL_RECENCY
    age_days = (reference - updated_at).total_seconds() / 86400.0
    if age_days <= 1.0:
        return 1.0
    horizon = max(float(horizon_days), 2.0)
    if age_days >= horizon:
        return 0.0
    return _clamp(1.0 - (age_days - 1.0) / (horizon - 1.0))


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
