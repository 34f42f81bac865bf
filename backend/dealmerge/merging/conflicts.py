"""Field-level conflict detection and per-field resolution.

Conflict analysis is pure: it only looks at the candidate records handed in
and never touches storage.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from dealmerge.merging.records import (
    LINEAGE_FIELDS,
    RESERVED_FIELDS,
    coerce_datetime,
    comparison_key,
    has_meaningful_value,
    is_array_value,
    to_json_value,
    union_arrays,
)

DEFAULT_CONFIDENCE_EPSILON = 0.05

REASON_COMPLETE = "complete value preferred"
REASON_ARRAY_UNION = "array values unioned"
REASON_MOST_RECENT = "most recent value (confidence within tolerance)"
REASON_MANUAL = "conflicting values with equal confidence and recency require manual review"


class ConflictResolutionStrategy(str, Enum):
    """How a merge settles fields on which candidates disagree."""

    PREFER_SOURCE = "source"
    PREFER_TARGET = "target"
    PREFER_COMPLETE = "complete"
    PREFER_VALIDATED = "validated"
    MERGE_ARRAYS = "merge_arrays"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class FieldValue:
    """One candidate's value for a field, with provenance."""

    entity_id: str
    value: Any
    confidence: float | None
    updated_at: datetime | None
    is_validated: bool

    @classmethod
    def from_record(cls, record: Mapping[str, Any], field_name: str) -> "FieldValue":
        raw_confidence = record.get("ai_confidence_score")
        confidence = (
            float(raw_confidence)
            if isinstance(raw_confidence, (int, float)) and not isinstance(raw_confidence, bool)
            else None
        )
        return cls(
            entity_id=str(record.get("id")),
            value=record.get(field_name),
            confidence=confidence,
            updated_at=coerce_datetime(record.get("updated_at")) or coerce_datetime(record.get("created_at")),
            is_validated=record.get("validation_status") == "passed",
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "value": to_json_value(self.value),
            "confidence": self.confidence,
            "updated_at": self.updated_at.isoformat() if self.updated_at is not None else None,
            "is_validated": self.is_validated,
        }


@dataclass(slots=True)
class FieldConflict:
    """A field on which the candidate records disagree."""

    field_name: str
    values: list[FieldValue]
    suggested_value: Any
    suggested_reason: str
    requires_manual_review: bool = False

    @property
    def is_array(self) -> bool:
        return any(is_array_value(item.value) for item in self.values if has_meaningful_value(item.value))

    def value_for(self, entity_id: str) -> FieldValue | None:
        for item in self.values:
            if item.entity_id == entity_id:
                return item
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "field_name": self.field_name,
            "values": [item.as_dict() for item in self.values],
            "suggested_value": to_json_value(self.suggested_value),
            "suggested_reason": self.suggested_reason,
            "requires_manual_review": self.requires_manual_review,
        }


@dataclass(frozen=True, slots=True)
class FieldResolution:
    """Outcome of resolving one conflict under a strategy."""

    field_name: str
    value: Any
    strategy: ConflictResolutionStrategy
    pending: bool = False
    reason: str = ""


@dataclass(slots=True)
class ConflictAnalysis:
    """Conflicts plus how many fields were compared to find them."""

    conflicts: list[FieldConflict] = field(default_factory=list)
    compared_fields: list[str] = field(default_factory=list)

    @property
    def manual_review_count(self) -> int:
        return sum(1 for conflict in self.conflicts if conflict.requires_manual_review)


def compared_field_names(records: Sequence[Mapping[str, Any]]) -> list[str]:
    """Non-reserved field names present on any record, in first-seen order."""

    names: list[str] = []
    seen: set[str] = set()
    for record in records:
        for name in record.keys():
            if name in RESERVED_FIELDS or name in seen:
                continue
            seen.add(name)
            names.append(name)
    return names


def analyze_conflicts(
    records: Sequence[Mapping[str, Any]],
    *,
    confidence_epsilon: float = DEFAULT_CONFIDENCE_EPSILON,
) -> ConflictAnalysis:
    """Compare candidate records field by field."""

    analysis = ConflictAnalysis(compared_fields=compared_field_names(records))
    if len(records) < 2:
        return analysis
    for field_name in analysis.compared_fields:
        values = [FieldValue.from_record(record, field_name) for record in records]
        if not any(has_meaningful_value(item.value) for item in values):
            continue
        if len({comparison_key(item.value) for item in values}) == 1:
            continue
        suggested, reason, manual = suggest_value(values, confidence_epsilon=confidence_epsilon)
        analysis.conflicts.append(
            FieldConflict(
                field_name=field_name,
                values=values,
                suggested_value=suggested,
                suggested_reason=reason,
                requires_manual_review=manual,
            )
        )
    return analysis


def detect_field_conflicts(
    records: Sequence[Mapping[str, Any]],
    *,
    confidence_epsilon: float = DEFAULT_CONFIDENCE_EPSILON,
) -> list[FieldConflict]:
    return analyze_conflicts(records, confidence_epsilon=confidence_epsilon).conflicts


def suggest_value(
    values: Sequence[FieldValue],
    *,
    confidence_epsilon: float = DEFAULT_CONFIDENCE_EPSILON,
) -> tuple[Any, str, bool]:
    """Return (value, reason, requires_manual_review); the first matching rule wins."""

    present = [item for item in values if has_meaningful_value(item.value)]
    if not present:
        return None, "no values available", False

    if any(is_array_value(item.value) for item in present):
        return union_arrays(item.value for item in present), REASON_ARRAY_UNION, False

    groups: dict[str, list[FieldValue]] = {}
    for item in present:
        groups.setdefault(comparison_key(item.value), []).append(item)
    if len(groups) == 1:
        return present[0].value, REASON_COMPLETE, False

    ranked = sorted(
        groups.values(),
        key=lambda members: -_group_confidence(members),
    )
    best_confidence = _group_confidence(ranked[0])
    runner_up = _group_confidence(ranked[1])
    if best_confidence - runner_up > confidence_epsilon:
        return (
            ranked[0][0].value,
            f"higher confidence ({best_confidence:.0%} vs {runner_up:.0%})",
            False,
        )

    contenders = [
        members for members in ranked if best_confidence - _group_confidence(members) <= confidence_epsilon
    ]
    dated = [(members, _group_latest(members)) for members in contenders]
    dated = [(members, latest) for members, latest in dated if latest is not None]
    if dated:
        dated.sort(key=lambda pair: pair[1], reverse=True)
        newest_at = dated[0][1]
        if len(dated) == 1 or dated[1][1] < newest_at:
            return dated[0][0][0].value, REASON_MOST_RECENT, False

    return contenders[0][0].value, REASON_MANUAL, True


def resolve_field(
    conflict: FieldConflict,
    strategy: ConflictResolutionStrategy,
    *,
    target_id: str,
    source_ids: Sequence[str],
) -> FieldResolution:
    """Pick the value the target keeps for one conflicting field.

    Every strategy is dispatched here. Arrays are unioned except when the caller
    explicitly prefers one side; lineage fields are always unioned.
    """

    strategy = ConflictResolutionStrategy(strategy)
    present = [item for item in conflict.values if has_meaningful_value(item.value)]
    target_value = conflict.value_for(target_id)
    target_present = target_value is not None and has_meaningful_value(target_value.value)

    one_sided = strategy in (ConflictResolutionStrategy.PREFER_SOURCE, ConflictResolutionStrategy.PREFER_TARGET)
    if conflict.field_name in LINEAGE_FIELDS or (conflict.is_array and not one_sided):
        return FieldResolution(
            field_name=conflict.field_name,
            value=union_arrays(item.value for item in present),
            strategy=strategy,
            reason=REASON_ARRAY_UNION,
        )

    if strategy is ConflictResolutionStrategy.MANUAL:
        return FieldResolution(
            field_name=conflict.field_name,
            value=None,
            strategy=strategy,
            pending=True,
            reason="left unset for manual entry",
        )

    if strategy is ConflictResolutionStrategy.PREFER_TARGET and target_present:
        return FieldResolution(
            field_name=conflict.field_name,
            value=target_value.value,
            strategy=strategy,
            reason="target value preferred",
        )

    if strategy is ConflictResolutionStrategy.PREFER_SOURCE:
        for source_id in source_ids:
            candidate = conflict.value_for(source_id)
            if candidate is not None and has_meaningful_value(candidate.value):
                return FieldResolution(
                    field_name=conflict.field_name,
                    value=candidate.value,
                    strategy=strategy,
                    reason=f"source {source_id} value preferred",
                )

    if strategy is ConflictResolutionStrategy.PREFER_VALIDATED:
        validated = [item for item in present if item.is_validated]
        if validated:
            chosen = max(
                validated,
                key=lambda item: (item.confidence or 0.0, item.updated_at.timestamp() if item.updated_at else 0.0),
            )
            return FieldResolution(
                field_name=conflict.field_name,
                value=chosen.value,
                strategy=strategy,
                reason="validated value preferred",
            )

    if conflict.requires_manual_review:
        # Keep what the target already has until a reviewer decides.
        keep = target_value.value if target_present else conflict.suggested_value
        return FieldResolution(
            field_name=conflict.field_name,
            value=keep,
            strategy=strategy,
            pending=True,
            reason=conflict.suggested_reason,
        )

    return FieldResolution(
        field_name=conflict.field_name,
        value=conflict.suggested_value,
        strategy=strategy,
        reason=conflict.suggested_reason,
    )


def _group_confidence(members: Sequence[FieldValue]) -> float:
    return max((item.confidence or 0.0) for item in members)


def _group_latest(members: Sequence[FieldValue]) -> datetime | None:
    stamps = [item.updated_at for item in members if item.updated_at is not None]
    return max(stamps) if stamps else None
