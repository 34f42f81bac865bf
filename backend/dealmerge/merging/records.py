"""Helpers for treating ORM entity rows as plain field mappings."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Date, DateTime, inspect

from dealmerge.merging.errors import MergeValidationError
from dealmerge.models.entities import ENTITY_MODELS, MergeableEntityMixin

EntityRecord = dict[str, Any]

# Fields owned by the engine or by provenance; never compared for conflicts.
RESERVED_FIELDS = frozenset(
    {
        "id",
        "status",
        "created_at",
        "updated_at",
        "ai_confidence_score",
        "validation_status",
        "notes",
    }
)

# Lineage of originating files is always unioned, whatever the strategy.
LINEAGE_FIELDS = frozenset({"source_file_ids"})


def entity_model_for(entity_type: str) -> type[MergeableEntityMixin]:
    """Return the ORM model registered for an entity type."""

    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise MergeValidationError(
            f"Unsupported entity type '{entity_type}'. Expected one of: {', '.join(sorted(ENTITY_MODELS))}"
        )
    return model


def entity_to_record(row: MergeableEntityMixin) -> EntityRecord:
    """Copy mapped column values of one row into a plain dict."""

    mapper = inspect(row).mapper
    record: EntityRecord = {}
    for attr in mapper.column_attrs:
        value = getattr(row, attr.key)
        record[attr.key] = list(value) if isinstance(value, list) else value
    return record


def has_meaningful_value(value: Any) -> bool:
    """True unless the value is null, blank, NaN or an empty collection."""

    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, float):
        return value == value
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def is_array_value(value: Any) -> bool:
    return isinstance(value, (list, tuple, set))


def comparison_key(value: Any) -> str:
    """Stable key used to decide whether two field values are the same."""

    if not has_meaningful_value(value):
        return "__null__"
    if is_array_value(value):
        return json.dumps(sorted({comparison_key(item) for item in value}))
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    if isinstance(value, bool):
        return f"bool:{value}"
    if isinstance(value, (int, float)):
        return f"num:{float(value)!r}"
    if isinstance(value, (datetime, date)):
        return f"date:{value.isoformat()}"
    return f"str:{value}"


def union_arrays(values: Iterable[Any]) -> list[Any]:
    """Order-preserving deduplicated union of array values."""

    merged: list[Any] = []
    seen: set[str] = set()
    for value in values:
        if not is_array_value(value):
            continue
        for item in value:
            key = comparison_key(item)
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return merged


def coerce_datetime(value: Any) -> datetime | None:
    """Parse datetimes, dates and ISO strings into aware UTC datetimes."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_json_value(value: Any) -> Any:
    """Convert a field value into something the JSON column can store."""

    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_array_value(value):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    return value


def to_json_record(record: Mapping[str, Any]) -> dict[str, Any]:
    return {key: to_json_value(value) for key, value in record.items()}


def from_json_value(model: type[MergeableEntityMixin], field_name: str, value: Any) -> Any:
    """Convert a stored JSON value back into the column's Python type."""

    column = inspect(model).columns.get(field_name)
    if column is None or value is None:
        return value
    if isinstance(column.type, DateTime) and isinstance(value, str):
        return coerce_datetime(value)
    if isinstance(column.type, Date) and isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return value


def column_names(model: type[MergeableEntityMixin]) -> set[str]:
    return {attr.key for attr in inspect(model).column_attrs}


LIKE_ESCAPE = "!"


def json_member_pattern(value: str) -> str:
    """LIKE pattern that finds `value` as an element in the stored text of a JSON array.

    The element is encoded with the same `json.dumps` defaults the JSON column uses, so
    escaped non-ASCII ids still match. Use with `escape=LIKE_ESCAPE`.
    """

    encoded = json.dumps(value)
    for char in (LIKE_ESCAPE, "%", "_"):
        encoded = encoded.replace(char, LIKE_ESCAPE + char)
    return f"%{encoded}%"
