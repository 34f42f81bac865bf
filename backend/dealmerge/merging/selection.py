"""Master (survivor) selection among candidate duplicates."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dealmerge.merging.errors import MergeValidationError
from dealmerge.merging.quality import DEFAULT_RECENCY_HORIZON_DAYS, calculate_data_quality_score
from dealmerge.merging.records import coerce_datetime

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MergeStrategy(str, Enum):
    """How the surviving record of a merge is chosen."""

    KEEP_NEWEST = "newest"
    KEEP_HIGHEST_QUALITY = "quality"
    KEEP_FIRST = "first"
    MANUAL = "manual"
    WEIGHTED = "weighted"


def select_master(
    records: Sequence[Mapping[str, Any]],
    strategy: MergeStrategy = MergeStrategy.KEEP_HIGHEST_QUALITY,
    *,
    entity_type: str = "deal",
    as_of: datetime | None = None,
    recency_horizon_days: int = DEFAULT_RECENCY_HORIZON_DAYS,
) -> tuple[Mapping[str, Any], str]:
    """Return (master record, reason).

    Quality ties break on the most recent `updated_at`, then on the smallest id.
    """

    if not records:
        raise MergeValidationError("No entities to select master from")
    if len(records) == 1:
        return records[0], "only entity available"

    strategy = MergeStrategy(strategy)
    if strategy is MergeStrategy.KEEP_NEWEST:
        master = sorted(records, key=lambda record: (-_updated_at(record).timestamp(), str(record.get("id"))))[0]
        return master, "most recently updated"
    if strategy is MergeStrategy.KEEP_FIRST:
        master = sorted(records, key=lambda record: (_created_at(record).timestamp(), str(record.get("id"))))[0]
        return master, "first created"
    if strategy is MergeStrategy.MANUAL:
        return records[0], "manual selection required"

    ranked = rank_by_quality(
        records,
        entity_type=entity_type,
        as_of=as_of,
        recency_horizon_days=recency_horizon_days,
    )
    master, score = ranked[0]
    return master, f"highest quality score ({score:.0%})"


def rank_by_quality(
    records: Sequence[Mapping[str, Any]],
    *,
    entity_type: str = "deal",
    as_of: datetime | None = None,
    recency_horizon_days: int = DEFAULT_RECENCY_HORIZON_DAYS,
) -> list[tuple[Mapping[str, Any], float]]:
    reference = as_of or datetime.now(timezone.utc)
    scored = [
        (
            record,
            calculate_data_quality_score(
                record,
                entity_type=entity_type,
                as_of=reference,
                recency_horizon_days=recency_horizon_days,
            ),
        )
        for record in records
    ]
    scored.sort(key=lambda pair: (-pair[1], -_updated_at(pair[0]).timestamp(), str(pair[0].get("id"))))
    return scored


def _updated_at(record: Mapping[str, Any]) -> datetime:
    return coerce_datetime(record.get("updated_at")) or coerce_datetime(record.get("created_at")) or _EPOCH


def _created_at(record: Mapping[str, Any]) -> datetime:
    return coerce_datetime(record.get("created_at")) or _EPOCH
