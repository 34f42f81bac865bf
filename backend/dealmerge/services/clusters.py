"""Merge every member of a duplicate cluster into one master."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.db.transaction import unit_of_work
from dealmerge.merging.errors import MergeNotFoundError, MergeStateError, MergeValidationError
from dealmerge.merging.records import entity_model_for, entity_to_record
from dealmerge.merging.selection import MergeStrategy, select_master
from dealmerge.models.duplicates import DuplicateCluster
from dealmerge.schemas.merge import MergeOptions, MergeResult
from dealmerge.services.entities import load_active_entities, unique_ids
from dealmerge.services.merge_executor import apply_merge

logger = logging.getLogger(__name__)


def merge_cluster(
    db: Session,
    cluster_id: str,
    master_entity_id: str | None = None,
    options: MergeOptions | None = None,
    *,
    now: datetime | None = None,
) -> MergeResult:
    """Merge a cluster's members into an explicit or selected master.

    The cluster lookup, master selection and the merge share one transaction.
    """

    options = options or MergeOptions()
    with unit_of_work(db, operation="merge_cluster"):
        result = merge_cluster_in_transaction(db, cluster_id, master_entity_id, options, now=now)
    logger.info(
        "merge.cluster_merged cluster_id=%s master_id=%s source_count=%d merge_history_id=%s",
        cluster_id,
        result.merged_entity_id,
        len(result.source_entity_ids),
        result.merge_history_id,
    )
    return result


def merge_cluster_in_transaction(
    db: Session,
    cluster_id: str,
    master_entity_id: str | None,
    options: MergeOptions,
    *,
    now: datetime | None = None,
) -> MergeResult:
    cluster = db.get(DuplicateCluster, cluster_id)
    if cluster is None:
        raise MergeNotFoundError(f"Cluster {cluster_id} not found")
    if cluster.status != "active":
        raise MergeStateError(f"Cluster {cluster_id} is not active (status: {cluster.status})")

    member_ids = unique_ids(cluster.entity_ids or [])
    if len(member_ids) < 2:
        raise MergeValidationError("Cluster must have at least 2 entities")

    # Cluster type always wins over the caller's default.
    options = options.model_copy(update={"entity_type": cluster.entity_type})

    if master_entity_id:
        master_id = master_entity_id.strip()
        if master_id not in member_ids:
            raise MergeValidationError(f"Master entity {master_id} is not a member of cluster {cluster_id}")
    else:
        master_id = _select_cluster_master(db, member_ids, options, now=now)

    source_ids = [entity_id for entity_id in member_ids if entity_id != master_id]
    return apply_merge(db, source_ids, master_id, options, now=now)


def _select_cluster_master(
    db: Session,
    member_ids: list[str],
    options: MergeOptions,
    *,
    now: datetime | None,
) -> str:
    settings = get_settings()
    model = entity_model_for(options.entity_type)
    rows = load_active_entities(db, model, member_ids)
    if len(rows) < 2:
        raise MergeValidationError(
            f"Cluster must have at least 2 entities; only {len(rows)} active members found"
        )
    strategy = options.merge_strategy
    if strategy is MergeStrategy.MANUAL:
        strategy = MergeStrategy.KEEP_HIGHEST_QUALITY
    master, _ = select_master(
        [entity_to_record(row) for row in rows],
        strategy,
        entity_type=options.entity_type,
        as_of=now or datetime.now(timezone.utc),
        recency_horizon_days=settings.recency_horizon_days,
    )
    return str(master["id"])
