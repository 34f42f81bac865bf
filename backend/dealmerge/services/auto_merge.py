"""Threshold-based bulk merge of high-confidence duplicate clusters."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from time import perf_counter

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealmerge.merging.conflicts import ConflictResolutionStrategy
from dealmerge.merging.errors import MergeValidationError
from dealmerge.merging.records import entity_model_for
from dealmerge.merging.selection import MergeStrategy
from dealmerge.models.duplicates import DuplicateCluster
from dealmerge.schemas.merge import BatchMergeResult, ClusterMergeError, MergeOptions, MergeResult
from dealmerge.services.clusters import merge_cluster

logger = logging.getLogger(__name__)

AUTO_MERGE_ACTOR = "auto-merge-system"


def auto_merge_options(entity_type: str) -> MergeOptions:
    return MergeOptions(
        merge_strategy=MergeStrategy.KEEP_HIGHEST_QUALITY,
        conflict_resolution=ConflictResolutionStrategy.PREFER_VALIDATED,
        preserve_source=False,
        merged_by=AUTO_MERGE_ACTOR,
        entity_type=entity_type,
        merge_type="automatic",
    )


def list_candidate_clusters(db: Session, entity_type: str, threshold: float) -> list[DuplicateCluster]:
    return list(
        db.scalars(
            select(DuplicateCluster)
            .where(
                DuplicateCluster.entity_type == entity_type,
                DuplicateCluster.status == "active",
                DuplicateCluster.confidence_score >= threshold,
            )
            .order_by(DuplicateCluster.confidence_score.desc(), DuplicateCluster.id.asc())
        ).all()
    )


def auto_merge_high_confidence_duplicates(
    db: Session,
    threshold: float = 0.95,
    dry_run: bool = True,
    entity_type: str = "deal",
    *,
    now: datetime | None = None,
) -> BatchMergeResult:
    """Merge every active cluster at or above the threshold, one transaction per cluster.

    A failing cluster is recorded and the sweep continues with the next one.
    Dry runs only report which clusters would be merged.
    """

    if threshold < 0.0 or threshold > 1.0:
        raise MergeValidationError(f"Threshold must be between 0 and 1, got {threshold}")
    entity_model_for(entity_type)

    started = perf_counter()
    candidates = list_candidate_clusters(db, entity_type, threshold)
    candidate_ids = [cluster.id for cluster in candidates]

    if dry_run:
        logger.info(
            "merge.auto_sweep_dry_run entity_type=%s threshold=%.3f candidates=%d",
            entity_type,
            threshold,
            len(candidate_ids),
        )
        return BatchMergeResult(
            success=True,
            dry_run=True,
            total_clusters=len(candidate_ids),
            merged_clusters=0,
            failed_clusters=0,
            candidate_cluster_ids=candidate_ids,
            merge_results=[],
            errors=[],
            timestamp=now or datetime.now(timezone.utc),
        )

    merge_results: list[MergeResult] = []
    errors: list[ClusterMergeError] = []
    options = auto_merge_options(entity_type)
    for cluster_id in candidate_ids:
        try:
            merge_results.append(merge_cluster(db, cluster_id, None, options, now=now))
        except Exception as exc:
            logger.warning("merge.auto_sweep_cluster_failed cluster_id=%s error=%s", cluster_id, exc)
            errors.append(ClusterMergeError(cluster_id=cluster_id, error=str(exc)))

    logger.info(
        "merge.auto_sweep entity_type=%s threshold=%.3f total=%d merged=%d failed=%d total_ms=%.2f",
        entity_type,
        threshold,
        len(candidate_ids),
        len(merge_results),
        len(errors),
        (perf_counter() - started) * 1000.0,
    )
    return BatchMergeResult(
        success=not errors,
        dry_run=False,
        total_clusters=len(candidate_ids),
        merged_clusters=len(merge_results),
        failed_clusters=len(errors),
        candidate_cluster_ids=candidate_ids,
        merge_results=merge_results,
        errors=errors,
        timestamp=now or datetime.now(timezone.utc),
    )
