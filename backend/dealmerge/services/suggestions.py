"""Ranked merge suggestions from detector output and name similarity."""

from __future__ import annotations

import logging
from itertools import combinations

from sqlalchemy import select
from sqlalchemy.orm import Session

from dealmerge.config import get_settings
from dealmerge.merging.records import entity_model_for
from dealmerge.merging.similarity import name_similarity
from dealmerge.models.duplicates import DuplicateDetection
from dealmerge.schemas.merge import MergeSuggestion, SuggestedEntity

logger = logging.getLogger(__name__)

NAME_FIELDS = {
    "deal": "deal_name",
    "vendor": "name",
    "contact": "name",
}


def suggested_action(score: float) -> str:
    settings = get_settings()
    if score >= settings.auto_merge_similarity:
        return "auto_merge"
    if score >= settings.manual_review_similarity:
        return "manual_review"
    return "ignore"


def get_smart_merge_suggestions(
    db: Session,
    entity_type: str = "deal",
    limit: int = 10,
) -> list[MergeSuggestion]:
    """Return up to `limit` candidate pairs, best first."""

    settings = get_settings()
    model = entity_model_for(entity_type)
    name_field = NAME_FIELDS[entity_type]
    if limit <= 0:
        return []

    rows = db.scalars(
        select(model)
        .where(model.status == "active")
        .order_by(model.created_at.asc(), model.id.asc())
        .limit(settings.suggestion_max_candidates)
    ).all()
    names = {row.id: getattr(row, name_field) for row in rows}

    # pair key -> (score, reasoning)
    scored: dict[tuple[str, str], tuple[float, str]] = {}
    for detection in _pending_detections(db, entity_type):
        left, right = sorted((detection.entity_id_1, detection.entity_id_2))
        if left not in names or right not in names:
            continue
        score = max(0.0, min(1.0, float(detection.similarity_score)))
        reasoning = (
            f"Detected duplicate ({detection.detection_strategy}) with "
            f"{score * 100:.0f}% similarity"
        )
        _keep_best(scored, (left, right), score, reasoning)

    for first, second in combinations(rows, 2):
        left, right = sorted((first.id, second.id))
        score = name_similarity(names[left], names[right])
        if score < settings.suggestion_min_similarity:
            continue
        _keep_best(scored, (left, right), score, f"High name similarity ({score * 100:.0f}%)")

    ranked = sorted(
        (
            (score, pair, reasoning)
            for pair, (score, reasoning) in scored.items()
            if score >= settings.suggestion_min_similarity
        ),
        key=lambda item: (-item[0], item[1]),
    )[:limit]
    suggestions = [
        MergeSuggestion(
            entities=[SuggestedEntity(id=entity_id, name=names.get(entity_id)) for entity_id in pair],
            confidence=round(score, 4),
            reasoning=reasoning,
            suggested_action=suggested_action(score),
        )
        for score, pair, reasoning in ranked
    ]
    logger.info(
        "merge.suggestions entity_type=%s candidates=%d returned=%d",
        entity_type,
        len(rows),
        len(suggestions),
    )
    return suggestions


def _pending_detections(db: Session, entity_type: str) -> list[DuplicateDetection]:
    return list(
        db.scalars(
            select(DuplicateDetection).where(
                DuplicateDetection.entity_type == entity_type,
                DuplicateDetection.status == "pending",
            )
        ).all()
    )


def _keep_best(
    scored: dict[tuple[str, str], tuple[float, str]],
    pair: tuple[str, str],
    score: float,
    reasoning: str,
) -> None:
    current = scored.get(pair)
    if current is None or score > current[0]:
        scored[pair] = (score, reasoning)
