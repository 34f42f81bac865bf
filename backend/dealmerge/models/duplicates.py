"""Duplicate detector output models (pair detections and clusters)."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealmerge.models.base import Base, CreatedAtMixin, IdMixin, TimestampMixin


class DuplicateDetection(Base, IdMixin, CreatedAtMixin):
    """Candidate duplicate pair emitted by the similarity detector."""

    __tablename__ = "duplicate_detections"

    entity_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    entity_id_1: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    entity_id_2: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    similarity_score: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_level: Mapped[float] = mapped_column(Float, nullable=False)
    detection_strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True, nullable=False)
    merge_history_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


class DuplicateCluster(Base, IdMixin, TimestampMixin):
    """Group of entity ids believed to describe one real-world entity."""

    __tablename__ = "duplicate_clusters"

    entity_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    entity_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True, nullable=False)
    master_entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    merge_history_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
