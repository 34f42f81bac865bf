"""Merge audit log model."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealmerge.models.base import Base, CreatedAtMixin, IdMixin


class MergeHistory(Base, IdMixin, CreatedAtMixin):
    """Append-only record of one executed merge; the unit of reversal for unmerge.

    `merged_data` holds a versioned snapshot and is never rewritten after insert.
    Only the unmerge stamp columns change later.
    """

    __tablename__ = "merge_history"

    merge_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), index=True, nullable=False)
    target_entity_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    source_entity_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    merge_strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    conflict_resolution_strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    conflict_resolution: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    merged_data: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False)
    snapshot_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    merged_by: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    can_unmerge: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    unmerged: Mapped[bool] = mapped_column(Boolean, default=False, index=True, nullable=False)
    unmerged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    unmerged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unmerge_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
