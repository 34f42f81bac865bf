"""Per-field conflict log model."""

from sqlalchemy import JSON, Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealmerge.models.base import Base, CreatedAtMixin, IdMixin


class FieldConflictRecord(Base, IdMixin, CreatedAtMixin):
    """One detected field conflict and how a merge resolved it."""

    __tablename__ = "field_conflicts"

    merge_history_id: Mapped[str] = mapped_column(
        ForeignKey("merge_history.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    source_values: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list, nullable=False)
    chosen_value: Mapped[object | None] = mapped_column(JSON, nullable=True)
    resolution_strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    suggested_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    manual_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
