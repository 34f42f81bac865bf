"""Mergeable business entity ORM models (deals, vendors, contacts)."""

from datetime import date

from sqlalchemy import JSON, Date, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dealmerge.models.base import Base, IdMixin, TimestampMixin


class MergeableEntityMixin(IdMixin, TimestampMixin):
    """Columns every deduplicated entity carries."""

    status: Mapped[str] = mapped_column(String(20), default="active", index=True, nullable=False)
    ai_confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    validation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    source_file_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Deal(Base, MergeableEntityMixin):
    """Deal registration extracted from emails, transcripts or spreadsheets."""

    __tablename__ = "deal_registrations"

    deal_name: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deal_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    vendor_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    deal_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    products: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)


class Vendor(Base, MergeableEntityMixin):
    """Vendor organisation."""

    __tablename__ = "vendors"

    name: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email_domains: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)


class Contact(Base, MergeableEntityMixin):
    """Person attached to a vendor or customer."""

    __tablename__ = "contacts"

    name: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    vendor_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)


ENTITY_MODELS: dict[str, type[MergeableEntityMixin]] = {
    "deal": Deal,
    "vendor": Vendor,
    "contact": Contact,
}
