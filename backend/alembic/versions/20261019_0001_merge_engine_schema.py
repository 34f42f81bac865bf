"""merge engine schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

ENTITY_TABLES = ("deal_registrations", "vendors", "contacts")


def _entity_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("ai_confidence_score", sa.Float(), nullable=True),
        sa.Column("validation_status", sa.String(length=20), nullable=True),
        sa.Column("source_file_ids", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "deal_registrations",
        *_entity_columns(),
        sa.Column("deal_name", sa.String(length=255), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("deal_value", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("close_date", sa.Date(), nullable=True),
        sa.Column("vendor_id", sa.String(length=36), nullable=True),
        sa.Column("deal_stage", sa.String(length=64), nullable=True),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deal_registrations_deal_name", "deal_registrations", ["deal_name"], unique=False)
    op.create_index("ix_deal_registrations_vendor_id", "deal_registrations", ["vendor_id"], unique=False)

    op.create_table(
        "vendors",
        *_entity_columns(),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("industry", sa.String(length=128), nullable=True),
        sa.Column("country", sa.String(length=64), nullable=True),
        sa.Column("email_domains", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vendors_name", "vendors", ["name"], unique=False)

    op.create_table(
        "contacts",
        *_entity_columns(),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("job_title", sa.String(length=128), nullable=True),
        sa.Column("vendor_id", sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_name", "contacts", ["name"], unique=False)
    op.create_index("ix_contacts_vendor_id", "contacts", ["vendor_id"], unique=False)

    for table_name in ENTITY_TABLES:
        op.create_index(f"ix_{table_name}_status", table_name, ["status"], unique=False)

    op.create_table(
        "merge_history",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("merge_type", sa.String(length=20), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("target_entity_id", sa.String(length=36), nullable=False),
        sa.Column("source_entity_ids", sa.JSON(), nullable=False),
        sa.Column("merge_strategy", sa.String(length=50), nullable=False),
        sa.Column("conflict_resolution_strategy", sa.String(length=50), nullable=False),
        sa.Column("conflict_resolution", sa.JSON(), nullable=False),
        sa.Column("merged_data", sa.JSON(), nullable=False),
        sa.Column("snapshot_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("merged_by", sa.String(length=100), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("can_unmerge", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("unmerged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("unmerged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unmerged_by", sa.String(length=100), nullable=True),
        sa.Column("unmerge_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_merge_history_entity_type", "merge_history", ["entity_type"], unique=False)
    op.create_index("ix_merge_history_target_entity_id", "merge_history", ["target_entity_id"], unique=False)
    op.create_index("ix_merge_history_unmerged", "merge_history", ["unmerged"], unique=False)

    op.create_table(
        "field_conflicts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("merge_history_id", sa.String(length=36), nullable=False),
        sa.Column("field_name", sa.String(length=100), nullable=False),
        sa.Column("source_values", sa.JSON(), nullable=False),
        sa.Column("chosen_value", sa.JSON(), nullable=True),
        sa.Column("resolution_strategy", sa.String(length=50), nullable=False),
        sa.Column("suggested_reason", sa.String(length=255), nullable=True),
        sa.Column("requires_manual_review", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("manual_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["merge_history_id"], ["merge_history.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_field_conflicts_merge_history_id", "field_conflicts", ["merge_history_id"], unique=False)

    op.create_table(
        "duplicate_detections",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id_1", sa.String(length=36), nullable=False),
        sa.Column("entity_id_2", sa.String(length=36), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=False),
        sa.Column("confidence_level", sa.Float(), nullable=False),
        sa.Column("detection_strategy", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("merge_history_id", sa.String(length=36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duplicate_detections_entity_type", "duplicate_detections", ["entity_type"], unique=False)
    op.create_index("ix_duplicate_detections_entity_id_1", "duplicate_detections", ["entity_id_1"], unique=False)
    op.create_index("ix_duplicate_detections_entity_id_2", "duplicate_detections", ["entity_id_2"], unique=False)
    op.create_index("ix_duplicate_detections_status", "duplicate_detections", ["status"], unique=False)
    op.create_index(
        "ix_duplicate_detections_merge_history_id",
        "duplicate_detections",
        ["merge_history_id"],
        unique=False,
    )

    op.create_table(
        "duplicate_clusters",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_ids", sa.JSON(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("master_entity_id", sa.String(length=36), nullable=True),
        sa.Column("merge_history_id", sa.String(length=36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duplicate_clusters_entity_type", "duplicate_clusters", ["entity_type"], unique=False)
    op.create_index("ix_duplicate_clusters_status", "duplicate_clusters", ["status"], unique=False)
    op.create_index(
        "ix_duplicate_clusters_merge_history_id",
        "duplicate_clusters",
        ["merge_history_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_duplicate_clusters_merge_history_id", table_name="duplicate_clusters")
    op.drop_index("ix_duplicate_clusters_status", table_name="duplicate_clusters")
    op.drop_index("ix_duplicate_clusters_entity_type", table_name="duplicate_clusters")
    op.drop_table("duplicate_clusters")

    op.drop_index("ix_duplicate_detections_merge_history_id", table_name="duplicate_detections")
    op.drop_index("ix_duplicate_detections_status", table_name="duplicate_detections")
    op.drop_index("ix_duplicate_detections_entity_id_2", table_name="duplicate_detections")
    op.drop_index("ix_duplicate_detections_entity_id_1", table_name="duplicate_detections")
    op.drop_index("ix_duplicate_detections_entity_type", table_name="duplicate_detections")
    op.drop_table("duplicate_detections")

    op.drop_index("ix_field_conflicts_merge_history_id", table_name="field_conflicts")
    op.drop_table("field_conflicts")

    op.drop_index("ix_merge_history_unmerged", table_name="merge_history")
    op.drop_index("ix_merge_history_target_entity_id", table_name="merge_history")
    op.drop_index("ix_merge_history_entity_type", table_name="merge_history")
    op.drop_table("merge_history")

    for table_name in ENTITY_TABLES:
        op.drop_index(f"ix_{table_name}_status", table_name=table_name)
    op.drop_index("ix_contacts_vendor_id", table_name="contacts")
    op.drop_index("ix_contacts_name", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_vendors_name", table_name="vendors")
    op.drop_table("vendors")
    op.drop_index("ix_deal_registrations_vendor_id", table_name="deal_registrations")
    op.drop_index("ix_deal_registrations_deal_name", table_name="deal_registrations")
    op.drop_table("deal_registrations")
