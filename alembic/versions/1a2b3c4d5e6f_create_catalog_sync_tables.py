"""create_catalog_sync_tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "1a2b3c4d5e6f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_providers_slug"), "providers", ["slug"], unique=True)

    op.create_table(
        "provider_vertical_priorities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("retail_vertical_id", sa.Integer(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id", "retail_vertical_id", name="uq_provider_vertical_priority"),
    )
    op.create_index(
        op.f("ix_provider_vertical_priorities_provider_id"),
        "provider_vertical_priorities",
        ["provider_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_provider_vertical_priorities_retail_vertical_id"),
        "provider_vertical_priorities",
        ["retail_vertical_id"],
        unique=False,
    )

    op.create_table(
        "master_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("retail_vertical_id", sa.Integer(), nullable=False),
        sa.Column("natural_key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("brand", sa.String(length=200), nullable=True),
        sa.Column("model", sa.String(length=200), nullable=True),
        sa.Column("manufacturer_part_number", sa.String(length=200), nullable=True),
        sa.Column("category", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("specifications_json", sa.Text(), nullable=True),
        sa.Column("source_provider", sa.String(length=100), nullable=True),
        sa.Column("source_locked", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("retail_vertical_id", "natural_key", name="uq_master_records_vertical_natural_key"),
    )
    op.create_index(op.f("ix_master_records_retail_vertical_id"), "master_records", ["retail_vertical_id"], unique=False)
    op.create_index(op.f("ix_master_records_natural_key"), "master_records", ["natural_key"], unique=False)
    op.create_index(op.f("ix_master_records_source_provider"), "master_records", ["source_provider"], unique=False)

    op.create_table(
        "provider_vendor_mappings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("provider_slug", sa.String(length=100), nullable=False),
        sa.Column("vendor_sku", sa.String(length=200), nullable=False),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("map_price", sa.Float(), nullable=True),
        sa.Column("msrp", sa.Float(), nullable=True),
        sa.Column("quantity_available", sa.Integer(), nullable=True),
        sa.Column("last_price_update", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["record_id"], ["master_records.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_id", "provider_slug", name="uq_vendor_mapping_record_provider"),
    )
    op.create_index(op.f("ix_provider_vendor_mappings_record_id"), "provider_vendor_mappings", ["record_id"], unique=False)
    op.create_index(
        op.f("ix_provider_vendor_mappings_provider_slug"), "provider_vendor_mappings", ["provider_slug"], unique=False
    )
    op.create_index(
        op.f("ix_provider_vendor_mappings_vendor_sku"), "provider_vendor_mappings", ["vendor_sku"], unique=False
    )

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_slug", sa.String(length=100), nullable=False),
        sa.Column("mode", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("records_added", sa.Integer(), nullable=False),
        sa.Column("records_updated", sa.Integer(), nullable=False),
        sa.Column("records_skipped", sa.Integer(), nullable=False),
        sa.Column("records_failed", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_feed_hash", sa.String(length=64), nullable=True),
        sa.Column("errors_json", sa.Text(), nullable=True),
        sa.Column("warnings_json", sa.Text(), nullable=True),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["provider_slug"], ["providers.slug"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sync_runs_provider_slug"), "sync_runs", ["provider_slug"], unique=True)
    op.create_index(op.f("ix_sync_runs_status"), "sync_runs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_sync_runs_status"), table_name="sync_runs")
    op.drop_index(op.f("ix_sync_runs_provider_slug"), table_name="sync_runs")
    op.drop_table("sync_runs")

    op.drop_index(op.f("ix_provider_vendor_mappings_vendor_sku"), table_name="provider_vendor_mappings")
    op.drop_index(op.f("ix_provider_vendor_mappings_provider_slug"), table_name="provider_vendor_mappings")
    op.drop_index(op.f("ix_provider_vendor_mappings_record_id"), table_name="provider_vendor_mappings")
    op.drop_table("provider_vendor_mappings")

    op.drop_index(op.f("ix_master_records_source_provider"), table_name="master_records")
    op.drop_index(op.f("ix_master_records_natural_key"), table_name="master_records")
    op.drop_index(op.f("ix_master_records_retail_vertical_id"), table_name="master_records")
    op.drop_table("master_records")

    op.drop_index(op.f("ix_provider_vertical_priorities_retail_vertical_id"), table_name="provider_vertical_priorities")
    op.drop_index(op.f("ix_provider_vertical_priorities_provider_id"), table_name="provider_vertical_priorities")
    op.drop_table("provider_vertical_priorities")

    op.drop_index(op.f("ix_providers_slug"), table_name="providers")
    op.drop_table("providers")
