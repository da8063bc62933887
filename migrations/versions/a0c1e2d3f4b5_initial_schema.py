"""Initial schema: users, audit, centers, field collection and per-product production tables.

Revision ID: a0c1e2d3f4b5
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0c1e2d3f4b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# product -> (can table, processing, batch-can link, packaging, labeling)
PRODUCT_TABLES = {
    "treacle": ("sap_cans", "treacle_processing_batches", "treacle_processing_batch_cans",
                "treacle_packaging_batches", "treacle_labeling_batches"),
    "jaggery": ("treacle_cans", "jaggery_processing_batches", "jaggery_processing_batch_cans",
                "jaggery_packaging_batches", "jaggery_labeling_batches"),
}

MATERIALS = ("bottle", "lid", "alufoil", "vacuum_bag", "parchment_paper")
ACCESSORIES = ("sticker", "shrink_sleeve", "neck_tag", "corrugated_carton")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _quantity_and_cost(names) -> list[sa.Column]:
    cols = [sa.Column(f"{n}_quantity", sa.Numeric(12, 2), nullable=True) for n in names]
    cols += [sa.Column(f"{n}_cost", sa.Numeric(12, 2), nullable=True) for n in names]
    return cols


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(40), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("profile_image", sa.String(512), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_login", sa.String(40), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "collection_centers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("center_id", sa.String(20), nullable=False),
        sa.Column("center_name", sa.String(100), nullable=False),
        sa.Column("location", sa.String(100), nullable=False),
        sa.Column("center_agent", sa.String(100), nullable=False),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("center_id"),
    )
    op.create_index("idx_collection_centers_active", "collection_centers", ["is_active"])

    op.create_table(
        "field_collection_drafts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("draft_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("created_by", sa.String(40), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("draft_id"),
        sa.UniqueConstraint("created_by", "date", name="uq_field_collection_drafts_creator_date"),
    )
    op.create_index("ix_field_collection_drafts_date", "field_collection_drafts", ["date"])
    op.create_index("ix_field_collection_drafts_created_by", "field_collection_drafts", ["created_by"])

    op.create_table(
        "field_collection_center_completions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("draft_id", sa.String(64), nullable=False),
        sa.Column("center_id", sa.String(20), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("draft_id", "center_id", name="uq_center_completions_draft_center"),
    )
    op.create_index(
        "ix_field_collection_center_completions_draft_id", "field_collection_center_completions", ["draft_id"]
    )

    for cans, processing, links, packaging, labeling in PRODUCT_TABLES.values():
        op.create_table(
            cans,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("can_id", sa.String(32), nullable=False),
            sa.Column("draft_id", sa.Integer(), nullable=False),
            sa.Column("collection_center_id", sa.Integer(), nullable=False),
            sa.Column("product_type", sa.String(16), nullable=False),
            sa.Column("brix_value", sa.Numeric(5, 2), nullable=True),
            sa.Column("ph_value", sa.Numeric(4, 2), nullable=True),
            sa.Column("quantity", sa.Numeric(10, 2), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["draft_id"], ["field_collection_drafts.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["collection_center_id"], ["collection_centers.id"]),
            sa.UniqueConstraint("can_id"),
        )
        op.create_index(f"ix_{cans}_draft_id", cans, ["draft_id"])
        op.create_index(f"ix_{cans}_collection_center_id", cans, ["collection_center_id"])

        op.create_table(
            processing,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("batch_id", sa.String(64), nullable=False),
            sa.Column("batch_number", sa.String(16), nullable=False),
            sa.Column("scheduled_date", sa.Date(), nullable=False),
            sa.Column("product_type", sa.String(16), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="in-progress"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("total_sap_output", sa.Numeric(12, 2), nullable=True),
            sa.Column("gas_used_kg", sa.Numeric(12, 2), nullable=True),
            sa.Column("created_by", sa.String(40), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("batch_id"),
        )
        op.create_index(f"ix_{processing}_scheduled_date", processing, ["scheduled_date"])

        op.create_table(
            links,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("processing_batch_id", sa.Integer(), nullable=False),
            sa.Column("can_id", sa.Integer(), nullable=False),
            sa.Column("added_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["processing_batch_id"], [f"{processing}.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["can_id"], [f"{cans}.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("can_id"),
        )
        op.create_index(f"ix_{links}_processing_batch_id", links, ["processing_batch_id"])

        op.create_table(
            packaging,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("packaging_id", sa.String(64), nullable=False),
            sa.Column("processing_batch_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("started_at", sa.DateTime(), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("finished_quantity", sa.Numeric(12, 2), nullable=True),
            *_quantity_and_cost(MATERIALS),
            *_timestamps(),
            sa.ForeignKeyConstraint(["processing_batch_id"], [f"{processing}.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("packaging_id"),
            sa.UniqueConstraint("processing_batch_id"),
        )
        op.create_index(f"ix_{packaging}_started_at", packaging, ["started_at"])

        op.create_table(
            labeling,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("labeling_id", sa.String(64), nullable=False),
            sa.Column("packaging_batch_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("notes", sa.Text(), nullable=True),
            *_quantity_and_cost(ACCESSORIES),
            *_timestamps(),
            sa.ForeignKeyConstraint(["packaging_batch_id"], [f"{packaging}.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("labeling_id"),
            sa.UniqueConstraint("packaging_batch_id"),
        )
        op.create_index(f"ix_{labeling}_created_at", labeling, ["created_at"])


def downgrade() -> None:
    for cans, processing, links, packaging, labeling in PRODUCT_TABLES.values():
        op.drop_index(f"ix_{labeling}_created_at", table_name=labeling)
        op.drop_table(labeling)
        op.drop_index(f"ix_{packaging}_started_at", table_name=packaging)
        op.drop_table(packaging)
        op.drop_index(f"ix_{links}_processing_batch_id", table_name=links)
        op.drop_table(links)
        op.drop_index(f"ix_{processing}_scheduled_date", table_name=processing)
        op.drop_table(processing)
        op.drop_index(f"ix_{cans}_collection_center_id", table_name=cans)
        op.drop_index(f"ix_{cans}_draft_id", table_name=cans)
        op.drop_table(cans)

    op.drop_index(
        "ix_field_collection_center_completions_draft_id", table_name="field_collection_center_completions"
    )
    op.drop_table("field_collection_center_completions")
    op.drop_index("ix_field_collection_drafts_created_by", table_name="field_collection_drafts")
    op.drop_index("ix_field_collection_drafts_date", table_name="field_collection_drafts")
    op.drop_table("field_collection_drafts")
    op.drop_index("idx_collection_centers_active", table_name="collection_centers")
    op.drop_table("collection_centers")
    op.drop_table("audit_events")
    op.drop_table("users")
