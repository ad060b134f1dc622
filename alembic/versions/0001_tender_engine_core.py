"""tenders, proposals, bookmarks, invitations, outbox and idempotency tables

Revision ID: 0001_tender_engine_core
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_tender_engine_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "tenders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("created_by", sa.String(128), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("skills_required", sa.JSON(), nullable=False),
        sa.Column("experience_level", sa.String(16), nullable=False),
        sa.Column("location", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("budget_min", sa.Numeric(14, 2), nullable=False),
        sa.Column("budget_max", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_negotiable", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("visibility", sa.String(16), nullable=False),
        sa.Column("proposal_ids", sa.JSON(), nullable=False),
        sa.Column("views", sa.Integer(), server_default="0", nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_tenders"),
        sa.CheckConstraint("budget_min >= 0", name="ck_tenders_budget_min_nonnegative"),
        sa.CheckConstraint("budget_max >= budget_min", name="ck_tenders_budget_ordered"),
        sa.CheckConstraint("duration_days >= 1", name="ck_tenders_duration_positive"),
        sa.CheckConstraint("views >= 0", name="ck_tenders_views_nonnegative"),
    )
    op.create_index("ix_tenders_owner_status", "tenders", ["owner_id", "status"])
    op.create_index("ix_tenders_status_deadline", "tenders", ["status", "deadline"])
    op.create_index("ix_tenders_category", "tenders", ["category"])

    op.create_table(
        "tender_invitations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tender_id", sa.Uuid(), nullable=False),
        sa.Column("party_id", sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tender_invitations"),
        sa.ForeignKeyConstraint(
            ["tender_id"],
            ["tenders.id"],
            name="fk_tender_invitations_tender_id_tenders",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("tender_id", "party_id", name="uq_tender_invitation"),
    )
    op.create_index("ix_tender_invitations_party", "tender_invitations", ["party_id"])

    op.create_table(
        "tender_bookmarks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tender_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tender_bookmarks"),
        sa.ForeignKeyConstraint(
            ["tender_id"],
            ["tenders.id"],
            name="fk_tender_bookmarks_tender_id_tenders",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("tender_id", "user_id", name="uq_tender_bookmark"),
    )
    op.create_index("ix_tender_bookmarks_user", "tender_bookmarks", ["user_id"])

    op.create_table(
        "proposals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tender_id", sa.Uuid(), nullable=False),
        sa.Column("bidder_id", sa.String(128), nullable=False),
        sa.Column("bid_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("proposal_text", sa.Text(), nullable=False),
        sa.Column("estimated_timeline", sa.String(16), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("company_notes", sa.String(1000), nullable=True),
        sa.Column("withdrawal_reason", sa.String(1000), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_proposals"),
        sa.ForeignKeyConstraint(
            ["tender_id"],
            ["tenders.id"],
            name="fk_proposals_tender_id_tenders",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint("bid_amount >= 0", name="ck_proposals_bid_nonnegative"),
    )
    op.create_index(
        "uq_proposals_active_bidder",
        "proposals",
        ["tender_id", "bidder_id"],
        unique=True,
        sqlite_where=sa.text("status != 'withdrawn'"),
        postgresql_where=sa.text("status != 'withdrawn'"),
    )
    op.create_index(
        "uq_proposals_single_accepted",
        "proposals",
        ["tender_id"],
        unique=True,
        sqlite_where=sa.text("status = 'accepted'"),
        postgresql_where=sa.text("status = 'accepted'"),
    )
    op.create_index("ix_proposals_tender_status", "proposals", ["tender_id", "status"])
    op.create_index("ix_proposals_bidder", "proposals", ["bidder_id"])

    op.create_table(
        "event_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("aggregate", sa.String(16), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_event_logs"),
    )
    op.create_index("ix_event_logs_aggregate", "event_logs", ["aggregate", "aggregate_id"])
    op.create_index("ix_event_logs_type", "event_logs", ["event_type"])
    op.create_index("ix_event_logs_created", "event_logs", ["created_at"])

    op.create_table(
        "idempotency_key_records",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("endpoint_key", sa.String(64), nullable=False),
        sa.Column("idem_key", sa.String(128), nullable=False),
        sa.Column("request_hash", sa.String(128), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False),
        sa.Column("response_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_idempotency_key_records"),
        sa.UniqueConstraint("actor_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
    )
    op.create_index("ix_idem_lookup", "idempotency_key_records", ["actor_id", "endpoint_key"])


def downgrade():
    op.drop_index("ix_idem_lookup", table_name="idempotency_key_records")
    op.drop_table("idempotency_key_records")

    op.drop_index("ix_event_logs_created", table_name="event_logs")
    op.drop_index("ix_event_logs_type", table_name="event_logs")
    op.drop_index("ix_event_logs_aggregate", table_name="event_logs")
    op.drop_table("event_logs")

    op.drop_index("ix_proposals_bidder", table_name="proposals")
    op.drop_index("ix_proposals_tender_status", table_name="proposals")
    op.drop_index("uq_proposals_single_accepted", table_name="proposals")
    op.drop_index("uq_proposals_active_bidder", table_name="proposals")
    op.drop_table("proposals")

    op.drop_index("ix_tender_bookmarks_user", table_name="tender_bookmarks")
    op.drop_table("tender_bookmarks")

    op.drop_index("ix_tender_invitations_party", table_name="tender_invitations")
    op.drop_table("tender_invitations")

    op.drop_index("ix_tenders_category", table_name="tenders")
    op.drop_index("ix_tenders_status_deadline", table_name="tenders")
    op.drop_index("ix_tenders_owner_status", table_name="tenders")
    op.drop_table("tenders")
