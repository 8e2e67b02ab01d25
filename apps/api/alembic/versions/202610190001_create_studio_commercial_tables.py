"""create studio commercial tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_ACTIVE_WITH_EVENT = sa.text(
    "status = 'en_cierre' OR (status IN ('aprobada', 'autorizada', 'approved') AND evento_id IS NOT NULL)"
)


def upgrade() -> None:
    op.create_table(
        "studio",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "studio_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("platform_user_id", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("studio_id", "platform_user_id", name="uq_studio_user_studio_platform_user"),
    )

    op.create_table(
        "studio_acquisition_channel",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "social_network",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "studio_event_type",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "studio_contact",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("acquisition_channel_id", sa.Uuid(), nullable=True),
        sa.Column("social_network_id", sa.Uuid(), nullable=True),
        sa.Column("referrer_contact_id", sa.Uuid(), nullable=True),
        sa.Column("referrer_name", sa.Text(), nullable=True),
        sa.Column("is_test", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["acquisition_channel_id"],
            ["studio_acquisition_channel.id"],
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(["social_network_id"], ["social_network.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("studio_id", "phone", name="uq_studio_contact_studio_phone"),
    )

    op.create_table(
        "studio_pipeline_stage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=False, server_default="#3B82F6"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("studio_id", "slug", name="uq_studio_pipeline_stage_studio_slug"),
    )
    op.create_index(
        "ix_studio_pipeline_stage_studio_order",
        "studio_pipeline_stage",
        ["studio_id", "order"],
        unique=False,
    )

    op.create_table(
        "studio_promise",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("event_type_id", sa.Uuid(), nullable=True),
        sa.Column("pipeline_stage_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("tentative_dates", sa.JSON(), nullable=False),
        sa.Column("event_location", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_test", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contact_id"], ["studio_contact.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["event_type_id"], ["studio_event_type.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["pipeline_stage_id"], ["studio_pipeline_stage.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_studio_promise_studio_stage",
        "studio_promise",
        ["studio_id", "pipeline_stage_id"],
        unique=False,
    )

    op.create_table(
        "studio_business_term",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_percentage", sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column("advance_percentage", sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="standard"),
        sa.Column("offer_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "studio_quotation",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("discount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pendiente"),
        sa.Column("visible_to_client", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("evento_id", sa.Uuid(), nullable=True),
        sa.Column("revision_status", sa.String(length=32), nullable=True),
        sa.Column("business_term_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["promise_id"], ["studio_promise.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["business_term_id"], ["studio_business_term.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_studio_quotation_promise_id", "studio_quotation", ["promise_id"], unique=False)
    op.create_index(
        "uq_studio_quotation_active_with_event_per_promise",
        "studio_quotation",
        ["promise_id"],
        unique=True,
        postgresql_where=_ACTIVE_WITH_EVENT,
        sqlite_where=_ACTIVE_WITH_EVENT,
    )

    op.create_table(
        "studio_event",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=False),
        sa.Column("quotation_id", sa.Uuid(), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("promise_id"),
    )

    op.create_table(
        "studio_agenda_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=True),
        sa.Column("evento_id", sa.Uuid(), nullable=True),
        sa.Column("scheduled_for", sa.Date(), nullable=False),
        sa.Column("concept", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pendiente"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_studio_agenda_entry_promise_id", "studio_agenda_entry", ["promise_id"], unique=False)
    op.create_index("ix_studio_agenda_entry_evento_id", "studio_agenda_entry", ["evento_id"], unique=False)

    op.create_table(
        "studio_payroll_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("evento_id", sa.Uuid(), nullable=False),
        sa.Column("concept", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pendiente"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_studio_payroll_entry_evento_id", "studio_payroll_entry", ["evento_id"], unique=False)

    op.create_table(
        "studio_payment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=True),
        sa.Column("quotation_id", sa.Uuid(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "studio_promise_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("log_type", sa.String(length=64), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("origin_context", sa.String(length=16), nullable=False, server_default="PROMISE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["promise_id"], ["studio_promise.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_studio_promise_log_promise_created",
        "studio_promise_log",
        ["promise_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "studio_promise_status_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("promise_id", sa.Uuid(), nullable=False),
        sa.Column("from_stage_id", sa.Uuid(), nullable=True),
        sa.Column("to_stage_id", sa.Uuid(), nullable=False),
        sa.Column("from_stage_slug", sa.String(length=128), nullable=True),
        sa.Column("to_stage_slug", sa.String(length=128), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["promise_id"], ["studio_promise.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_studio_promise_status_history_promise_id",
        "studio_promise_status_history",
        ["promise_id"],
        unique=False,
    )

    op.create_table(
        "studio_offer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("studio_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("cover_media_url", sa.Text(), nullable=True),
        sa.Column("cover_media_type", sa.String(length=16), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_permanent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("has_date_range", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("landing_page", sa.JSON(), nullable=False),
        sa.Column("leadform", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["studio_id"], ["studio.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("studio_id", "slug", name="uq_studio_offer_studio_slug"),
    )
    op.create_index("ix_studio_offer_studio_order", "studio_offer", ["studio_id", "order"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_studio_offer_studio_order", table_name="studio_offer")
    op.drop_table("studio_offer")
    op.drop_index("ix_studio_promise_status_history_promise_id", table_name="studio_promise_status_history")
    op.drop_table("studio_promise_status_history")
    op.drop_index("ix_studio_promise_log_promise_created", table_name="studio_promise_log")
    op.drop_table("studio_promise_log")
    op.drop_table("studio_payment")
    op.drop_index("ix_studio_payroll_entry_evento_id", table_name="studio_payroll_entry")
    op.drop_table("studio_payroll_entry")
    op.drop_index("ix_studio_agenda_entry_evento_id", table_name="studio_agenda_entry")
    op.drop_index("ix_studio_agenda_entry_promise_id", table_name="studio_agenda_entry")
    op.drop_table("studio_agenda_entry")
    op.drop_table("studio_event")
    op.drop_index("uq_studio_quotation_active_with_event_per_promise", table_name="studio_quotation")
    op.drop_index("ix_studio_quotation_promise_id", table_name="studio_quotation")
    op.drop_table("studio_quotation")
    op.drop_table("studio_business_term")
    op.drop_index("ix_studio_promise_studio_stage", table_name="studio_promise")
    op.drop_table("studio_promise")
    op.drop_index("ix_studio_pipeline_stage_studio_order", table_name="studio_pipeline_stage")
    op.drop_table("studio_pipeline_stage")
    op.drop_table("studio_contact")
    op.drop_table("studio_event_type")
    op.drop_table("social_network")
    op.drop_table("studio_acquisition_channel")
    op.drop_table("studio_user")
    op.drop_table("studio")
