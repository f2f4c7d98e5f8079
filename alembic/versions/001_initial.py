"""Initial access-control schema.

Plans, tenants, the four account tables, sessions, audit events, and the
venue/booking tables that plan limits count.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _tenant_fk() -> sa.Column:
    return sa.Column(
        "tenant_id",
        UUID(as_uuid=True),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "plans",
        _id(),
        sa.Column("slug", sa.String(50), unique=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_monthly", sa.Integer(), server_default=sa.text("0")),
        sa.Column("price_yearly", sa.Integer(), server_default=sa.text("0")),
        sa.Column("status", sa.String(20), server_default=sa.text("'active'")),
        sa.Column("features", JSON(), nullable=False),
        sa.Column("limits", JSON(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "platform_users",
        _id(),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        _created_at(),
    )

    op.create_table(
        "super_admins",
        _id(),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        _created_at(),
    )

    op.create_table(
        "tenants",
        _id(),
        sa.Column("slug", sa.String(50), unique=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'")),
        sa.Column("plan_id", UUID(as_uuid=True), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column(
            "owner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("platform_users.id", ondelete="SET NULL"),
            unique=True,
            nullable=True,
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "tenant_users",
        _id(),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("roles", JSON(), nullable=False),
        sa.Column("explicit_permissions", JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_tenant_users_tenant_email"),
    )

    op.create_table(
        "customers",
        _id(),
        _tenant_fk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),
    )

    op.create_table(
        "sessions",
        _id(),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("subject_id", UUID(as_uuid=True), nullable=False),
        sa.Column("subject_kind", sa.String(20), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=True),
        sa.Column("assumed", sa.Boolean(), server_default=sa.text("false")),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by", UUID(as_uuid=True), nullable=True),
    )
    op.create_index("ix_sessions_subject", "sessions", ["subject_kind", "subject_id"])
    op.create_index("ix_sessions_tenant_id", "sessions", ["tenant_id"])

    op.create_table(
        "audit_events",
        _id(),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=True),
        sa.Column("actor_id", sa.String(100), nullable=True),
        sa.Column("actor_kind", sa.String(20), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("details", JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])

    op.create_table(
        "venues",
        _id(),
        _tenant_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        _created_at(),
    )

    op.create_table(
        "bookings",
        _id(),
        _tenant_fk(),
        sa.Column(
            "venue_id",
            UUID(as_uuid=True),
            sa.ForeignKey("venues.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("venues")
    op.drop_index("ix_audit_events_tenant_id", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_sessions_tenant_id", table_name="sessions")
    op.drop_index("ix_sessions_subject", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("customers")
    op.drop_table("tenant_users")
    op.drop_table("tenants")
    op.drop_table("super_admins")
    op.drop_table("platform_users")
    op.drop_table("plans")
