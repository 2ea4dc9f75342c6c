"""init routing schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    chat_request_status = sa.Enum(
        "waiting", "assigned", "rejected", name="chat_request_status"
    )
    chat_assignment_status = sa.Enum(
        "pending", "active", "completed", name="chat_assignment_status"
    )
    chat_ended_by = sa.Enum("customer", "operator", "system", name="chat_ended_by")

    bind = op.get_bind()
    chat_request_status.create(bind, checkfirst=True)
    chat_assignment_status.create(bind, checkfirst=True)
    chat_ended_by.create(bind, checkfirst=True)

    op.create_table(
        "operators",
        sa.Column("id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "is_available", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("active_chats", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_chats", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint("active_chats >= 0", name="ck_operator_active_chats_non_negative"),
        sa.CheckConstraint("max_chats > 0", name="ck_operator_max_chats_positive"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "chat_requests",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.String(length=128), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("message", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "status",
            sa.Enum(
                "waiting",
                "assigned",
                "rejected",
                name="chat_request_status",
                create_type=False,
            ),
            nullable=False,
            server_default=sa.text("'waiting'"),
        ),
        sa.Column("assigned_operator_id", sa.String(length=128), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["assigned_operator_id"], ["operators.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_chat_requests_customer_created",
        "chat_requests",
        ["customer_id", "created_at"],
        unique=False,
    )
    op.create_index("ix_chat_requests_status", "chat_requests", ["status"], unique=False)

    op.create_table(
        "chat_assignments",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("request_id", sa.String(length=32), nullable=False),
        sa.Column("customer_id", sa.String(length=128), nullable=False),
        sa.Column("customer_name", sa.String(length=120), nullable=False),
        sa.Column("operator_id", sa.String(length=128), nullable=False),
        sa.Column("operator_name", sa.String(length=120), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "active",
                "completed",
                name="chat_assignment_status",
                create_type=False,
            ),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "ended_by",
            sa.Enum(
                "customer",
                "operator",
                "system",
                name="chat_ended_by",
                create_type=False,
            ),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["request_id"], ["chat_requests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["operator_id"], ["operators.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("request_id", name="uq_chat_assignment_request"),
    )
    op.create_index(
        "uq_chat_assignment_open_customer",
        "chat_assignments",
        ["customer_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'active')"),
    )
    op.create_index(
        "ix_chat_assignments_operator_status",
        "chat_assignments",
        ["operator_id", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_chat_assignments_operator_status", table_name="chat_assignments")
    op.drop_index("uq_chat_assignment_open_customer", table_name="chat_assignments")
    op.drop_table("chat_assignments")

    op.drop_index("ix_chat_requests_status", table_name="chat_requests")
    op.drop_index("ix_chat_requests_customer_created", table_name="chat_requests")
    op.drop_table("chat_requests")

    op.drop_table("operators")

    bind = op.get_bind()
    sa.Enum(name="chat_ended_by").drop(bind, checkfirst=True)
    sa.Enum(name="chat_assignment_status").drop(bind, checkfirst=True)
    sa.Enum(name="chat_request_status").drop(bind, checkfirst=True)
