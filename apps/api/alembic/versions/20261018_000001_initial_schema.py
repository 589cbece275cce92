"""create credit ledger and tuning request schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "credit_balances",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.CheckConstraint("last_sequence >= 0", name="ck_credit_balances_sequence_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("external_reference", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_reference"),
        sa.UniqueConstraint("user_id", "sequence", name="uq_credit_ledger_user_sequence"),
    )
    op.create_index(op.f("ix_credit_ledger_user_id"), "credit_ledger", ["user_id"], unique=False)
    op.create_index(op.f("ix_credit_ledger_created_at"), "credit_ledger", ["created_at"], unique=False)
    op.create_index("ix_credit_ledger_reference", "credit_ledger", ["reference_type", "reference_id"], unique=False)
    op.create_index("ix_credit_ledger_kind_created", "credit_ledger", ["kind", "created_at"], unique=False)

    op.create_table(
        "tuning_options",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("credit_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("credit_cost >= 0", name="ck_tuning_options_cost_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "manufacturers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "vehicle_models",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("manufacturer_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["manufacturer_id"], ["manufacturers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("manufacturer_id", "name", name="uq_vehicle_models_manufacturer_name"),
    )
    op.create_index(op.f("ix_vehicle_models_manufacturer_id"), "vehicle_models", ["manufacturer_id"], unique=False)

    op.create_table(
        "tuning_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("manufacturer_id", sa.Integer(), nullable=False),
        sa.Column("model_id", sa.Integer(), nullable=False),
        sa.Column("production_year", sa.Integer(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=False),
        sa.Column("original_file_reference", sa.String(), nullable=False),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("processed_file_reference", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("customer_message", sa.Text(), nullable=True),
        sa.Column("admin_message", sa.Text(), nullable=True),
        sa.Column("estimated_time", sa.String(), nullable=True),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.CheckConstraint("priority >= 0", name="ck_tuning_requests_priority_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_tuning_requests_status",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["manufacturer_id"], ["manufacturers.id"]),
        sa.ForeignKeyConstraint(["model_id"], ["vehicle_models.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_tuning_requests_user_idempotency_key"),
    )
    op.create_index(op.f("ix_tuning_requests_user_id"), "tuning_requests", ["user_id"], unique=False)
    op.create_index(op.f("ix_tuning_requests_status"), "tuning_requests", ["status"], unique=False)
    op.create_index(op.f("ix_tuning_requests_created_at"), "tuning_requests", ["created_at"], unique=False)
    op.create_index("ix_tuning_requests_status_priority", "tuning_requests", ["status", "priority"], unique=False)

    op.create_table(
        "tuning_request_options",
        sa.Column("request_id", sa.String(), nullable=False),
        sa.Column("option_id", sa.Integer(), nullable=False),
        sa.Column("credit_cost", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["request_id"], ["tuning_requests.id"]),
        sa.ForeignKeyConstraint(["option_id"], ["tuning_options.id"]),
        sa.PrimaryKeyConstraint("request_id", "option_id"),
    )


def downgrade() -> None:
    op.drop_table("tuning_request_options")
    op.drop_index("ix_tuning_requests_status_priority", table_name="tuning_requests")
    op.drop_index(op.f("ix_tuning_requests_created_at"), table_name="tuning_requests")
    op.drop_index(op.f("ix_tuning_requests_status"), table_name="tuning_requests")
    op.drop_index(op.f("ix_tuning_requests_user_id"), table_name="tuning_requests")
    op.drop_table("tuning_requests")
    op.drop_index(op.f("ix_vehicle_models_manufacturer_id"), table_name="vehicle_models")
    op.drop_table("vehicle_models")
    op.drop_table("manufacturers")
    op.drop_table("tuning_options")
    op.drop_index("ix_credit_ledger_kind_created", table_name="credit_ledger")
    op.drop_index("ix_credit_ledger_reference", table_name="credit_ledger")
    op.drop_index(op.f("ix_credit_ledger_created_at"), table_name="credit_ledger")
    op.drop_index(op.f("ix_credit_ledger_user_id"), table_name="credit_ledger")
    op.drop_table("credit_ledger")
    op.drop_table("credit_balances")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
