"""Sync engine baseline: record tables and sync bookkeeping

Revision ID: 0001_sync_baseline
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence
from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_sync_baseline"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create record tables and sync bookkeeping tables."""
    # Record tables ---------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_updated_at", "users", ["updated_at"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("sku", sa.String(), nullable=True, unique=True),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_updated_at", "products", ["updated_at"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(), nullable=False, unique=True),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_updated_at", "orders", ["updated_at"])

    op.create_table(
        "generic_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("table_name", sa.String(63), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("table_name", "record_id", name="uq_generic_records_table_record"),
    )
    op.create_index("ix_generic_records_table_name", "generic_records", ["table_name"])
    op.create_index("ix_generic_records_updated_at", "generic_records", ["updated_at"])

    # Sync bookkeeping --------------------------------------------------------
    # Enum columns are stored as plain strings (native_enum=False)
    op.create_table(
        "offline_operations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("operation_id", sa.String(64), nullable=False),
        sa.Column("operation_type", sa.String(6), nullable=False),
        sa.Column("table_name", sa.String(63), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("conflict_strategy", sa.String(11), nullable=True),
        sa.Column("base_version", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "operation_id", name="uq_offline_operations_user_op"),
    )
    op.create_index("ix_offline_operations_user_id", "offline_operations", ["user_id"])
    op.create_index("ix_offline_operations_operation_id", "offline_operations", ["operation_id"])
    op.create_index(
        "ix_offline_operations_user_status_created",
        "offline_operations",
        ["user_id", "status", "created_at"],
    )

    op.create_table(
        "sync_conflicts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("operation_id", sa.String(64), nullable=True),
        sa.Column("table_name", sa.String(63), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("conflict_type", sa.String(16), nullable=False),
        sa.Column("local_data", sa.JSON(), nullable=True),
        sa.Column("server_data", sa.JSON(), nullable=True),
        sa.Column("resolution_strategy", sa.String(11), nullable=True),
        sa.Column("status", sa.String(8), nullable=False),
        sa.Column("resolved_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_sync_conflicts_user_id", "sync_conflicts", ["user_id"])
    op.create_index("ix_sync_conflicts_operation_id", "sync_conflicts", ["operation_id"])
    op.create_index("ix_sync_conflicts_status", "sync_conflicts", ["status"])

    op.create_table(
        "data_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("table_name", sa.String(63), nullable=False),
        sa.Column("record_id", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("last_modified_by", sa.String(6), nullable=False),
        sa.Column("last_modified_at", sa.DateTime(), nullable=False),
        sa.Column("checksum", sa.String(32), nullable=False),
        sa.Column("content_checksum", sa.String(32), nullable=True),
        sa.UniqueConstraint("user_id", "table_name", "record_id", name="uq_data_versions_user_table_record"),
    )
    op.create_index("ix_data_versions_user_id", "data_versions", ["user_id"])

    op.create_table(
        "sync_status",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("pending_operations_count", sa.Integer(), nullable=False),
        sa.Column("conflicts_count", sa.Integer(), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False),
        sa.Column("last_online_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_token", sa.String(64), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_ok", sa.Boolean(), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sync_status_user_id", "sync_status", ["user_id"], unique=True)

    op.create_table(
        "sync_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("sync_type", sa.String(11), nullable=False),
        sa.Column("operations_processed", sa.Integer(), nullable=False),
        sa.Column("conflicts_resolved", sa.Integer(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("sync_token", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sync_history_user_id", "sync_history", ["user_id"])
    op.create_index("ix_sync_history_created_at", "sync_history", ["created_at"])


def downgrade() -> None:
    for table in (
        "sync_history",
        "sync_status",
        "data_versions",
        "sync_conflicts",
        "offline_operations",
        "generic_records",
        "orders",
        "products",
        "users",
    ):
        op.drop_table(table)
