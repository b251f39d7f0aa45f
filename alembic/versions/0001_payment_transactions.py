"""payment transactions, sync queue and webhook audit

Revision ID: 0001_payment_transactions
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_payment_transactions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("merchant_txn_ref", sa.String(64), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("order_info", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="AED"),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("status", sa.String(24), nullable=False, server_default="pending"),
        sa.Column("response_code", sa.String(8), nullable=True),
        sa.Column("response_message", sa.Text, nullable=True),
        sa.Column("auth_code", sa.String(64), nullable=True),
        sa.Column("receipt_no", sa.String(64), nullable=True),
        sa.Column("batch_no", sa.String(64), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("vpc_data", sa.JSON, nullable=True),
        sa.Column("gateway_response", sa.JSON, nullable=True),
        sa.Column("return_url", sa.String(512), nullable=False),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("merchant_txn_ref", name="uq_payment_transactions_merchant_txn_ref"),
        sa.CheckConstraint("refunded_amount <= amount", name="ck_payment_transactions_refund_le_amount"),
    )
    op.create_index("ix_payment_transactions_transaction_id", "payment_transactions", ["transaction_id"], unique=False)
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"], unique=False)
    op.create_index(
        "ix_payment_transactions_status_created",
        "payment_transactions",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("triggered_by", sa.String(32), nullable=False),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="waiting"),
        sa.Column("batch_size", sa.Integer, nullable=True),
        sa.Column("run_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_sync_jobs_id", "sync_jobs", ["id"], unique=False)
    op.create_index("ix_sync_jobs_status_priority", "sync_jobs", ["status", "priority"], unique=False)

    op.create_table(
        "sync_queue_state",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("paused", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("event", sa.String(64), nullable=True),
        sa.Column("reference", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_webhook_logs_id", "webhook_logs", ["id"], unique=False)
    op.create_index("ix_webhook_logs_provider_reference", "webhook_logs", ["provider", "reference"], unique=False)


def downgrade():
    op.drop_table("webhook_logs")
    op.drop_table("sync_queue_state")
    op.drop_table("sync_jobs")
    op.drop_table("payment_transactions")
