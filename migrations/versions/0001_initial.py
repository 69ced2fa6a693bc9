"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def upgrade() -> None:
    op.create_table(
        "pending_payments",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("payment_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("external_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("branch_id", GUID(), nullable=False, index=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("sale_id", GUID(), nullable=True, index=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, index=True),
        sa.Column("qr_data", sa.Text(), nullable=True),
        sa.Column("qr_image_url", sa.String(length=500), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "payment_notifications",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("payment_id", sa.String(length=64), nullable=False, index=True),
        sa.Column("external_id", sa.String(length=128), nullable=True, index=True),
        sa.Column("branch_id", GUID(), nullable=True, index=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("sale_id", GUID(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("status_detail", sa.String(length=100), nullable=True),
        sa.Column("transaction_id", sa.String(length=128), nullable=True),
        sa.Column("authorization_code", sa.String(length=64), nullable=True),
        sa.Column("payer_email", sa.String(length=255), nullable=True),
        sa.Column("payer_name", sa.String(length=255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("raw_webhook_data", sa.JSON(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("payment_id", "status", name="uq_payment_notifications_payment_status"),
    )
    op.create_index(
        "ix_payment_notifications_branch_created",
        "payment_notifications",
        ["branch_id", "created_at"],
        unique=False,
    )
    op.create_table(
        "sales",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("branch_id", GUID(), nullable=False, index=True),
        sa.Column("point_of_sale", sa.Integer(), nullable=False),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("client_name", sa.String(length=150), nullable=False),
        sa.Column("client_tax_id", sa.String(length=20), nullable=True),
        sa.Column("client_tax_condition", sa.String(length=50), nullable=False),
        sa.Column("invoice_type", sa.String(length=1), nullable=False),
        sa.Column("invoice_family", sa.String(length=20), nullable=False),
        sa.Column("invoice_number", sa.Integer(), nullable=False),
        sa.Column("subtotal", sa.Float(), nullable=False),
        sa.Column("net_total", sa.Float(), nullable=False),
        sa.Column("vat_total", sa.Float(), nullable=False),
        sa.Column("total", sa.Float(), nullable=False),
        sa.Column("tendered_total", sa.Float(), nullable=False),
        sa.Column("change_due", sa.Float(), nullable=False),
        sa.Column("authorization_code", sa.String(length=64), nullable=True),
        sa.Column("authorization_status", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "branch_id",
            "point_of_sale",
            "invoice_family",
            "invoice_number",
            name="uq_sales_branch_pos_family_number",
        ),
    )
    op.create_index("ix_sales_branch_created", "sales", ["branch_id", "created_at"], unique=False)
    op.create_table(
        "sale_lines",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sale_id", GUID(), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit_price", sa.Float(), nullable=False),
        sa.Column("discount_percent", sa.Float(), nullable=False),
        sa.Column("vat_rate", sa.Float(), nullable=False),
        sa.Column("line_total", sa.Float(), nullable=False),
        sa.Column("net_amount", sa.Float(), nullable=False),
        sa.Column("vat_amount", sa.Float(), nullable=False),
    )
    op.create_table(
        "sale_tenders",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sale_id", GUID(), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("received", sa.Float(), nullable=True),
        sa.Column("card_type", sa.String(length=50), nullable=True),
        sa.Column("external_reference", sa.String(length=64), nullable=True, unique=True),
        sa.Column("requested_amount", sa.Float(), nullable=True),
    )
    op.create_table(
        "invoice_counters",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("branch_id", GUID(), nullable=False),
        sa.Column("point_of_sale", sa.Integer(), nullable=False),
        sa.Column("family", sa.String(length=20), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("branch_id", "point_of_sale", "family", name="uq_invoice_counters_scope"),
    )
    op.create_table(
        "idempotency_records",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("branch_id", GUID(), nullable=False, index=True),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("branch_id", "endpoint", "method", "idempotency_key", name="uq_idempotency"),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("branch_id", GUID(), nullable=True, index=True),
        sa.Column("user_id", GUID(), nullable=True),
        sa.Column("trace_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("before_payload", sa.JSON(), nullable=True),
        sa.Column("after_payload", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("result", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("idempotency_records")
    op.drop_table("invoice_counters")
    op.drop_table("sale_tenders")
    op.drop_table("sale_lines")
    op.drop_index("ix_sales_branch_created", table_name="sales")
    op.drop_table("sales")
    op.drop_index("ix_payment_notifications_branch_created", table_name="payment_notifications")
    op.drop_table("payment_notifications")
    op.drop_table("pending_payments")
