"""init extraction schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261017_000001"
down_revision = None
branch_labels = None
depends_on = None

UPLOAD_STATUS_CHECK = "status IN ('uploaded','processing','processed','partial_success','error')"


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _restaurant_fk() -> sa.Column:
    return sa.Column(
        "restaurant_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("restaurants.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "restaurants",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
    )

    op.create_table(
        "user_restaurants",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        _restaurant_fk(),
        sa.Column("role", sa.String(length=32), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "restaurant_id", name="uq_user_restaurant"),
    )

    op.create_table(
        "suppliers",
        _id_column(),
        _restaurant_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("idx_suppliers_restaurant_name", "suppliers", ["restaurant_id", "name"])

    op.create_table(
        "receipt_imports",
        _id_column(),
        _restaurant_fk(),
        sa.Column(
            "supplier_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("suppliers.id", ondelete="SET NULL"),
        ),
        sa.Column("file_name", sa.String(length=255)),
        sa.Column("file_size", sa.Integer()),
        sa.Column("storage_path", sa.Text()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'uploaded'")),
        sa.Column("vendor_name", sa.String(length=255)),
        sa.Column("total_amount", sa.Numeric(12, 2)),
        sa.Column("raw_ocr_data", postgresql.JSONB()),
        sa.Column("error_message", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.CheckConstraint(UPLOAD_STATUS_CHECK, name="chk_receipt_imports_status"),
    )

    op.create_table(
        "receipt_line_items",
        _id_column(),
        sa.Column(
            "receipt_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("receipt_imports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("raw_text", sa.Text()),
        sa.Column("parsed_name", sa.String(length=255), nullable=False),
        sa.Column("parsed_quantity", sa.Numeric(12, 3)),
        sa.Column("parsed_unit", sa.String(length=32)),
        sa.Column("parsed_price", sa.Numeric(12, 2)),
        sa.Column("category", sa.String(length=64)),
        sa.Column("confidence_score", sa.Numeric(4, 3)),
        sa.Column("line_sequence", sa.Integer(), nullable=False),
        _created_at(),
    )
    op.create_index("idx_receipt_line_items_receipt_seq", "receipt_line_items", ["receipt_id", "line_sequence"])

    op.create_table(
        "bank_statement_uploads",
        _id_column(),
        _restaurant_fk(),
        sa.Column("file_name", sa.String(length=255)),
        sa.Column("file_size", sa.Integer()),
        sa.Column("storage_path", sa.Text()),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'uploaded'")),
        sa.Column("bank_name", sa.String(length=255)),
        sa.Column("account_number_last4", sa.String(length=4)),
        sa.Column("statement_period_start", sa.Date()),
        sa.Column("statement_period_end", sa.Date()),
        sa.Column("opening_balance", sa.Numeric(14, 2)),
        sa.Column("closing_balance", sa.Numeric(14, 2)),
        sa.Column("transaction_count", sa.Integer()),
        sa.Column("successful_transaction_count", sa.Integer()),
        sa.Column("failed_transaction_count", sa.Integer()),
        sa.Column("total_debits", sa.Numeric(14, 2)),
        sa.Column("total_credits", sa.Numeric(14, 2)),
        sa.Column("raw_ocr_data", postgresql.JSONB()),
        sa.Column("error_message", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        _created_at(),
        sa.CheckConstraint(UPLOAD_STATUS_CHECK, name="chk_bank_statement_uploads_status"),
    )

    op.create_table(
        "bank_statement_lines",
        _id_column(),
        sa.Column(
            "statement_upload_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bank_statement_uploads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_date", sa.Date()),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2)),
        sa.Column("transaction_type", sa.String(length=16), nullable=False, server_default=sa.text("'unknown'")),
        sa.Column("balance", sa.Numeric(14, 2)),
        sa.Column("line_sequence", sa.Integer(), nullable=False),
        sa.Column("confidence_score", sa.Numeric(4, 3)),
        sa.Column("has_validation_error", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("validation_errors", postgresql.JSONB()),
        _created_at(),
        sa.CheckConstraint("transaction_type IN ('debit','credit','unknown')", name="chk_bank_statement_lines_type"),
    )
    op.create_index(
        "idx_bank_statement_lines_upload_seq",
        "bank_statement_lines",
        ["statement_upload_id", "line_sequence"],
    )

    op.create_table(
        "chart_of_accounts",
        _id_column(),
        _restaurant_fk(),
        sa.Column("account_code", sa.String(length=16), nullable=False),
        sa.Column("account_name", sa.String(length=255), nullable=False),
        sa.Column("account_type", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("restaurant_id", "account_code", name="uq_chart_of_accounts_code"),
    )

    op.create_table(
        "bank_transactions",
        _id_column(),
        _restaurant_fk(),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("merchant_name", sa.String(length=255)),
        sa.Column("normalized_payee", sa.String(length=255)),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "category_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chart_of_accounts.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "suggested_category_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chart_of_accounts.id", ondelete="SET NULL"),
        ),
        sa.Column("ai_confidence", sa.String(length=8)),
        sa.Column("ai_reasoning", sa.Text()),
        sa.Column("is_categorized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR ai_confidence IN ('high','medium','low')",
            name="chk_bank_transactions_ai_confidence",
        ),
    )
    op.create_index(
        "idx_bank_transactions_restaurant_date",
        "bank_transactions",
        ["restaurant_id", "transaction_date"],
    )

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("new_value", postgresql.JSONB()),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("idx_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("idx_bank_transactions_restaurant_date", table_name="bank_transactions")
    op.drop_table("bank_transactions")
    op.drop_table("chart_of_accounts")
    op.drop_index("idx_bank_statement_lines_upload_seq", table_name="bank_statement_lines")
    op.drop_table("bank_statement_lines")
    op.drop_table("bank_statement_uploads")
    op.drop_index("idx_receipt_line_items_receipt_seq", table_name="receipt_line_items")
    op.drop_table("receipt_line_items")
    op.drop_table("receipt_imports")
    op.drop_index("idx_suppliers_restaurant_name", table_name="suppliers")
    op.drop_table("suppliers")
    op.drop_table("user_restaurants")
    op.drop_table("restaurants")
