import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()

UPLOAD_STATUSES = ("uploaded", "processing", "processed", "partial_success", "error")
_UPLOAD_STATUS_CHECK = "status IN ('uploaded','processing','processed','partial_success','error')"


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


class Restaurant(Base):
    __tablename__ = "restaurants"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UserRestaurant(Base):
    __tablename__ = "user_restaurants"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID_TYPE, nullable=False)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "restaurant_id", name="uq_user_restaurant"),)


class Supplier(Base):
    __tablename__ = "suppliers"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_suppliers_restaurant_name", "restaurant_id", "name"),)


class ReceiptImport(Base):
    __tablename__ = "receipt_imports"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(UUID_TYPE, ForeignKey("suppliers.id", ondelete="SET NULL"))
    file_name = Column(String(255))
    file_size = Column(Integer)
    storage_path = Column(Text)
    status = Column(String(32), nullable=False, default="uploaded", server_default=text("'uploaded'"))
    vendor_name = Column(String(255))
    total_amount = Column(Numeric(12, 2))
    raw_ocr_data = Column(JSON_TYPE)
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (CheckConstraint(_UPLOAD_STATUS_CHECK, name="chk_receipt_imports_status"),)


class ReceiptLineItem(Base):
    __tablename__ = "receipt_line_items"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    receipt_id = Column(UUID_TYPE, ForeignKey("receipt_imports.id", ondelete="CASCADE"), nullable=False)
    raw_text = Column(Text)
    parsed_name = Column(String(255), nullable=False)
    parsed_quantity = Column(Numeric(12, 3))
    parsed_unit = Column(String(32))
    parsed_price = Column(Numeric(12, 2))
    category = Column(String(64))
    confidence_score = Column(Numeric(4, 3))
    line_sequence = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("idx_receipt_line_items_receipt_seq", "receipt_id", "line_sequence"),)


class BankStatementUpload(Base):
    __tablename__ = "bank_statement_uploads"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String(255))
    file_size = Column(Integer)
    storage_path = Column(Text)
    status = Column(String(32), nullable=False, default="uploaded", server_default=text("'uploaded'"))
    bank_name = Column(String(255))
    account_number_last4 = Column(String(4))
    statement_period_start = Column(Date)
    statement_period_end = Column(Date)
    opening_balance = Column(Numeric(14, 2))
    closing_balance = Column(Numeric(14, 2))
    transaction_count = Column(Integer)
    successful_transaction_count = Column(Integer)
    failed_transaction_count = Column(Integer)
    total_debits = Column(Numeric(14, 2))
    total_credits = Column(Numeric(14, 2))
    raw_ocr_data = Column(JSON_TYPE)
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (CheckConstraint(_UPLOAD_STATUS_CHECK, name="chk_bank_statement_uploads_status"),)


class BankStatementLine(Base):
    __tablename__ = "bank_statement_lines"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    statement_upload_id = Column(
        UUID_TYPE, ForeignKey("bank_statement_uploads.id", ondelete="CASCADE"), nullable=False
    )
    transaction_date = Column(Date)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(14, 2))
    transaction_type = Column(String(16), nullable=False, default="unknown", server_default=text("'unknown'"))
    balance = Column(Numeric(14, 2))
    line_sequence = Column(Integer, nullable=False)
    confidence_score = Column(Numeric(4, 3))
    has_validation_error = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    validation_errors = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_bank_statement_lines_upload_seq", "statement_upload_id", "line_sequence"),
        CheckConstraint(
            "transaction_type IN ('debit','credit','unknown')",
            name="chk_bank_statement_lines_type",
        ),
    )


class ChartOfAccount(Base):
    __tablename__ = "chart_of_accounts"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    account_code = Column(String(16), nullable=False)
    account_name = Column(String(255), nullable=False)
    account_type = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    __table_args__ = (UniqueConstraint("restaurant_id", "account_code", name="uq_chart_of_accounts_code"),)


class BankTransaction(Base):
    __tablename__ = "bank_transactions"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID_TYPE, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    transaction_date = Column(Date, nullable=False)
    description = Column(Text)
    merchant_name = Column(String(255))
    normalized_payee = Column(String(255))
    amount = Column(Numeric(14, 2), nullable=False)
    category_id = Column(UUID_TYPE, ForeignKey("chart_of_accounts.id", ondelete="SET NULL"))
    suggested_category_id = Column(UUID_TYPE, ForeignKey("chart_of_accounts.id", ondelete="SET NULL"))
    ai_confidence = Column(String(8))
    ai_reasoning = Column(Text)
    is_categorized = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_bank_transactions_restaurant_date", "restaurant_id", "transaction_date"),
        CheckConstraint(
            "ai_confidence IS NULL OR ai_confidence IN ('high','medium','low')",
            name="chk_bank_transactions_ai_confidence",
        ),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID_TYPE, primary_key=True, default=uuid.uuid4)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False)
    action = Column(String(64), nullable=False)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(UUID_TYPE)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
