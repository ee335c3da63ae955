"""
SQLAlchemy ORM Models for Paytm Bridge

Defines the transactions table. Money is stored in integer minor units.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, CheckConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TransactionModel(Base):
    """
    ORM model for transactions table.

    Status moves PENDING -> SUCCESS | FAILED | CANCELLED exactly once,
    through a conditional UPDATE guarded on status = 'PENDING'.
    """
    __tablename__ = "transactions"

    order_id = Column(String, primary_key=True)
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="INR")
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PENDING", index=True)
    gateway_name = Column(String, nullable=False, default="PAYTM")
    gateway_transaction_id = Column(String)
    integrity_code = Column(String, nullable=False)
    gateway_response = Column(Text)  # JSON blob
    response_code = Column(String)
    response_message = Column(String)
    payment_mode = Column(String)
    bank_name = Column(String)
    bank_transaction_id = Column(String)
    signature_verified = Column(Boolean)
    reconciled_via = Column(String)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'SUCCESS', 'FAILED', 'CANCELLED')",
            name="status_check"
        ),
        CheckConstraint("amount_minor > 0", name="amount_positive_check"),
        CheckConstraint(
            "reconciled_via IN ('callback', 'inquiry', 'merchant') OR reconciled_via IS NULL",
            name="reconciled_via_check"
        ),
    )
