"""
Pydantic Transaction Models

Represents a payment order from initiation to its terminal outcome.
Terminal statuses (SUCCESS, FAILED, CANCELLED) never transition again.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

TransactionStatus = Literal["PENDING", "SUCCESS", "FAILED", "CANCELLED"]
ReconciliationSource = Literal["callback", "inquiry", "merchant"]

TERMINAL_STATUSES = frozenset({"SUCCESS", "FAILED", "CANCELLED"})


class CustomerInfo(BaseModel):
    """Customer details captured at initiation. Immutable."""
    email: str
    phone: str
    name: str


class TransactionSummary(BaseModel):
    """
    Transaction projection safe to hand to clients.

    Excludes the stored integrity code and the raw gateway response.
    """
    order_id: str
    amount: Decimal = Field(gt=0, decimal_places=2)
    currency: str = "INR"
    customer: CustomerInfo
    status: TransactionStatus = "PENDING"
    gateway_name: str = "PAYTM"
    gateway_transaction_id: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    payment_mode: Optional[str] = None
    bank_name: Optional[str] = None
    bank_transaction_id: Optional[str] = None
    signature_verified: Optional[bool] = None  # None until an outcome is applied
    reconciled_via: Optional[ReconciliationSource] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(extra="forbid")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TransactionRecord(TransactionSummary):
    """
    Full transaction record as persisted.

    Audit Notes:
    - integrity_code is the checksum sent to the gateway at creation,
      never recomputed
    - gateway_response holds the last gateway payload verbatim
    - signature_verified=False marks an outcome applied without proof of
      authenticity (permissive policy)
    """
    integrity_code: str
    gateway_response: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "order_id": "ORDER_1729350000123456789_9f86d081884c7d65",
                "amount": "499.00",
                "currency": "INR",
                "customer": {"email": "a@b.com", "phone": "9999999999", "name": "A B"},
                "status": "SUCCESS",
                "gateway_name": "PAYTM",
                "gateway_transaction_id": "20241019111212800110168328803050711",
                "response_code": "01",
                "response_message": "Txn Success",
                "payment_mode": "UPI",
                "bank_name": None,
                "bank_transaction_id": "429312345678",
                "signature_verified": True,
                "reconciled_via": "callback",
                "integrity_code": "5f1d...",
                "gateway_response": {"STATUS": "TXN_SUCCESS"},
                "created_at": "2024-10-19T11:12:12",
                "updated_at": "2024-10-19T11:13:40"
            }
        }
    )

    def summary(self) -> TransactionSummary:
        """Project to the client-safe view."""
        return TransactionSummary(
            **self.model_dump(exclude={"integrity_code", "gateway_response"})
        )


class InitiationResult(BaseModel):
    """New PENDING record plus the signed parameters the client forwards to Paytm."""
    record: TransactionRecord
    gateway_params: Dict[str, str]
    gateway_url: str


class TransactionPage(BaseModel):
    """One page of transaction summaries."""
    items: List[TransactionSummary]
    total: int
    page: int
    page_size: int
