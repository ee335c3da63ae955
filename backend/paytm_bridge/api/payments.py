"""
Paytm Payment API Endpoints

Transport layer over the transaction and reconciliation services.

Endpoints:
- POST /initiate: create order, return signed Paytm parameters
- POST /callback: Paytm settlement callback (form-encoded or JSON)
- GET /status/{order_id}: stored transaction status
- GET /payments: paginated transaction list
- POST /transaction-status: pull status from Paytm and reconcile
- POST /cancel/{order_id}: merchant-side cancellation
"""
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
import logging

from ..exceptions import ValidationError
from ..models.transactions import TransactionStatus
from ..services.reconciliation_service import ReconciliationService
from ..services.transaction_service import MAX_PAGE_SIZE, TransactionService

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

def get_transaction_service(request: Request) -> TransactionService:
    return request.app.state.container.transactions


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return request.app.state.container.reconciliation


# ============================================================================
# Request Models
# ============================================================================

class InitiatePaymentRequest(BaseModel):
    """
    Request to start a payment.

    Fields are loosely typed here; the transaction service owns validation
    so every caller gets the same paytm:validation errors.
    """
    amount: Optional[Any] = None
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    customer_phone: Optional[str] = Field(default=None, alias="customerPhone")
    customer_name: Optional[str] = Field(default=None, alias="customerName")

    model_config = ConfigDict(populate_by_name=True)


class TransactionStatusRequest(BaseModel):
    """Request to pull the gateway status of an order."""
    order_id: str = Field(alias="orderId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CancelPaymentRequest(BaseModel):
    reason: Optional[str] = None


async def _read_callback_payload(request: Request) -> Dict[str, str]:
    """Paytm posts callbacks form-encoded; JSON is accepted for replays and tooling."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Callback body is not valid JSON")
        if not isinstance(body, dict):
            return {}
        return {str(k): "" if v is None else str(v) for k, v in body.items()}

    form = await request.form()
    return {key: str(value) for key, value in form.items()}


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/initiate")
async def initiate_payment_endpoint(
    request: InitiatePaymentRequest,
    transactions: TransactionService = Depends(get_transaction_service)
) -> Dict[str, Any]:
    """
    Create a PENDING transaction and signed gateway parameters.

    Request Body:
        {
            "amount": 499.00,
            "customerEmail": "a@b.com",
            "customerPhone": "9999999999",
            "customerName": "A B"
        }

    Returns:
        {
            "success": true,
            "orderId": str,
            "paytmParams": Dict,  # Includes CHECKSUMHASH, post as-is to paytmUrl
            "paytmUrl": str,
            "transaction": TransactionSummary
        }
    """
    result = await transactions.initiate(
        amount=request.amount,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        customer_name=request.customer_name
    )

    return {
        "success": True,
        "orderId": result.record.order_id,
        "paytmParams": result.gateway_params,
        "paytmUrl": result.gateway_url,
        "transaction": result.record.summary().model_dump(mode="json"),
    }


@router.post("/callback")
async def payment_callback_endpoint(
    request: Request,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service)
) -> Dict[str, Any]:
    """
    Receive the Paytm settlement callback.

    Form Fields:
        ORDERID, TXNID, STATUS, PAYMENTMODE, BANKNAME, BANKTXNID,
        RESPCODE, RESPMSG, TXNAMOUNT, CHECKSUMHASH (optional on staging)

    Returns:
        {"success": true, "orderId": str, "status": str, "transaction": TransactionSummary}
    """
    payload = await _read_callback_payload(request)
    record = await reconciliation.handle_callback(payload)

    return {
        "success": True,
        "orderId": record.order_id,
        "status": record.status,
        "transaction": record.summary().model_dump(mode="json"),
    }


@router.get("/status/{order_id}")
async def get_payment_status_endpoint(
    order_id: str,
    transactions: TransactionService = Depends(get_transaction_service)
) -> Dict[str, Any]:
    """
    Get stored status for an order.

    Example:
        GET /api/paytm/status/ORDER_1729350000123456789_9f86d081884c7d65
    """
    logger.debug(f"Retrieving transaction: {order_id}")
    record = await transactions.get(order_id)

    return {
        "success": True,
        "transaction": record.summary().model_dump(mode="json"),
    }


@router.get("/payments")
async def list_payments_endpoint(
    status: Optional[TransactionStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE, description="Page size"),
    transactions: TransactionService = Depends(get_transaction_service)
) -> Dict[str, Any]:
    """
    List transactions, most recent first.

    Example:
        GET /api/paytm/payments?status=SUCCESS&page=2&limit=10
    """
    items, total = await transactions.list(status=status, page=page, page_size=limit)

    return {
        "success": True,
        "payments": [item.model_dump(mode="json") for item in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.post("/transaction-status")
async def transaction_status_endpoint(
    request: TransactionStatusRequest,
    reconciliation: ReconciliationService = Depends(get_reconciliation_service)
) -> Dict[str, Any]:
    """
    Query Paytm for an order's status and reconcile the stored record.

    Request Body:
        {"orderId": str}

    Errors:
        502 paytm:upstream_error, 504 paytm:upstream_timeout when the
        gateway is unreachable or slow; the stored record is untouched.
    """
    logger.info(f"Status inquiry requested for {request.order_id}")
    record = await reconciliation.handle_status_inquiry(request.order_id)

    return {
        "success": True,
        "orderId": record.order_id,
        "status": record.status,
        "transaction": record.summary().model_dump(mode="json"),
    }


@router.post("/cancel/{order_id}")
async def cancel_payment_endpoint(
    order_id: str,
    request: Optional[CancelPaymentRequest] = None,
    transactions: TransactionService = Depends(get_transaction_service)
) -> Dict[str, Any]:
    """Cancel a PENDING order (customer abandoned checkout)."""
    reason = request.reason if request else None
    record = await transactions.cancel(order_id, reason)

    return {
        "success": True,
        "orderId": record.order_id,
        "status": record.status,
        "transaction": record.summary().model_dump(mode="json"),
    }
