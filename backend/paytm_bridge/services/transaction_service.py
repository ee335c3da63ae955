"""
Transaction Service

Authoritative state machine for payment orders.

Lifecycle:
- initiate: signs the outbound Paytm parameters and stores a PENDING record
- apply_outcome: moves PENDING -> SUCCESS | FAILED exactly once, from either
  a gateway callback or a status inquiry
- cancel: merchant-side abandonment, PENDING -> CANCELLED

Transitions are written with a conditional update guarded on the record
still being PENDING, so concurrent callbacks for one order produce exactly
one winner.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..config import GatewayConfig
from ..db.store import CENT, TransactionStore
from ..exceptions import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..models.transactions import (
    CustomerInfo,
    InitiationResult,
    TransactionRecord,
    TransactionSummary,
)
from .order_ids import generate_order_id
from .signature_service import SIGNATURE_FIELD, sign

logger = logging.getLogger(__name__)

# Gateway status tokens with a defined meaning. Everything else, including
# an explicit PENDING echo, is treated as FAILED: an unrecognized status is
# never a success.
STATUS_MAP = {
    "TXN_SUCCESS": "SUCCESS",
    "TXN_FAILURE": "FAILED",
}
DEFAULT_OUTCOME = "FAILED"

MAX_PAGE_SIZE = 100
# Upper bound per order; keeps amount_minor inside a 64-bit SQLite INTEGER.
MAX_AMOUNT = Decimal("10000000.00")
LIST_STATUSES = ("PENDING", "SUCCESS", "FAILED", "CANCELLED")


def map_gateway_status(reported_status: Optional[str]) -> str:
    """Map a Paytm STATUS token onto a terminal transaction status."""
    return STATUS_MAP.get((reported_status or "").strip().upper(), DEFAULT_OUTCOME)


def parse_amount(value: Any) -> Decimal:
    """
    Parse a positive amount with at most two decimal places.

    Raises:
        ValidationError: If value is missing, not numeric, not finite,
            not positive, above MAX_AMOUNT, or finer than one paisa
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Amount is required", {"field": "amount"})

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", {"field": "amount", "value": str(value)})

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number", {"field": "amount", "value": str(value)})
    if amount > MAX_AMOUNT:
        raise ValidationError(
            f"Amount cannot exceed {MAX_AMOUNT}",
            {"field": "amount", "value": str(value), "max": str(MAX_AMOUNT)}
        )

    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError("Amount must be a number", {"field": "amount", "value": str(value)})
    if amount != quantized:
        raise ValidationError(
            "Amount cannot have more than two decimal places",
            {"field": "amount", "value": str(value)}
        )

    return quantized


def _require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", {"field": field})
    return str(value).strip()


def _optional_text(fields: Mapping[str, Any], key: str) -> Optional[str]:
    value = fields.get(key)
    if value is None or value == "":
        return None
    return str(value)


class TransactionService:
    """
    Transaction lifecycle engine.

    Args:
        store: Transaction store providing insert_if_absent / compare_and_update_status
        config: Gateway configuration (merchant id, key, URLs, policy)
        order_id_factory: Zero-argument callable producing candidate order ids
    """

    def __init__(
        self,
        store: TransactionStore,
        config: GatewayConfig,
        order_id_factory: Callable[[], str] = generate_order_id
    ):
        self.store = store
        self.config = config
        self._new_order_id = order_id_factory

    # ========================================================================
    # Initiation
    # ========================================================================

    def build_gateway_params(
        self,
        order_id: str,
        amount: Decimal,
        customer: CustomerInfo
    ) -> Dict[str, str]:
        """Outbound initiation parameters, unsigned."""
        return {
            "MID": self.config.merchant_id,
            "WEBSITE": self.config.website,
            "CHANNEL_ID": self.config.channel_id,
            "INDUSTRY_TYPE_ID": self.config.industry_type_id,
            "ORDER_ID": order_id,
            "CUST_ID": customer.email,
            "TXN_AMOUNT": f"{amount:.2f}",
            "CALLBACK_URL": self.config.callback_url,
            "EMAIL": customer.email,
            "MOBILE_NO": customer.phone,
        }

    async def initiate(
        self,
        amount: Any,
        customer_email: Any,
        customer_phone: Any,
        customer_name: Any
    ) -> InitiationResult:
        """
        Create a PENDING transaction and the signed parameters for Paytm.

        Returns:
            InitiationResult with the stored record and the full parameter
            map (including CHECKSUMHASH) the client must post to the gateway

        Raises:
            ValidationError: Missing field or invalid amount
            SigningError: Merchant key not configured
            PersistenceError: Store failure, or every generated id collided
        """
        parsed_amount = parse_amount(amount)
        customer = CustomerInfo(
            email=_require_text(customer_email, "customerEmail"),
            phone=_require_text(customer_phone, "customerPhone"),
            name=_require_text(customer_name, "customerName")
        )

        attempts = max(1, self.config.order_id_max_attempts)
        for attempt in range(1, attempts + 1):
            order_id = self._new_order_id()
            params = self.build_gateway_params(order_id, parsed_amount, customer)
            checksum = sign(params, self.config.merchant_key)
            now = datetime.utcnow()

            record = TransactionRecord(
                order_id=order_id,
                amount=parsed_amount,
                currency=self.config.currency,
                customer=customer,
                status="PENDING",
                integrity_code=checksum,
                created_at=now,
                updated_at=now
            )

            if await self.store.insert_if_absent(record):
                logger.info(
                    f"Created transaction: {order_id}, amount={parsed_amount} "
                    f"{self.config.currency}, attempt={attempt}"
                )
                params[SIGNATURE_FIELD] = checksum
                return InitiationResult(
                    record=record,
                    gateway_params=params,
                    gateway_url=self.config.gateway_url
                )

            logger.warning(f"Order id {order_id} already exists, regenerating (attempt {attempt}/{attempts})")

        raise PersistenceError(
            "Could not allocate a unique order id",
            {"attempts": attempts}
        )

    # ========================================================================
    # Outcome Application
    # ========================================================================

    def _enforce_authenticity(self, order_id: str, signature_valid: bool, source: str) -> None:
        """Apply the configured authenticity policy. The only place it is consulted."""
        if signature_valid:
            return

        if self.config.authenticity_policy == "strict":
            logger.warning(f"AUDIT: rejected unauthenticated {source} outcome for {order_id}")
            raise ConflictError(
                "Gateway message failed authenticity check",
                {"order_id": order_id, "source": source}
            )

        logger.warning(f"Applying unauthenticated {source} outcome for {order_id} (permissive policy)")

    def _resolve_terminal(
        self,
        record: TransactionRecord,
        target_status: str,
        reported_status: Optional[str]
    ) -> TransactionRecord:
        """Idempotent replay returns the record; a different outcome is a conflict."""
        if record.status == target_status:
            logger.info(f"Duplicate {target_status} outcome for {record.order_id}, no change")
            return record

        logger.warning(
            f"AUDIT: conflicting outcome for {record.order_id}: stored={record.status}, "
            f"reported={reported_status!r} ({target_status})"
        )
        raise ConflictError(
            "Transaction already reached a different terminal status",
            {
                "order_id": record.order_id,
                "stored_status": record.status,
                "reported_status": reported_status,
            }
        )

    def _check_amount(self, record: TransactionRecord, reported_fields: Mapping[str, Any]) -> None:
        reported = reported_fields.get("TXNAMOUNT")
        if reported is None or reported == "":
            return

        try:
            matches = Decimal(str(reported).strip()) == record.amount
        except (InvalidOperation, ValueError):
            matches = False

        if not matches:
            logger.warning(
                f"AUDIT: amount mismatch for {record.order_id}: stored={record.amount}, "
                f"reported={reported!r}"
            )
            raise ConflictError(
                "Reported amount does not match the transaction amount",
                {
                    "order_id": record.order_id,
                    "stored_amount": f"{record.amount:.2f}",
                    "reported_amount": str(reported),
                }
            )

    async def apply_outcome(
        self,
        order_id: str,
        reported_status: Optional[str],
        reported_fields: Mapping[str, Any],
        signature_valid: bool,
        source: str = "callback"
    ) -> TransactionRecord:
        """
        Apply a gateway-reported outcome to a transaction.

        Args:
            order_id: Order identifier
            reported_status: Paytm STATUS token (TXN_SUCCESS, TXN_FAILURE, ...)
            reported_fields: Full gateway payload, stored verbatim
            signature_valid: Whether the payload's checksum verified
            source: "callback" or "inquiry"

        Returns:
            The transaction after the outcome (unchanged on idempotent replay)

        Raises:
            NotFoundError: Unknown order id
            ConflictError: Conflicting terminal outcome, amount mismatch, or
                unauthenticated message under the strict policy
        """
        record = await self.store.get(order_id)
        if record is None:
            raise NotFoundError(f"No transaction found with order id: {order_id}", {"order_id": order_id})

        self._enforce_authenticity(order_id, signature_valid, source)
        target_status = map_gateway_status(reported_status)

        if record.is_terminal:
            return self._resolve_terminal(record, target_status, reported_status)

        self._check_amount(record, reported_fields)

        updates = {
            "status": target_status,
            "gateway_transaction_id": _optional_text(reported_fields, "TXNID"),
            "response_code": _optional_text(reported_fields, "RESPCODE"),
            "response_message": _optional_text(reported_fields, "RESPMSG"),
            "payment_mode": _optional_text(reported_fields, "PAYMENTMODE"),
            "bank_name": _optional_text(reported_fields, "BANKNAME"),
            "bank_transaction_id": _optional_text(reported_fields, "BANKTXNID"),
            "gateway_response": dict(reported_fields),
            "signature_verified": bool(signature_valid),
            "reconciled_via": source,
            "updated_at": datetime.utcnow(),
        }

        if await self.store.compare_and_update_status(order_id, "PENDING", updates):
            logger.info(
                f"Transaction {order_id}: PENDING -> {target_status} via {source} "
                f"(reported={reported_status!r}, signature_verified={bool(signature_valid)})"
            )
            return await self.get(order_id)

        # Another caller transitioned the record between our read and write
        current = await self.get(order_id)
        logger.info(f"Lost transition race for {order_id}, stored status is {current.status}")
        return self._resolve_terminal(current, target_status, reported_status)

    async def cancel(self, order_id: str, reason: Optional[str] = None) -> TransactionRecord:
        """
        Cancel a PENDING transaction on the merchant side.

        Cancelling an already CANCELLED transaction is a no-op; cancelling a
        settled one is a ConflictError.
        """
        record = await self.get(order_id)
        if record.is_terminal:
            return self._resolve_terminal(record, "CANCELLED", "CANCELLED")

        updates = {
            "status": "CANCELLED",
            "response_message": reason or "Cancelled by merchant",
            "reconciled_via": "merchant",
            "updated_at": datetime.utcnow(),
        }
        if await self.store.compare_and_update_status(order_id, "PENDING", updates):
            logger.info(f"Transaction {order_id}: PENDING -> CANCELLED")
            return await self.get(order_id)

        current = await self.get(order_id)
        return self._resolve_terminal(current, "CANCELLED", "CANCELLED")

    # ========================================================================
    # Retrieval
    # ========================================================================

    async def get(self, order_id: str) -> TransactionRecord:
        """
        Retrieve a transaction.

        Raises:
            NotFoundError: Unknown order id
        """
        record = await self.store.get(order_id)
        if record is None:
            raise NotFoundError(f"No transaction found with order id: {order_id}", {"order_id": order_id})
        return record

    async def list(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[TransactionSummary], int]:
        """
        List transactions, most recent first.

        Returns:
            (summaries without integrity code or raw gateway response, total count)
        """
        if status is not None and status not in LIST_STATUSES:
            raise ValidationError(f"Unknown status filter: {status}", {"field": "status"})
        if page < 1:
            raise ValidationError("page must be at least 1", {"field": "page"})
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}",
                {"field": "page_size"}
            )

        records, total = await self.store.find(status=status, page=page, page_size=page_size)
        return [r.summary() for r in records], total

    async def stale_pending(self, older_than_minutes: int, limit: int = 100) -> List[str]:
        """Order ids still PENDING after older_than_minutes."""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        return await self.store.find_stale_pending(cutoff, limit)
