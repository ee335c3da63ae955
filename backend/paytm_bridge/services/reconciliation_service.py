"""
Reconciliation Service

Single entry point turning gateway messages into lifecycle transitions.
Push callbacks and pull status inquiries both end in
TransactionService.apply_outcome, so they cannot drift apart.
"""
import logging
from typing import Any, Dict, Mapping, Tuple

from ..exceptions import PaymentError, UpstreamError, ValidationError
from ..models.transactions import TransactionRecord
from .gateway_client import PaytmGatewayClient
from .signature_service import SIGNATURE_FIELD, verify
from .transaction_service import TransactionService

logger = logging.getLogger(__name__)

# Paytm reports in-flight orders with this STATUS on inquiry.
GATEWAY_PENDING = "PENDING"


class ReconciliationService:
    """
    Reconciles orders against Paytm callbacks and status inquiries.

    Args:
        transactions: Transaction lifecycle engine
        gateway: Paytm status-inquiry adapter
    """

    def __init__(self, transactions: TransactionService, gateway: PaytmGatewayClient):
        self.transactions = transactions
        self.gateway = gateway

    @property
    def _secret(self) -> str:
        return self.transactions.config.merchant_key

    def _check_signature(self, payload: Mapping[str, Any], order_id: str, source: str) -> bool:
        candidate = payload.get(SIGNATURE_FIELD)
        if candidate is None or candidate == "":
            logger.warning(f"{source} for {order_id} carries no {SIGNATURE_FIELD}; authenticity unverified")
            return False

        valid = verify(payload, self._secret, candidate)
        if not valid:
            logger.warning(f"AUDIT: {source} checksum verification failed for {order_id}")
        return valid

    async def handle_callback(self, raw_payload: Mapping[str, Any]) -> TransactionRecord:
        """
        Process a Paytm callback.

        Args:
            raw_payload: Callback parameters as posted by the gateway

        Returns:
            Transaction after applying the reported outcome

        Raises:
            ValidationError: ORDERID or STATUS missing
            NotFoundError, ConflictError: From apply_outcome
        """
        order_id = raw_payload.get("ORDERID")
        status = raw_payload.get("STATUS")
        if not order_id:
            raise ValidationError("Callback is missing ORDERID", {"field": "ORDERID"})
        if not status:
            raise ValidationError("Callback is missing STATUS", {"field": "STATUS", "order_id": order_id})

        logger.info(f"Callback received for {order_id}: STATUS={status!r}")
        signature_valid = self._check_signature(raw_payload, order_id, "callback")

        return await self.transactions.apply_outcome(
            order_id,
            status,
            dict(raw_payload),
            signature_valid,
            source="callback"
        )

    async def _inquire(self, order_id: str) -> Tuple[Dict[str, Any], bool]:
        await self.transactions.get(order_id)
        response = await self.gateway.inquire_status(order_id)

        reported_order = response.get("ORDERID")
        if reported_order not in (None, "") and str(reported_order) != order_id:
            logger.warning(f"AUDIT: inquiry for {order_id} answered for {reported_order!r}; response discarded")
            raise UpstreamError(
                "Status inquiry response names a different order",
                {"order_id": order_id, "reported_order_id": str(reported_order)}
            )

        if response.get(SIGNATURE_FIELD):
            signature_valid = self._check_signature(response, order_id, "inquiry")
        else:
            signature_valid = True
        return response, signature_valid

    async def handle_status_inquiry(self, order_id: str) -> TransactionRecord:
        """
        Pull the order status from Paytm and apply it.

        An unsigned inquiry response is trusted: it answers our own signed
        request to the configured endpoint. A signed one must verify.

        Raises:
            NotFoundError: Unknown order id (checked before any network call)
            UpstreamError, UpstreamTimeout: Gateway failure, or a response
                for another order; record untouched
            ConflictError: From apply_outcome
        """
        response, signature_valid = await self._inquire(order_id)

        return await self.transactions.apply_outcome(
            order_id,
            response.get("STATUS"),
            response,
            signature_valid,
            source="inquiry"
        )

    async def sweep_stale_pending(self, limit: int = 100) -> Dict[str, int]:
        """
        Re-query orders stuck in PENDING.

        A gateway reply that is itself PENDING leaves the order alone so a
        later callback can still settle it. Per-order failures are logged
        and counted; one bad order never stops the sweep.

        Returns:
            Counts: checked, reconciled, pending, failed
        """
        minutes = self.transactions.config.stale_pending_minutes
        order_ids = await self.transactions.stale_pending(minutes, limit)
        counts = {"checked": len(order_ids), "reconciled": 0, "pending": 0, "failed": 0}

        for order_id in order_ids:
            try:
                response, signature_valid = await self._inquire(order_id)
                if str(response.get("STATUS") or "").strip().upper() == GATEWAY_PENDING:
                    counts["pending"] += 1
                    logger.info(f"Sweep: {order_id} still pending at the gateway")
                    continue

                await self.transactions.apply_outcome(
                    order_id,
                    response.get("STATUS"),
                    response,
                    signature_valid,
                    source="inquiry"
                )
            except PaymentError as e:
                counts["failed"] += 1
                logger.warning(f"Sweep could not reconcile {order_id}: {e.error_code} - {e.message}")
                continue

            counts["reconciled"] += 1

        if order_ids:
            logger.info(f"Reconciliation sweep finished: {counts}")
        return counts
