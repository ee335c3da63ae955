"""
Reconciliation tests: callbacks and status inquiries share one outcome path.
"""
import httpx
import pytest

from paytm_bridge.exceptions import ConflictError, NotFoundError, UpstreamError, UpstreamTimeout, ValidationError
from paytm_bridge.services.reconciliation_service import ReconciliationService
from paytm_bridge.services.signature_service import sign_params
from paytm_bridge.services.transaction_service import TransactionService

from conftest import MERCHANT_KEY


def callback(order_id: str, status: str = "TXN_SUCCESS", signed: bool = True, **extra):
    payload = {
        "ORDERID": order_id,
        "TXNID": "TXN_20241019_0001",
        "STATUS": status,
        "PAYMENTMODE": "NB",
        "BANKNAME": "HDFC Bank",
        "BANKTXNID": "BNK_0001",
        "RESPCODE": "01" if status == "TXN_SUCCESS" else "227",
        "RESPMSG": "Txn Success" if status == "TXN_SUCCESS" else "Declined",
        "TXNAMOUNT": "499.00",
    }
    payload.update(extra)
    return sign_params(payload, MERCHANT_KEY) if signed else payload


class TestHandleCallback:

    @pytest.mark.asyncio
    async def test_signed_success_callback(self, reconciliation, transactions, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record

        record = await reconciliation.handle_callback(callback(order.order_id))

        assert record.status == "SUCCESS"
        assert record.signature_verified is True
        assert record.reconciled_via == "callback"
        assert record.bank_name == "HDFC Bank"

    @pytest.mark.asyncio
    async def test_success_then_replay_is_noop(self, reconciliation, transactions, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record
        payload = callback(order.order_id)

        first = await reconciliation.handle_callback(payload)
        second = await reconciliation.handle_callback(payload)

        assert first.status == second.status == "SUCCESS"
        assert second.updated_at == first.updated_at
        assert second == first

    @pytest.mark.asyncio
    async def test_failure_then_success_is_conflict(self, reconciliation, transactions, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record

        failed = await reconciliation.handle_callback(callback(order.order_id, "TXN_FAILURE"))
        assert failed.status == "FAILED"

        with pytest.raises(ConflictError):
            await reconciliation.handle_callback(callback(order.order_id, "TXN_SUCCESS"))

        assert (await transactions.get(order.order_id)).status == "FAILED"

    @pytest.mark.asyncio
    async def test_unsigned_callback_applied_but_flagged(self, reconciliation, transactions, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record

        record = await reconciliation.handle_callback(callback(order.order_id, signed=False))

        assert record.status == "SUCCESS"
        assert record.signature_verified is False

    @pytest.mark.asyncio
    async def test_forged_checksum_applied_but_flagged(self, reconciliation, transactions, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record
        payload = callback(order.order_id)
        payload["CHECKSUMHASH"] = "0" * 64

        record = await reconciliation.handle_callback(payload)

        assert record.signature_verified is False

    @pytest.mark.asyncio
    async def test_strict_policy_rejects_unsigned_callback(
        self, store, strict_config, gateway_client, sample_customer
    ):
        transactions = TransactionService(store, strict_config)
        reconciliation = ReconciliationService(transactions, gateway_client)
        order = (await transactions.initiate(**sample_customer)).record

        with pytest.raises(ConflictError):
            await reconciliation.handle_callback(callback(order.order_id, signed=False))
        assert (await transactions.get(order.order_id)).status == "PENDING"

        record = await reconciliation.handle_callback(callback(order.order_id))
        assert record.status == "SUCCESS"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["ORDERID", "STATUS"])
    async def test_missing_required_field(self, reconciliation, missing):
        payload = callback("ORDER_1", signed=False)
        del payload[missing]
        with pytest.raises(ValidationError):
            await reconciliation.handle_callback(payload)

    @pytest.mark.asyncio
    async def test_unknown_order(self, reconciliation):
        with pytest.raises(NotFoundError):
            await reconciliation.handle_callback(callback("ORDER_UNKNOWN"))


class TestHandleStatusInquiry:

    @pytest.mark.asyncio
    async def test_inquiry_applies_gateway_status(self, reconciliation, transactions, fake_gateway, sample_customer):
        order = (await transactions.initiate(**sample_customer)).record
        fake_gateway.responses[order.order_id] = callback(order.order_id, signed=False)

        record = await reconciliation.handle_status_inquiry(order.order_id)

        assert record.status == "SUCCESS"
        assert record.reconciled_via == "inquiry"
        assert record.signature_verified is True
        assert record.gateway_response["TXNID"] == "TXN_20241019_0001"

    @pytest.mark.asyncio
    async def test_signed_inquiry_response_is_verified(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record
        response = callback(order.order_id)
        response["CHECKSUMHASH"] = "f" * 64
        fake_gateway.responses[order.order_id] = response

        record = await reconciliation.handle_status_inquiry(order.order_id)

        assert record.signature_verified is False

    @pytest.mark.asyncio
    async def test_inquiry_after_callback_is_consistent(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record
        via_callback = await reconciliation.handle_callback(callback(order.order_id))
        fake_gateway.responses[order.order_id] = callback(order.order_id, signed=False)

        via_inquiry = await reconciliation.handle_status_inquiry(order.order_id)

        assert via_inquiry == via_callback

    @pytest.mark.asyncio
    async def test_inquiry_disagreeing_with_callback_is_conflict(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record
        await reconciliation.handle_callback(callback(order.order_id, "TXN_SUCCESS"))
        fake_gateway.responses[order.order_id] = callback(order.order_id, "TXN_FAILURE", signed=False)

        with pytest.raises(ConflictError):
            await reconciliation.handle_status_inquiry(order.order_id)

    @pytest.mark.asyncio
    async def test_unknown_order_skips_gateway(self, reconciliation, fake_gateway):
        with pytest.raises(NotFoundError):
            await reconciliation.handle_status_inquiry("ORDER_UNKNOWN")
        assert fake_gateway.requests == []

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_record_untouched(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record
        fake_gateway.handler = lambda request: httpx.Response(502, text="bad gateway")

        with pytest.raises(UpstreamError):
            await reconciliation.handle_status_inquiry(order.order_id)
        assert await transactions.get(order.order_id) == order

    @pytest.mark.asyncio
    async def test_gateway_timeout_leaves_record_untouched(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record

        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        fake_gateway.handler = handler
        with pytest.raises(UpstreamTimeout):
            await reconciliation.handle_status_inquiry(order.order_id)
        assert await transactions.get(order.order_id) == order

    @pytest.mark.asyncio
    async def test_response_for_another_order_is_rejected(
        self, reconciliation, transactions, fake_gateway, sample_customer
    ):
        order = (await transactions.initiate(**sample_customer)).record
        fake_gateway.responses[order.order_id] = {
            "ORDERID": "ORDER_SOMEONE_ELSE",
            "STATUS": "TXN_SUCCESS",
            "TXNAMOUNT": "499.00",
        }

        with pytest.raises(UpstreamError) as exc_info:
            await reconciliation.handle_status_inquiry(order.order_id)

        assert exc_info.value.details["reported_order_id"] == "ORDER_SOMEONE_ELSE"
        assert await transactions.get(order.order_id) == order


class TestSweep:

    @pytest.mark.asyncio
    async def test_sweep_reconciles_stale_orders(
        self, store, test_settings, gateway_client, fake_gateway, sample_customer
    ):
        config = test_settings.model_copy(update={"stale_pending_minutes": -1}).gateway_config()
        transactions = TransactionService(store, config)
        reconciliation = ReconciliationService(transactions, gateway_client)

        settled = (await transactions.initiate(**sample_customer)).record
        unreachable = (await transactions.initiate(**sample_customer)).record
        already_done = (await transactions.initiate(**sample_customer)).record
        await transactions.cancel(already_done.order_id)
        fake_gateway.responses[settled.order_id] = callback(settled.order_id, signed=False)

        counts = await reconciliation.sweep_stale_pending()

        assert counts == {"checked": 2, "reconciled": 1, "pending": 0, "failed": 1}
        assert (await transactions.get(settled.order_id)).status == "SUCCESS"
        assert (await transactions.get(unreachable.order_id)).status == "PENDING"

    @pytest.mark.asyncio
    async def test_sweep_ignores_recent_orders(self, reconciliation, transactions, fake_gateway, sample_customer):
        await transactions.initiate(**sample_customer)
        counts = await reconciliation.sweep_stale_pending()
        assert counts["checked"] == 0
        assert fake_gateway.requests == []

    @pytest.mark.asyncio
    async def test_sweep_leaves_gateway_pending_orders_open(
        self, store, test_settings, gateway_client, fake_gateway, sample_customer
    ):
        config = test_settings.model_copy(update={"stale_pending_minutes": -1}).gateway_config()
        transactions = TransactionService(store, config)
        reconciliation = ReconciliationService(transactions, gateway_client)
        order = (await transactions.initiate(**sample_customer)).record
        fake_gateway.responses[order.order_id] = {"ORDERID": order.order_id, "STATUS": "PENDING"}

        counts = await reconciliation.sweep_stale_pending()

        assert counts == {"checked": 1, "reconciled": 0, "pending": 1, "failed": 0}
        assert await transactions.get(order.order_id) == order

        record = await reconciliation.handle_callback(callback(order.order_id))
        assert record.status == "SUCCESS"
