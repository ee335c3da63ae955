"""
Pytest configuration and fixtures.
"""
import json
from typing import Any, AsyncGenerator, Callable, Dict

import httpx
import pytest
import pytest_asyncio

from paytm_bridge.config import GatewayConfig, Settings
from paytm_bridge.db.init_db import create_engine_for, create_session_factory, initialize_database
from paytm_bridge.db.store import TransactionStore
from paytm_bridge.services.gateway_client import PaytmGatewayClient
from paytm_bridge.services.reconciliation_service import ReconciliationService
from paytm_bridge.services.transaction_service import TransactionService

MERCHANT_KEY = "test_merchant_key_0001"
STATUS_URL = "https://gateway.test/order/status"


class FakePaytmGateway:
    """
    Scripted Paytm status API served through httpx.MockTransport.

    responses maps ORDERID -> JSON payload; handler, when set, overrides.
    """

    def __init__(self) -> None:
        self.responses: Dict[str, Dict[str, Any]] = {}
        self.requests: list = []
        self.handler: Callable[[httpx.Request], httpx.Response] = None

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.handler is not None:
            return self.handler(request)
        payload = self.responses.get(body.get("ORDERID"))
        if payload is None:
            return httpx.Response(404, json={"RESPMSG": "Order not found"})
        return httpx.Response(200, json=payload)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings."""
    return Settings(
        paytm_mid="TESTMID00000000000001",
        paytm_merchant_key=MERCHANT_KEY,
        paytm_callback_url="https://merchant.test/api/paytm/callback",
        paytm_url="https://gateway.test/order/process",
        paytm_status_url=STATUS_URL,
        inquiry_timeout_seconds=2.0,
        database_path=str(tmp_path / "payments_test.db"),
        environment="development",
        log_level="DEBUG",
    )


@pytest.fixture
def gateway_config(test_settings) -> GatewayConfig:
    return test_settings.gateway_config()


@pytest.fixture
def strict_config(test_settings) -> GatewayConfig:
    return test_settings.model_copy(update={"authenticity_policy": "strict"}).gateway_config()


@pytest_asyncio.fixture
async def store(test_settings) -> AsyncGenerator[TransactionStore, Any]:
    """Transaction store over a fresh SQLite file."""
    engine = create_engine_for(test_settings.database_path)
    await initialize_database(engine)
    yield TransactionStore(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def transactions(store, gateway_config) -> TransactionService:
    return TransactionService(store, gateway_config)


@pytest.fixture
def fake_gateway() -> FakePaytmGateway:
    return FakePaytmGateway()


@pytest_asyncio.fixture
async def gateway_client(gateway_config, fake_gateway) -> AsyncGenerator[PaytmGatewayClient, Any]:
    http_client = fake_gateway.client()
    yield PaytmGatewayClient(gateway_config, http_client)
    await http_client.aclose()


@pytest.fixture
def reconciliation(transactions, gateway_client) -> ReconciliationService:
    return ReconciliationService(transactions, gateway_client)


@pytest.fixture
def sample_customer() -> Dict[str, Any]:
    """Sample initiation request data."""
    return {
        "amount": "499.00",
        "customer_email": "a@b.com",
        "customer_phone": "9999999999",
        "customer_name": "A B",
    }
