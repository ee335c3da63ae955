"""
Service wiring.

Builds the store, services and scheduler from Settings once per process and
hands them to the FastAPI app. Business logic only ever sees GatewayConfig.
"""
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings
from .db.init_db import create_engine_for, create_session_factory, initialize_database
from .db.store import TransactionStore
from .services.gateway_client import PaytmGatewayClient
from .services.order_ids import generate_order_id
from .services.reconciliation_service import ReconciliationService
from .services.scheduler import ReconciliationScheduler
from .services.transaction_service import TransactionService


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    store: TransactionStore
    transactions: TransactionService
    gateway: PaytmGatewayClient
    reconciliation: ReconciliationService
    scheduler: Optional[ReconciliationScheduler] = None

    async def startup(self) -> None:
        await initialize_database(self.engine)
        if self.scheduler:
            self.scheduler.start()

    async def shutdown(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=True)
        await self.gateway.aclose()
        await self.engine.dispose()


def build_container(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    order_id_factory: Callable[[], str] = generate_order_id
) -> ServiceContainer:
    """
    Construct all services.

    Args:
        settings: Application settings
        http_client: Optional httpx client for gateway calls (tests pass one
            backed by httpx.MockTransport)
        order_id_factory: Order id generator
    """
    config = settings.gateway_config()
    engine = create_engine_for(settings.database_path)
    store = TransactionStore(create_session_factory(engine))
    transactions = TransactionService(store, config, order_id_factory)
    gateway = PaytmGatewayClient(config, http_client)
    reconciliation = ReconciliationService(transactions, gateway)

    scheduler = None
    if settings.reconciliation_sweep_enabled:
        scheduler = ReconciliationScheduler(
            reconciliation.sweep_stale_pending,
            settings.sweep_interval_minutes
        )

    return ServiceContainer(
        settings=settings,
        engine=engine,
        store=store,
        transactions=transactions,
        gateway=gateway,
        reconciliation=reconciliation,
        scheduler=scheduler
    )
