"""
Transaction Store

Durable keyed storage for transaction records on SQLAlchemy async sessions.

Only two operations need transactional semantics, and both are a single
conditional write:
- insert_if_absent: primary-key INSERT, a duplicate key is reported, never overwritten
- compare_and_update_status: UPDATE ... WHERE status = :expected
"""
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..exceptions import PersistenceError
from ..models.transactions import CustomerInfo, TransactionRecord
from .models import TransactionModel

logger = logging.getLogger(__name__)

MINOR_UNITS = Decimal("100")
CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    return int((amount * MINOR_UNITS).to_integral_value())


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS).quantize(CENT)


def _to_record(row: TransactionModel) -> TransactionRecord:
    return TransactionRecord(
        order_id=row.order_id,
        amount=from_minor_units(row.amount_minor),
        currency=row.currency,
        customer=CustomerInfo(
            email=row.customer_email,
            phone=row.customer_phone,
            name=row.customer_name
        ),
        status=row.status,
        gateway_name=row.gateway_name,
        gateway_transaction_id=row.gateway_transaction_id,
        integrity_code=row.integrity_code,
        gateway_response=json.loads(row.gateway_response) if row.gateway_response else None,
        response_code=row.response_code,
        response_message=row.response_message,
        payment_mode=row.payment_mode,
        bank_name=row.bank_name,
        bank_transaction_id=row.bank_transaction_id,
        signature_verified=row.signature_verified,
        reconciled_via=row.reconciled_via,
        created_at=row.created_at,
        updated_at=row.updated_at
    )


def _to_columns(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Map record field names onto column values."""
    columns = dict(fields)
    if "gateway_response" in columns and columns["gateway_response"] is not None:
        columns["gateway_response"] = json.dumps(columns["gateway_response"], sort_keys=True)
    return columns


class TransactionStore:
    """
    SQLite-backed transaction store.

    Every public method opens its own session so no state is shared between
    concurrent callers. SQLAlchemy failures surface as PersistenceError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert_if_absent(self, record: TransactionRecord) -> bool:
        """
        Insert a new record.

        Returns:
            True if inserted, False if order_id already exists
        """
        row = TransactionModel(
            order_id=record.order_id,
            amount_minor=to_minor_units(record.amount),
            currency=record.currency,
            customer_email=record.customer.email,
            customer_phone=record.customer.phone,
            customer_name=record.customer.name,
            status=record.status,
            gateway_name=record.gateway_name,
            integrity_code=record.integrity_code,
            created_at=record.created_at,
            updated_at=record.updated_at
        )

        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(f"Order id collision on insert: {record.order_id}")
                return False
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(
                    "Failed to store transaction",
                    {"order_id": record.order_id, "error_type": type(e).__name__}
                ) from e

        return True

    async def get(self, order_id: str) -> Optional[TransactionRecord]:
        """Retrieve a record by order id, or None if absent."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TransactionModel).where(TransactionModel.order_id == order_id)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to read transaction",
                {"order_id": order_id, "error_type": type(e).__name__}
            ) from e

        return _to_record(row) if row else None

    async def compare_and_update_status(
        self,
        order_id: str,
        expected_status: str,
        new_fields: Dict[str, Any]
    ) -> bool:
        """
        Atomically update a record only if its status is still expected_status.

        Args:
            order_id: Order identifier
            expected_status: Status the record must have at write time
            new_fields: Record fields to write (must include the new status)

        Returns:
            True if exactly one row was updated, False if the record was
            missing or another writer changed its status first
        """
        statement = (
            update(TransactionModel)
            .where(
                TransactionModel.order_id == order_id,
                TransactionModel.status == expected_status
            )
            .values(**_to_columns(new_fields))
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            try:
                result = await session.execute(statement)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(
                    "Failed to update transaction",
                    {"order_id": order_id, "error_type": type(e).__name__}
                ) from e

        return result.rowcount == 1

    async def find(
        self,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[TransactionRecord], int]:
        """
        List records newest first.

        Returns:
            (records on the requested page, total matching records)
        """
        query = select(TransactionModel)
        count_query = select(func.count()).select_from(TransactionModel)
        if status:
            query = query.where(TransactionModel.status == status)
            count_query = count_query.where(TransactionModel.status == status)

        query = (
            query
            .order_by(TransactionModel.created_at.desc(), TransactionModel.order_id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_query)).scalar_one()
                rows = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to list transactions",
                {"error_type": type(e).__name__}
            ) from e

        return [_to_record(row) for row in rows], total

    async def find_stale_pending(self, created_before: datetime, limit: int = 100) -> List[str]:
        """Order ids of PENDING records created before the cutoff, oldest first."""
        query = (
            select(TransactionModel.order_id)
            .where(
                TransactionModel.status == "PENDING",
                TransactionModel.created_at < created_before
            )
            .order_by(TransactionModel.created_at.asc())
            .limit(limit)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to query pending transactions",
                {"error_type": type(e).__name__}
            ) from e
