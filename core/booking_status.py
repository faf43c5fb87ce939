from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.models import BookingStatus, BookingStatusKind
from db.models import BookingStatusRecord


class BookingStatusStore:
    """Order-creation outcomes keyed by checkout session id.

    Written once per paid session by the payment webhook and read by the
    confirmation poller. A session with no row yet reads as pending.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, session_id: str) -> Optional[BookingStatusRecord]:
        result = await self.db.execute(
            select(BookingStatusRecord).where(BookingStatusRecord.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def lookup(self, session_id: str) -> BookingStatus:
        record = await self.get(session_id)
        if record is None:
            return BookingStatus(status=BookingStatusKind.PENDING)
        return BookingStatus(
            status=BookingStatusKind(record.status),
            booking_reference=record.booking_reference,
            error_message=record.error_message,
        )

    async def record_confirmed(
        self,
        session_id: str,
        booking_reference: str,
        provider_order_id: str,
        amount: Decimal,
        currency: str,
        primary_email: Optional[str] = None,
        services: Optional[List[Dict[str, Any]]] = None,
    ) -> BookingStatusRecord:
        return await self._write(
            session_id,
            status=BookingStatusKind.CONFIRMED.value,
            booking_reference=booking_reference,
            provider_order_id=provider_order_id,
            error_message=None,
            amount=str(amount),
            currency=currency,
            primary_email=primary_email,
            services_json=services or [],
        )

    async def record_failed(
        self,
        session_id: str,
        reason: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        primary_email: Optional[str] = None,
    ) -> BookingStatusRecord:
        return await self._write(
            session_id,
            status=BookingStatusKind.FAILED.value,
            error_message=reason,
            amount=str(amount) if amount is not None else None,
            currency=currency,
            primary_email=primary_email,
        )

    async def _write(self, session_id: str, **fields) -> BookingStatusRecord:
        record = await self.get(session_id)
        if record is None:
            record = BookingStatusRecord(session_id=session_id, **fields)
            self.db.add(record)
        else:
            for name, value in fields.items():
                setattr(record, name, value)
        await self.db.commit()
        return record


async def lookup_stored_status(session_id: str) -> BookingStatus:
    """Read a webhook-recorded status in a short-lived session of its own."""
    from db.database import SessionLocal

    async with SessionLocal() as db:
        return await BookingStatusStore(db).lookup(session_id)
