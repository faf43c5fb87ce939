from sqlalchemy import Column, DateTime, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class SessionEntry(Base):
    """One persisted key of a booking session's intermediate state."""

    __tablename__ = "session_entries"

    session_id = Column(String, primary_key=True)
    key = Column(String, primary_key=True)
    # JSON text produced by booking.serialization
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class BookingStatusRecord(Base):
    """Order-creation outcome written by the payment webhook, keyed by checkout session."""

    __tablename__ = "booking_statuses"

    session_id = Column(String, primary_key=True)
    # confirmed | failed
    status = Column(String, nullable=False)
    booking_reference = Column(String, nullable=True)
    provider_order_id = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    amount = Column(String, nullable=True)  # decimal string
    currency = Column(String, nullable=True)
    primary_email = Column(String, nullable=True)
    services_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
