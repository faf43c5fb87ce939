"""Interfaces of the two external collaborators the booking core consumes.

Implementations must return canonical ``booking.models`` types and raise only
``core.errors`` kinds; raw transport errors never leave this package.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from booking.models import (
    AncillaryCatalog,
    BookingStatus,
    BookingSubmission,
    CheckoutSession,
    Offer,
    PassengerCounts,
    SeatMap,
    SliceQuery,
)


class BaseOffersProvider(ABC):
    """Flight inventory and pricing."""

    name: str = "offers"

    @abstractmethod
    async def search_offers(
        self,
        slices: Sequence[SliceQuery],
        passengers: PassengerCounts,
        cabin_class: str = "economy",
    ) -> List[Offer]:
        pass

    @abstractmethod
    async def get_offer(self, offer_id: str) -> Offer:
        """Current state of an offer. Raises ``OfferExpired`` if it no longer exists."""

    @abstractmethod
    async def get_seat_map(self, offer_id: str) -> List[SeatMap]:
        pass

    @abstractmethod
    async def get_ancillary_services(self, offer_id: str) -> AncillaryCatalog:
        pass

    @abstractmethod
    async def create_order(
        self,
        offer_id: str,
        passengers: Sequence[Dict[str, Any]],
        services: Sequence[Dict[str, Any]],
        amount: Decimal,
        currency: str,
    ) -> Dict[str, Any]:
        """Create the airline order once payment has been taken.

        Returns ``{"id", "booking_reference", "total_amount", "currency"}``.
        """


class BasePaymentGateway(ABC):
    """Hosted checkout and the webhook-populated booking status lookup."""

    name: str = "payments"

    @abstractmethod
    async def create_checkout_session(self, submission: BookingSubmission) -> CheckoutSession:
        pass

    @abstractmethod
    async def lookup_booking_by_session_id(self, session_id: str) -> BookingStatus:
        pass

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str) -> Optional[Dict[str, Any]]:
        """Parsed event if the signature is valid, else ``None``."""
