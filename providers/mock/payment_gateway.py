import itertools
import json
from collections import OrderedDict, deque
from typing import Any, Awaitable, Callable, Deque, Dict, MutableMapping, Optional

from booking.models import BookingStatus, BookingStatusKind, BookingSubmission, CheckoutSession
from core.errors import PaymentFailed, ProviderUnavailable
from providers.base import BasePaymentGateway

MOCK_SIGNATURE = "mock-signature"

# One instance lives for the whole process in mock mode.
MAX_TRACKED_SESSIONS = 1000
MAX_TRACKED_LOOKUPS = 200


def _remember(mapping: MutableMapping, key: str, value: Any, limit: int) -> None:
    mapping.pop(key, None)
    mapping[key] = value
    while len(mapping) > limit:
        mapping.pop(next(iter(mapping)))


class MockPaymentGateway(BasePaymentGateway):
    name = "mock-payments"

    def __init__(
        self,
        status_lookup: Optional[Callable[[str], Awaitable[BookingStatus]]] = None,
        max_sessions: int = MAX_TRACKED_SESSIONS,
    ):
        self._status_lookup = status_lookup
        self._ids = itertools.count(1)
        self.max_sessions = max_sessions
        self.sessions: "OrderedDict[str, BookingSubmission]" = OrderedDict()
        self._statuses: "OrderedDict[str, BookingStatus]" = OrderedDict()
        self.decline_next = False
        self.unavailable = False
        self.lookups: Deque[str] = deque(maxlen=MAX_TRACKED_LOOKUPS)

    # ── test controls ─────────────────────────────────────────────────────────

    def confirm(self, session_id: str, booking_reference: str) -> None:
        status = BookingStatus(status=BookingStatusKind.CONFIRMED, booking_reference=booking_reference)
        _remember(self._statuses, session_id, status, self.max_sessions)

    def fail(self, session_id: str, reason: str) -> None:
        status = BookingStatus(status=BookingStatusKind.FAILED, error_message=reason)
        _remember(self._statuses, session_id, status, self.max_sessions)

    # ── gateway interface ─────────────────────────────────────────────────────

    async def create_checkout_session(self, submission: BookingSubmission) -> CheckoutSession:
        if self.unavailable:
            raise ProviderUnavailable(self.name, "simulated outage")
        if self.decline_next:
            self.decline_next = False
            raise PaymentFailed("Card declined")
        session_id = f"cs_test_{next(self._ids):04d}"
        _remember(self.sessions, session_id, submission, self.max_sessions)
        return CheckoutSession(session_id=session_id, redirect_url=f"https://checkout.mock/pay/{session_id}")

    async def lookup_booking_by_session_id(self, session_id: str) -> BookingStatus:
        self.lookups.append(session_id)
        if self.unavailable:
            raise ProviderUnavailable(self.name, "simulated outage")
        if session_id in self._statuses:
            return self._statuses[session_id]
        if self._status_lookup is not None:
            return await self._status_lookup(session_id)
        return BookingStatus(status=BookingStatusKind.PENDING)

    def verify_webhook(self, payload: bytes, signature: str) -> Optional[Dict[str, Any]]:
        if signature != MOCK_SIGNATURE:
            return None
        return json.loads(payload)
