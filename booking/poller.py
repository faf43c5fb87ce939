"""Confirmation Poller: waits for the webhook-driven order creation result."""
import asyncio
import logging
from typing import Optional

from booking.models import BookingOutcome, BookingStatus, BookingStatusKind, OutcomeKind
from core.errors import BookingCreateFailed, PollTimeout, ProviderUnavailable
from core.polling import RetryPolicy, Sleep, poll_until_terminal
from providers.base import BasePaymentGateway

logger = logging.getLogger(__name__)


class ConfirmationPoller:
    def __init__(
        self,
        gateway: BasePaymentGateway,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.gateway = gateway
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def poll_for_result(
        self, session_id: str, cancel_event: Optional[asyncio.Event] = None
    ) -> BookingOutcome:
        async def fetch() -> BookingStatus:
            return await self.gateway.lookup_booking_by_session_id(session_id)

        result = await poll_until_terminal(
            fetch,
            lambda status: status.is_terminal,
            self.policy,
            sleep=self._sleep,
            cancel_event=cancel_event,
            retry_on=(ProviderUnavailable,),
        )

        if not result.terminal:
            logger.warning(
                "Booking status for session %s still unknown after %d polls", session_id, result.attempts
            )
            return BookingOutcome(status=OutcomeKind.TIMEOUT, session_id=session_id, attempts=result.attempts)

        status = result.value
        if status.status == BookingStatusKind.CONFIRMED:
            return BookingOutcome(
                status=OutcomeKind.CONFIRMED,
                session_id=session_id,
                booking_reference=status.booking_reference,
                attempts=result.attempts,
            )
        logger.error("Order creation failed for paid session %s: %s", session_id, status.error_message)
        return BookingOutcome(
            status=OutcomeKind.FAILED,
            session_id=session_id,
            reason=status.error_message or "Booking creation failed",
            attempts=result.attempts,
        )


def raise_for_outcome(outcome: BookingOutcome) -> None:
    if outcome.status == OutcomeKind.FAILED:
        raise BookingCreateFailed(outcome.session_id, outcome.reason or "unknown error")
    if outcome.status == OutcomeKind.TIMEOUT:
        raise PollTimeout(outcome.session_id)
