"""Checkout Submitter: freezes the booking into a submission and starts payment.

Order creation is not done here; it happens asynchronously once the payment
webhook fires.
"""
import logging

from booking.accumulator import AccumulatorSnapshot
from booking.models import BookingSubmission, Offer, SubmissionResult
from booking.passengers import to_provider_passenger
from booking.pricing import build_services, grand_total, to_money
from core.errors import PaymentFailed, PriceIntegrityError, ProviderUnavailable, StageError
from providers.base import BasePaymentGateway

logger = logging.getLogger(__name__)


class CheckoutSubmitter:
    def __init__(self, gateway: BasePaymentGateway):
        self.gateway = gateway

    def build_submission(self, snapshot: AccumulatorSnapshot, verified_offer: Offer) -> BookingSubmission:
        if snapshot.verification is None:
            raise StageError("price_reconciled", "price has not been re-verified")
        if not snapshot.passengers:
            raise StageError("passenger_details_complete", "no passengers")

        services = build_services(snapshot)
        total = grand_total(verified_offer, services)
        shown = to_money(snapshot.verification.total)
        if total != shown:
            logger.error(
                "Checkout total %s differs from verified total %s for offer %s",
                total, shown, verified_offer.id,
            )
            raise PriceIntegrityError(expected=shown, actual=total)

        primary = snapshot.passengers[0]
        return BookingSubmission(
            offer_id=verified_offer.id,
            passengers=tuple(to_provider_passenger(p, primary) for p in snapshot.passengers),
            services=tuple(services),
            total_amount=total,
            currency=verified_offer.currency,
            offer_amount=verified_offer.total_amount,
        )

    async def submit(self, snapshot: AccumulatorSnapshot, verified_offer: Offer) -> SubmissionResult:
        submission = self.build_submission(snapshot, verified_offer)
        try:
            checkout = await self.gateway.create_checkout_session(submission)
        except ProviderUnavailable as exc:
            raise PaymentFailed(f"Payment could not be started: {exc.message}") from exc
        logger.info(
            "Checkout session %s created for offer %s, total %s %s",
            checkout.session_id, submission.offer_id, submission.total_amount, submission.currency,
        )
        return SubmissionResult(checkout=checkout, submission=submission)
