"""Stripe hosted-checkout payment gateway.

Creates a Checkout Session with separate flight / seat / baggage line items
and the full submission in metadata. The order itself is created later by
the ``checkout.session.completed`` webhook, which records the outcome that
``lookup_booking_by_session_id`` reads back.
"""
import asyncio
import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError

from booking.models import BookingStatus, BookingSubmission, CheckoutSession
from core.booking_status import lookup_stored_status
from core.config import settings
from core.errors import PaymentFailed, ProviderUnavailable
from providers.base import BasePaymentGateway
from providers.normalize import checkout_metadata

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_line_items(submission: BookingSubmission, description: str = "Flight") -> List[Dict[str, Any]]:
    currency = submission.currency.lower()
    count = len(submission.passengers)

    def item(name: str, detail: str, amount: Decimal) -> Dict[str, Any]:
        return {
            "price_data": {
                "currency": currency,
                "product_data": {"name": name, "description": detail},
                "unit_amount": to_minor_units(amount),
            },
            "quantity": 1,
        }

    items = [item(description, f"{count} passenger{'s' if count != 1 else ''}", submission.offer_amount)]
    if submission.seats_total > 0:
        items.append(item("Seat Selection", "Selected seats for your flight", submission.seats_total))
    if submission.baggage_total > 0:
        items.append(item("Checked Baggage", "Additional checked baggage", submission.baggage_total))
    return items


class StripeCheckoutGateway(BasePaymentGateway):
    name = "stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        self.success_url = success_url or settings.checkout_success_url
        self.cancel_url = cancel_url or settings.checkout_cancel_url

    async def create_checkout_session(self, submission: BookingSubmission) -> CheckoutSession:
        if not self.secret_key:
            raise ProviderUnavailable(self.name, "Stripe not configured")

        line_items = build_line_items(submission)
        charged = sum(i["price_data"]["unit_amount"] for i in line_items)
        if charged != to_minor_units(submission.total_amount):
            # Line items are split from the total; they must add back up exactly.
            raise PaymentFailed("Line items do not add up to the booking total")

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=self.success_url + "?session_id={CHECKOUT_SESSION_ID}",
                cancel_url=self.cancel_url,
                metadata=checkout_metadata(submission),
            )
        except stripe.CardError as exc:
            logger.info("Stripe declined checkout for offer %s: %s", submission.offer_id, exc.user_message)
            raise PaymentFailed(exc.user_message or "Card declined") from exc
        except stripe.InvalidRequestError as exc:
            logger.warning("Stripe rejected checkout for offer %s: %s", submission.offer_id, exc)
            raise PaymentFailed(str(exc)) from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe unavailable creating checkout: %s", exc)
            raise ProviderUnavailable(self.name, str(exc)) from exc

        logger.info("Stripe checkout session %s created", session.id)
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    async def lookup_booking_by_session_id(self, session_id: str) -> BookingStatus:
        try:
            return await lookup_stored_status(session_id)
        except SQLAlchemyError as exc:
            raise ProviderUnavailable("booking-status", str(exc)) from exc

    def verify_webhook(self, payload: bytes, signature: str) -> Optional[Dict[str, Any]]:
        if not self.webhook_secret:
            logger.warning("Stripe webhook received but no webhook secret is configured")
            return None
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Rejected Stripe webhook: %s", exc)
            return None
        return json.loads(payload)
