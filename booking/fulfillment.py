"""Order creation after payment, driven by the payment gateway's webhook.

Runs outside any booking session: everything it needs travels in the
checkout session's metadata. The outcome is recorded for the confirmation
poller; a paid session whose order could not be created is recorded as
``failed`` with the reason, never dropped.
"""
import logging
from decimal import Decimal
from typing import Any, Dict

from core.booking_status import BookingStatusStore
from core.errors import OfferExpired, ProviderUnavailable
from db.models import BookingStatusRecord
from providers.base import BaseOffersProvider
from providers.normalize import order_request_from_metadata

logger = logging.getLogger(__name__)

COMPLETED_EVENT = "checkout.session.completed"


async def fulfil_checkout(
    checkout: Dict[str, Any],
    provider: BaseOffersProvider,
    statuses: BookingStatusStore,
) -> BookingStatusRecord:
    session_id = checkout["id"]
    existing = await statuses.get(session_id)
    if existing is not None and existing.status == "confirmed":
        logger.info("Checkout %s already fulfilled as %s", session_id, existing.booking_reference)
        return existing

    currency = (checkout.get("currency") or "usd").upper()
    amount = None
    if checkout.get("amount_total") is not None:
        amount = Decimal(checkout["amount_total"]) / 100

    try:
        request = order_request_from_metadata(checkout.get("metadata") or {})
    except (KeyError, ValueError) as exc:
        logger.error("Checkout %s has unusable metadata: %s", session_id, exc)
        return await statuses.record_failed(session_id, f"Invalid checkout metadata: {exc}", amount, currency)

    if amount is None:
        amount = request["total_amount"]
    passengers = request["passengers"]
    primary_email = passengers[0].get("email") if passengers else None

    try:
        order = await provider.create_order(
            request["offer_id"], passengers, request["services"], amount, currency
        )
    except (OfferExpired, ProviderUnavailable) as exc:
        logger.error("Order creation failed for paid checkout %s: %s", session_id, exc.message)
        return await statuses.record_failed(session_id, exc.message, amount, currency, primary_email)

    logger.info(
        "Checkout %s fulfilled: order %s, reference %s", session_id, order["id"], order.get("booking_reference")
    )
    return await statuses.record_confirmed(
        session_id,
        booking_reference=order.get("booking_reference") or order["id"],
        provider_order_id=order["id"],
        amount=amount,
        currency=currency,
        primary_email=primary_email,
        services=request["services"],
    )
