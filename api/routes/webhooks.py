import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from booking.fulfillment import COMPLETED_EVENT, fulfil_checkout
from core.booking_status import BookingStatusStore
from db.database import get_db
from providers.base import BaseOffersProvider, BasePaymentGateway
from providers.factory import get_offers_provider, get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: BaseOffersProvider = Depends(get_offers_provider),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
):
    payload = await request.body()
    event = gateway.verify_webhook(payload, request.headers.get("stripe-signature", ""))
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    if event.get("type") != COMPLETED_EVENT:
        logger.debug("Ignoring webhook event %s", event.get("type"))
        return {"received": True}

    checkout = event.get("data", {}).get("object") or {}
    if not checkout.get("id"):
        raise HTTPException(status_code=400, detail="Event carries no checkout session")

    record = await fulfil_checkout(checkout, provider, BookingStatusStore(db))
    return {"received": True, "status": record.status, "booking_reference": record.booking_reference}
