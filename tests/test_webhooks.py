"""Payment webhook: order creation after payment and the status it records."""
import json
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.main import app
from booking.models import BookingStatusKind, BookingSubmission, PassengerCounts, ServiceLine, ServiceType
from core.booking_status import BookingStatusStore
from providers.factory import get_payment_gateway
from providers.mock.payment_gateway import MOCK_SIGNATURE, MockPaymentGateway
from providers.normalize import checkout_metadata

from conftest import RETURN_TRIP
from test_api import _to_passenger_details


def _completed_event(session_id, offer_id, amount_total=34027):
    submission = BookingSubmission(
        offer_id=offer_id,
        passengers=({"id": "pas_1", "given_name": "Alex", "email": "alex@example.com"},),
        services=(ServiceLine(f"bag_{offer_id}_pas_1", ServiceType.BAGGAGE, Decimal("40.27")),),
        total_amount=Decimal("340.27"),
        currency="USD",
        offer_amount=Decimal("300.00"),
    )
    return {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "amount_total": amount_total,
            "currency": "usd",
            "metadata": checkout_metadata(submission),
        }},
    }


async def _post(client, event, signature=MOCK_SIGNATURE):
    return await client.post(
        "/webhooks/stripe", content=json.dumps(event), headers={"stripe-signature": signature}
    )


def _live_offer(offers_provider, offer_id="off_w1"):
    wire = offers_provider.build_wire_offer(offer_id, RETURN_TRIP.slices, PassengerCounts(), "300.00")
    return offers_provider.add_offer(wire)


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(api_client, db):
    resp = await _post(api_client, _completed_event("cs_1", "off_x"), signature="forged")

    assert resp.status_code == 400
    assert await BookingStatusStore(db).get("cs_1") is None


@pytest.mark.asyncio
async def test_other_events_are_acknowledged(api_client):
    resp = await _post(api_client, {"type": "payment_intent.created", "data": {"object": {}}})
    assert resp.status_code == 200
    assert resp.json() == {"received": True}


@pytest.mark.asyncio
async def test_completed_checkout_creates_order(api_client, offers_provider, db):
    offer = _live_offer(offers_provider)

    resp = await _post(api_client, _completed_event("cs_1", offer.id))

    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    (order,) = offers_provider.orders
    assert order["total_amount"] == Decimal("340.27")
    assert order["services"] == [
        {"id": f"bag_{offer.id}_pas_1", "type": "baggage", "amount": "40.27", "quantity": 1, "designator": None}
    ]

    record = await BookingStatusStore(db).get("cs_1")
    assert record.status == "confirmed"
    assert record.booking_reference == order["booking_reference"]
    assert record.amount == "340.27"
    assert record.primary_email == "alex@example.com"


@pytest.mark.asyncio
async def test_duplicate_delivery_creates_one_order(api_client, offers_provider):
    offer = _live_offer(offers_provider)
    event = _completed_event("cs_1", offer.id)

    first = await _post(api_client, event)
    second = await _post(api_client, event)

    assert first.json()["booking_reference"] == second.json()["booking_reference"]
    assert len(offers_provider.orders) == 1


@pytest.mark.asyncio
async def test_order_failure_is_recorded_not_dropped(api_client, offers_provider, db):
    resp = await _post(api_client, _completed_event("cs_2", "off_gone"))

    assert resp.status_code == 200
    assert resp.json()["status"] == "failed"
    status = await BookingStatusStore(db).lookup("cs_2")
    assert status.status == BookingStatusKind.FAILED
    assert "off_gone" in status.error_message


@pytest.mark.asyncio
async def test_missing_metadata_is_recorded_as_failed(api_client, db):
    event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_3", "metadata": {}}}}

    resp = await _post(api_client, event)

    assert resp.json()["status"] == "failed"
    assert (await BookingStatusStore(db).get("cs_3")).error_message.startswith("Invalid checkout metadata")


@pytest.mark.asyncio
async def test_unknown_session_reads_as_pending(db):
    status = await BookingStatusStore(db).lookup("cs_never")
    assert status.status == BookingStatusKind.PENDING


@pytest.mark.asyncio
async def test_webhook_result_reaches_the_poller(api_client, engine, gateway):
    """Checkout, webhook, then confirmation: the poller reads what the webhook recorded."""
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async def stored_status(session_id):
        async with factory() as session:
            return await BookingStatusStore(session).lookup(session_id)

    bridged = MockPaymentGateway(status_lookup=stored_status)
    app.dependency_overrides[get_payment_gateway] = lambda: bridged

    sid, offer_id = await _to_passenger_details(api_client, bag=True)
    await api_client.post(f"/bookings/{sid}/reconcile")
    started = (await api_client.post(f"/bookings/{sid}/checkout")).json()

    resp = await _post(api_client, _completed_event(started["session_id"], offer_id))
    assert resp.json()["status"] == "confirmed"

    confirmation = await api_client.get(f"/bookings/{sid}/confirmation")
    assert confirmation.status_code == 200
    assert confirmation.json()["booking_reference"] == resp.json()["booking_reference"]
    assert gateway.sessions == {}
