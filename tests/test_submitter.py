"""Tests for the Checkout Submitter."""
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from booking.accumulator import SelectionAccumulator
from booking.models import PassengerCounts, SelectedBaggageItem, SelectedSeat, SliceQuery
from booking.submitter import CheckoutSubmitter
from core.errors import PaymentFailed, PriceIntegrityError, ProviderUnavailable, StageError

from conftest import make_passenger

SLICES = (SliceQuery("LAX", "JFK", "2026-04-10"),)


async def _ready(store, offers_provider, extras=True):
    offer = offers_provider.add_offer(
        offers_provider.build_wire_offer("off_1", SLICES, PassengerCounts(adults=2), "300.00")
    )
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, offer)
    if extras:
        await acc.set_seat(0, 0, SelectedSeat("2A", "svc_2A", Decimal("25.00"), "USD", "pas_1"))
        await acc.set_seat(0, 1, SelectedSeat("2B", "svc_2B", Decimal("15.00"), "USD", "pas_2"))
        await acc.set_baggage("pas_2", SelectedBaggageItem("bag_2", Decimal("40.27"), "USD", "pas_2"))
    await acc.set_passengers([
        make_passenger("pas_1"),
        make_passenger("pas_2", given_name="Sam", email="", phone_number=""),
    ])
    total = Decimal("380.27") if extras else Decimal("300.00")
    await acc.set_verification(offer, total, verified=True)
    return acc, offer


@pytest.mark.asyncio
async def test_submission_carries_merged_services_and_total(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider)

    result = await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)

    submission = result.submission
    assert submission.total_amount == Decimal("380.27")
    assert submission.offer_amount == Decimal("300.00")
    assert submission.seats_total == Decimal("40.00")
    assert submission.baggage_total == Decimal("40.27")
    assert [s.to_dict()["type"] for s in submission.services] == ["seat", "seat", "baggage"]
    assert result.checkout.session_id in gateway.sessions


@pytest.mark.asyncio
async def test_passengers_sent_in_provider_format(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider, extras=False)

    result = await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)

    first, second = result.submission.passengers
    assert first["id"] == "pas_1"
    assert first["title"] == "mr"
    assert first["born_on"] == "1990-05-15"
    assert "identity_documents" not in first
    # contact details fall back to the lead passenger's
    assert second["email"] == "alex@example.com"
    assert second["phone_number"] == "+14155550123"


@pytest.mark.asyncio
async def test_total_mismatch_fails_loudly(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider)
    await acc.set_verification(offer, Decimal("380.26"), verified=True)
    gateway.create_checkout_session = AsyncMock()

    with pytest.raises(PriceIntegrityError) as exc_info:
        await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)

    assert exc_info.value.actual == Decimal("380.27")
    gateway.create_checkout_session.assert_not_awaited()


@pytest.mark.asyncio
async def test_uses_verified_offer_price(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider, extras=False)
    fresh = replace(offer, total_amount=Decimal("310.00"))
    await acc.set_verification(fresh, Decimal("310.00"), verified=True)

    result = await CheckoutSubmitter(gateway).submit(acc.snapshot(), fresh)
    assert result.submission.total_amount == Decimal("310.00")


@pytest.mark.asyncio
async def test_requires_verification(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider)
    await acc.clear_verification()
    with pytest.raises(StageError):
        await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)


@pytest.mark.asyncio
async def test_declined_payment_is_payment_failed(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider)
    gateway.decline_next = True
    with pytest.raises(PaymentFailed):
        await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)


@pytest.mark.asyncio
async def test_gateway_outage_is_classified_as_payment_failed(store, offers_provider, gateway):
    acc, offer = await _ready(store, offers_provider)
    gateway.create_checkout_session = AsyncMock(side_effect=ProviderUnavailable("stripe", "timeout"))
    with pytest.raises(PaymentFailed):
        await CheckoutSubmitter(gateway).submit(acc.snapshot(), offer)
