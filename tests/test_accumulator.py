"""Tests for the Selection Accumulator and its session-store durability."""
from decimal import Decimal

import pytest

from booking.accumulator import (
    BAGGAGE_KEY,
    OUTBOUND_KEY,
    RETURN_KEY,
    SEATS_KEY,
    SelectionAccumulator,
)
from booking.models import PassengerCounts, SelectedBaggageItem, SelectedSeat, SliceQuery
from core.errors import SeatConflict
from providers.mock.offers_provider import MockOffersProvider

from conftest import make_passenger

SLICES = (SliceQuery("LAX", "JFK", "2026-04-10"), SliceQuery("JFK", "LAX", "2026-04-17"))


def _offer(offer_id="off_1", amount="300.00", adults=2):
    provider = MockOffersProvider()
    return provider.add_offer(provider.build_wire_offer(offer_id, SLICES, PassengerCounts(adults=adults), amount))


def _seat(designator, price="15.00", passenger_id="pas_1"):
    return SelectedSeat(
        designator=designator,
        service_id=f"svc_{designator}_{passenger_id}",
        price=Decimal(price),
        currency="USD",
        passenger_id=passenger_id,
    )


@pytest.mark.asyncio
async def test_set_offer_for_slice_replaces_not_duplicates(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer("off_1"))
    await acc.set_offer_for_slice(0, _offer("off_2"))

    snap = acc.snapshot()
    assert list(snap.offers) == [0]
    assert snap.primary_offer.id == "off_2"


@pytest.mark.asyncio
async def test_seat_conflict_leaves_prior_assignments_unchanged(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer())
    await acc.set_seat(0, 0, _seat("2B", passenger_id="pas_1"))

    with pytest.raises(SeatConflict) as exc_info:
        await acc.set_seat(0, 1, _seat("2B", passenger_id="pas_2"))

    assert exc_info.value.holder_index == 0
    seats = acc.snapshot().seats_for_slice(0)
    assert set(seats) == {0}
    assert seats[0].designator == "2B"


@pytest.mark.asyncio
async def test_same_designator_allowed_on_different_slices(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_seat(0, 0, _seat("3C", passenger_id="pas_1"))
    await acc.set_seat(1, 1, _seat("3C", passenger_id="pas_2"))

    snap = acc.snapshot()
    assert snap.seats[0][0].designator == "3C"
    assert snap.seats[1][1].designator == "3C"


@pytest.mark.asyncio
async def test_passenger_can_move_to_another_seat(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_seat(0, 0, _seat("2B"))
    await acc.set_seat(0, 0, _seat("3B"))
    assert acc.snapshot().seats[0][0].designator == "3B"


@pytest.mark.asyncio
async def test_set_baggage_overwrites_previous_bag(store):
    acc = SelectionAccumulator("s1", store)
    first = SelectedBaggageItem(id="bag_a", price=Decimal("30.00"), currency="USD", passenger_id="pas_1")
    second = SelectedBaggageItem(id="bag_b", price=Decimal("45.00"), currency="USD", passenger_id="pas_1")

    await acc.set_baggage("pas_1", first)
    await acc.set_baggage("pas_1", second)

    baggage = acc.snapshot().baggage
    assert list(baggage) == ["pas_1"]
    assert baggage["pas_1"].id == "bag_b"


@pytest.mark.asyncio
async def test_set_baggage_rejects_mismatched_passenger(store):
    acc = SelectionAccumulator("s1", store)
    item = SelectedBaggageItem(id="bag_a", price=Decimal("30.00"), currency="USD", passenger_id="pas_2")
    with pytest.raises(ValueError):
        await acc.set_baggage("pas_1", item)


@pytest.mark.asyncio
async def test_skip_seats_clears_selection_and_marks_decided(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_seat(0, 0, _seat("2B"))
    await acc.skip_seats()

    snap = acc.snapshot()
    assert dict(snap.seats) == {}
    assert snap.seats_decided is True


@pytest.mark.asyncio
async def test_changing_primary_offer_drops_its_services(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer("off_1"))
    await acc.set_seat(0, 0, _seat("2B"))
    await acc.set_baggage(
        "pas_1", SelectedBaggageItem(id="bag", price=Decimal("40.27"), currency="USD", passenger_id="pas_1")
    )

    await acc.set_offer_for_slice(0, _offer("off_9"))

    snap = acc.snapshot()
    assert dict(snap.seats) == {}
    assert dict(snap.baggage) == {}
    assert snap.seats_decided is False
    assert snap.baggage_decided is False


@pytest.mark.asyncio
async def test_snapshot_is_read_only(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_seat(0, 0, _seat("2B"))
    snap = acc.snapshot()
    with pytest.raises(TypeError):
        snap.seats[0][1] = _seat("2C")


@pytest.mark.asyncio
async def test_every_mutation_is_written_through(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer("off_1"))
    await acc.set_offer_for_slice(1, _offer("off_2", "250.00"))
    await acc.set_seat(0, 0, _seat("2B"))

    raw = await store.load("s1")
    assert {OUTBOUND_KEY, RETURN_KEY, SEATS_KEY, BAGGAGE_KEY} <= set(raw)


@pytest.mark.asyncio
async def test_reload_resumes_identical_state(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer("off_1", "300.10"))
    await acc.set_seat(0, 0, _seat("2B", price="25.00"))
    await acc.set_seat(1, 1, _seat("4D", price="15.50", passenger_id="pas_2"))
    await acc.set_baggage(
        "pas_1", SelectedBaggageItem(id="bag", price=Decimal("40.27"), currency="USD", passenger_id="pas_1")
    )
    await acc.set_passengers([make_passenger()])

    reloaded = await SelectionAccumulator.load("s1", store)
    before, after = acc.snapshot(), reloaded.snapshot()

    assert after.primary_offer == before.primary_offer
    assert {k: dict(v) for k, v in after.seats.items()} == {k: dict(v) for k, v in before.seats.items()}
    assert after.seats[1][1].price == Decimal("15.50")
    assert dict(after.baggage) == dict(before.baggage)
    assert after.passengers == before.passengers
    assert after.seats_decided is True and after.baggage_decided is True


@pytest.mark.asyncio
async def test_discard_offer_state_removes_stored_offer_keys(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer("off_1"))
    await acc.set_offer_for_slice(1, _offer("off_2"))
    await acc.set_passengers([make_passenger()])

    await acc.discard_offer_state()

    raw = await store.load("s1")
    assert OUTBOUND_KEY not in raw
    assert RETURN_KEY not in raw
    assert len(acc.snapshot().passengers) == 1


@pytest.mark.asyncio
async def test_drop_services_not_in_currency(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, _offer())
    await acc.set_seat(0, 0, _seat("2A"))
    await acc.set_baggage(
        "pas_1", SelectedBaggageItem(id="bag", price=Decimal("40.27"), currency="USD", passenger_id="pas_1")
    )

    assert await acc.drop_services_not_in("USD") is False
    assert await acc.drop_services_not_in("EUR") is True

    reloaded = (await SelectionAccumulator.load("s1", store)).snapshot()
    assert dict(reloaded.seats) == {}
    assert dict(reloaded.baggage) == {}
    assert reloaded.seats_decided is False
    assert reloaded.baggage_decided is False
    assert reloaded.primary_offer is not None
