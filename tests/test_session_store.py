"""Session store adapters and the JSON shape written through them."""
from datetime import date
from decimal import Decimal

import pytest

from booking import serialization as ser
from booking.accumulator import BAGGAGE_KEY, SEATS_KEY, SelectionAccumulator
from booking.models import (
    EmergencyContact,
    PassengerCounts,
    SelectedBaggageItem,
    SelectedSeat,
    SliceQuery,
)
from core.session_store import InMemorySessionStore, SqlSessionStore

from conftest import RETURN_TRIP, make_passenger, with_passport


@pytest.mark.asyncio
async def test_sql_store_save_overwrite_delete(db):
    store = SqlSessionStore(db)
    await store.save("s1", "a", '"one"')
    await store.save("s1", "a", '"two"')
    await store.save("s1", "b", "[]")
    await store.save("s2", "a", "{}")

    assert await store.load("s1") == {"a": '"two"', "b": "[]"}

    await store.delete("s1", "b")
    assert await store.load("s1") == {"a": '"two"'}

    await store.clear("s1")
    assert await store.load("s1") == {}
    assert await store.load("s2") == {"a": "{}"}


@pytest.mark.asyncio
async def test_in_memory_load_returns_a_copy():
    store = InMemorySessionStore()
    await store.save("s1", "a", "1")
    loaded = await store.load("s1")
    loaded["a"] = "changed"
    assert (await store.load("s1"))["a"] == "1"


@pytest.mark.asyncio
async def test_accumulator_survives_reload_from_sql_store(db, offers_provider):
    offer = offers_provider.add_offer(
        offers_provider.build_wire_offer("off_9", RETURN_TRIP.slices, PassengerCounts(), "512.40")
    )
    store = SqlSessionStore(db)
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, offer)
    await acc.set_seat(1, 0, SelectedSeat("3C", "svc_3C", Decimal("15.00"), "USD", "pas_1"))
    await acc.set_baggage("pas_1", SelectedBaggageItem("bag_1", Decimal("40.27"), "USD", "pas_1"))
    passenger = with_passport(make_passenger())
    passenger.emergency_contact = EmergencyContact("Jo Morgan", "sister", "+14155550999")
    await acc.set_passengers([passenger])

    reloaded = (await SelectionAccumulator.load("s1", SqlSessionStore(db))).snapshot()

    assert reloaded.primary_offer == offer
    assert reloaded.seats[1][0].designator == "3C"
    assert reloaded.seats[1][0].price == Decimal("15.00")
    assert reloaded.baggage["pas_1"].price == Decimal("40.27")
    assert reloaded.passengers[0] == passenger


@pytest.mark.asyncio
async def test_seat_indexes_are_stored_as_string_keys(store):
    acc = SelectionAccumulator("s1", store)
    await acc.set_seat(0, 2, SelectedSeat("4D", "svc", Decimal("25.00"), "USD"))

    raw = ser.loads((await store.load("s1"))[SEATS_KEY])
    assert raw == {"0": {"2": {
        "designator": "4D", "service_id": "svc", "price": "25.00", "currency": "USD", "passenger_id": None,
    }}}


def test_passenger_dates_round_trip_as_iso_strings():
    passenger = with_passport(make_passenger(), expires_on=date(2030, 12, 31))
    data = ser.loads(ser.dumps(ser.passenger_to_dict(passenger)))

    assert data["born_on"] == "1990-05-15"
    assert data["identity_document"]["expires_on"] == "2030-12-31"
    assert ser.passenger_from_dict(data) == passenger


def test_criteria_round_trip():
    criteria = RETURN_TRIP
    assert ser.criteria_from_dict(ser.loads(ser.dumps(ser.criteria_to_dict(criteria)))) == criteria
    assert ser.criteria_to_dict(criteria)["slices"][0] == {
        "origin": "LAX", "destination": "JFK", "departure_date": "2026-04-10",
    }


def test_dumps_rejects_unknown_types():
    with pytest.raises(TypeError):
        ser.dumps({"x": SliceQuery})


@pytest.mark.asyncio
async def test_sql_store_save_many_writes_and_deletes_in_one_commit(db):
    store = SqlSessionStore(db)
    await store.save_many("s1", {"a": "1", "b": "2"})
    await store.save_many("s1", {"a": "3", "b": None, "c": "4"})
    assert await store.load("s1") == {"a": "3", "c": "4"}


@pytest.mark.asyncio
async def test_sql_store_save_many_keeps_old_state_when_commit_fails(db, monkeypatch):
    store = SqlSessionStore(db)
    await store.save_many("s1", {"a": "1", "b": "2"})

    async def failing_commit():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(RuntimeError):
        await store.save_many("s1", {"a": "changed", "b": None, "c": "new"})
    monkeypatch.undo()

    assert await store.load("s1") == {"a": "1", "b": "2"}


class RecordingStore(InMemorySessionStore):
    def __init__(self):
        super().__init__()
        self.writes = []

    async def save_many(self, session_id, entries):
        self.writes.append(dict(entries))
        await super().save_many(session_id, entries)


@pytest.mark.asyncio
async def test_accumulator_mutation_is_written_as_one_batch(offers_provider):
    offer = offers_provider.add_offer(
        offers_provider.build_wire_offer("off_9", RETURN_TRIP.slices, PassengerCounts(), "512.40")
    )
    store = RecordingStore()
    acc = SelectionAccumulator("s1", store)
    await acc.set_offer_for_slice(0, offer)
    await acc.set_baggage("pas_1", SelectedBaggageItem("bag_1", Decimal("40.27"), "USD", "pas_1"))
    assert len(store.writes) == 2

    other = offers_provider.add_offer(
        offers_provider.build_wire_offer("off_10", RETURN_TRIP.slices, PassengerCounts(), "499.00")
    )
    await acc.set_offer_for_slice(0, other)

    assert len(store.writes) == 3
    last = store.writes[-1]
    assert "selected_outbound" in last
    assert ser.loads(last[BAGGAGE_KEY]) == []


def test_offer_written_with_plain_values_and_read_back_equal(offers_provider):
    offer = offers_provider.add_offer(
        offers_provider.build_wire_offer("off_9", RETURN_TRIP.slices, PassengerCounts(children=1), "512.40")
    )
    data = ser.offer_to_dict(offer)

    assert type(data["passengers"][1]["type"]) is str
    assert data["passengers"][1]["type"] == "child"
    assert ser.offer_from_dict(ser.loads(ser.dumps(data))) == offer
