"""Selection Accumulator: the stage-by-stage booking state of one session.

Every mutation writes the full state through to the session store before it
returns, so a reload mid-flow resumes exactly where the traveler left off.
"""
import copy
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from booking import serialization as ser
from booking.models import Offer, PassengerRecord, SelectedBaggageItem, SelectedSeat
from core.errors import SeatConflict
from core.session_store import SessionStore

logger = logging.getLogger(__name__)

OUTBOUND_KEY = "selected_outbound"
RETURN_KEY = "selected_return"
SEATS_KEY = "selected_seats"
BAGGAGE_KEY = "selected_baggage"
FLAGS_KEY = "selection_flags"
PASSENGERS_KEY = "passenger_data"
FRESH_OFFER_KEY = "fresh_offer"
CHECKOUT_KEY = "checkout_session"
SLICE_KEY_PREFIX = "selected_slice_"


def offer_key(slice_index: int) -> str:
    if slice_index == 0:
        return OUTBOUND_KEY
    if slice_index == 1:
        return RETURN_KEY
    return f"{SLICE_KEY_PREFIX}{slice_index}"


@dataclass(frozen=True)
class Verification:
    """The offer and total the traveler accepted at price re-verification."""

    offer: Offer
    total: Decimal
    verified: bool  # False when the provider could not be reached


@dataclass(frozen=True)
class CheckoutRecord:
    session_id: str
    redirect_url: str
    total_amount: Decimal
    currency: str
    booking_reference: Optional[str] = None


@dataclass(frozen=True)
class AccumulatorSnapshot:
    offers: Mapping[int, Offer]
    seats: Mapping[int, Mapping[int, SelectedSeat]]
    baggage: Mapping[str, SelectedBaggageItem]
    seats_decided: bool
    baggage_decided: bool
    passengers: Tuple[PassengerRecord, ...] = ()
    verification: Optional[Verification] = None
    checkout: Optional[CheckoutRecord] = None

    @property
    def primary_offer(self) -> Optional[Offer]:
        """The offer for slice 0. Its total already bundles every later slice."""
        return self.offers.get(0)

    def seats_for_slice(self, slice_index: int) -> Mapping[int, SelectedSeat]:
        return self.seats.get(slice_index, MappingProxyType({}))


@dataclass
class _State:
    offers: Dict[int, Offer] = field(default_factory=dict)
    seats: Dict[int, Dict[int, SelectedSeat]] = field(default_factory=dict)
    baggage: Dict[str, SelectedBaggageItem] = field(default_factory=dict)
    seats_decided: bool = False
    baggage_decided: bool = False
    passengers: List[PassengerRecord] = field(default_factory=list)
    verification: Optional[Verification] = None
    checkout: Optional[CheckoutRecord] = None


class SelectionAccumulator:
    def __init__(self, session_id: str, store: SessionStore):
        self.session_id = session_id
        self.store = store
        self._state = _State()

    @classmethod
    async def load(cls, session_id: str, store: SessionStore) -> "SelectionAccumulator":
        acc = cls(session_id, store)
        raw = await store.load(session_id)
        state = acc._state

        for key, value in raw.items():
            if key == OUTBOUND_KEY:
                state.offers[0] = ser.offer_from_dict(ser.loads(value))
            elif key == RETURN_KEY:
                state.offers[1] = ser.offer_from_dict(ser.loads(value))
            elif key.startswith(SLICE_KEY_PREFIX):
                index = int(key[len(SLICE_KEY_PREFIX):])
                state.offers[index] = ser.offer_from_dict(ser.loads(value))

        if SEATS_KEY in raw:
            state.seats = ser.seats_from_dict(ser.loads(raw[SEATS_KEY]))
        if BAGGAGE_KEY in raw:
            state.baggage = ser.baggage_from_list(ser.loads(raw[BAGGAGE_KEY]))
        if FLAGS_KEY in raw:
            flags = ser.loads(raw[FLAGS_KEY])
            state.seats_decided = bool(flags.get("seats_decided"))
            state.baggage_decided = bool(flags.get("baggage_decided"))
        if PASSENGERS_KEY in raw:
            state.passengers = [ser.passenger_from_dict(p) for p in ser.loads(raw[PASSENGERS_KEY])]
        if FRESH_OFFER_KEY in raw:
            data = ser.loads(raw[FRESH_OFFER_KEY])
            state.verification = Verification(
                offer=ser.offer_from_dict(data["offer"]),
                total=Decimal(data["total"]),
                verified=bool(data["verified"]),
            )
        if CHECKOUT_KEY in raw:
            data = ser.loads(raw[CHECKOUT_KEY])
            state.checkout = CheckoutRecord(**{**data, "total_amount": Decimal(data["total_amount"])})
        return acc

    # ── mutations ─────────────────────────────────────────────────────────────

    async def set_offer_for_slice(self, slice_index: int, offer: Offer) -> None:
        """Store the chosen offer for a slice; re-selecting replaces, never duplicates."""
        if slice_index < 0:
            raise ValueError("slice_index must be >= 0")
        previous = self._state.offers.get(slice_index)
        self._state.offers[slice_index] = offer
        if slice_index == 0 and previous is not None and previous.id != offer.id:
            # Seat and bag services belong to the old offer.
            self._clear_offer_dependents()
        await self._persist()

    async def set_seat(self, slice_index: int, passenger_index: int, seat: SelectedSeat) -> None:
        by_passenger = self._state.seats.get(slice_index, {})
        for holder_index, held in by_passenger.items():
            if holder_index != passenger_index and held.designator == seat.designator:
                logger.info(
                    "Seat conflict session=%s slice=%d seat=%s held by passenger %d",
                    self.session_id, slice_index, seat.designator, holder_index,
                )
                raise SeatConflict(slice_index, seat.designator, holder_index)
        self._state.seats.setdefault(slice_index, {})[passenger_index] = seat
        self._state.seats_decided = True
        await self._persist()

    async def remove_seat(self, slice_index: int, passenger_index: int) -> None:
        by_passenger = self._state.seats.get(slice_index)
        if by_passenger is not None:
            by_passenger.pop(passenger_index, None)
            if not by_passenger:
                del self._state.seats[slice_index]
        await self._persist()

    async def skip_seats(self) -> None:
        """Mark every flight as seat-less in one action."""
        self._state.seats = {}
        self._state.seats_decided = True
        await self._persist()

    async def set_baggage(self, passenger_id: str, item: SelectedBaggageItem) -> None:
        """At most one extra bag per passenger: a new selection overwrites the old one."""
        if item.passenger_id != passenger_id:
            raise ValueError("Baggage item belongs to a different passenger")
        self._state.baggage[passenger_id] = item
        self._state.baggage_decided = True
        await self._persist()

    async def remove_baggage(self, passenger_id: str) -> None:
        self._state.baggage.pop(passenger_id, None)
        await self._persist()

    async def skip_baggage(self) -> None:
        self._state.baggage = {}
        self._state.baggage_decided = True
        await self._persist()

    async def set_passengers(self, passengers: List[PassengerRecord]) -> None:
        self._state.passengers = copy.deepcopy(list(passengers))
        await self._persist()

    async def set_verification(self, offer: Offer, total: Decimal, verified: bool) -> None:
        self._state.verification = Verification(offer=offer, total=total, verified=verified)
        await self._persist()

    async def clear_verification(self) -> None:
        self._state.verification = None
        await self._persist()

    async def set_checkout(self, record: CheckoutRecord) -> None:
        self._state.checkout = record
        await self._persist()

    async def clear_checkout(self) -> None:
        self._state.checkout = None
        await self._persist()

    async def drop_services_not_in(self, currency: str) -> bool:
        """Remove seats and bags priced in another currency; True if any were removed."""
        state = self._state
        seats = {
            slice_index: {i: s for i, s in by_passenger.items() if s.currency == currency}
            for slice_index, by_passenger in state.seats.items()
        }
        seats = {slice_index: by_passenger for slice_index, by_passenger in seats.items() if by_passenger}
        baggage = {pid: b for pid, b in state.baggage.items() if b.currency == currency}
        if seats == state.seats and baggage == state.baggage:
            return False
        state.seats = seats
        state.baggage = baggage
        state.seats_decided = False
        state.baggage_decided = False
        state.verification = None
        await self._persist()
        return True

    async def discard_offer_state(self) -> None:
        """Drop everything tied to the current offer (used when it expires)."""
        self._state.offers = {}
        self._clear_offer_dependents()
        self._state.checkout = None
        await self._persist()

    def _clear_offer_dependents(self) -> None:
        self._state.seats = {}
        self._state.baggage = {}
        self._state.seats_decided = False
        self._state.baggage_decided = False
        self._state.verification = None

    # ── read ──────────────────────────────────────────────────────────────────

    def snapshot(self) -> AccumulatorSnapshot:
        state = self._state
        return AccumulatorSnapshot(
            offers=MappingProxyType(dict(state.offers)),
            seats=MappingProxyType({
                slice_index: MappingProxyType(dict(by_passenger))
                for slice_index, by_passenger in state.seats.items()
            }),
            baggage=MappingProxyType(dict(state.baggage)),
            seats_decided=state.seats_decided,
            baggage_decided=state.baggage_decided,
            passengers=tuple(copy.deepcopy(state.passengers)),
            verification=state.verification,
            checkout=state.checkout,
        )

    # ── persistence ───────────────────────────────────────────────────────────

    async def _persist(self) -> None:
        state = self._state
        stored = await self.store.load(self.session_id)

        entries: Dict[str, Optional[str]] = {
            SEATS_KEY: ser.dumps(ser.seats_to_dict(state.seats)),
            BAGGAGE_KEY: ser.dumps(ser.baggage_to_list(state.baggage)),
            FLAGS_KEY: ser.dumps({
                "seats_decided": state.seats_decided,
                "baggage_decided": state.baggage_decided,
            }),
            PASSENGERS_KEY: ser.dumps([ser.passenger_to_dict(p) for p in state.passengers]),
            FRESH_OFFER_KEY: None if state.verification is None else ser.dumps({
                "offer": ser.offer_to_dict(state.verification.offer),
                "total": state.verification.total,
                "verified": state.verification.verified,
            }),
            CHECKOUT_KEY: None if state.checkout is None else ser.dumps(ser.to_dict(state.checkout)),
        }
        for key in stored:
            if key in (OUTBOUND_KEY, RETURN_KEY) or key.startswith(SLICE_KEY_PREFIX):
                entries[key] = None
        for slice_index, offer in state.offers.items():
            entries[offer_key(slice_index)] = ser.dumps(ser.offer_to_dict(offer))

        changes = {
            key: value for key, value in entries.items()
            if (value is None and key in stored) or (value is not None and stored.get(key) != value)
        }
        if changes:
            await self.store.save_many(self.session_id, changes)
