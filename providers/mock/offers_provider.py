import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from booking.models import (
    AncillaryCatalog,
    Offer,
    PassengerCounts,
    PassengerType,
    SeatMap,
    SliceQuery,
)
from core.errors import OfferExpired, ProviderUnavailable
from providers.base import BaseOffersProvider
from providers.normalize import ancillaries_from_wire, offer_from_wire, seat_maps_from_wire

AIRPORT_COUNTRIES = {
    "LAX": "US", "JFK": "US", "SFO": "US", "ORD": "US",
    "LHR": "GB", "CDG": "FR", "SYD": "AU", "MEL": "AU", "NRT": "JP",
}

SEARCH_PRICES = ("300.00", "250.00", "420.50")
SEAT_PRICE = "15.00"
WINDOW_SEAT_PRICE = "25.00"
BAG_PRICE = "40.27"

_WIRE_TYPES = {
    PassengerType.ADULT: "adult",
    PassengerType.CHILD: "child",
    PassengerType.INFANT_WITH_SEAT: "infant_with_seat",
    PassengerType.INFANT_WITHOUT_SEAT: "infant_without_seat",
}


class MockOffersProvider(BaseOffersProvider):
    """In-memory provider holding offers in the provider's wire shape.

    Tests steer it with ``set_price``, ``expire``, ``remove`` and ``unavailable``.
    """

    name = "mock-offers"

    def __init__(self, now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._now = now
        self._offers: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._orders = itertools.count(1)
        self.unavailable = False
        self.delay: float = 0.0
        self.orders: List[Dict[str, Any]] = []

    # ── test controls ─────────────────────────────────────────────────────────

    def add_offer(self, wire: Dict[str, Any]) -> Offer:
        self._offers[wire["id"]] = wire
        return offer_from_wire(wire)

    def set_price(self, offer_id: str, amount: str, currency: Optional[str] = None) -> None:
        wire = self._offers[offer_id]
        wire["total_amount"] = amount
        if currency is not None:
            wire["total_currency"] = currency
            for service in wire["available_services"]:
                service["total_currency"] = currency

    def expire(self, offer_id: str) -> None:
        self._offers[offer_id]["expires_at"] = (self._now() - timedelta(minutes=1)).isoformat()

    def remove(self, offer_id: str) -> None:
        self._offers.pop(offer_id, None)

    def build_wire_offer(
        self,
        offer_id: str,
        slices: Sequence[SliceQuery],
        passengers: PassengerCounts,
        total_amount: str,
        currency: str = "USD",
        ttl_minutes: int = 30,
    ) -> Dict[str, Any]:
        passenger_list = [
            {"id": f"pas_{i + 1}", "type": _WIRE_TYPES[t]}
            for i, t in enumerate(passengers.passenger_types())
        ]
        wire_slices = []
        for slice_index, query in enumerate(slices):
            segment_id = f"seg_{offer_id}_{slice_index}"
            wire_slices.append({
                "origin": {"iata_code": query.origin, "iata_country_code": AIRPORT_COUNTRIES.get(query.origin)},
                "destination": {
                    "iata_code": query.destination,
                    "iata_country_code": AIRPORT_COUNTRIES.get(query.destination),
                },
                "duration": "PT5H30M",
                "segments": [{
                    "id": segment_id,
                    "origin": {"iata_code": query.origin},
                    "destination": {"iata_code": query.destination},
                    "departing_at": f"{query.departure_date}T09:00:00",
                    "arriving_at": f"{query.departure_date}T14:30:00",
                    "marketing_carrier": {"iata_code": "ZZ", "name": "Mock Air"},
                    "marketing_carrier_flight_number": str(100 + slice_index),
                    "duration": "PT5H30M",
                    "passengers": [
                        {"passenger_id": p["id"], "baggages": [{"type": "carry_on", "quantity": 1}]}
                        for p in passenger_list
                    ],
                }],
            })
        return {
            "id": offer_id,
            "total_amount": total_amount,
            "total_currency": currency,
            "expires_at": (self._now() + timedelta(minutes=ttl_minutes)).isoformat(),
            "passengers": passenger_list,
            "slices": wire_slices,
            "owner": {"iata_code": "ZZ", "name": "Mock Air"},
            "available_services": [
                {
                    "id": f"bag_{offer_id}_{p['id']}",
                    "type": "baggage",
                    "passenger_ids": [p["id"]],
                    "segment_ids": [s["segments"][0]["id"] for s in wire_slices],
                    "total_amount": BAG_PRICE,
                    "total_currency": currency,
                    "maximum_quantity": 1,
                }
                for p in passenger_list
                if p["type"] != "infant_without_seat"
            ],
        }

    # ── provider interface ────────────────────────────────────────────────────

    async def _call(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.unavailable:
            raise ProviderUnavailable(self.name, "simulated outage")

    def _live(self, offer_id: str) -> Dict[str, Any]:
        wire = self._offers.get(offer_id)
        if wire is None or offer_from_wire(wire).is_expired(self._now()):
            raise OfferExpired(offer_id)
        return wire

    async def search_offers(
        self,
        slices: Sequence[SliceQuery],
        passengers: PassengerCounts,
        cabin_class: str = "economy",
    ) -> List[Offer]:
        await self._call()
        offers = []
        for price in SEARCH_PRICES:
            offer_id = f"off_{next(self._ids)}"
            offers.append(self.add_offer(
                self.build_wire_offer(offer_id, slices, passengers, price)
            ))
        return offers

    async def get_offer(self, offer_id: str) -> Offer:
        await self._call()
        return offer_from_wire(self._live(offer_id))

    async def get_seat_map(self, offer_id: str) -> List[SeatMap]:
        await self._call()
        wire = self._live(offer_id)
        offer = offer_from_wire(wire)
        passenger_ids = [p["id"] for p in wire["passengers"] if p["type"] != "infant_without_seat"]
        wire_maps = []
        for s in wire["slices"]:
            segment_id = s["segments"][0]["id"]
            rows = []
            for row in range(1, 4):
                elements = []
                for letter in "ABCD":
                    designator = f"{row}{letter}"
                    price = WINDOW_SEAT_PRICE if letter in "AD" else SEAT_PRICE
                    services = [] if designator == "1A" else [
                        {
                            "id": f"svc_{segment_id}_{designator}_{pid}",
                            "passenger_id": pid,
                            "total_amount": price,
                            "total_currency": offer.currency,
                        }
                        for pid in passenger_ids
                    ]
                    elements.append({"type": "seat", "designator": designator, "available_services": services})
                rows.append({"sections": [{"elements": elements}]})
            wire_maps.append({"segment_id": segment_id, "cabins": [{"rows": rows}]})
        return seat_maps_from_wire(wire_maps, offer)

    async def get_ancillary_services(self, offer_id: str) -> AncillaryCatalog:
        await self._call()
        return ancillaries_from_wire(self._live(offer_id))

    async def create_order(
        self,
        offer_id: str,
        passengers: Sequence[Dict[str, Any]],
        services: Sequence[Dict[str, Any]],
        amount: Decimal,
        currency: str,
    ) -> Dict[str, Any]:
        await self._call()
        self._live(offer_id)
        number = next(self._orders)
        order = {
            "id": f"ord_{number:04d}",
            "booking_reference": f"MOCK{number:02d}",
            "total_amount": amount,
            "currency": currency,
            "passengers": list(passengers),
            "services": list(services),
        }
        self.orders.append(order)
        return order
