"""JSON round-tripping for everything kept in the session store.

Decimals travel as strings so prices never pass through float. Index keys
(slice, passenger) are written as strings, as JSON requires, and restored to
ints on load.
"""
import dataclasses
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from booking.models import (
    EmergencyContact,
    IdentityDocument,
    LoyaltyAccount,
    Offer,
    OfferPassenger,
    PassengerCounts,
    PassengerRecord,
    PassengerType,
    SearchCriteria,
    Segment,
    SelectedBaggageItem,
    SelectedSeat,
    Slice,
    SliceQuery,
)

SeatMapSelection = Dict[int, Dict[int, SelectedSeat]]


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(data: Any) -> str:
    return json.dumps(data, default=_default)


def loads(text: str) -> Any:
    return json.loads(text)


def _plain(items) -> Dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in items}


def to_dict(obj: Any) -> Dict[str, Any]:
    """``dataclasses.asdict`` with enums reduced to their values."""
    return dataclasses.asdict(obj, dict_factory=_plain)


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


def _opt_dec(value: Any) -> Optional[Decimal]:
    return None if value is None else _dec(value)


def _opt_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


# ── Offer ─────────────────────────────────────────────────────────────────────

def offer_to_dict(offer: Offer) -> Dict[str, Any]:
    return to_dict(offer)


def offer_from_dict(data: Dict[str, Any]) -> Offer:
    slices = tuple(
        Slice(**{**s, "segments": tuple(Segment(**seg) for seg in s.get("segments", []))})
        for s in data["slices"]
    )
    return Offer(
        id=data["id"],
        slices=slices,
        total_amount=_dec(data["total_amount"]),
        currency=data["currency"],
        expires_at=datetime.fromisoformat(data["expires_at"]),
        passengers=tuple(OfferPassenger(p["id"], PassengerType(p["type"])) for p in data["passengers"]),
        passport_required=bool(data.get("passport_required", False)),
        base_amount=_opt_dec(data.get("base_amount")),
        tax_amount=_opt_dec(data.get("tax_amount")),
        owner=data.get("owner"),
    )


# ── Seats / baggage ───────────────────────────────────────────────────────────

def seats_to_dict(seats: SeatMapSelection) -> Dict[str, Dict[str, Dict[str, Any]]]:
    return {
        str(slice_index): {str(passenger_index): to_dict(seat) for passenger_index, seat in by_passenger.items()}
        for slice_index, by_passenger in seats.items()
    }


def seats_from_dict(data: Dict[str, Dict[str, Dict[str, Any]]]) -> SeatMapSelection:
    return {
        int(slice_index): {
            int(passenger_index): SelectedSeat(**{**seat, "price": _dec(seat["price"])})
            for passenger_index, seat in by_passenger.items()
        }
        for slice_index, by_passenger in data.items()
    }


def baggage_to_list(baggage: Dict[str, SelectedBaggageItem]) -> List[Dict[str, Any]]:
    return [to_dict(item) for item in baggage.values()]


def baggage_from_list(data: List[Dict[str, Any]]) -> Dict[str, SelectedBaggageItem]:
    items = (SelectedBaggageItem(**{**raw, "price": _dec(raw["price"])}) for raw in data)
    return {item.passenger_id: item for item in items}


# ── Passengers ────────────────────────────────────────────────────────────────

def passenger_to_dict(p: PassengerRecord) -> Dict[str, Any]:
    return to_dict(p)


def passenger_from_dict(data: Dict[str, Any]) -> PassengerRecord:
    doc = dict(data.get("identity_document") or {})
    doc["expires_on"] = _opt_date(doc.get("expires_on"))
    contact = data.get("emergency_contact")
    fields = {
        **data,
        "type": PassengerType(data.get("type", PassengerType.ADULT.value)),
        "born_on": _opt_date(data.get("born_on")),
        "identity_document": IdentityDocument(**doc),
        "loyalty": LoyaltyAccount(**(data.get("loyalty") or {})),
        "emergency_contact": EmergencyContact(**contact) if contact else None,
    }
    return PassengerRecord(**fields)


# ── Search ────────────────────────────────────────────────────────────────────

def criteria_to_dict(criteria: SearchCriteria) -> Dict[str, Any]:
    return to_dict(criteria)


def criteria_from_dict(data: Dict[str, Any]) -> SearchCriteria:
    return SearchCriteria(
        slices=tuple(SliceQuery(**s) for s in data["slices"]),
        passengers=PassengerCounts(**data["passengers"]),
        cabin_class=data.get("cabin_class", "economy"),
    )
