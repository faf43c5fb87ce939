"""Wire-shape -> canonical-type adapters, applied once at the provider edge.

Provider payloads name the same price ``total_amount``, ``price`` or ``amount``
depending on the endpoint; this module is the only place that knows that.
"""
import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from booking.models import (
    AncillaryCatalog,
    BaggageService,
    BookingStatus,
    BookingStatusKind,
    BookingSubmission,
    IncludedBaggage,
    Offer,
    OfferPassenger,
    PassengerType,
    SeatMap,
    SeatOption,
    SeatService,
    Segment,
    Slice,
)

PRICE_FIELDS = ("total_amount", "price", "amount")
CURRENCY_FIELDS = ("total_currency", "currency")

_PASSENGER_TYPES = {
    "adult": PassengerType.ADULT,
    "child": PassengerType.CHILD,
    "infant_with_seat": PassengerType.INFANT_WITH_SEAT,
    "infant_without_seat": PassengerType.INFANT_WITHOUT_SEAT,
}

_STATUS = {
    "pending": BookingStatusKind.PENDING,
    "processing": BookingStatusKind.PENDING,
    "confirmed": BookingStatusKind.CONFIRMED,
    "failed": BookingStatusKind.FAILED,
}


def price_from_wire(data: Dict[str, Any], default: Optional[str] = None) -> Decimal:
    for name in PRICE_FIELDS:
        value = data.get(name)
        if value not in (None, ""):
            try:
                return Decimal(str(value))
            except InvalidOperation as exc:
                raise ValueError(f"Invalid price {value!r} in field {name}") from exc
    if default is not None:
        return Decimal(default)
    raise ValueError("No price field present")


def currency_from_wire(data: Dict[str, Any], fallback: str = "USD") -> str:
    for name in CURRENCY_FIELDS:
        value = data.get(name)
        if value:
            return str(value).upper()
    return fallback


def datetime_from_wire(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _place(value: Any) -> Dict[str, Any]:
    """Airports arrive either as ``{"iata_code": ...}`` objects or bare codes."""
    if isinstance(value, dict):
        return value
    return {"iata_code": value or ""}


def _segment_from_wire(data: Dict[str, Any]) -> Segment:
    carrier = data.get("marketing_carrier") or {}
    return Segment(
        id=data.get("id", ""),
        origin=_place(data.get("origin")).get("iata_code", ""),
        destination=_place(data.get("destination")).get("iata_code", ""),
        departing_at=data.get("departing_at", ""),
        arriving_at=data.get("arriving_at", ""),
        marketing_carrier=carrier.get("iata_code", "") if isinstance(carrier, dict) else str(carrier),
        flight_number=str(data.get("marketing_carrier_flight_number") or data.get("flight_number") or ""),
        duration=data.get("duration"),
    )


def _slice_from_wire(data: Dict[str, Any]) -> Slice:
    segments = tuple(_segment_from_wire(s) for s in data.get("segments") or [])
    departure = data.get("departure_time") or (segments[0].departing_at if segments else "")
    return Slice(
        origin=_place(data.get("origin")).get("iata_code", ""),
        destination=_place(data.get("destination")).get("iata_code", ""),
        departure_time=departure,
        duration=data.get("duration"),
        segments=segments,
    )


def _is_international(slices: Iterable[Dict[str, Any]]) -> bool:
    countries = set()
    for s in slices:
        for end in ("origin", "destination"):
            code = _place(s.get(end)).get("iata_country_code")
            if code:
                countries.add(code)
    return len(countries) > 1


def offer_from_wire(data: Dict[str, Any]) -> Offer:
    raw_slices = data.get("slices") or []
    currency = currency_from_wire(data)
    passport_required = bool(
        data.get("passenger_identity_documents_required")
        or data.get("passport_required")
        or _is_international(raw_slices)
    )
    base = data.get("base_amount")
    tax = data.get("tax_amount")
    owner = data.get("owner")
    return Offer(
        id=data["id"],
        slices=tuple(_slice_from_wire(s) for s in raw_slices),
        total_amount=price_from_wire(data),
        currency=currency,
        expires_at=datetime_from_wire(data["expires_at"]),
        passengers=tuple(
            OfferPassenger(id=p["id"], type=_PASSENGER_TYPES.get(p.get("type"), PassengerType.ADULT))
            for p in data.get("passengers") or []
        ),
        passport_required=passport_required,
        base_amount=Decimal(str(base)) if base not in (None, "") else None,
        tax_amount=Decimal(str(tax)) if tax not in (None, "") else None,
        owner=(owner.get("iata_code") or owner.get("name")) if isinstance(owner, dict) else owner,
    )


def seat_maps_from_wire(data: List[Dict[str, Any]], offer: Optional[Offer] = None) -> List[SeatMap]:
    segment_slice = {}
    if offer is not None:
        for slice_index, s in enumerate(offer.slices):
            for segment_id in s.segment_ids:
                segment_slice[segment_id] = slice_index

    maps = []
    for position, raw in enumerate(data):
        segment_id = raw.get("segment_id", "")
        seats = []
        for cabin in raw.get("cabins") or []:
            for row in cabin.get("rows") or []:
                for section in row.get("sections") or []:
                    for element in section.get("elements") or []:
                        if element.get("type") != "seat":
                            continue
                        services = tuple(
                            SeatService(
                                id=svc["id"],
                                passenger_id=svc["passenger_id"],
                                price=price_from_wire(svc, default="0"),
                                currency=currency_from_wire(svc, offer.currency if offer else "USD"),
                            )
                            for svc in element.get("available_services") or []
                        )
                        seats.append(SeatOption(
                            designator=element["designator"],
                            available=bool(services),
                            services=services,
                        ))
        maps.append(SeatMap(
            slice_index=segment_slice.get(segment_id, position),
            segment_id=segment_id,
            seats=tuple(seats),
        ))
    return maps


def ancillaries_from_wire(offer_data: Dict[str, Any]) -> AncillaryCatalog:
    fallback_currency = currency_from_wire(offer_data)
    baggage = []
    services = offer_data.get("available_services") or []
    if isinstance(services, dict):
        services = [dict(s, type="baggage") for s in services.get("baggage") or []]
    for svc in services:
        if svc.get("type") != "baggage":
            continue
        passenger_ids = svc.get("passenger_ids") or ([svc["passenger_id"]] if svc.get("passenger_id") else [])
        for passenger_id in passenger_ids:
            baggage.append(BaggageService(
                id=svc["id"],
                passenger_id=passenger_id,
                price=price_from_wire(svc, default="0"),
                currency=currency_from_wire(svc, fallback_currency),
                segment_ids=tuple(svc.get("segment_ids") or []),
                max_quantity=int(svc.get("maximum_quantity") or 1),
            ))

    included = []
    for s in offer_data.get("slices") or []:
        for segment in s.get("segments") or []:
            for passenger in segment.get("passengers") or []:
                for bag in passenger.get("baggages") or []:
                    included.append(IncludedBaggage(
                        passenger_id=passenger.get("passenger_id", ""),
                        type=bag.get("type", ""),
                        quantity=int(bag.get("quantity") or 0),
                    ))
    return AncillaryCatalog(baggage=tuple(baggage), included_baggage=tuple(included))


def booking_status_from_wire(data: Optional[Dict[str, Any]]) -> BookingStatus:
    if not data:
        return BookingStatus(status=BookingStatusKind.PENDING)
    status = _STATUS.get(str(data.get("status", "pending")).lower(), BookingStatusKind.PENDING)
    return BookingStatus(
        status=status,
        booking_reference=data.get("booking_reference"),
        error_message=data.get("error_message") or data.get("error"),
    )


def checkout_metadata(submission: BookingSubmission) -> Dict[str, str]:
    """Flatten a submission into payment-session metadata for the webhook.

    Gateway metadata values are short strings, so each passenger and service
    gets its own key.
    """
    metadata = {
        "offer_id": submission.offer_id,
        "currency": submission.currency,
        "total_amount": str(submission.total_amount),
        "passenger_count": str(len(submission.passengers)),
        "service_count": str(len(submission.services)),
    }
    for index, passenger in enumerate(submission.passengers):
        metadata[f"passenger_{index}"] = json.dumps(passenger, separators=(",", ":"))
    for index, service in enumerate(submission.services):
        metadata[f"service_{index}"] = json.dumps(
            {"id": service.id, "type": service.type.value, "amount": str(service.amount),
             "quantity": service.quantity, "designator": service.designator},
            separators=(",", ":"),
        )
    return metadata


def order_request_from_metadata(metadata: Dict[str, str]) -> Dict[str, Any]:
    """Inverse of ``checkout_metadata``: what the webhook needs to create the order."""
    if not metadata.get("offer_id"):
        raise ValueError("Checkout metadata carries no offer_id")
    passengers = [
        json.loads(metadata[f"passenger_{i}"]) for i in range(int(metadata.get("passenger_count") or 0))
    ]
    services = [
        json.loads(metadata[f"service_{i}"]) for i in range(int(metadata.get("service_count") or 0))
    ]
    return {
        "offer_id": metadata["offer_id"],
        "currency": metadata.get("currency", "USD"),
        "total_amount": Decimal(metadata["total_amount"]) if metadata.get("total_amount") else None,
        "passengers": passengers,
        "services": services,
    }
