"""Totals and service lines. ``grand_total`` is the only number ever charged."""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from booking.accumulator import AccumulatorSnapshot
from booking.models import Offer, ServiceLine, ServiceType
from core.config import settings
from core.errors import CurrencyMismatch

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def build_services(snapshot: AccumulatorSnapshot) -> List[ServiceLine]:
    """Merge seat and baggage selections into one normalized list."""
    services: List[ServiceLine] = []
    for slice_index in sorted(snapshot.seats):
        by_passenger = snapshot.seats[slice_index]
        for passenger_index in sorted(by_passenger):
            seat = by_passenger[passenger_index]
            services.append(ServiceLine(
                id=seat.service_id,
                type=ServiceType.SEAT,
                amount=seat.price,
                quantity=1,
                passenger_id=seat.passenger_id,
                designator=seat.designator,
                currency=seat.currency,
            ))
    for bag in snapshot.baggage.values():
        services.append(ServiceLine(
            id=bag.id,
            type=ServiceType.BAGGAGE,
            amount=bag.price,
            quantity=1,
            passenger_id=bag.passenger_id,
            currency=bag.currency,
        ))
    return services


def grand_total(offer: Offer, services: Iterable[ServiceLine]) -> Decimal:
    """Offer total plus every service's amount times quantity, to 2 decimals.

    Raises ``CurrencyMismatch`` if a service is priced in another currency.
    """
    services = list(services)
    for service in services:
        if service.currency is not None and service.currency != offer.currency:
            raise CurrencyMismatch(offer.currency, service.currency)
    return to_money(offer.total_amount + sum((s.line_total for s in services), Decimal("0")))


def quote_total(snapshot: AccumulatorSnapshot, offer: Offer) -> Decimal:
    return grand_total(offer, build_services(snapshot))


@dataclass(frozen=True)
class FareBreakdown:
    base: Decimal
    taxes: Decimal
    estimated: bool


def estimate_fare_breakdown(offer: Offer, tax_ratio: Optional[Decimal] = None) -> FareBreakdown:
    """Base fare / taxes for display only; never used to compute what is charged."""
    if offer.base_amount is not None and offer.tax_amount is not None:
        return FareBreakdown(base=offer.base_amount, taxes=offer.tax_amount, estimated=False)
    ratio = tax_ratio if tax_ratio is not None else settings.estimated_tax_ratio
    taxes = to_money(offer.total_amount * ratio)
    return FareBreakdown(base=offer.total_amount - taxes, taxes=taxes, estimated=True)
