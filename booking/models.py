"""Canonical booking entities.

Provider and gateway wire shapes are mapped onto these types exactly once, in
``providers.normalize``. Money is always ``Decimal``.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class PassengerType(str, Enum):
    ADULT = "adult"
    CHILD = "child"
    INFANT_WITH_SEAT = "infant_with_seat"
    INFANT_WITHOUT_SEAT = "infant_without_seat"


# ── Search ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SliceQuery:
    origin: str
    destination: str
    departure_date: str  # ISO 8601


@dataclass(frozen=True)
class PassengerCounts:
    adults: int = 1
    children: int = 0
    infants_with_seat: int = 0
    infants_without_seat: int = 0

    @property
    def seated(self) -> int:
        return self.adults + self.children + self.infants_with_seat

    def passenger_types(self) -> List[PassengerType]:
        return (
            [PassengerType.ADULT] * self.adults
            + [PassengerType.CHILD] * self.children
            + [PassengerType.INFANT_WITH_SEAT] * self.infants_with_seat
            + [PassengerType.INFANT_WITHOUT_SEAT] * self.infants_without_seat
        )


@dataclass(frozen=True)
class SearchCriteria:
    slices: Tuple[SliceQuery, ...]
    passengers: PassengerCounts = field(default_factory=PassengerCounts)
    cabin_class: str = "economy"


# ── Offer ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Segment:
    id: str
    origin: str
    destination: str
    departing_at: str
    arriving_at: str
    marketing_carrier: str = ""
    flight_number: str = ""
    duration: Optional[str] = None


@dataclass(frozen=True)
class Slice:
    origin: str
    destination: str
    departure_time: str
    duration: Optional[str]
    segments: Tuple[Segment, ...] = ()

    @property
    def segment_ids(self) -> Tuple[str, ...]:
        return tuple(s.id for s in self.segments)


@dataclass(frozen=True)
class OfferPassenger:
    id: str
    type: PassengerType


@dataclass(frozen=True)
class Offer:
    """A priced, time-limited quote. Never mutated, only replaced wholesale."""

    id: str
    slices: Tuple[Slice, ...]
    total_amount: Decimal
    currency: str
    expires_at: datetime
    passengers: Tuple[OfferPassenger, ...]
    passport_required: bool = False
    base_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    owner: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    @property
    def passenger_ids(self) -> List[str]:
        return [p.id for p in self.passengers]


# ── Ancillaries ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SeatService:
    id: str
    passenger_id: str
    price: Decimal
    currency: str


@dataclass(frozen=True)
class SeatOption:
    designator: str
    available: bool
    services: Tuple[SeatService, ...] = ()

    def service_for(self, passenger_id: str) -> Optional[SeatService]:
        for service in self.services:
            if service.passenger_id == passenger_id:
                return service
        return None


@dataclass(frozen=True)
class SeatMap:
    slice_index: int
    segment_id: str
    seats: Tuple[SeatOption, ...]


@dataclass(frozen=True)
class BaggageService:
    id: str
    passenger_id: str
    price: Decimal
    currency: str
    segment_ids: Tuple[str, ...] = ()
    max_quantity: int = 1


@dataclass(frozen=True)
class IncludedBaggage:
    passenger_id: str
    type: str
    quantity: int


@dataclass(frozen=True)
class AncillaryCatalog:
    baggage: Tuple[BaggageService, ...] = ()
    included_baggage: Tuple[IncludedBaggage, ...] = ()


# ── Selections ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SelectedSeat:
    designator: str
    service_id: str
    price: Decimal
    currency: str
    passenger_id: Optional[str] = None


@dataclass(frozen=True)
class SelectedBaggageItem:
    """One extra bag for a passenger, valid on every slice of the trip."""

    id: str
    price: Decimal
    currency: str
    passenger_id: str


# ── Passengers ────────────────────────────────────────────────────────────────

@dataclass
class IdentityDocument:
    number: str = ""
    issuing_country: str = ""
    expires_on: Optional[date] = None

    def filled_fields(self) -> List[str]:
        return [
            name for name, value in (
                ("number", self.number),
                ("issuing_country", self.issuing_country),
                ("expires_on", self.expires_on),
            )
            if value
        ]


@dataclass
class LoyaltyAccount:
    airline_code: str = ""
    number: str = ""


@dataclass
class EmergencyContact:
    name: str = ""
    relationship: str = ""
    phone: str = ""


@dataclass
class PassengerRecord:
    """Form state for one traveler, keyed by the provider-assigned passenger id."""

    id: str
    type: PassengerType = PassengerType.ADULT
    title: str = ""
    given_name: str = ""
    middle_name: str = ""
    family_name: str = ""
    gender: str = ""
    born_on: Optional[date] = None
    email: str = ""
    phone_number: str = ""
    identity_document: IdentityDocument = field(default_factory=IdentityDocument)
    loyalty: LoyaltyAccount = field(default_factory=LoyaltyAccount)
    emergency_contact: Optional[EmergencyContact] = None
    # Kept locally only, never sent to the provider
    special_requests: str = ""


# ── Checkout ──────────────────────────────────────────────────────────────────

class ServiceType(str, Enum):
    SEAT = "seat"
    BAGGAGE = "baggage"


@dataclass(frozen=True)
class ServiceLine:
    id: str
    type: ServiceType
    amount: Decimal
    quantity: int = 1
    passenger_id: Optional[str] = None
    designator: Optional[str] = None
    currency: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.amount * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": self.amount,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class BookingSubmission:
    """The finalized payload handed by value to the payment gateway."""

    offer_id: str
    passengers: Tuple[Dict[str, Any], ...]
    services: Tuple[ServiceLine, ...]
    total_amount: Decimal
    currency: str
    offer_amount: Decimal

    @property
    def seats_total(self) -> Decimal:
        return sum((s.line_total for s in self.services if s.type == ServiceType.SEAT), Decimal("0"))

    @property
    def baggage_total(self) -> Decimal:
        return sum((s.line_total for s in self.services if s.type == ServiceType.BAGGAGE), Decimal("0"))


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class SubmissionResult:
    checkout: CheckoutSession
    submission: BookingSubmission


# ── Reconciliation ────────────────────────────────────────────────────────────

class ReconciliationOutcome(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    EXPIRED = "expired"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconciliationOutcome
    accepted: bool
    old_price: Decimal
    new_price: Optional[Decimal] = None
    fresh_offer: Optional[Offer] = None
    old_currency: Optional[str] = None
    new_currency: Optional[str] = None
    # Seats or bags were priced in the old currency and have been dropped
    reselect_services: bool = False

    @property
    def currency_changed(self) -> bool:
        return None not in (self.old_currency, self.new_currency) and self.new_currency != self.old_currency

    @property
    def delta(self) -> Optional[Decimal]:
        if self.new_price is None or self.currency_changed:
            return None
        return self.new_price - self.old_price

    @property
    def requires_confirmation(self) -> bool:
        return self.outcome == ReconciliationOutcome.CHANGED and not self.accepted

    @property
    def is_increase(self) -> bool:
        delta = self.delta
        return delta is not None and delta > 0

    @property
    def verified(self) -> bool:
        return self.outcome in (ReconciliationOutcome.UNCHANGED, ReconciliationOutcome.CHANGED)


# ── Confirmation ──────────────────────────────────────────────────────────────

class BookingStatusKind(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class BookingStatus:
    status: BookingStatusKind
    booking_reference: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != BookingStatusKind.PENDING


class OutcomeKind(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class BookingOutcome:
    status: OutcomeKind
    session_id: str
    booking_reference: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
