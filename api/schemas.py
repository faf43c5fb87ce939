from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator

from booking.models import (
    EmergencyContact,
    IdentityDocument,
    LoyaltyAccount,
    PassengerCounts,
    PassengerRecord,
    PassengerType,
    SearchCriteria,
    SliceQuery,
)
from booking.passengers import combine_phone_number, parse_date_input


# ── Search ─────────────────────────────────────────────────────────────────────

class SliceIn(BaseModel):
    origin: str
    destination: str
    departure_date: date


class PassengerCountsIn(BaseModel):
    adults: int = 1
    children: int = 0
    infants_with_seat: int = 0
    infants_without_seat: int = 0


class SearchRequest(BaseModel):
    slices: List[SliceIn]
    passengers: PassengerCountsIn = PassengerCountsIn()
    cabin_class: str = "economy"

    def to_criteria(self) -> SearchCriteria:
        return SearchCriteria(
            slices=tuple(
                SliceQuery(s.origin.upper(), s.destination.upper(), s.departure_date.isoformat())
                for s in self.slices
            ),
            passengers=PassengerCounts(**self.passengers.model_dump()),
            cabin_class=self.cabin_class,
        )


class SegmentOut(BaseModel):
    id: str
    origin: str
    destination: str
    departing_at: str
    arriving_at: str
    marketing_carrier: str = ""
    flight_number: str = ""

    model_config = {"from_attributes": True}


class SliceOut(BaseModel):
    origin: str
    destination: str
    departure_time: str
    duration: Optional[str] = None
    segments: List[SegmentOut] = []

    model_config = {"from_attributes": True}


class OfferPassengerOut(BaseModel):
    id: str
    type: PassengerType

    model_config = {"from_attributes": True}


class FareBreakdownOut(BaseModel):
    base: Decimal
    taxes: Decimal
    estimated: bool  # True when split by heuristic, display only

    model_config = {"from_attributes": True}


class OfferOut(BaseModel):
    id: str
    total_amount: Decimal
    currency: str
    expires_at: datetime
    passport_required: bool
    owner: Optional[str] = None
    passengers: List[OfferPassengerOut]
    slices: List[SliceOut]
    fare: Optional[FareBreakdownOut] = None

    model_config = {"from_attributes": True}


# ── Booking session ────────────────────────────────────────────────────────────

class SessionCreated(BaseModel):
    session_id: str
    stage: str


class StageOut(BaseModel):
    stage: str


class OfferSelect(BaseModel):
    offer_id: str


class SelectedSeatOut(BaseModel):
    designator: str
    service_id: str
    price: Decimal
    currency: str
    passenger_id: Optional[str] = None

    model_config = {"from_attributes": True}


class SelectedBaggageOut(BaseModel):
    id: str
    price: Decimal
    currency: str
    passenger_id: str

    model_config = {"from_attributes": True}


class CheckoutOut(BaseModel):
    session_id: str
    redirect_url: str
    total_amount: Decimal
    currency: str
    booking_reference: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingStateOut(BaseModel):
    session_id: str
    stage: str
    offers: Dict[int, OfferOut] = {}
    seats: Dict[int, Dict[int, SelectedSeatOut]] = {}
    baggage: Dict[str, SelectedBaggageOut] = {}
    seats_decided: bool = False
    baggage_decided: bool = False
    passenger_count: int = 0
    verified_total: Optional[Decimal] = None
    price_verified: Optional[bool] = None
    checkout: Optional[CheckoutOut] = None


# ── Seats and baggage ──────────────────────────────────────────────────────────

class SeatSelect(BaseModel):
    slice_index: int
    passenger_index: int
    designator: str


class SeatServiceOut(BaseModel):
    id: str
    passenger_id: str
    price: Decimal
    currency: str

    model_config = {"from_attributes": True}


class SeatOptionOut(BaseModel):
    designator: str
    available: bool
    services: List[SeatServiceOut] = []

    model_config = {"from_attributes": True}


class SeatMapOut(BaseModel):
    slice_index: int
    segment_id: str
    seats: List[SeatOptionOut]

    model_config = {"from_attributes": True}


class BaggageSelect(BaseModel):
    passenger_id: str
    service_id: str


class BaggageServiceOut(BaseModel):
    id: str
    passenger_id: str
    price: Decimal
    currency: str
    max_quantity: int = 1

    model_config = {"from_attributes": True}


class IncludedBaggageOut(BaseModel):
    passenger_id: str
    type: str
    quantity: int

    model_config = {"from_attributes": True}


class AncillaryCatalogOut(BaseModel):
    baggage: List[BaggageServiceOut] = []
    included_baggage: List[IncludedBaggageOut] = []

    model_config = {"from_attributes": True}


# ── Passengers ─────────────────────────────────────────────────────────────────

class EmergencyContactIn(BaseModel):
    name: str = ""
    relationship: str = ""
    phone: str = ""


class PassengerIn(BaseModel):
    id: str = ""  # provider passenger id; bound by position when omitted
    title: str = ""
    given_name: str = ""
    middle_name: str = ""
    family_name: str = ""
    gender: str = ""
    born_on: Optional[date] = None
    email: str = ""
    phone_number: str = ""
    phone_country_code: Optional[str] = None  # when set, phone_number is the local part
    passport_number: str = ""
    passport_issuing_country: str = ""
    passport_expires_on: Optional[date] = None
    loyalty_airline_code: str = ""
    loyalty_number: str = ""
    emergency_contact: Optional[EmergencyContactIn] = None
    special_requests: str = ""

    @field_validator("born_on", "passport_expires_on", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Optional[date]:
        return parse_date_input(v)

    def to_record(self) -> PassengerRecord:
        phone = self.phone_number
        if self.phone_country_code:
            phone = combine_phone_number(self.phone_country_code, self.phone_number)
        contact = None
        if self.emergency_contact is not None:
            contact = EmergencyContact(**self.emergency_contact.model_dump())
        return PassengerRecord(
            id=self.id,
            title=self.title,
            given_name=self.given_name,
            middle_name=self.middle_name,
            family_name=self.family_name,
            gender=self.gender,
            born_on=self.born_on,
            email=self.email,
            phone_number=phone,
            identity_document=IdentityDocument(
                number=self.passport_number,
                issuing_country=self.passport_issuing_country,
                expires_on=self.passport_expires_on,
            ),
            loyalty=LoyaltyAccount(airline_code=self.loyalty_airline_code, number=self.loyalty_number),
            emergency_contact=contact,
            special_requests=self.special_requests,
        )


class PassengersUpdate(BaseModel):
    passengers: List[PassengerIn]


class ValidationOut(BaseModel):
    ok: bool
    stage: str
    errors: Dict[str, str] = {}
    warnings: Dict[str, str] = {}
    first_error_key: Optional[str] = None


# ── Reconciliation, checkout, confirmation ─────────────────────────────────────

class PriceDecision(BaseModel):
    accept: bool
    expected_price: Optional[Decimal] = None
    expected_currency: Optional[str] = None


class ReconciliationOut(BaseModel):
    outcome: str
    accepted: bool
    stage: str
    old_price: Decimal
    old_currency: Optional[str] = None
    new_price: Optional[Decimal] = None
    new_currency: Optional[str] = None
    delta: Optional[Decimal] = None
    is_increase: bool = False
    verified: bool = False
    requires_confirmation: bool = False
    reselect_services: bool = False


class ServiceLineOut(BaseModel):
    id: str
    type: str
    amount: Decimal
    quantity: int


class CheckoutStarted(BaseModel):
    session_id: str
    redirect_url: str
    total_amount: Decimal
    currency: str
    services: List[ServiceLineOut] = []
    stage: str


class BookingOutcomeOut(BaseModel):
    status: str
    session_id: str
    booking_reference: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    stage: str
