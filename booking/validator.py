"""Passenger Data Validator.

Every rule writes into a flat ``{field_key: message}`` map keyed
``passenger_<index>_<field>`` so the presentation layer can scroll to the
first error. No rule depends on another having passed.
"""
import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Optional, Sequence

from booking.models import Offer, PassengerCounts, PassengerRecord, PassengerType
from core.config import settings
from core.errors import ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+\d+$")
COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")

TITLES = {"mr", "ms", "mrs", "miss", "dr"}
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15
MIN_PASSPORT_LENGTH = 6
ADULT_AGE = 18


def years_before(day: date, years: int) -> date:
    """Same calendar day ``years`` earlier; 29 Feb falls back to 28 Feb."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def normalize_gender(value: str) -> Optional[str]:
    v = (value or "").strip().lower()
    if not v:
        return None
    if v in ("m", "male"):
        return "m"
    if v in ("f", "female"):
        return "f"
    if v in ("x", "other", "unspecified"):
        return "x"
    return None


@dataclass
class ValidationResult:
    errors: Dict[str, str] = field(default_factory=dict)
    warnings: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def first_error_key(self) -> Optional[str]:
        return next(iter(self.errors), None)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def validate_passenger_counts(
    counts: PassengerCounts, max_passengers: Optional[int] = None
) -> ValidationResult:
    """Search-time checks on how many of each traveler type were requested."""
    limit = max_passengers if max_passengers is not None else settings.max_passengers
    result = ValidationResult()
    if min(counts.adults, counts.children, counts.infants_with_seat, counts.infants_without_seat) < 0:
        result.errors["passengers"] = "Passenger counts cannot be negative"
        return result
    if counts.adults < 1:
        result.errors["adults"] = "At least one adult is required"
    if counts.infants_without_seat > counts.adults:
        result.errors["infants_without_seat"] = "Each infant on lap must travel with an adult"
    if counts.seated > limit:
        result.errors["passengers"] = f"A maximum of {limit} passengers can be booked together"
    return result


class PassengerDataValidator:
    def __init__(
        self,
        today: Callable[[], date] = date.today,
        passport_min_validity_months: Optional[int] = None,
        strict_passport_validity: Optional[bool] = None,
    ):
        self._today = today
        self.passport_min_validity_months = (
            passport_min_validity_months
            if passport_min_validity_months is not None
            else settings.passport_min_validity_months
        )
        self.strict_passport_validity = (
            strict_passport_validity
            if strict_passport_validity is not None
            else settings.strict_passport_validity
        )

    def validate(self, passengers: Sequence[PassengerRecord], offer: Optional[Offer]) -> ValidationResult:
        result = ValidationResult()
        today = self._today()

        if not passengers:
            result.errors["passengers"] = "Passenger details are required"
            return result
        if offer is not None and sorted(p.id for p in passengers) != sorted(offer.passenger_ids):
            result.errors["passengers"] = "Passenger details do not match the selected offer"

        passport_required = bool(offer and offer.passport_required)
        for index, passenger in enumerate(passengers):
            self._check_identity(result, index, passenger, today)
            if index == 0:
                self._check_contact(result, index, passenger)
            self._check_passport(result, index, passenger, today, passport_required)
            self._check_loyalty(result, index, passenger)

        if result.errors:
            logger.info("Passenger validation failed on %d field(s)", len(result.errors))
        return result

    def _check_identity(self, result: ValidationResult, index: int, p: PassengerRecord, today: date) -> None:
        key = f"passenger_{index}_"
        if not p.title:
            result.errors[key + "title"] = "Title required"
        elif p.title.strip().lower() not in TITLES:
            result.errors[key + "title"] = "Invalid title"
        if not p.given_name.strip():
            result.errors[key + "given_name"] = "First name required"
        if not p.family_name.strip():
            result.errors[key + "family_name"] = "Last name required"
        if not p.gender:
            result.errors[key + "gender"] = "Gender required"
        elif normalize_gender(p.gender) is None:
            result.errors[key + "gender"] = "Invalid gender"

        if p.born_on is None:
            result.errors[key + "born_on"] = "Date of birth required"
        elif p.born_on >= today:
            result.errors[key + "born_on"] = "Date of birth must be in the past"
        elif p.type == PassengerType.ADULT and p.born_on > years_before(today, ADULT_AGE):
            result.errors[key + "born_on"] = "Must be 18+ for adult passenger"

    def _check_contact(self, result: ValidationResult, index: int, p: PassengerRecord) -> None:
        key = f"passenger_{index}_"
        if not p.email or not EMAIL_RE.match(p.email.strip()):
            result.errors[key + "email"] = "Valid email required"

        phone = re.sub(r"[\s\-()]", "", p.phone_number or "")
        digits = re.sub(r"\D", "", phone)
        if not phone:
            result.errors[key + "phone_number"] = "Phone number required"
        elif not phone.startswith("+"):
            result.errors[key + "phone_number"] = "Country code must start with +"
        elif not PHONE_RE.match(phone):
            result.errors[key + "phone_number"] = "Invalid phone number format"
        elif len(digits) < MIN_PHONE_DIGITS:
            result.errors[key + "phone_number"] = "Phone number too short"
        elif len(digits) > MAX_PHONE_DIGITS:
            result.errors[key + "phone_number"] = "Phone number too long"

    def _check_passport(
        self, result: ValidationResult, index: int, p: PassengerRecord, today: date, required: bool
    ) -> None:
        key = f"passenger_{index}_passport_"
        doc = p.identity_document
        filled = doc.filled_fields()
        if not filled and not required:
            return

        blank_message = "Passport details required for international travel" if required \
            else "Complete all passport fields"
        if not doc.number:
            result.errors[key + "number"] = blank_message
        elif len(doc.number.strip()) < MIN_PASSPORT_LENGTH:
            result.errors[key + "number"] = "Invalid passport number"

        if not doc.issuing_country:
            result.errors[key + "issuing_country"] = blank_message
        elif not COUNTRY_RE.match(doc.issuing_country.strip()):
            result.errors[key + "issuing_country"] = "Use the 2-letter country code"

        if doc.expires_on is None:
            result.errors[key + "expires_on"] = blank_message
        elif doc.expires_on <= today:
            result.errors[key + "expires_on"] = "Passport has expired"
        elif doc.expires_on < add_months(today, self.passport_min_validity_months):
            message = f"Passport must be valid for {self.passport_min_validity_months}+ months"
            if self.strict_passport_validity:
                result.errors[key + "expires_on"] = message
            else:
                result.warnings[key + "expires_on"] = message

    def _check_loyalty(self, result: ValidationResult, index: int, p: PassengerRecord) -> None:
        key = f"passenger_{index}_loyalty_"
        airline = p.loyalty.airline_code.strip()
        number = p.loyalty.number.strip()
        if airline and not number:
            result.errors[key + "number"] = "Membership number required"
        elif number and not airline:
            result.errors[key + "airline_code"] = "Airline required"
