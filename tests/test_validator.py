"""Tests for the Passenger Data Validator and search-time passenger counts."""
from datetime import date

import pytest

from booking.models import (
    IdentityDocument,
    LoyaltyAccount,
    PassengerCounts,
    PassengerType,
    SliceQuery,
)
from booking.validator import (
    PassengerDataValidator,
    add_months,
    validate_passenger_counts,
    years_before,
)
from core.errors import ValidationError
from providers.mock.offers_provider import MockOffersProvider

from conftest import TODAY, make_passenger, with_passport

DOMESTIC = (SliceQuery("LAX", "JFK", "2026-04-10"),)
INTERNATIONAL = (SliceQuery("LAX", "LHR", "2026-04-10"),)


def _offer(slices=DOMESTIC, counts=PassengerCounts()):
    provider = MockOffersProvider()
    return provider.add_offer(provider.build_wire_offer("off_1", slices, counts, "300.00"))


def test_valid_passenger_has_no_errors(validator):
    result = validator.validate([make_passenger()], _offer())
    assert result.ok
    assert result.errors == {}


def test_required_identity_fields(validator):
    blank = make_passenger(title="", given_name=" ", family_name="", gender="", born_on=None)
    result = validator.validate([blank], _offer())
    for field in ("title", "given_name", "family_name", "gender", "born_on"):
        assert f"passenger_0_{field}" in result.errors


def test_adult_age_boundary(validator):
    eighteen = years_before(TODAY, 18)
    one_day_short = date.fromordinal(eighteen.toordinal() + 1)

    exactly = validator.validate([make_passenger(born_on=eighteen)], _offer())
    assert "passenger_0_born_on" not in exactly.errors

    too_young = validator.validate([make_passenger(born_on=one_day_short)], _offer())
    assert too_young.errors["passenger_0_born_on"] == "Must be 18+ for adult passenger"


def test_birth_date_must_be_in_past(validator):
    result = validator.validate([make_passenger(born_on=TODAY)], _offer())
    assert result.errors["passenger_0_born_on"] == "Date of birth must be in the past"


def test_leap_day_birthday_boundary():
    leap_validator = PassengerDataValidator(today=lambda: date(2026, 2, 28))
    result = leap_validator.validate([make_passenger(born_on=date(2008, 2, 29))], _offer())
    assert "passenger_0_born_on" in result.errors
    assert years_before(date(2024, 2, 29), 18) == date(2006, 2, 28)


def test_contact_details_checked_for_lead_passenger_only(validator):
    counts = PassengerCounts(adults=2)
    lead = make_passenger("pas_1")
    second = make_passenger("pas_2", email="", phone_number="")
    result = validator.validate([lead, second], _offer(counts=counts))
    assert result.ok

    result = validator.validate([make_passenger("pas_1", email="bad"), second], _offer(counts=counts))
    assert set(result.errors) == {"passenger_0_email"}


@pytest.mark.parametrize("phone,message", [
    ("", "Phone number required"),
    ("4155550123", "Country code must start with +"),
    ("+1415abc0123", "Invalid phone number format"),
    ("+1415555", "Phone number too short"),
    ("+1234567890123456", "Phone number too long"),
])
def test_phone_rules(validator, phone, message):
    result = validator.validate([make_passenger(phone_number=phone)], _offer())
    assert result.errors["passenger_0_phone_number"] == message


def test_phone_with_spaces_is_accepted(validator):
    result = validator.validate([make_passenger(phone_number="+1 (415) 555-0123")], _offer())
    assert result.ok


def test_passport_required_for_international_route(validator):
    offer = _offer(INTERNATIONAL)
    assert offer.passport_required

    result = validator.validate([make_passenger()], offer)
    for field in ("number", "issuing_country", "expires_on"):
        assert result.errors[f"passenger_0_passport_{field}"] == "Passport details required for international travel"

    assert validator.validate([with_passport(make_passenger())], offer).ok


def test_partial_passport_on_domestic_route(validator):
    partial = make_passenger(identity_document=IdentityDocument(number="X1234567"))
    result = validator.validate([partial], _offer())
    assert "passenger_0_passport_number" not in result.errors
    assert result.errors["passenger_0_passport_issuing_country"] == "Complete all passport fields"
    assert result.errors["passenger_0_passport_expires_on"] == "Complete all passport fields"


def test_expired_passport_is_an_error(validator):
    passenger = with_passport(make_passenger(), expires_on=TODAY)
    result = validator.validate([passenger], _offer(INTERNATIONAL))
    assert result.errors["passenger_0_passport_expires_on"] == "Passport has expired"


def test_six_month_validity_is_a_warning_by_default(validator):
    passenger = with_passport(make_passenger(), expires_on=add_months(TODAY, 3))
    result = validator.validate([passenger], _offer(INTERNATIONAL))
    assert result.ok
    assert "passenger_0_passport_expires_on" in result.warnings


def test_six_month_validity_strict_mode():
    strict = PassengerDataValidator(today=lambda: TODAY, strict_passport_validity=True)
    passenger = with_passport(make_passenger(), expires_on=add_months(TODAY, 3))
    result = strict.validate([passenger], _offer(INTERNATIONAL))
    assert "passenger_0_passport_expires_on" in result.errors


def test_loyalty_fields_are_mutually_required(validator):
    only_airline = make_passenger(loyalty=LoyaltyAccount(airline_code="BA"))
    only_number = make_passenger(loyalty=LoyaltyAccount(number="12345"))

    assert validator.validate([only_airline], _offer()).errors == {
        "passenger_0_loyalty_number": "Membership number required"
    }
    assert validator.validate([only_number], _offer()).errors == {
        "passenger_0_loyalty_airline_code": "Airline required"
    }


def test_passengers_must_match_offer(validator):
    result = validator.validate([make_passenger("pas_9")], _offer())
    assert "passengers" in result.errors


def test_child_is_not_subject_to_adult_age_rule(validator):
    counts = PassengerCounts(adults=1, children=1)
    child = make_passenger("pas_2", type=PassengerType.CHILD, born_on=date(2018, 6, 1))
    result = validator.validate([make_passenger("pas_1"), child], _offer(counts=counts))
    assert result.ok


def test_first_error_key_follows_passenger_order(validator):
    counts = PassengerCounts(adults=2)
    result = validator.validate(
        [make_passenger("pas_1", title=""), make_passenger("pas_2", family_name="")], _offer(counts=counts)
    )
    assert result.first_error_key == "passenger_0_title"
    with pytest.raises(ValidationError):
        result.raise_for_errors()


@pytest.mark.parametrize("counts,key", [
    (PassengerCounts(adults=0, children=1), "adults"),
    (PassengerCounts(adults=1, infants_without_seat=2), "infants_without_seat"),
    (PassengerCounts(adults=8, children=2), "passengers"),
])
def test_passenger_count_rules(counts, key):
    assert key in validate_passenger_counts(counts, max_passengers=9).errors


def test_lap_infants_do_not_count_towards_seat_limit():
    counts = PassengerCounts(adults=5, children=4, infants_without_seat=2)
    assert validate_passenger_counts(counts, max_passengers=9).ok
