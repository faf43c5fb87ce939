"""Passenger form helpers and the mapping to the provider's passenger format."""
import re
from datetime import date, datetime
from typing import Any, Dict, Optional

from booking.models import PassengerRecord, PassengerType
from booking.validator import normalize_gender

_DMY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")

# The provider only knows three passenger types.
_PROVIDER_TYPES = {
    PassengerType.ADULT: "adult",
    PassengerType.CHILD: "child",
    PassengerType.INFANT_WITH_SEAT: "child",
    PassengerType.INFANT_WITHOUT_SEAT: "infant_without_seat",
}


def parse_date_input(value: Any) -> Optional[date]:
    """Accept ``YYYY-MM-DD``, ``DD/MM/YYYY`` or ``DD-MM-YYYY``."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    match = _DMY_RE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return date(year, month, day)
    return date.fromisoformat(text)


def combine_phone_number(country_code: str, local_number: str) -> str:
    """``+61`` + ``0412 345 678`` -> ``+61412345678``."""
    cleaned = re.sub(r"\D", "", local_number or "")
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    code = (country_code or "").strip()
    if code and not code.startswith("+"):
        code = f"+{code}"
    return f"{code}{cleaned}"


def to_provider_passenger(p: PassengerRecord, primary: PassengerRecord) -> Dict[str, Any]:
    """Provider wire format. Contact details fall back to the primary passenger's."""
    data: Dict[str, Any] = {
        "id": p.id,
        "type": _PROVIDER_TYPES[p.type],
        "title": p.title.strip().lower(),
        "gender": normalize_gender(p.gender) or "x",
        "given_name": p.given_name.strip(),
        "family_name": p.family_name.strip(),
        "born_on": p.born_on.isoformat() if p.born_on else None,
        "email": (p.email or primary.email).strip(),
        "phone_number": re.sub(r"[\s\-()]", "", p.phone_number or primary.phone_number),
    }
    doc = p.identity_document
    if doc.number and doc.issuing_country and doc.expires_on:
        data["identity_documents"] = [{
            "type": "passport",
            "unique_identifier": doc.number.strip(),
            "issuing_country_code": doc.issuing_country.strip().upper(),
            "expires_on": doc.expires_on.isoformat(),
        }]
    if p.loyalty.airline_code and p.loyalty.number:
        data["loyalty_programme_accounts"] = [{
            "airline_iata_code": p.loyalty.airline_code.strip().upper(),
            "account_number": p.loyalty.number.strip(),
        }]
    return data
