"""Error taxonomy for the booking pipeline.

Provider and gateway call sites classify transport failures into these kinds
before they reach the stage sequencer, so everything above ``providers/`` only
ever handles a ``BookingError``.
"""
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    SEAT_CONFLICT = "seat_conflict"
    OFFER_EXPIRED = "offer_expired"
    PRICE_CHANGED = "price_changed"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PAYMENT_FAILED = "payment_failed"
    BOOKING_CREATE_FAILED = "booking_create_failed"
    POLL_TIMEOUT = "poll_timeout"
    STAGE_ERROR = "stage_error"
    PRICE_INTEGRITY = "price_integrity"
    CURRENCY_MISMATCH = "currency_mismatch"
    STALE_OPERATION = "stale_operation"


class BookingError(Exception):
    """Base class for every classified booking failure."""

    kind: ErrorKind = ErrorKind.STAGE_ERROR
    http_status: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "detail": self.message}


class ValidationError(BookingError):
    """Local, recoverable. Blocks advancement only."""

    kind = ErrorKind.VALIDATION
    http_status = 422

    def __init__(self, errors: Dict[str, str], message: str = "Validation failed"):
        self.errors = dict(errors)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class SeatConflict(BookingError):
    """Raised when a seat is already held by another passenger on the same slice."""

    kind = ErrorKind.SEAT_CONFLICT
    http_status = 409

    def __init__(self, slice_index: int, designator: str, holder_index: int):
        self.slice_index = slice_index
        self.designator = designator
        self.holder_index = holder_index
        super().__init__(
            f"Seat {designator} on flight {slice_index + 1} is already taken "
            f"by passenger {holder_index + 1}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(slice_index=self.slice_index, designator=self.designator)
        return data


class OfferExpired(BookingError):
    kind = ErrorKind.OFFER_EXPIRED
    http_status = 410

    def __init__(self, offer_id: str, message: Optional[str] = None):
        self.offer_id = offer_id
        super().__init__(message or f"Offer {offer_id} has expired. Please search again.")


class PriceChanged(BookingError):
    kind = ErrorKind.PRICE_CHANGED
    http_status = 409

    def __init__(self, old_price: Decimal, new_price: Decimal):
        self.old_price = old_price
        self.new_price = new_price
        super().__init__(f"Price changed from {old_price} to {new_price}; confirmation required")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(old_price=str(self.old_price), new_price=str(self.new_price))
        return data


class ProviderUnavailable(BookingError):
    kind = ErrorKind.PROVIDER_UNAVAILABLE
    http_status = 503

    def __init__(self, service: str, detail: Optional[str] = None):
        self.service = service
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PaymentFailed(BookingError):
    """The gateway refused or could not start the payment. Nothing was charged."""

    kind = ErrorKind.PAYMENT_FAILED
    http_status = 402

    def __init__(self, detail: str = "Payment processing failed"):
        super().__init__(detail)


class BookingCreateFailed(BookingError):
    """Payment succeeded but the provider order was not created."""

    kind = ErrorKind.BOOKING_CREATE_FAILED
    http_status = 502

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(
            f"Your payment was received but the airline booking could not be created "
            f"({reason}). Please contact support quoting reference {session_id}."
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["session_id"] = self.session_id
        return data


class PollTimeout(BookingError):
    """Booking status still unknown after the polling ceiling; payment already succeeded."""

    kind = ErrorKind.POLL_TIMEOUT
    http_status = 202

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            "Your payment succeeded but we could not confirm the booking yet. "
            f"Please contact support quoting reference {session_id}."
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["session_id"] = self.session_id
        return data


class StageError(BookingError):
    kind = ErrorKind.STAGE_ERROR
    http_status = 409

    def __init__(self, stage: str, detail: str):
        self.stage = stage
        super().__init__(f"Cannot leave stage '{stage}': {detail}")


class PriceIntegrityError(BookingError):
    """The total about to be charged differs from the total the traveler accepted."""

    kind = ErrorKind.PRICE_INTEGRITY
    http_status = 500

    def __init__(self, expected: Decimal, actual: Decimal):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checkout total {actual} does not match verified total {expected}")


class StaleOperation(BookingError):
    """An async result arrived after the traveler navigated away from its stage."""

    kind = ErrorKind.STALE_OPERATION
    http_status = 409


class CurrencyMismatch(BookingError):
    """A selected service is priced in a different currency from the offer."""

    kind = ErrorKind.CURRENCY_MISMATCH
    http_status = 409

    def __init__(self, offer_currency: str, service_currency: str):
        self.offer_currency = offer_currency
        self.service_currency = service_currency
        super().__init__(
            f"Service priced in {service_currency} cannot be added to an offer priced in {offer_currency}"
        )
