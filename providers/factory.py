"""Provider factory: returns Mock or Real providers based on USE_REAL_APIS."""
from typing import Optional

from core.config import settings
from providers.base import BaseOffersProvider, BasePaymentGateway

# Mock providers keep their offers and sessions in memory, so one instance
# serves every request.
_mock_offers: Optional[BaseOffersProvider] = None
_mock_payments: Optional[BasePaymentGateway] = None


def get_offers_provider() -> BaseOffersProvider:
    global _mock_offers
    if settings.use_real_apis:
        from providers.real.duffel import DuffelOffersProvider
        return DuffelOffersProvider()
    if _mock_offers is None:
        from providers.mock.offers_provider import MockOffersProvider
        _mock_offers = MockOffersProvider()
    return _mock_offers


def get_payment_gateway() -> BasePaymentGateway:
    global _mock_payments
    if settings.use_real_apis:
        from providers.real.stripe_checkout import StripeCheckoutGateway
        return StripeCheckoutGateway()
    if _mock_payments is None:
        from core.booking_status import lookup_stored_status
        from providers.mock.payment_gateway import MockPaymentGateway
        _mock_payments = MockPaymentGateway(status_lookup=lookup_stored_status)
    return _mock_payments
