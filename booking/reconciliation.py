"""Price Reconciliation Service.

Re-fetches the held offer right before payment and compares it with the
cached one. Expiry is terminal; a delta of a cent or more needs the
traveler's explicit decision; a provider outage falls back to the cached
price, flagged unverified, so a transient error never strands a booking.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from booking.models import Offer, ReconciliationOutcome, ReconciliationResult
from core.config import settings
from core.errors import OfferExpired, ProviderUnavailable
from providers.base import BaseOffersProvider

logger = logging.getLogger(__name__)


class PriceReconciliationService:
    def __init__(
        self,
        provider: BaseOffersProvider,
        timeout: Optional[float] = None,
        tolerance: Optional[Decimal] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.provider = provider
        self.timeout = timeout if timeout is not None else settings.reconcile_timeout_seconds
        self.tolerance = tolerance if tolerance is not None else settings.price_tolerance
        self._now = now

    async def reconcile(self, cached: Offer) -> ReconciliationResult:
        old_price = cached.total_amount
        expired = ReconciliationResult(
            outcome=ReconciliationOutcome.EXPIRED, accepted=False, old_price=old_price, old_currency=cached.currency
        )
        if cached.is_expired(self._now()):
            logger.info("Offer %s expired at %s before re-verification", cached.id, cached.expires_at)
            return expired

        try:
            fresh = await asyncio.wait_for(self.provider.get_offer(cached.id), timeout=self.timeout)
        except OfferExpired:
            logger.info("Provider reports offer %s no longer exists", cached.id)
            return expired
        except (ProviderUnavailable, asyncio.TimeoutError) as exc:
            logger.warning(
                "Price re-verification unavailable for offer %s (%s); using cached price %s",
                cached.id, str(exc) or "timeout", old_price,
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UNVERIFIED,
                accepted=True,
                old_price=old_price,
                fresh_offer=None,
                old_currency=cached.currency,
                new_currency=cached.currency,
            )

        if fresh.is_expired(self._now()):
            logger.info("Re-fetched offer %s is past its expiry", cached.id)
            return expired

        if fresh.currency != cached.currency:
            logger.warning(
                "Offer %s currency changed %s -> %s", cached.id, cached.currency, fresh.currency
            )
        elif abs(fresh.total_amount - old_price) < self.tolerance:
            logger.info("Offer %s price unchanged at %s", cached.id, fresh.total_amount)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.UNCHANGED,
                accepted=True,
                old_price=old_price,
                new_price=fresh.total_amount,
                fresh_offer=fresh,
                old_currency=cached.currency,
                new_currency=fresh.currency,
            )

        logger.info(
            "Offer %s price changed %s -> %s %s; awaiting decision",
            cached.id, old_price, fresh.total_amount, fresh.currency,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.CHANGED,
            accepted=False,
            old_price=old_price,
            new_price=fresh.total_amount,
            fresh_offer=fresh,
            old_currency=cached.currency,
            new_currency=fresh.currency,
        )


class ReconciliationDecision(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"


def apply_decision(result: ReconciliationResult, decision: ReconciliationDecision) -> ReconciliationResult:
    """Record the traveler's answer to a price change."""
    if result.outcome != ReconciliationOutcome.CHANGED:
        raise ValueError(f"No decision needed for a {result.outcome.value} reconciliation")
    return replace(result, accepted=decision == ReconciliationDecision.ACCEPT)
