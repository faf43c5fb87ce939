"""BookingSession: one traveler's pass through the booking pipeline.

Wires the Offer Cache, Selection Accumulator and Stage Sequencer to the
external providers. Every navigation bumps a persisted epoch; a provider or
gateway result that comes back under an older epoch is dropped with
``StaleOperation`` instead of being applied.
"""
import asyncio
import json
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Collection, List, Optional, Sequence

from booking.accumulator import AccumulatorSnapshot, CheckoutRecord, SelectionAccumulator
from booking.models import (
    AncillaryCatalog,
    BookingOutcome,
    Offer,
    OutcomeKind,
    PassengerRecord,
    ReconciliationOutcome,
    ReconciliationResult,
    SearchCriteria,
    SeatMap,
    SelectedBaggageItem,
    SelectedSeat,
    SubmissionResult,
)
from booking.offer_cache import OfferCache
from booking.poller import ConfirmationPoller
from booking.pricing import quote_total
from booking.reconciliation import PriceReconciliationService, ReconciliationDecision, apply_decision
from booking.sequencer import Stage, StageSequencer
from booking.submitter import CheckoutSubmitter
from booking.validator import PassengerDataValidator, ValidationResult, validate_passenger_counts
from core.errors import (
    OfferExpired,
    PaymentFailed,
    PriceChanged,
    StageError,
    StaleOperation,
    ValidationError,
)
from core.session_store import SessionStore
from providers.base import BaseOffersProvider, BasePaymentGateway

logger = logging.getLogger(__name__)

STAGE_KEY = "booking_stage"

SEAT_STAGES = {Stage.OFFER_SELECTED, Stage.SEATS_CHOSEN_OR_SKIPPED}
BAGGAGE_STAGES = {Stage.SEATS_CHOSEN_OR_SKIPPED, Stage.BAGGAGE_CHOSEN_OR_SKIPPED}
PASSENGER_STAGES = {Stage.BAGGAGE_CHOSEN_OR_SKIPPED, Stage.PASSENGER_DETAILS_COMPLETE}
OFFER_STAGES = {Stage.SEARCH, Stage.OFFER_SELECTED}


class BookingSession:
    def __init__(
        self,
        session_id: str,
        store: SessionStore,
        provider: BaseOffersProvider,
        gateway: BasePaymentGateway,
        validator: Optional[PassengerDataValidator] = None,
        reconciler: Optional[PriceReconciliationService] = None,
        submitter: Optional[CheckoutSubmitter] = None,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.session_id = session_id
        self.store = store
        self.provider = provider
        self.gateway = gateway
        self.validator = validator or PassengerDataValidator()
        self.reconciler = reconciler or PriceReconciliationService(provider)
        self.submitter = submitter or CheckoutSubmitter(gateway)
        self.poller = poller or ConfirmationPoller(gateway)

        self.cache = OfferCache(session_id, store)
        self.selections = SelectionAccumulator(session_id, store)
        self.sequencer = StageSequencer(self.validator, lambda: self.cache.slice_count)
        self.epoch = 0
        # Awaiting the traveler's accept/decline; lives only as long as this object.
        self.pending_price_change: Optional[ReconciliationResult] = None

    @classmethod
    async def start(
        cls,
        session_id: str,
        store: SessionStore,
        provider: BaseOffersProvider,
        gateway: BasePaymentGateway,
        **components,
    ) -> "BookingSession":
        session = cls(session_id, store, provider, gateway, **components)
        await session._navigated()
        return session

    @classmethod
    async def load(
        cls,
        session_id: str,
        store: SessionStore,
        provider: BaseOffersProvider,
        gateway: BasePaymentGateway,
        **components,
    ) -> "BookingSession":
        session = cls(session_id, store, provider, gateway, **components)
        session.cache = await OfferCache.load(session_id, store)
        session.selections = await SelectionAccumulator.load(session_id, store)
        stage, epoch = await session._stored_stage()
        session.sequencer.stage = stage
        session.epoch = epoch
        return session

    @property
    def stage(self) -> Stage:
        return self.sequencer.stage

    def snapshot(self) -> AccumulatorSnapshot:
        return self.selections.snapshot()

    # ── navigation ────────────────────────────────────────────────────────────

    async def advance(self) -> Stage:
        if self.stage == Stage.PASSENGER_DETAILS_COMPLETE:
            raise StageError(self.stage.value, "re-verify the price to continue")
        if self.stage == Stage.PRICE_RECONCILED:
            raise StageError(self.stage.value, "start checkout to continue")
        self.sequencer.advance(self.snapshot())
        await self._navigated()
        return self.stage

    async def retreat(self) -> Stage:
        self.sequencer.retreat()
        self.pending_price_change = None
        await self._navigated()
        return self.stage

    async def restart(self) -> Stage:
        """Back to Search, dropping everything tied to the offer. Passenger details are kept."""
        self.sequencer.restart()
        await self.selections.discard_offer_state()
        self.pending_price_change = None
        await self._navigated()
        return self.stage

    # ── search and offer selection ────────────────────────────────────────────

    async def search(self, criteria: SearchCriteria) -> List[Offer]:
        validate_passenger_counts(criteria.passengers).raise_for_errors()
        if not criteria.slices:
            raise ValidationError({"slices": "At least one flight is required"})
        if self.stage != Stage.SEARCH:
            await self.restart()

        epoch = self.epoch
        offers = await self.provider.search_offers(
            criteria.slices, criteria.passengers, criteria.cabin_class
        )
        await self._ensure_current(epoch, "search")

        await self.cache.replace(criteria, offers)
        await self.selections.discard_offer_state()
        logger.info("Session %s search returned %d offer(s)", self.session_id, len(offers))
        return offers

    async def select_offer(self, slice_index: int, offer_id: str) -> Offer:
        self._require_stage(OFFER_STAGES, "go back to change flights")
        if not 0 <= slice_index < self.cache.slice_count:
            raise ValidationError({"slice_index": f"No flight {slice_index} in this search"})
        offer = self.cache.get(offer_id)
        if offer is None:
            raise ValidationError({"offer_id": "Unknown offer"})
        if offer.is_expired():
            await self._expire()
            raise OfferExpired(offer_id)

        await self.selections.set_offer_for_slice(slice_index, offer)
        if slice_index == 0:
            await self._bind_passengers(offer)
        return offer

    # ── seats ─────────────────────────────────────────────────────────────────

    async def seat_maps(self) -> List[SeatMap]:
        offer = self._primary_offer()
        return await self.provider.get_seat_map(offer.id)

    async def set_seat(self, slice_index: int, passenger_index: int, designator: str) -> SelectedSeat:
        self._require_stage(SEAT_STAGES, "seats can only be changed at seat selection")
        offer = self._primary_offer()
        if not 0 <= passenger_index < len(offer.passengers):
            raise ValidationError({"passenger_index": "Unknown passenger"})
        passenger_id = offer.passengers[passenger_index].id

        epoch = self.epoch
        maps = await self.provider.get_seat_map(offer.id)
        await self._ensure_current(epoch, "seat map")

        option = None
        for seat_map in maps:
            if seat_map.slice_index != slice_index:
                continue
            option = next((s for s in seat_map.seats if s.designator == designator), None)
            if option is not None:
                break
        if option is None or not option.available:
            raise ValidationError({"designator": f"Seat {designator} is not available"})
        service = option.service_for(passenger_id)
        if service is None:
            raise ValidationError({"designator": f"Seat {designator} cannot be booked for this passenger"})

        seat = SelectedSeat(
            designator=designator,
            service_id=service.id,
            price=service.price,
            currency=service.currency,
            passenger_id=passenger_id,
        )
        await self.selections.set_seat(slice_index, passenger_index, seat)
        await self._invalidate_price()
        return seat

    async def remove_seat(self, slice_index: int, passenger_index: int) -> None:
        self._require_stage(SEAT_STAGES, "seats can only be changed at seat selection")
        await self.selections.remove_seat(slice_index, passenger_index)
        await self._invalidate_price()

    async def skip_seats(self) -> None:
        self._require_stage(SEAT_STAGES, "seats can only be changed at seat selection")
        await self.selections.skip_seats()
        await self._invalidate_price()

    # ── baggage ───────────────────────────────────────────────────────────────

    async def ancillaries(self) -> AncillaryCatalog:
        offer = self._primary_offer()
        return await self.provider.get_ancillary_services(offer.id)

    async def set_baggage(self, passenger_id: str, service_id: str) -> SelectedBaggageItem:
        self._require_stage(BAGGAGE_STAGES, "baggage can only be changed at baggage selection")
        offer = self._primary_offer()
        if passenger_id not in offer.passenger_ids:
            raise ValidationError({"passenger_id": "Unknown passenger"})

        epoch = self.epoch
        catalog = await self.provider.get_ancillary_services(offer.id)
        await self._ensure_current(epoch, "baggage catalog")

        service = next(
            (b for b in catalog.baggage if b.id == service_id and b.passenger_id == passenger_id), None
        )
        if service is None:
            raise ValidationError({"service_id": "Baggage option is not available for this passenger"})

        item = SelectedBaggageItem(
            id=service.id, price=service.price, currency=service.currency, passenger_id=passenger_id
        )
        await self.selections.set_baggage(passenger_id, item)
        await self._invalidate_price()
        return item

    async def remove_baggage(self, passenger_id: str) -> None:
        self._require_stage(BAGGAGE_STAGES, "baggage can only be changed at baggage selection")
        await self.selections.remove_baggage(passenger_id)
        await self._invalidate_price()

    async def skip_baggage(self) -> None:
        self._require_stage(BAGGAGE_STAGES, "baggage can only be changed at baggage selection")
        await self.selections.skip_baggage()
        await self._invalidate_price()

    # ── passengers ────────────────────────────────────────────────────────────

    async def update_passengers(self, passengers: Sequence[PassengerRecord]) -> ValidationResult:
        self._require_stage(PASSENGER_STAGES, "passenger details are entered after baggage")
        offer = self._primary_offer()
        records = list(passengers)
        offer_types = {p.id: p.type for p in offer.passengers}
        for index, record in enumerate(records):
            if not record.id and index < len(offer.passengers):
                record.id = offer.passengers[index].id
            record.type = offer_types.get(record.id, record.type)

        await self.selections.set_passengers(records)
        await self._invalidate_price()
        result = self.validator.validate(records, offer)
        if not result.ok and self.stage == Stage.PASSENGER_DETAILS_COMPLETE:
            self.sequencer.retreat()
            await self._navigated()
        return result

    # ── price reconciliation ──────────────────────────────────────────────────

    async def reconcile(self) -> ReconciliationResult:
        self._require_stage({Stage.PASSENGER_DETAILS_COMPLETE}, "passenger details must be complete")
        offer = self._primary_offer()

        epoch = self.epoch
        result = await self.reconciler.reconcile(offer)
        await self._ensure_current(epoch, "price reconciliation")

        if result.outcome == ReconciliationOutcome.EXPIRED:
            await self._expire()
        elif result.outcome == ReconciliationOutcome.CHANGED:
            self.pending_price_change = result
        else:
            await self._accept_price(result.fresh_offer or offer, verified=result.verified)
        return result

    async def decide(
        self,
        accept: bool,
        expected_price: Optional[Decimal] = None,
        expected_currency: Optional[str] = None,
    ) -> ReconciliationResult:
        """Apply the traveler's answer to a price change.

        Without a pending change from this object (e.g. a new request), the offer
        is re-fetched and accepting requires ``expected_price``: the price the
        traveler was shown must still be the price on offer.
        """
        self._require_stage({Stage.PASSENGER_DETAILS_COMPLETE}, "no price change is awaiting a decision")
        decision = ReconciliationDecision.ACCEPT if accept else ReconciliationDecision.DECLINE
        result = self.pending_price_change
        if result is None:
            if not accept:
                offer = self._primary_offer()
                logger.info("Session %s declined price change for offer %s", self.session_id, offer.id)
                return ReconciliationResult(
                    outcome=ReconciliationOutcome.CHANGED,
                    accepted=False,
                    old_price=offer.total_amount,
                    old_currency=offer.currency,
                )
            if expected_price is None:
                raise ValidationError({"expected_price": "Confirm the new price you were shown to accept it"})
            result = await self.reconcile()
            if result.outcome != ReconciliationOutcome.CHANGED:
                return result

        if accept and expected_price is not None and result.new_price != expected_price:
            self.pending_price_change = result
            raise PriceChanged(expected_price, result.new_price)
        if accept and expected_currency is not None and result.new_currency != expected_currency:
            self.pending_price_change = result
            raise PriceChanged(expected_price or result.old_price, result.new_price)

        decided = apply_decision(result, decision)
        self.pending_price_change = None
        if decided.accepted:
            if await self._accept_price(decided.fresh_offer, verified=True):
                decided = replace(decided, reselect_services=True)
        else:
            logger.info(
                "Session %s declined price change %s -> %s", self.session_id, result.old_price, result.new_price
            )
        return decided

    # ── checkout and confirmation ─────────────────────────────────────────────

    async def checkout(self) -> SubmissionResult:
        self._require_stage({Stage.PRICE_RECONCILED}, "price must be re-verified before payment")
        snapshot = self.snapshot()

        epoch = self.epoch
        try:
            result = await self.submitter.submit(snapshot, snapshot.verification.offer)
        except PaymentFailed:
            await self._ensure_current(epoch, "checkout")
            self.sequencer.fail(Stage.PAYMENT_FAILED)
            await self._navigated()
            raise
        await self._ensure_current(epoch, "checkout")

        await self.selections.set_checkout(CheckoutRecord(
            session_id=result.checkout.session_id,
            redirect_url=result.checkout.redirect_url,
            total_amount=result.submission.total_amount,
            currency=result.submission.currency,
        ))
        self.sequencer.advance(self.snapshot())
        await self._navigated()
        return result

    async def await_confirmation(self, cancel_event: Optional[asyncio.Event] = None) -> BookingOutcome:
        checkout = self.snapshot().checkout
        if self.stage == Stage.CONFIRMED and checkout is not None:
            return BookingOutcome(
                status=OutcomeKind.CONFIRMED,
                session_id=checkout.session_id,
                booking_reference=checkout.booking_reference,
            )
        self._require_stage({Stage.SUBMITTED}, "no payment is awaiting confirmation")

        epoch = self.epoch
        outcome = await self.poller.poll_for_result(checkout.session_id, cancel_event)
        await self._ensure_current(epoch, "confirmation")

        if outcome.status == OutcomeKind.CONFIRMED:
            await self.selections.set_checkout(replace(checkout, booking_reference=outcome.booking_reference))
            self.sequencer.advance(self.snapshot())
            await self._navigated()
            logger.info("Session %s confirmed as %s", self.session_id, outcome.booking_reference)
        elif outcome.status == OutcomeKind.FAILED:
            self.sequencer.fail(Stage.BOOKING_CREATE_FAILED)
            await self._navigated()
        return outcome

    # ── internals ─────────────────────────────────────────────────────────────

    def _primary_offer(self) -> Offer:
        offer = self.snapshot().primary_offer
        if offer is None:
            raise StageError(self.stage.value, "no offer has been selected")
        return offer

    def _require_stage(self, allowed: Collection[Stage], detail: str) -> None:
        if self.stage not in allowed:
            raise StageError(self.stage.value, detail)

    async def _bind_passengers(self, offer: Offer) -> None:
        """Re-key kept passenger details onto a newly chosen offer's passenger ids."""
        records = list(self.snapshot().passengers)
        if not records or [p.id for p in records] == offer.passenger_ids:
            return
        if len(records) != len(offer.passengers):
            logger.info(
                "Session %s has %d saved passenger(s) but offer %s carries %d; not re-binding",
                self.session_id, len(records), offer.id, len(offer.passengers),
            )
            return
        for record, passenger in zip(records, offer.passengers):
            record.id = passenger.id
            record.type = passenger.type
        await self.selections.set_passengers(records)

    async def _invalidate_price(self) -> None:
        self.pending_price_change = None
        if self.snapshot().verification is not None:
            await self.selections.clear_verification()

    async def _accept_price(self, offer: Offer, verified: bool) -> bool:
        """Record the accepted offer. Returns True if seats and bags must be chosen again."""
        cached = self._primary_offer()
        if offer is not cached:
            await self.selections.set_offer_for_slice(0, offer)
            await self.cache.put(offer)
        if await self.selections.drop_services_not_in(offer.currency):
            logger.warning(
                "Session %s offer %s is now priced in %s; seats and bags must be chosen again",
                self.session_id, offer.id, offer.currency,
            )
            self.sequencer.rewind(Stage.OFFER_SELECTED)
            await self._navigated()
            return True
        total = quote_total(self.snapshot(), offer)
        await self.selections.set_verification(offer, total, verified)
        self.sequencer.advance(self.snapshot())
        await self._navigated()
        return False

    async def _expire(self) -> None:
        self.sequencer.fail(Stage.EXPIRED)
        await self.selections.discard_offer_state()
        self.pending_price_change = None
        await self._navigated()

    async def _navigated(self) -> None:
        self.epoch += 1
        await self.store.save(
            self.session_id, STAGE_KEY, json.dumps({"stage": self.stage.value, "epoch": self.epoch})
        )

    async def _stored_stage(self):
        raw = (await self.store.load(self.session_id)).get(STAGE_KEY)
        if raw is None:
            return Stage.SEARCH, 0
        data = json.loads(raw)
        return Stage(data["stage"]), int(data.get("epoch", 0))

    async def _ensure_current(self, epoch: int, operation: str) -> None:
        _, stored_epoch = await self._stored_stage()
        if self.epoch != epoch or stored_epoch != epoch:
            logger.info(
                "Discarding stale %s result for session %s (epoch %d, now %d)",
                operation, self.session_id, epoch, max(self.epoch, stored_epoch),
            )
            raise StaleOperation(f"The booking moved on while {operation} was in progress")
