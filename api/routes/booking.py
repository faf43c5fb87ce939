import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import (
    AncillaryCatalogOut,
    BaggageSelect,
    BookingOutcomeOut,
    BookingStateOut,
    CheckoutOut,
    CheckoutStarted,
    FareBreakdownOut,
    OfferOut,
    OfferSelect,
    PassengersUpdate,
    PriceDecision,
    ReconciliationOut,
    SearchRequest,
    SeatMapOut,
    SeatSelect,
    SelectedBaggageOut,
    SelectedSeatOut,
    ServiceLineOut,
    SessionCreated,
    StageOut,
    ValidationOut,
)
from booking.models import Offer, OutcomeKind, ReconciliationResult
from booking.poller import raise_for_outcome
from booking.pricing import estimate_fare_breakdown
from booking.session import BookingSession
from core.session_store import SessionStore, SqlSessionStore
from db.database import get_db
from providers.base import BaseOffersProvider, BasePaymentGateway
from providers.factory import get_offers_provider, get_payment_gateway

router = APIRouter(prefix="/bookings", tags=["bookings"])


def get_session_store(db: AsyncSession = Depends(get_db)) -> SessionStore:
    return SqlSessionStore(db)


async def get_booking_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    provider: BaseOffersProvider = Depends(get_offers_provider),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
) -> BookingSession:
    if not await store.load(session_id):
        raise HTTPException(status_code=404, detail="Booking session not found")
    return await BookingSession.load(session_id, store, provider, gateway)


def _offer_out(offer: Offer) -> OfferOut:
    out = OfferOut.model_validate(offer)
    out.fare = FareBreakdownOut.model_validate(estimate_fare_breakdown(offer))
    return out


def _state_out(session: BookingSession) -> BookingStateOut:
    snap = session.snapshot()
    return BookingStateOut(
        session_id=session.session_id,
        stage=session.stage.value,
        offers={i: _offer_out(o) for i, o in snap.offers.items()},
        seats={
            slice_index: {p: SelectedSeatOut.model_validate(s) for p, s in by_passenger.items()}
            for slice_index, by_passenger in snap.seats.items()
        },
        baggage={pid: SelectedBaggageOut.model_validate(b) for pid, b in snap.baggage.items()},
        seats_decided=snap.seats_decided,
        baggage_decided=snap.baggage_decided,
        passenger_count=len(snap.passengers),
        verified_total=snap.verification.total if snap.verification else None,
        price_verified=snap.verification.verified if snap.verification else None,
        checkout=CheckoutOut.model_validate(snap.checkout) if snap.checkout else None,
    )


def _reconciliation_out(result: ReconciliationResult, session: BookingSession) -> ReconciliationOut:
    return ReconciliationOut(
        outcome=result.outcome.value,
        accepted=result.accepted,
        stage=session.stage.value,
        old_price=result.old_price,
        old_currency=result.old_currency,
        new_price=result.new_price,
        new_currency=result.new_currency,
        delta=result.delta,
        is_increase=result.is_increase,
        verified=result.verified,
        requires_confirmation=result.requires_confirmation,
        reselect_services=result.reselect_services,
    )


# ── Session lifecycle ──────────────────────────────────────────────────────────

@router.post("", response_model=SessionCreated, status_code=201)
async def create_booking(
    store: SessionStore = Depends(get_session_store),
    provider: BaseOffersProvider = Depends(get_offers_provider),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
):
    session = await BookingSession.start(str(uuid.uuid4()), store, provider, gateway)
    return SessionCreated(session_id=session.session_id, stage=session.stage.value)


@router.get("/{session_id}", response_model=BookingStateOut)
async def get_booking(session: BookingSession = Depends(get_booking_session)):
    return _state_out(session)


@router.post("/{session_id}/advance", response_model=StageOut)
async def advance(session: BookingSession = Depends(get_booking_session)):
    return StageOut(stage=(await session.advance()).value)


@router.post("/{session_id}/retreat", response_model=StageOut)
async def retreat(session: BookingSession = Depends(get_booking_session)):
    return StageOut(stage=(await session.retreat()).value)


@router.post("/{session_id}/restart", response_model=StageOut)
async def restart(session: BookingSession = Depends(get_booking_session)):
    return StageOut(stage=(await session.restart()).value)


# ── Search and offers ──────────────────────────────────────────────────────────

@router.post("/{session_id}/search", response_model=List[OfferOut])
async def search(body: SearchRequest, session: BookingSession = Depends(get_booking_session)):
    offers = await session.search(body.to_criteria())
    return [_offer_out(o) for o in offers]


@router.put("/{session_id}/offers/{slice_index}", response_model=BookingStateOut)
async def select_offer(
    slice_index: int, body: OfferSelect, session: BookingSession = Depends(get_booking_session)
):
    await session.select_offer(slice_index, body.offer_id)
    return _state_out(session)


# ── Seats ──────────────────────────────────────────────────────────────────────

@router.get("/{session_id}/seat-map", response_model=List[SeatMapOut])
async def seat_map(session: BookingSession = Depends(get_booking_session)):
    return [SeatMapOut.model_validate(m) for m in await session.seat_maps()]


@router.put("/{session_id}/seats", response_model=SelectedSeatOut)
async def set_seat(body: SeatSelect, session: BookingSession = Depends(get_booking_session)):
    seat = await session.set_seat(body.slice_index, body.passenger_index, body.designator)
    return SelectedSeatOut.model_validate(seat)


@router.delete("/{session_id}/seats/{slice_index}/{passenger_index}", response_model=BookingStateOut)
async def remove_seat(
    slice_index: int, passenger_index: int, session: BookingSession = Depends(get_booking_session)
):
    await session.remove_seat(slice_index, passenger_index)
    return _state_out(session)


@router.post("/{session_id}/seats/skip", response_model=BookingStateOut)
async def skip_seats(session: BookingSession = Depends(get_booking_session)):
    await session.skip_seats()
    return _state_out(session)


# ── Baggage ────────────────────────────────────────────────────────────────────

@router.get("/{session_id}/services", response_model=AncillaryCatalogOut)
async def services(session: BookingSession = Depends(get_booking_session)):
    return AncillaryCatalogOut.model_validate(await session.ancillaries())


@router.put("/{session_id}/baggage", response_model=SelectedBaggageOut)
async def set_baggage(body: BaggageSelect, session: BookingSession = Depends(get_booking_session)):
    item = await session.set_baggage(body.passenger_id, body.service_id)
    return SelectedBaggageOut.model_validate(item)


@router.delete("/{session_id}/baggage/{passenger_id}", response_model=BookingStateOut)
async def remove_baggage(passenger_id: str, session: BookingSession = Depends(get_booking_session)):
    await session.remove_baggage(passenger_id)
    return _state_out(session)


@router.post("/{session_id}/baggage/skip", response_model=BookingStateOut)
async def skip_baggage(session: BookingSession = Depends(get_booking_session)):
    await session.skip_baggage()
    return _state_out(session)


# ── Passengers ─────────────────────────────────────────────────────────────────

@router.put("/{session_id}/passengers", response_model=ValidationOut)
async def update_passengers(body: PassengersUpdate, session: BookingSession = Depends(get_booking_session)):
    result = await session.update_passengers([p.to_record() for p in body.passengers])
    return ValidationOut(
        ok=result.ok,
        stage=session.stage.value,
        errors=result.errors,
        warnings=result.warnings,
        first_error_key=result.first_error_key,
    )


# ── Price reconciliation ───────────────────────────────────────────────────────

@router.post("/{session_id}/reconcile", response_model=ReconciliationOut)
async def reconcile(session: BookingSession = Depends(get_booking_session)):
    result = await session.reconcile()
    return _reconciliation_out(result, session)


@router.post("/{session_id}/reconcile/decision", response_model=ReconciliationOut)
async def decide(body: PriceDecision, session: BookingSession = Depends(get_booking_session)):
    result = await session.decide(body.accept, body.expected_price, body.expected_currency)
    return _reconciliation_out(result, session)


# ── Checkout and confirmation ──────────────────────────────────────────────────

@router.post("/{session_id}/checkout", response_model=CheckoutStarted)
async def checkout(session: BookingSession = Depends(get_booking_session)):
    result = await session.checkout()
    submission = result.submission
    return CheckoutStarted(
        session_id=result.checkout.session_id,
        redirect_url=result.checkout.redirect_url,
        total_amount=submission.total_amount,
        currency=submission.currency,
        services=[ServiceLineOut(**s.to_dict()) for s in submission.services],
        stage=session.stage.value,
    )


@router.get("/{session_id}/confirmation", response_model=BookingOutcomeOut)
async def confirmation(session: BookingSession = Depends(get_booking_session)):
    outcome = await session.await_confirmation()
    if outcome.status != OutcomeKind.CONFIRMED:
        raise_for_outcome(outcome)
    return BookingOutcomeOut(
        status=outcome.status.value,
        session_id=outcome.session_id,
        booking_reference=outcome.booking_reference,
        attempts=outcome.attempts,
        stage=session.stage.value,
    )
