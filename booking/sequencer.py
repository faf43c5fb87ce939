"""Stage Sequencer: the booking state machine.

Linear stages, advanced one at a time and only when the current stage is
complete. Retreat never touches accumulated data. Three terminal failure
stages sit beside the linear path.
"""
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

from booking.accumulator import AccumulatorSnapshot
from booking.validator import PassengerDataValidator
from core.errors import StageError

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    SEARCH = "search"
    OFFER_SELECTED = "offer_selected"
    SEATS_CHOSEN_OR_SKIPPED = "seats_chosen_or_skipped"
    BAGGAGE_CHOSEN_OR_SKIPPED = "baggage_chosen_or_skipped"
    PASSENGER_DETAILS_COMPLETE = "passenger_details_complete"
    PRICE_RECONCILED = "price_reconciled"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    # terminal failures
    EXPIRED = "expired"
    PAYMENT_FAILED = "payment_failed"
    BOOKING_CREATE_FAILED = "booking_create_failed"


LINEAR_STAGES = [
    Stage.SEARCH,
    Stage.OFFER_SELECTED,
    Stage.SEATS_CHOSEN_OR_SKIPPED,
    Stage.BAGGAGE_CHOSEN_OR_SKIPPED,
    Stage.PASSENGER_DETAILS_COMPLETE,
    Stage.PRICE_RECONCILED,
    Stage.SUBMITTED,
    Stage.CONFIRMED,
]

PRE_PAYMENT_STAGES = set(LINEAR_STAGES[:LINEAR_STAGES.index(Stage.SUBMITTED)])

# failure stage -> stages it may be entered from
FAILURE_TRANSITIONS: Dict[Stage, Set[Stage]] = {
    Stage.EXPIRED: PRE_PAYMENT_STAGES,
    Stage.PAYMENT_FAILED: {Stage.PRICE_RECONCILED, Stage.SUBMITTED},
    Stage.BOOKING_CREATE_FAILED: {Stage.SUBMITTED},
}

# Payment was attempted and failed: go back and re-verify the price before retrying.
PAYMENT_RETRY_STAGE = Stage.PASSENGER_DETAILS_COMPLETE


class StageSequencer:
    def __init__(
        self,
        validator: PassengerDataValidator,
        slice_count: Callable[[], int],
        stage: Stage = Stage.SEARCH,
    ):
        self.validator = validator
        self._slice_count = slice_count
        self.stage = stage

    def blocking_reason(self, current: Stage, snapshot: AccumulatorSnapshot) -> Optional[str]:
        """Why ``current`` cannot be left yet, or ``None`` if it can."""
        if current not in LINEAR_STAGES or current == Stage.CONFIRMED:
            return "no further stage"

        target = LINEAR_STAGES[LINEAR_STAGES.index(current) + 1]
        if target == Stage.OFFER_SELECTED:
            count = self._slice_count()
            if count < 1:
                return "no search has been made"
            missing = [i for i in range(count) if i not in snapshot.offers]
            if missing:
                return f"no offer chosen for slice(s) {missing}"
        elif target == Stage.SEATS_CHOSEN_OR_SKIPPED:
            if not snapshot.seats_decided:
                return "choose seats or skip seat selection"
        elif target == Stage.BAGGAGE_CHOSEN_OR_SKIPPED:
            if not snapshot.baggage_decided:
                return "choose baggage or skip baggage selection"
        elif target == Stage.PASSENGER_DETAILS_COMPLETE:
            result = self.validator.validate(snapshot.passengers, snapshot.primary_offer)
            if not result.ok:
                return f"passenger details incomplete ({result.first_error_key})"
        elif target == Stage.PRICE_RECONCILED:
            if snapshot.verification is None:
                return "price has not been re-verified"
        elif target == Stage.SUBMITTED:
            if snapshot.checkout is None:
                return "checkout has not been started"
        elif target == Stage.CONFIRMED:
            if snapshot.checkout is None or not snapshot.checkout.booking_reference:
                return "booking is not confirmed"
        return None

    def can_advance(self, current: Stage, snapshot: AccumulatorSnapshot) -> bool:
        return self.blocking_reason(current, snapshot) is None

    def advance(self, snapshot: AccumulatorSnapshot) -> Stage:
        reason = self.blocking_reason(self.stage, snapshot)
        if reason is not None:
            raise StageError(self.stage.value, reason)
        target = LINEAR_STAGES[LINEAR_STAGES.index(self.stage) + 1]
        return self._move(target)

    def retreat(self) -> Stage:
        if self.stage == Stage.PAYMENT_FAILED:
            return self._move(PAYMENT_RETRY_STAGE)
        if self.stage not in PRE_PAYMENT_STAGES:
            raise StageError(self.stage.value, "cannot go back once payment has been started")
        index = LINEAR_STAGES.index(self.stage)
        return self._move(LINEAR_STAGES[max(0, index - 1)])

    def rewind(self, target: Stage) -> Stage:
        """Jump back to an earlier pre-payment stage in one move."""
        if self.stage not in PRE_PAYMENT_STAGES or target not in PRE_PAYMENT_STAGES:
            raise StageError(self.stage.value, f"cannot rewind to {target.value}")
        if LINEAR_STAGES.index(target) > LINEAR_STAGES.index(self.stage):
            raise StageError(self.stage.value, f"{target.value} is ahead of the current stage")
        return self._move(target)

    def fail(self, target: Stage) -> Stage:
        allowed_from = FAILURE_TRANSITIONS.get(target)
        if allowed_from is None:
            raise ValueError(f"{target.value} is not a failure stage")
        if self.stage == target:
            return self.stage
        if self.stage not in allowed_from:
            raise StageError(self.stage.value, f"cannot move to {target.value}")
        return self._move(target)

    def restart(self) -> Stage:
        if self.stage not in PRE_PAYMENT_STAGES and self.stage not in (Stage.EXPIRED, Stage.PAYMENT_FAILED):
            raise StageError(self.stage.value, "cannot restart once payment has been started")
        return self._move(Stage.SEARCH)

    def _move(self, target: Stage) -> Stage:
        if target != self.stage:
            logger.info("Stage %s -> %s", self.stage.value, target.value)
        self.stage = target
        return target
