from __future__ import annotations

import datetime as dt
import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from donationslots.api_client import CapacityApiClient, EligibilityResult
from donationslots.clock import FacilityClock
from donationslots.domain import Selection, SubmissionError
from donationslots.grid import GridCell
from donationslots.selection import BookingRequest, is_selectable, select

logger = logging.getLogger(__name__)


class SessionState(Enum):
    NO_SELECTION = "no_selection"
    SELECTED = "selected"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingSession:
    """Holds at most one Selection per donor booking session."""

    def __init__(self, clock: FacilityClock) -> None:
        self.clock = clock
        self.state = SessionState.NO_SELECTION
        self.selection: Selection | None = None
        self.last_error: str | None = None
        self.booking_id: str | None = None

    def choose(self, cell: GridCell, now_local: dt.datetime | None = None) -> Selection | None:
        """Select a cell, replacing any prior selection.

        Ineligible cells (past, inactive, empty, wrong column) are a no-op and
        leave the current selection untouched.
        """
        if self.state is SessionState.CONFIRMED:
            return None
        now_local = now_local if now_local is not None else self.clock.now()
        if not is_selectable(cell, now_local, self.clock):
            return None
        chosen = select(cell, cell.day, self.clock)
        if chosen is None:
            return None
        self.selection = chosen
        self.state = SessionState.SELECTED
        self.last_error = None
        return chosen

    def cancel(self) -> None:
        if self.state is SessionState.CONFIRMED:
            return
        self.selection = None
        self.state = SessionState.CANCELLED

    def reset(self) -> None:
        self.selection = None
        self.last_error = None
        self.state = SessionState.NO_SELECTION

    def booking_request(self, *, location_id: str, **details: Any) -> BookingRequest:
        if self.selection is None:
            raise RuntimeError("No slot selected")
        return BookingRequest.from_selection(self.selection, self.clock, location_id=location_id, **details)

    def confirm(self, client: CapacityApiClient, *, location_id: str, **details: Any) -> str | None:
        request = self.booking_request(location_id=location_id, **details)
        try:
            booking_id = client.submit_booking(request)
        except SubmissionError as e:
            # Selection stays so the donor can retry without re-selecting.
            self.last_error = e.message
            logger.error("Booking submission failed (%s: %s)", type(e).__name__, e)
            raise
        self.booking_id = booking_id
        self.state = SessionState.CONFIRMED
        self.selection = None
        self.last_error = None
        return booking_id


class WizardStep(Enum):
    ELIGIBILITY = 0
    LOCATION = 1
    SCHEDULE = 2
    DETAILS = 3
    SUBMITTED = 4


_STEP_ORDER = list(WizardStep)


class BookingWizard:
    """Step-by-step booking flow.

    Each confirmed step contributes an immutable mapping; the draft is only
    extended on forward navigation, so one step's fields never leak into another.
    """

    def __init__(self, clock: FacilityClock) -> None:
        self.clock = clock
        self.step = WizardStep.ELIGIBILITY
        self.session = BookingSession(clock)
        self._steps: dict[WizardStep, Mapping[str, Any]] = {}

    @property
    def draft(self) -> Mapping[str, Any]:
        merged: dict[str, Any] = {}
        for step in _STEP_ORDER:
            merged.update(self._steps.get(step, {}))
        return MappingProxyType(merged)

    def step_data(self, step: WizardStep) -> Mapping[str, Any]:
        return self._steps.get(step, MappingProxyType({}))

    def advance(self, step_data: Mapping[str, Any] | None = None) -> WizardStep:
        if self.step is WizardStep.SUBMITTED:
            raise RuntimeError("Booking already submitted")
        if self.step is WizardStep.DETAILS:
            raise RuntimeError("Use submit() to leave the details step")
        if self.step is WizardStep.SCHEDULE and self.session.selection is None:
            raise RuntimeError("Select a time slot before continuing")

        data = dict(step_data or {})
        if self.step is WizardStep.LOCATION:
            if not data.get("location_id"):
                raise ValueError("location_id is required")
            previous = self._steps.get(WizardStep.LOCATION, {}).get("location_id")
            if previous is not None and previous != data["location_id"]:
                self.session.reset()
        elif self.step is WizardStep.SCHEDULE:
            data["selection"] = self.session.selection

        self._steps[self.step] = MappingProxyType(data)
        self.step = _STEP_ORDER[_STEP_ORDER.index(self.step) + 1]
        return self.step

    def check_eligibility(self, client: CapacityApiClient, user_id: str) -> EligibilityResult:
        """Run the eligibility step; moves on to LOCATION only for eligible donors."""
        if self.step is not WizardStep.ELIGIBILITY:
            raise RuntimeError("Eligibility is checked on the first step only")
        result = client.check_eligibility(user_id)
        if result.is_eligible:
            self.advance({"user_id": user_id})
        else:
            logger.info("Donor %s is not eligible (next date: %s)", user_id, result.next_available_donation_date)
        return result

    def back(self) -> WizardStep:
        if self.step in (WizardStep.ELIGIBILITY, WizardStep.SUBMITTED):
            return self.step
        self._steps.pop(self.step, None)
        # The schedule step's mapping holds the selection being destroyed.
        self._steps.pop(WizardStep.SCHEDULE, None)
        self.session.reset()
        self.step = _STEP_ORDER[_STEP_ORDER.index(self.step) - 1]
        return self.step

    def choose(self, cell: GridCell, now_local: dt.datetime | None = None) -> Selection | None:
        if self.step is not WizardStep.SCHEDULE:
            return None
        return self.session.choose(cell, now_local)

    def submit(self, client: CapacityApiClient, details: Mapping[str, Any] | None = None) -> str | None:
        if self.step is not WizardStep.DETAILS:
            raise RuntimeError("Booking details step not reached")
        location_id = self.draft.get("location_id")
        if not location_id:
            raise RuntimeError("No location chosen")
        data = dict(details or {})
        allowed = {"blood_group_id", "component_type_id", "notes", "is_urgent"}
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"Unknown booking detail fields: {sorted(unknown)}")

        booking_id = self.session.confirm(client, location_id=location_id, **data)
        self._steps[WizardStep.DETAILS] = MappingProxyType(data)
        self.step = WizardStep.SUBMITTED
        return booking_id
