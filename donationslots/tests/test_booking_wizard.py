from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock

import pytest

from donationslots.api_client import CapacityApiClient, EligibilityResult
from donationslots.booking import BookingSession, BookingWizard, SessionState, WizardStep
from donationslots.clock import FacilityClock
from donationslots.domain import CapacitySlot, SubmissionError, TimeSlot
from donationslots.grid import build_week, resolve

CLOCK = FacilityClock("Asia/Ho_Chi_Minh", now_func=lambda: dt.datetime(2024, 6, 9, 12, 0))
WEEK = build_week(dt.date(2024, 6, 9))


def _grid():
    monday = dt.date(2024, 6, 10)
    slots = [
        CapacitySlot(
            id="cap-1",
            location_id="loc-1",
            day_of_week=1,
            time_slot=TimeSlot.MORNING,
            effective_date=CLOCK.combine(monday, 8),
            expiry_date=CLOCK.combine(monday, 9),
            total_capacity=5,
        )
    ]
    return resolve(slots, WEEK, CLOCK)


def _available_cell():
    return next(c for c in _grid().cells() if c.slot is not None)


def test_confirm_submits_once_and_clears_selection() -> None:
    session = BookingSession(CLOCK)
    client = MagicMock(spec=CapacityApiClient)
    client.submit_booking.return_value = "req-1"
    session.choose(_available_cell())

    assert session.confirm(client, location_id="loc-1", is_urgent=False) == "req-1"

    request = client.submit_booking.call_args.args[0]
    assert request.preferred_date == "2024-06-10T01:00:00.000+00:00"
    assert request.preferred_time_slot == "Morning"
    assert request.location_id == "loc-1"
    assert session.state is SessionState.CONFIRMED
    assert session.selection is None


def test_failed_submission_keeps_selection_for_retry() -> None:
    session = BookingSession(CLOCK)
    client = MagicMock(spec=CapacityApiClient)
    client.submit_booking.side_effect = SubmissionError("You already have a pending appointment", status_code=400)
    chosen = session.choose(_available_cell())

    with pytest.raises(SubmissionError):
        session.confirm(client, location_id="loc-1")

    assert session.state is SessionState.SELECTED
    assert session.selection == chosen
    assert session.last_error == "You already have a pending appointment"
    assert client.submit_booking.call_count == 1


def test_cancel_destroys_selection() -> None:
    session = BookingSession(CLOCK)
    session.choose(_available_cell())

    session.cancel()

    assert session.state is SessionState.CANCELLED
    assert session.selection is None


def test_confirm_without_selection_is_rejected() -> None:
    session = BookingSession(CLOCK)

    with pytest.raises(RuntimeError, match=r"No slot selected"):
        session.confirm(MagicMock(spec=CapacityApiClient), location_id="loc-1")


def test_wizard_merges_step_data_only_on_forward_navigation() -> None:
    wizard = BookingWizard(CLOCK)
    wizard.advance()
    assert wizard.step is WizardStep.LOCATION

    wizard.advance({"location_id": "loc-1"})
    assert wizard.draft["location_id"] == "loc-1"

    wizard.choose(_available_cell())
    wizard.advance()
    assert wizard.step is WizardStep.DETAILS
    assert wizard.draft["selection"].capacity_slot_id == "cap-1"

    client = MagicMock(spec=CapacityApiClient)
    client.submit_booking.return_value = "req-7"
    assert wizard.submit(client, {"blood_group_id": "bg-1", "notes": "first time"}) == "req-7"

    request = client.submit_booking.call_args.args[0]
    assert request.blood_group_id == "bg-1"
    assert request.location_id == "loc-1"
    assert wizard.step is WizardStep.SUBMITTED


def test_wizard_back_destroys_selection_and_step_data() -> None:
    wizard = BookingWizard(CLOCK)
    wizard.advance()
    wizard.advance({"location_id": "loc-1"})
    wizard.choose(_available_cell())
    wizard.advance()

    assert wizard.draft["selection"] is not None

    wizard.back()

    assert wizard.step is WizardStep.SCHEDULE
    assert wizard.session.selection is None
    assert wizard.draft.get("selection") is None
    assert "selection" not in wizard.step_data(WizardStep.SCHEDULE)
    assert wizard.draft["location_id"] == "loc-1"
    with pytest.raises(RuntimeError, match=r"Select a time slot"):
        wizard.advance()


def test_wizard_location_change_resets_selection() -> None:
    wizard = BookingWizard(CLOCK)
    wizard.advance()
    wizard.advance({"location_id": "loc-1"})
    wizard.back()
    assert wizard.step is WizardStep.LOCATION

    wizard.advance({"location_id": "loc-2"})

    assert wizard.draft["location_id"] == "loc-2"
    assert wizard.session.selection is None


def test_wizard_ignores_clicks_outside_schedule_step() -> None:
    wizard = BookingWizard(CLOCK)

    assert wizard.choose(_available_cell()) is None
    assert wizard.session.state is SessionState.NO_SELECTION


def test_wizard_rejects_unknown_detail_fields() -> None:
    wizard = BookingWizard(CLOCK)
    wizard.advance()
    wizard.advance({"location_id": "loc-1"})
    wizard.choose(_available_cell())
    wizard.advance()

    with pytest.raises(ValueError, match=r"Unknown booking detail fields"):
        wizard.submit(MagicMock(spec=CapacityApiClient), {"location_id": "loc-9"})


def test_wizard_step_data_is_read_only() -> None:
    wizard = BookingWizard(CLOCK)
    wizard.advance()
    wizard.advance({"location_id": "loc-1"})

    with pytest.raises(TypeError):
        wizard.step_data(WizardStep.LOCATION)["location_id"] = "other"


def test_wizard_stays_on_eligibility_step_for_ineligible_donor() -> None:
    wizard = BookingWizard(CLOCK)
    client = MagicMock(spec=CapacityApiClient)
    client.check_eligibility.return_value = EligibilityResult(is_eligible=False)

    result = wizard.check_eligibility(client, "user-1")

    assert result.is_eligible is False
    assert wizard.step is WizardStep.ELIGIBILITY


def test_wizard_moves_to_location_for_eligible_donor() -> None:
    wizard = BookingWizard(CLOCK)
    client = MagicMock(spec=CapacityApiClient)
    client.check_eligibility.return_value = EligibilityResult(is_eligible=True)

    wizard.check_eligibility(client, "user-1")

    assert wizard.step is WizardStep.LOCATION
    assert wizard.draft["user_id"] == "user-1"
