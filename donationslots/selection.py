from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any

from donationslots.clock import FacilityClock
from donationslots.domain import InvalidSelectionError, Selection
from donationslots.grid import DayColumn, GridCell


class CellStatus(Enum):
    AVAILABLE = "Available"
    PAST = "Past"
    INACTIVE = "Inactive"
    UNAVAILABLE = "Unavailable"

    @property
    def reason(self) -> str:
        return self.value

    @property
    def selectable(self) -> bool:
        return self is CellStatus.AVAILABLE


def slot_start(cell: GridCell, clock: FacilityClock | None = None) -> dt.datetime:
    """Concrete local instant of the cell: column date at the bucket start hour."""
    if clock is not None:
        return clock.combine(cell.day.date, cell.bucket.start_hour)
    tz = cell.slot.effective_date.tzinfo if cell.slot is not None else None
    return dt.datetime.combine(cell.day.date, dt.time(cell.bucket.start_hour), tzinfo=tz)


def _as_local(value: dt.datetime, clock: FacilityClock | None) -> dt.datetime:
    return clock.to_local(value) if clock is not None else value


def cell_status(cell: GridCell, now_local: dt.datetime, clock: FacilityClock | None = None) -> CellStatus:
    if cell.slot is None:
        return CellStatus.UNAVAILABLE
    start = slot_start(cell, clock)
    now_local = _as_local(now_local, clock)
    # Without a clock, a naive side is wall-clock time in the other side's zone.
    if now_local.tzinfo is None and start.tzinfo is not None:
        now_local = now_local.replace(tzinfo=start.tzinfo)
    elif start.tzinfo is None and now_local.tzinfo is not None:
        start = start.replace(tzinfo=now_local.tzinfo)
    # Exactly "now" already counts as past.
    if start <= now_local:
        return CellStatus.PAST
    if not cell.slot.is_active:
        return CellStatus.INACTIVE
    if cell.slot.total_capacity <= 0:
        return CellStatus.UNAVAILABLE
    return CellStatus.AVAILABLE


def is_selectable(cell: GridCell, now_local: dt.datetime, clock: FacilityClock | None = None) -> bool:
    return cell_status(cell, now_local, clock).selectable


def require_selectable(cell: GridCell, now_local: dt.datetime, clock: FacilityClock | None = None) -> None:
    status = cell_status(cell, now_local, clock)
    if not status.selectable:
        raise InvalidSelectionError(f"Cell {cell.day.display_label} {cell.bucket.label} is not selectable: {status.reason}")


def select(cell: GridCell, day_column: DayColumn | None, clock: FacilityClock | None = None) -> Selection | None:
    """Resolve a clicked cell into a concrete local date-time.

    Returns None when there is no slot or the column does not belong to the
    slot's weekday; callers render that as a disabled control.
    """
    slot = cell.slot
    if slot is None or day_column is None or day_column.day_of_week != slot.day_of_week:
        return None

    effective = _as_local(slot.effective_date, clock)
    resolved = dt.datetime.combine(
        day_column.date,
        dt.time(effective.hour, effective.minute, effective.second),
        tzinfo=effective.tzinfo,
    )
    return Selection(
        capacity_slot_id=slot.id,
        day_of_week=slot.day_of_week,
        hour_bucket=cell.bucket,
        time_slot=slot.time_slot,
        resolved_date=resolved,
    )


def to_booking_payload(selection: Selection, clock: FacilityClock) -> dict[str, str]:
    # Only the coarse period is persisted on the booking; the hour lives in preferredDate.
    return {
        "preferredDate": clock.to_transport(selection.resolved_date),
        "preferredTimeSlot": selection.time_slot.value,
    }


@dataclass(frozen=True)
class BookingRequest:
    location_id: str
    preferred_date: str
    preferred_time_slot: str
    blood_group_id: str | None = None
    component_type_id: str | None = None
    notes: str | None = None
    is_urgent: bool | None = None

    @classmethod
    def from_selection(cls, selection: Selection, clock: FacilityClock, *, location_id: str, **details: Any) -> "BookingRequest":
        payload = to_booking_payload(selection, clock)
        return cls(
            location_id=location_id,
            preferred_date=payload["preferredDate"],
            preferred_time_slot=payload["preferredTimeSlot"],
            **details,
        )

    def to_payload(self) -> dict[str, Any]:
        raw = {
            "preferredDate": self.preferred_date,
            "preferredTimeSlot": self.preferred_time_slot,
            "locationId": self.location_id,
            "bloodGroupId": self.blood_group_id or None,
            "componentTypeId": self.component_type_id or None,
            "notes": self.notes,
            "isUrgent": self.is_urgent,
        }
        return {k: v for k, v in raw.items() if v is not None}
