from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum


class TimeSlot(str, Enum):
    """Coarse period of the day a capacity record belongs to."""

    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"

    @classmethod
    def parse(cls, raw: object) -> "TimeSlot":
        text = str(raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        raise ValueError(f"Unknown time slot: {raw!r}")


@dataclass(frozen=True)
class CapacitySlot:
    """A bookable capacity record owned by the backend.

    The time-of-day parts of effective_date/expiry_date are the hour bucket
    boundaries, the date parts bound the validity window. Both are stored
    facility-local and timezone-aware.
    """

    id: str
    location_id: str
    day_of_week: int  # 0 = Sunday
    time_slot: TimeSlot
    effective_date: dt.datetime
    expiry_date: dt.datetime
    total_capacity: int
    is_active: bool = True
    notes: str = ""

    location_name: str | None = field(default=None, compare=False)
    created_time: str | None = field(default=None, compare=False)
    last_updated_time: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class HourBucket:
    label: str
    start_hour: int
    end_hour: int

    @property
    def key(self) -> tuple[int, int]:
        return (self.start_hour, self.end_hour)


@dataclass(frozen=True)
class Selection:
    """The donor's in-progress choice of one grid cell."""

    capacity_slot_id: str
    day_of_week: int
    hour_bucket: HourBucket
    time_slot: TimeSlot
    resolved_date: dt.datetime  # facility-local, aware

    @property
    def display_time_slot(self) -> str:
        return f"{self.time_slot.value} ({self.hour_bucket.label})"


@dataclass(frozen=True)
class DataAnomaly:
    """Two capacity records competing for the same grid cell."""

    day_of_week: int
    time_slot: TimeSlot
    hour_key: tuple[int, int]
    replaced_id: str
    kept_id: str


class SchedulingError(RuntimeError):
    """Base error for the scheduling core."""


class TransportConversionError(SchedulingError, ValueError):
    """A timestamp or record received from the backend could not be interpreted."""


class InvalidSelectionError(SchedulingError):
    """A past, inactive, empty or mismatched cell was selected."""


class ApiError(SchedulingError):
    def __init__(self, message: str, *, status_code: int | None = None, errors: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = tuple(errors)


class CapacityFetchError(ApiError):
    """Reading capacities failed (after retries)."""


class SubmissionError(ApiError):
    """A booking submission or a staff slot command was rejected or did not reach the server."""
