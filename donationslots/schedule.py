from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable

from donationslots.api_client import CapacityApiClient
from donationslots.catalog import DEFAULT_CATALOG, HourBucketCatalog
from donationslots.clock import FacilityClock
from donationslots.domain import CapacityFetchError, CapacitySlot, HourBucket, SubmissionError, TimeSlot
from donationslots.grid import Grid, WeekDescriptor, build_week, resolve

logger = logging.getLogger(__name__)

# Bulk creation spans the whole opening day; the server fans it out.
BULK_OPEN_HOUR = 7
BULK_CLOSE_HOUR = 19


@dataclass(frozen=True)
class FetchTicket:
    generation: int
    location_id: str
    week_start: dt.date


class WeekSchedule:
    """Week view over one location's capacities.

    Results are applied latest-request-wins: every navigation, location change
    or refresh bumps the generation and older tickets are discarded.
    """

    def __init__(
        self,
        client: CapacityApiClient,
        clock: FacilityClock,
        location_id: str,
        *,
        catalog: HourBucketCatalog = DEFAULT_CATALOG,
        anchor: dt.date | dt.datetime | None = None,
    ) -> None:
        self.client = client
        self.clock = clock
        self.catalog = catalog
        self.location_id = location_id
        self.week: WeekDescriptor = build_week(anchor if anchor is not None else clock.today(), clock)
        self._slots: tuple[CapacitySlot, ...] = ()
        self._generation = 0
        self._closed = False

    @property
    def slots(self) -> tuple[CapacitySlot, ...]:
        return self._slots

    @property
    def grid(self) -> Grid:
        # Full recompute; stale slots are fine until the next apply().
        return resolve(self._slots, self.week, self.clock)

    @property
    def closed(self) -> bool:
        return self._closed

    # -- navigation --------------------------------------------------------

    def _set_week(self, week: WeekDescriptor) -> None:
        self.week = week
        self._generation += 1

    def shift_week(self, weeks: int) -> WeekDescriptor:
        self._set_week(self.week.shift(weeks))
        return self.week

    def next_week(self) -> WeekDescriptor:
        return self.shift_week(1)

    def previous_week(self) -> WeekDescriptor:
        return self.shift_week(-1)

    def current_week(self) -> WeekDescriptor:
        self._set_week(build_week(self.clock.today(), self.clock))
        return self.week

    def change_location(self, location_id: str) -> None:
        if location_id == self.location_id:
            return
        self.location_id = location_id
        self._slots = ()
        self._generation += 1

    # -- fetching ----------------------------------------------------------

    def begin_refresh(self) -> FetchTicket:
        self._generation += 1
        return FetchTicket(generation=self._generation, location_id=self.location_id, week_start=self.week.start)

    def is_current(self, ticket: FetchTicket) -> bool:
        return (
            not self._closed
            and ticket.generation == self._generation
            and ticket.location_id == self.location_id
            and ticket.week_start == self.week.start
        )

    def apply(self, ticket: FetchTicket, slots: Iterable[CapacitySlot]) -> bool:
        if not self.is_current(ticket):
            logger.debug(
                "Discarding stale capacities (generation=%s current=%s closed=%s)",
                ticket.generation,
                self._generation,
                self._closed,
            )
            return False
        self._slots = tuple(slots)
        return True

    def refresh(self) -> bool:
        ticket = self.begin_refresh()
        slots = self.client.list_capacities(ticket.location_id)
        return self.apply(ticket, slots)

    def close(self) -> None:
        self._closed = True
        self._generation += 1

    # -- staff commands ----------------------------------------------------
    # One external command at a time, then a full refetch; no local patching.

    def _after_command(self, action: str) -> None:
        logger.info("Capacity %s done for location %s, refetching", action, self.location_id)
        try:
            self.refresh()
        except CapacityFetchError as e:
            # The command already landed; only the view is stale until the next refresh.
            logger.warning("Refetch after capacity %s failed (%s: %s)", action, type(e).__name__, e)

    def _run(self, action: str, fn, *args, **kwargs):
        try:
            result = fn(*args, **kwargs)
        except SubmissionError as e:
            logger.error("Capacity %s failed (%s: %s)", action, type(e).__name__, e)
            raise
        self._after_command(action)
        return result

    def add_slot(
        self,
        day_of_week: int,
        time_slot: TimeSlot,
        bucket: HourBucket,
        total_capacity: int,
        notes: str = "",
    ) -> CapacitySlot | None:
        column = self.week.column(day_of_week)
        if column is None:
            raise ValueError(f"Day {day_of_week} is not part of the displayed week")
        if total_capacity < 1:
            raise ValueError("total_capacity must be >= 1")
        return self._run(
            "create",
            self.client.create_capacity,
            self.location_id,
            time_slot=time_slot,
            total_capacity=total_capacity,
            day_of_week=day_of_week,
            effective_date=self.clock.combine(column.date, bucket.start_hour),
            expiry_date=self.clock.combine(column.date, bucket.end_hour),
            notes=notes,
            is_active=True,
        )

    def edit_slot(
        self,
        slot: CapacitySlot,
        *,
        total_capacity: int | None = None,
        notes: str | None = None,
        is_active: bool | None = None,
    ) -> CapacitySlot | None:
        if total_capacity is not None and total_capacity < 1:
            raise ValueError("total_capacity must be >= 1")
        return self._run(
            "update",
            self.client.update_capacity,
            slot,
            location_id=self.location_id,
            total_capacity=total_capacity,
            notes=notes,
            is_active=is_active,
        )

    def remove_slot(self, slot: CapacitySlot) -> None:
        self._run("delete", self.client.delete_capacity, self.location_id, slot.id)

    def default_bulk_range(self) -> tuple[dt.date, dt.date]:
        # Monday..Saturday of the displayed week.
        return self.week.start + dt.timedelta(days=1), self.week.start + dt.timedelta(days=6)

    def add_weekly_slots(
        self,
        *,
        start_day_of_week: int = 1,
        end_day_of_week: int = 6,
        first_day: dt.date | None = None,
        last_day: dt.date | None = None,
        total_capacity: int = 10,
        notes: str = "",
    ) -> list[CapacitySlot]:
        if not (0 <= start_day_of_week <= end_day_of_week <= 6):
            raise ValueError("Day range must satisfy 0 <= start <= end <= 6")
        default_first, default_last = self.default_bulk_range()
        first_day = first_day or default_first
        last_day = last_day or default_last
        if last_day < first_day:
            raise ValueError("last_day must not be before first_day")
        return self._run(
            "bulk create",
            self.client.create_capacities_bulk,
            self.location_id,
            start_day_of_week=start_day_of_week,
            end_day_of_week=end_day_of_week,
            effective_date=self.clock.combine(first_day, BULK_OPEN_HOUR),
            expiry_date=self.clock.combine(last_day, BULK_CLOSE_HOUR),
            total_capacity=total_capacity,
            notes=notes,
            is_active=True,
        )
