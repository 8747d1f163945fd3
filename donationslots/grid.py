from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from donationslots.catalog import DEFAULT_CATALOG, HourBucketCatalog
from donationslots.clock import FacilityClock
from donationslots.domain import CapacitySlot, DataAnomaly, HourBucket, TimeSlot

logger = logging.getLogger(__name__)

HourKey = tuple[int, int]


def day_of_week(value: dt.date) -> int:
    # date.weekday() is Monday-based; the grid is Sunday-based.
    return (value.weekday() + 1) % 7


@dataclass(frozen=True)
class DayColumn:
    day_of_week: int
    date: dt.date
    display_label: str


@dataclass(frozen=True)
class WeekDescriptor:
    start: dt.date  # always a Sunday
    days: tuple[DayColumn, ...]

    @property
    def end(self) -> dt.date:
        return self.start + dt.timedelta(days=6)

    def shift(self, weeks: int) -> "WeekDescriptor":
        return build_week(self.start + dt.timedelta(days=7 * weeks))

    def column(self, day_of_week: int) -> DayColumn | None:
        for day in self.days:
            if day.day_of_week == day_of_week:
                return day
        return None


def _display_label(value: dt.date) -> str:
    return f"{value:%a, %b} {value.day}, {value.year}"


def build_week(anchor: dt.date | dt.datetime, clock: FacilityClock | None = None) -> WeekDescriptor:
    if isinstance(anchor, dt.datetime):
        if clock is not None:
            anchor = clock.to_local(anchor)
        anchor = anchor.date()
    start = anchor - dt.timedelta(days=day_of_week(anchor))
    days = []
    for offset in range(7):
        d = start + dt.timedelta(days=offset)
        days.append(DayColumn(day_of_week=offset, date=d, display_label=_display_label(d)))
    return WeekDescriptor(start=start, days=tuple(days))


def current_week(clock: FacilityClock) -> WeekDescriptor:
    return build_week(clock.today())


def _local_window(slot: CapacitySlot, clock: FacilityClock | None) -> tuple[dt.datetime, dt.datetime]:
    if clock is None:
        return slot.effective_date, slot.expiry_date
    return clock.to_local(slot.effective_date), clock.to_local(slot.expiry_date)


def overlaps_week(slot: CapacitySlot, week: WeekDescriptor, clock: FacilityClock | None = None) -> bool:
    # Day granularity: [effective day start, expiry day end] vs [week start, week end].
    effective, expiry = _local_window(slot, clock)
    return not (expiry.date() < week.start or effective.date() > week.end)


@dataclass(frozen=True)
class GridCell:
    day: DayColumn
    time_slot: TimeSlot
    bucket: HourBucket
    slot: CapacitySlot | None


@dataclass(frozen=True)
class Grid:
    week: WeekDescriptor
    mapping: dict[int, dict[TimeSlot, dict[HourKey, CapacitySlot]]] = field(default_factory=dict)
    anomalies: tuple[DataAnomaly, ...] = ()

    def get(self, day_of_week: int, time_slot: TimeSlot, hour_key: HourKey) -> CapacitySlot | None:
        return self.mapping.get(day_of_week, {}).get(time_slot, {}).get(hour_key)

    def slots(self) -> list[CapacitySlot]:
        return [
            slot
            for by_slot in self.mapping.values()
            for by_hour in by_slot.values()
            for slot in by_hour.values()
        ]

    def cell(self, day_of_week: int, time_slot: TimeSlot, bucket: HourBucket) -> GridCell | None:
        day = self.week.column(day_of_week)
        if day is None:
            return None
        return GridCell(day=day, time_slot=time_slot, bucket=bucket, slot=self.get(day_of_week, time_slot, bucket.key))

    def cells(self, catalog: HourBucketCatalog = DEFAULT_CATALOG) -> Iterator[GridCell]:
        """Rows in catalog order, seven cells per row (Sunday first)."""
        for time_slot, bucket in catalog.iter_rows():
            for day in self.week.days:
                yield GridCell(day=day, time_slot=time_slot, bucket=bucket, slot=self.get(day.day_of_week, time_slot, bucket.key))


def resolve(slots: Iterable[CapacitySlot], week: WeekDescriptor, clock: FacilityClock | None = None) -> Grid:
    """Map capacity records onto the week grid.

    Pure function of (slots, week). Duplicates for one cell resolve
    last-write-wins and are reported as anomalies.
    """
    mapping: dict[int, dict[TimeSlot, dict[HourKey, CapacitySlot]]] = {}
    anomalies: list[DataAnomaly] = []

    for slot in slots:
        if not overlaps_week(slot, week, clock):
            continue

        effective, expiry = _local_window(slot, clock)
        hour_key = (effective.hour, expiry.hour)
        by_hour = mapping.setdefault(slot.day_of_week, {}).setdefault(slot.time_slot, {})
        previous = by_hour.get(hour_key)
        if previous is not None and previous.id != slot.id:
            anomaly = DataAnomaly(
                day_of_week=slot.day_of_week,
                time_slot=slot.time_slot,
                hour_key=hour_key,
                replaced_id=previous.id,
                kept_id=slot.id,
            )
            logger.warning(
                "Duplicate capacity for day=%s %s %s-%s: %s replaced by %s",
                slot.day_of_week,
                slot.time_slot.value,
                hour_key[0],
                hour_key[1],
                previous.id,
                slot.id,
            )
            anomalies.append(anomaly)
        by_hour[hour_key] = slot

    return Grid(week=week, mapping=mapping, anomalies=tuple(anomalies))
