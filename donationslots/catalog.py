from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from donationslots.domain import HourBucket, TimeSlot

# Bump when the bucket table changes; both booking and staff flows read this one table.
CATALOG_VERSION = 2


def _bucket(start_hour: int, end_hour: int) -> HourBucket:
    return HourBucket(label=f"{_hour_label(start_hour)} - {_hour_label(end_hour)}", start_hour=start_hour, end_hour=end_hour)


def _hour_label(hour: int) -> str:
    suffix = "AM" if hour < 12 else "PM"
    h12 = hour % 12 or 12
    return f"{h12}{suffix}"


@dataclass(frozen=True)
class HourBucketCatalog:
    version: int
    buckets: Mapping[TimeSlot, tuple[HourBucket, ...]]

    def __post_init__(self) -> None:
        for time_slot, buckets in self.buckets.items():
            for b in buckets:
                if not 0 <= b.start_hour < b.end_hour <= 24:
                    raise ValueError(f"Invalid hour bucket {b.label!r} in {time_slot.value}")

    @property
    def time_slots(self) -> tuple[TimeSlot, ...]:
        return tuple(ts for ts in TimeSlot if ts in self.buckets)

    def hour_buckets(self, time_slot: TimeSlot) -> tuple[HourBucket, ...]:
        return tuple(self.buckets.get(time_slot, ()))

    def find(self, time_slot: TimeSlot, key: tuple[int, int]) -> HourBucket | None:
        for b in self.hour_buckets(time_slot):
            if b.key == key:
                return b
        return None

    def time_slot_for(self, start_hour: int) -> TimeSlot | None:
        for time_slot in self.time_slots:
            if any(b.start_hour == start_hour for b in self.buckets[time_slot]):
                return time_slot
        return None

    def iter_rows(self) -> Iterable[tuple[TimeSlot, HourBucket]]:
        for time_slot in self.time_slots:
            for b in self.buckets[time_slot]:
                yield time_slot, b


DEFAULT_CATALOG = HourBucketCatalog(
    version=CATALOG_VERSION,
    buckets={
        TimeSlot.MORNING: tuple(_bucket(h, h + 1) for h in range(7, 11)),
        TimeSlot.AFTERNOON: tuple(_bucket(h, h + 1) for h in range(13, 18)),
        TimeSlot.EVENING: tuple(_bucket(h, h + 1) for h in range(18, 21)),
    },
)


def hour_buckets(time_slot: TimeSlot, catalog: HourBucketCatalog = DEFAULT_CATALOG) -> tuple[HourBucket, ...]:
    return catalog.hour_buckets(time_slot)
