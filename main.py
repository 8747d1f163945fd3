import argparse
import datetime as dt
import logging

from donationslots.api_client import CapacityApiClient
from donationslots.catalog import DEFAULT_CATALOG, HourBucketCatalog
from donationslots.clock import FacilityClock
from donationslots.config import load_settings
from donationslots.grid import Grid
from donationslots.schedule import WeekSchedule
from donationslots.selection import CellStatus, cell_status


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _format_grid(grid: Grid, now_local: dt.datetime, clock: FacilityClock, catalog: HourBucketCatalog = DEFAULT_CATALOG) -> str:
    width = 18
    header = ["".ljust(12)] + [day.display_label.ljust(width) for day in grid.week.days]
    lines = [" ".join(header).rstrip()]

    for time_slot in catalog.time_slots:
        lines.append(f"[{time_slot.value}]")
        for bucket in catalog.hour_buckets(time_slot):
            row = [bucket.label.ljust(12)]
            for day in grid.week.days:
                cell = grid.cell(day.day_of_week, time_slot, bucket)
                status = cell_status(cell, now_local, clock)
                if status is CellStatus.AVAILABLE:
                    text = f"{cell.slot.total_capacity} seats"
                elif status is CellStatus.UNAVAILABLE and cell.slot is None:
                    text = "-"
                else:
                    text = status.reason
                row.append(text.ljust(width))
            lines.append(" ".join(row).rstrip())
    return "\n".join(lines)


def main() -> int:
    parser = argparse.ArgumentParser(description="Donation capacity week grid")
    parser.add_argument("--location", help="Location id (defaults to DEFAULT_LOCATION_ID)")
    parser.add_argument("--week", type=dt.date.fromisoformat, help="Any date inside the week to show (YYYY-MM-DD)")
    parser.add_argument("--offset", type=int, default=0, help="Weeks to move from --week (or from today)")
    args = parser.parse_args()

    _setup_logging()
    settings = load_settings()

    location_id = args.location or settings.default_location_id
    if not location_id:
        logging.getLogger(__name__).error("No location given: pass --location or set DEFAULT_LOCATION_ID")
        return 2

    clock = FacilityClock(settings.facility_timezone)
    with CapacityApiClient.from_settings(settings, clock=clock) as client:
        schedule = WeekSchedule(client, clock, location_id, anchor=args.week)
        if args.offset:
            schedule.shift_week(args.offset)
        schedule.refresh()
        grid = schedule.grid

    for anomaly in grid.anomalies:
        logging.getLogger(__name__).warning("Duplicate slot kept=%s replaced=%s", anomaly.kept_id, anomaly.replaced_id)

    print(_format_grid(grid, clock.now(), clock))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
