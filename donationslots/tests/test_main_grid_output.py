from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock, patch

import main
from donationslots.clock import FacilityClock
from donationslots.config import Settings
from donationslots.domain import CapacitySlot, TimeSlot
from donationslots.grid import build_week, resolve

CLOCK = FacilityClock("Asia/Ho_Chi_Minh")


def _args(**overrides):
    values = {"location": "loc-1", "week": None, "offset": 0}
    values.update(overrides)
    return type("Args", (), values)()


def _slot(slot_id: str, day: dt.date, day_of_week: int, start_hour: int, *, is_active: bool = True) -> CapacitySlot:
    return CapacitySlot(
        id=slot_id,
        location_id="loc-1",
        day_of_week=day_of_week,
        time_slot=TimeSlot.MORNING,
        effective_date=CLOCK.combine(day, start_hour),
        expiry_date=CLOCK.combine(day, start_hour + 1),
        total_capacity=6,
        is_active=is_active,
    )


def test_format_grid_shows_capacity_and_disabled_reasons() -> None:
    week = build_week(dt.date(2024, 6, 10))
    grid = resolve(
        [
            _slot("open", dt.date(2024, 6, 11), 2, 8),
            _slot("off", dt.date(2024, 6, 12), 3, 8, is_active=False),
            _slot("gone", dt.date(2024, 6, 10), 1, 7),
        ],
        week,
        CLOCK,
    )
    now = CLOCK.combine(dt.date(2024, 6, 10), 9, 30)

    text = main._format_grid(grid, now, CLOCK)

    assert "Mon, Jun 10, 2024" in text
    assert "[Morning]" in text
    assert "6 seats" in text
    assert "Inactive" in text
    assert "Past" in text


def test_main_requires_a_location() -> None:
    with (
        patch("main.load_settings", return_value=Settings()),
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(location=None)),
        patch("main.CapacityApiClient") as client_cls,
    ):
        assert main.main() == 2
        client_cls.from_settings.assert_not_called()


def test_main_fetches_and_prints_requested_week(capsys) -> None:
    client = MagicMock()
    client.list_capacities.return_value = [_slot("a", dt.date(2024, 6, 18), 2, 10)]

    with (
        patch("main.load_settings", return_value=Settings()),
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(week=dt.date(2024, 6, 10), offset=1)),
        patch("main.CapacityApiClient") as client_cls,
    ):
        client_cls.from_settings.return_value.__enter__.return_value = client
        assert main.main() == 0

    client.list_capacities.assert_called_once_with("loc-1")
    out = capsys.readouterr().out
    assert "Sun, Jun 16, 2024" in out
    assert "10AM - 11AM" in out
