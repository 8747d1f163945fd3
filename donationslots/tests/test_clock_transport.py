from __future__ import annotations

import datetime as dt

import pytest

from donationslots.clock import FacilityClock
from donationslots.domain import TransportConversionError


def test_parse_transport_converts_utc_to_facility_time() -> None:
    clock = FacilityClock("Asia/Ho_Chi_Minh")

    parsed = clock.parse_transport("2024-06-10T02:00:00.000+00:00")

    assert parsed.tzinfo is clock.tz
    assert (parsed.year, parsed.month, parsed.day, parsed.hour) == (2024, 6, 10, 9)


def test_parse_transport_accepts_z_suffix_and_long_fractions() -> None:
    clock = FacilityClock("Asia/Ho_Chi_Minh")

    parsed = clock.parse_transport("2024-06-10T01:00:00.1234567Z")

    assert parsed.hour == 8
    assert parsed.microsecond == 123456


def test_parse_transport_treats_naive_values_as_facility_wall_clock() -> None:
    clock = FacilityClock("Asia/Ho_Chi_Minh")

    parsed = clock.parse_transport("2024-06-10T09:00:00")

    assert parsed.hour == 9
    assert parsed.utcoffset() == dt.timedelta(hours=7)


@pytest.mark.parametrize("raw", ["", "   ", None, 42, "not-a-date", "2024-13-45T99:00:00"])
def test_parse_transport_rejects_malformed_values(raw: object) -> None:
    clock = FacilityClock("Asia/Ho_Chi_Minh")

    with pytest.raises(TransportConversionError):
        clock.parse_transport(raw)


def test_to_transport_round_trips_local_wall_clock() -> None:
    clock = FacilityClock("Asia/Ho_Chi_Minh")
    local = clock.combine(dt.date(2024, 6, 10), 9)

    raw = clock.to_transport(local)

    assert raw == "2024-06-10T02:00:00.000+00:00"
    assert clock.parse_transport(raw) == local
    assert clock.parse_transport(raw).hour == 9


def test_to_transport_uses_timezone_database_across_dst() -> None:
    clock = FacilityClock("Europe/Berlin")

    winter = clock.to_transport(clock.combine(dt.date(2024, 1, 15), 9))
    summer = clock.to_transport(clock.combine(dt.date(2024, 7, 15), 9))

    assert winter == "2024-01-15T08:00:00.000+00:00"
    assert summer == "2024-07-15T07:00:00.000+00:00"


def test_now_uses_injected_source_in_facility_zone() -> None:
    fixed = dt.datetime(2024, 6, 9, 20, 30, tzinfo=dt.timezone.utc)
    clock = FacilityClock("Asia/Ho_Chi_Minh", now_func=lambda: fixed)

    assert clock.now().hour == 3
    assert clock.today() == dt.date(2024, 6, 10)


def test_unknown_timezone_is_rejected() -> None:
    with pytest.raises(RuntimeError, match=r"Unknown facility timezone"):
        FacilityClock("Nowhere/Land")
