from __future__ import annotations

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from donationslots.clock import DEFAULT_TIMEZONE


def _parse_timezone(raw: str) -> str:
    name = raw.strip()
    if not name:
        raise RuntimeError("FACILITY_TIMEZONE is empty. Provide an IANA timezone id, e.g. Asia/Ho_Chi_Minh.")
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise RuntimeError(f"Invalid FACILITY_TIMEZONE value: {name!r}. Expected an IANA timezone id.") from e
    return name


def _parse_base_url(raw: str) -> str:
    url = raw.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise RuntimeError(f"Invalid API_BASE_URL value: {raw!r}. Expected http(s) URL.")
    return url


@dataclass(frozen=True)
class Settings:
    api_base_url: str = "http://localhost:5222/api"
    api_token: str | None = None

    # Facility-local civil time; every bucket boundary is computed in this zone.
    facility_timezone: str = DEFAULT_TIMEZONE

    http_timeout_seconds: float = 20.0

    # How many times a read (capacity list, eligibility) is attempted on transport errors.
    # Commands and bookings are never retried.
    fetch_retry_attempts: int = 2

    default_location_id: str | None = None


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    api_base_url = _parse_base_url(os.getenv("API_BASE_URL", "http://localhost:5222/api"))
    api_token = os.getenv("API_TOKEN", "").strip() or None
    facility_timezone = _parse_timezone(os.getenv("FACILITY_TIMEZONE", DEFAULT_TIMEZONE))

    try:
        http_timeout_seconds = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
    except ValueError as e:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be a number") from e
    if http_timeout_seconds <= 0:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be > 0")

    try:
        fetch_retry_attempts = int(os.getenv("FETCH_RETRY_ATTEMPTS", "2"))
    except ValueError as e:
        raise RuntimeError("FETCH_RETRY_ATTEMPTS must be an integer") from e
    if fetch_retry_attempts < 1:
        raise RuntimeError("FETCH_RETRY_ATTEMPTS must be >= 1")

    default_location_id = os.getenv("DEFAULT_LOCATION_ID", "").strip() or None

    return Settings(
        api_base_url=api_base_url,
        api_token=api_token,
        facility_timezone=facility_timezone,
        http_timeout_seconds=http_timeout_seconds,
        fetch_retry_attempts=fetch_retry_attempts,
        default_location_id=default_location_id,
    )
