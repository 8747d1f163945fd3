from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Iterable

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from donationslots.clock import FacilityClock
from donationslots.config import Settings
from donationslots.domain import (
    ApiError,
    CapacityFetchError,
    CapacitySlot,
    SubmissionError,
    TimeSlot,
    TransportConversionError,
)
from donationslots.selection import BookingRequest

logger = logging.getLogger(__name__)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.debug("Read attempt %s: start", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        if reason:
            logger.warning("Read attempt %s failed (%s)", retry_state.attempt_number, reason)
        else:
            logger.warning("Read attempt %s failed", retry_state.attempt_number)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Waiting before attempt %s", retry_state.attempt_number + 1)
        return
    logger.info("Waiting %.1f s before attempt %s", sleep_seconds, retry_state.attempt_number + 1)


def _require_int(raw: dict[str, Any], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or value is None:
        raise TransportConversionError(f"Field {key!r} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise TransportConversionError(f"Field {key!r} must be an integer, got {value!r}") from e


def capacity_from_payload(raw: dict[str, Any], clock: FacilityClock) -> CapacitySlot:
    if not isinstance(raw, dict):
        raise TransportConversionError(f"Capacity record must be an object, got {type(raw).__name__}")

    capacity_id = raw.get("id")
    if not capacity_id:
        raise TransportConversionError("Capacity record without id")

    day = _require_int(raw, "dayOfWeek")
    if not 0 <= day <= 6:
        raise TransportConversionError(f"dayOfWeek out of range: {day}")

    try:
        time_slot = TimeSlot.parse(raw.get("timeSlot"))
    except ValueError as e:
        raise TransportConversionError(str(e)) from e

    effective = clock.parse_transport(raw.get("effectiveDate"))
    expiry = clock.parse_transport(raw.get("expiryDate"))
    if effective.hour >= expiry.hour:
        raise TransportConversionError(
            f"Capacity {capacity_id}: bucket {effective.hour}-{expiry.hour} does not fit in one day"
        )
    if expiry < effective:
        raise TransportConversionError(f"Capacity {capacity_id}: expiryDate before effectiveDate")

    return CapacitySlot(
        id=str(capacity_id),
        location_id=str(raw.get("locationId") or ""),
        day_of_week=day,
        time_slot=time_slot,
        effective_date=effective,
        expiry_date=expiry,
        total_capacity=_require_int(raw, "totalCapacity"),
        is_active=bool(raw.get("isActive", True)),
        notes=str(raw.get("notes") or ""),
        location_name=raw.get("locationName"),
        created_time=raw.get("createdTime"),
        last_updated_time=raw.get("lastUpdatedTime"),
    )


def parse_capacities(items: Iterable[Any], clock: FacilityClock) -> tuple[list[CapacitySlot], list[tuple[Any, str]]]:
    """Convert backend records; malformed ones are dropped and reported, not raised."""
    slots: list[CapacitySlot] = []
    rejected: list[tuple[Any, str]] = []
    for item in items:
        try:
            slots.append(capacity_from_payload(item, clock))
        except TransportConversionError as e:
            ident = item.get("id") if isinstance(item, dict) else None
            logger.warning("Dropping capacity record id=%s (%s)", ident, e)
            rejected.append((item, str(e)))
    return slots, rejected


@dataclass(frozen=True)
class PendingAppointment:
    id: str
    status: str
    preferred_date: dt.datetime | None
    preferred_time_slot: str
    location_name: str


@dataclass(frozen=True)
class EligibilityResult:
    is_eligible: bool
    next_available_donation_date: dt.datetime | None = None
    pending_appointment: PendingAppointment | None = None
    message: str = ""


class CapacityApiClient:
    """REST collaborator for capacities, bookings and donor eligibility."""

    def __init__(
        self,
        *,
        base_url: str,
        clock: FacilityClock,
        token: str | None = None,
        timeout_seconds: float = 20.0,
        retry_attempts: int = 2,
        retry_wait: wait_base | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.clock = clock
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait if retry_wait is not None else wait_exponential(multiplier=1, min=1, max=4)
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: FacilityClock | None = None, transport: httpx.BaseTransport | None = None) -> "CapacityApiClient":
        return cls(
            base_url=settings.api_base_url,
            clock=clock or FacilityClock(settings.facility_timezone),
            token=settings.api_token,
            timeout_seconds=settings.http_timeout_seconds,
            retry_attempts=settings.fetch_retry_attempts,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CapacityApiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _send(self, method: str, path: str, payload: dict[str, Any] | None = None) -> httpx.Response:
        return self._http.request(method, path, json=payload)

    def _unwrap(self, response: httpx.Response, error_cls: type[ApiError]) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = None

        envelope = body if isinstance(body, dict) and "success" in body else None
        if response.is_success and (envelope is None or envelope.get("success")):
            return envelope.get("data") if envelope is not None else body

        message = ""
        errors: tuple[str, ...] = ()
        if isinstance(body, dict):
            message = str(body.get("message") or body.get("title") or "")
            raw_errors = body.get("errors") or ()
            if isinstance(raw_errors, dict):
                errors = tuple(str(m) for msgs in raw_errors.values() for m in (msgs if isinstance(msgs, list) else [msgs]))
            else:
                errors = tuple(str(e) for e in raw_errors)
        if not message:
            message = f"HTTP {response.status_code} {response.reason_phrase}".strip()
        raise error_cls(message, status_code=response.status_code, errors=errors)

    def _read(self, path: str) -> Any:
        decorated = retry(
            stop=stop_after_attempt(self._retry_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type(httpx.TransportError),
            before=_log_before_attempt,
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self._send)
        try:
            response = decorated("GET", path)
        except httpx.TransportError as e:
            raise CapacityFetchError(f"{type(e).__name__}: {e}") from e
        return self._unwrap(response, CapacityFetchError)

    def _command(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = self._send(method, path, payload)
        except httpx.TransportError as e:
            raise SubmissionError(f"{type(e).__name__}: {e}") from e
        return self._unwrap(response, SubmissionError)

    # -- capacities --------------------------------------------------------

    def list_capacities(self, location_id: str) -> list[CapacitySlot]:
        logger.info("Fetching capacities for location %s", location_id)
        data = self._read(f"/Locations/{location_id}/capacities")
        if data is None:
            return []
        if not isinstance(data, list):
            raise CapacityFetchError(f"Unexpected capacities payload: {type(data).__name__}")
        slots, rejected = parse_capacities(data, self.clock)
        logger.info("Capacities: received=%d usable=%d dropped=%d", len(data), len(slots), len(rejected))
        return slots

    def create_capacity(
        self,
        location_id: str,
        *,
        time_slot: TimeSlot,
        total_capacity: int,
        day_of_week: int,
        effective_date: dt.datetime,
        expiry_date: dt.datetime,
        notes: str = "",
        is_active: bool = True,
    ) -> CapacitySlot | None:
        payload = {
            "locationId": location_id,
            "timeSlot": time_slot.value,
            "totalCapacity": total_capacity,
            "dayOfWeek": day_of_week,
            "effectiveDate": self.clock.to_transport(effective_date),
            "expiryDate": self.clock.to_transport(expiry_date),
            "notes": notes,
            "isActive": is_active,
        }
        data = self._command("POST", f"/Locations/{location_id}/capacities", payload)
        return capacity_from_payload(data, self.clock) if isinstance(data, dict) else None

    def update_capacity(
        self,
        slot: CapacitySlot,
        *,
        location_id: str | None = None,
        total_capacity: int | None = None,
        notes: str | None = None,
        is_active: bool | None = None,
    ) -> CapacitySlot | None:
        location_id = location_id or slot.location_id
        if not location_id:
            raise ValueError(f"Capacity {slot.id} has no location id")
        # The endpoint takes the full shape; unspecified fields keep the record's values.
        payload = {
            "timeSlot": slot.time_slot.value,
            "totalCapacity": slot.total_capacity if total_capacity is None else total_capacity,
            "dayOfWeek": slot.day_of_week,
            "effectiveDate": self.clock.to_transport(slot.effective_date),
            "expiryDate": self.clock.to_transport(slot.expiry_date),
            "notes": slot.notes if notes is None else notes,
            "isActive": slot.is_active if is_active is None else is_active,
        }
        data = self._command("PUT", f"/Locations/{location_id}/capacities/{slot.id}", payload)
        return capacity_from_payload(data, self.clock) if isinstance(data, dict) else None

    def delete_capacity(self, location_id: str, capacity_id: str) -> None:
        self._command("DELETE", f"/Locations/{location_id}/capacities/{capacity_id}")

    def create_capacities_bulk(
        self,
        location_id: str,
        *,
        start_day_of_week: int,
        end_day_of_week: int,
        effective_date: dt.datetime,
        expiry_date: dt.datetime,
        total_capacity: int,
        notes: str = "",
        is_active: bool = True,
    ) -> list[CapacitySlot]:
        payload = {
            "locationId": location_id,
            "totalCapacity": total_capacity,
            "startDayOfWeek": start_day_of_week,
            "endDayOfWeek": end_day_of_week,
            "effectiveDate": self.clock.to_transport(effective_date),
            "expiryDate": self.clock.to_transport(expiry_date),
            "notes": notes,
            "isActive": is_active,
        }
        data = self._command("POST", f"/Locations/{location_id}/capacities/bulk", payload)
        if not isinstance(data, list):
            return []
        slots, _ = parse_capacities(data, self.clock)
        return slots

    # -- donor side --------------------------------------------------------

    def submit_booking(self, request: BookingRequest) -> str | None:
        logger.info(
            "Submitting booking: location=%s date=%s slot=%s",
            request.location_id,
            request.preferred_date,
            request.preferred_time_slot,
        )
        data = self._command("POST", "/DonationAppointmentRequests/donor-request", request.to_payload())
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])
        return None

    def check_eligibility(self, user_id: str) -> EligibilityResult:
        data = self._read(f"/DonorProfiles/check-eligibility/{user_id}")
        if not isinstance(data, dict):
            raise CapacityFetchError(f"Unexpected eligibility payload: {type(data).__name__}")

        next_date = None
        if data.get("nextAvailableDonationDate"):
            next_date = self.clock.parse_transport(data["nextAvailableDonationDate"])

        pending = None
        raw_pending = data.get("pendingAppointment")
        if isinstance(raw_pending, dict):
            preferred = raw_pending.get("preferredDate")
            pending = PendingAppointment(
                id=str(raw_pending.get("id") or ""),
                status=str(raw_pending.get("status") or ""),
                preferred_date=self.clock.parse_transport(preferred) if preferred else None,
                preferred_time_slot=str(raw_pending.get("preferredTimeSlot") or ""),
                location_name=str(raw_pending.get("locationName") or ""),
            )

        return EligibilityResult(
            is_eligible=bool(data.get("isEligible")),
            next_available_donation_date=next_date,
            pending_appointment=pending,
            message=str(data.get("message") or ""),
        )
