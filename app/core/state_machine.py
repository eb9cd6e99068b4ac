"""Appointment status transitions and the field changes they imply."""

from collections.abc import Mapping
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from app.core import policy
from app.core.exceptions import CutoffExceeded, InvalidDate, InvalidStatus, MaxRescheduleExceeded
from app.schemas.appointments import AppointmentStatus, RefundPolicy


class Transition(str, Enum):
    """Commands that mutate an existing appointment."""

    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    COMPLETE = "complete"
    NO_SHOW = "no_show"


# transition -> (allowed source statuses, resulting status)
TRANSITIONS: dict[Transition, tuple[frozenset[AppointmentStatus], AppointmentStatus]] = {
    Transition.RESCHEDULE: (frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.SCHEDULED),
    Transition.CANCEL: (frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.CANCELLED),
    Transition.COMPLETE: (frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.COMPLETED),
    Transition.NO_SHOW: (frozenset({AppointmentStatus.SCHEDULED}), AppointmentStatus.NO_SHOW),
}

TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

_REJECTION_MESSAGES = {
    Transition.RESCHEDULE: "Cannot reschedule an appointment that is {status}",
    Transition.CANCEL: "Cannot cancel an appointment that is {status}",
    Transition.COMPLETE: "Only scheduled appointments can be completed",
    Transition.NO_SHOW: "Only scheduled appointments can be marked as no-show",
}


def next_status(current: AppointmentStatus | str, transition: Transition) -> AppointmentStatus:
    """
    Resolve the status reached by applying ``transition``.

    Raises:
        InvalidStatus: If the transition is not legal from ``current``
    """
    current = AppointmentStatus(current)
    sources, target = TRANSITIONS[transition]
    if current not in sources:
        if transition is Transition.CANCEL and current is AppointmentStatus.CANCELLED:
            raise InvalidStatus("Appointment already cancelled")
        raise InvalidStatus(_REJECTION_MESSAGES[transition].format(status=current.value))
    return target


def append_note(notes: str | None, label: str, text: str | None, default: str) -> str:
    """Append a labelled history entry without discarding earlier notes."""
    entry = f"{label}: {text or default}"
    return f"{notes}\n{entry}" if notes else entry


def _bump(current: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    return {"version": current["version"] + 1, "updated_at": now}


def reschedule(
    current: Mapping[str, Any],
    new_date: date,
    new_start: time,
    new_end: time,
    reason: str | None,
    now: datetime,
    tz: str = "UTC",
) -> dict[str, Any]:
    """
    Validate a reschedule and build the column updates for it.

    Slot availability is not checked here; callers run the conflict detector
    after these preconditions pass.

    Raises:
        InvalidStatus: Appointment is no longer scheduled
        MaxRescheduleExceeded: Reschedule limit already reached
        CutoffExceeded: Less than the cutoff window remains before the current slot
        InvalidDate: New slot is not in the future
    """
    next_status(current["status"], Transition.RESCHEDULE)

    if current["reschedule_count"] >= policy.MAX_RESCHEDULES:
        raise MaxRescheduleExceeded(
            f"Maximum reschedule limit reached ({policy.MAX_RESCHEDULES})"
        )

    current_at = policy.appointment_datetime(current["appointment_date"], current["start_time"], tz)
    if not policy.can_reschedule(current_at, now):
        raise CutoffExceeded("Cannot reschedule within 1 hour of appointment")

    new_at = policy.appointment_datetime(new_date, new_start, tz)
    if not policy.is_future(new_at, now):
        raise InvalidDate("New appointment time must be in the future")

    return {
        "appointment_date": new_date,
        "start_time": new_start,
        "end_time": new_end,
        "reschedule_count": current["reschedule_count"] + 1,
        "notes": append_note(current["notes"], "Rescheduled", reason, "No reason provided"),
        **_bump(current, now),
    }


def cancel(
    current: Mapping[str, Any],
    reason: str | None,
    now: datetime,
    tz: str = "UTC",
) -> tuple[dict[str, Any], RefundPolicy]:
    """Build the cancellation updates and the refund tier for the current slot."""
    status = next_status(current["status"], Transition.CANCEL)
    appointment_at = policy.appointment_datetime(
        current["appointment_date"], current["start_time"], tz
    )
    values = {
        "status": status.value,
        "cancelled_at": now,
        "notes": append_note(current["notes"], "Cancelled", reason, "No reason provided"),
        **_bump(current, now),
    }
    return values, policy.refund_policy(appointment_at, now)


def complete(current: Mapping[str, Any], notes: str | None, now: datetime) -> dict[str, Any]:
    """Build the completion updates."""
    status = next_status(current["status"], Transition.COMPLETE)
    return {
        "status": status.value,
        "notes": append_note(current["notes"], "Completion notes", notes, "No notes"),
        **_bump(current, now),
    }


def mark_no_show(current: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    """Build the no-show updates."""
    status = next_status(current["status"], Transition.NO_SHOW)
    return {"status": status.value, **_bump(current, now)}
