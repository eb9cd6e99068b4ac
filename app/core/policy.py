"""Time-based appointment policies.

Pure functions of the appointment instant and the current instant. Callers
supply ``now`` so results are deterministic.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.schemas.appointments import RefundPolicy

RESCHEDULE_CUTOFF = timedelta(hours=1)
FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 6
MAX_RESCHEDULES = 2


def appointment_datetime(appointment_date: date, start_time: time, tz: str = "UTC") -> datetime:
    """Combine a stored calendar date and wall time into an aware instant."""
    return datetime.combine(appointment_date, start_time.replace(tzinfo=None), tzinfo=ZoneInfo(tz))


def hours_until(appointment_at: datetime, now: datetime) -> float:
    """Signed number of hours from ``now`` to ``appointment_at``."""
    return (appointment_at - now) / timedelta(hours=1)


def is_future(candidate_at: datetime, now: datetime) -> bool:
    """True when ``candidate_at`` is strictly after ``now``."""
    return candidate_at > now


def can_reschedule(appointment_at: datetime, now: datetime) -> bool:
    """True when at least the cutoff window remains before the appointment."""
    return appointment_at - now >= RESCHEDULE_CUTOFF


def refund_policy(appointment_at: datetime, now: datetime) -> RefundPolicy:
    """
    Refund tier for cancelling an appointment at ``now``.

    Past appointments (negative lead time) fall into the cancellation fee tier.
    """
    diff_hours = hours_until(appointment_at, now)
    if diff_hours >= FULL_REFUND_HOURS:
        return RefundPolicy.FULL_REFUND
    if diff_hours >= PARTIAL_REFUND_HOURS:
        return RefundPolicy.PARTIAL_REFUND
    return RefundPolicy.CANCELLATION_FEE
