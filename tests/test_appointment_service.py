"""Tests for the appointment lifecycle orchestrator."""

from datetime import date, time, timedelta
from decimal import Decimal
from itertools import combinations

import httpx
import pytest
from prometheus_client import REGISTRY

from app.clients.collaborators import PatientClient

from app.core.exceptions import (
    AppointmentNotFound,
    CutoffExceeded,
    DoctorNotFound,
    InvalidDate,
    InvalidStatus,
    MaxRescheduleExceeded,
    PatientNotFound,
    ServiceUnavailable,
    SlotConflict,
)
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentComplete,
    AppointmentFilters,
    AppointmentReschedule,
    AppointmentStatus,
    RefundPolicy,
)
from conftest import APPOINTMENT_DATE, NOW, make_booking

NEXT_DAY = APPOINTMENT_DATE + timedelta(days=1)


def move_to(start: str, end: str, day: date = NEXT_DAY, reason: str | None = None):
    return AppointmentReschedule(
        appointment_date=day,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end),
        reason=reason,
    )


def failures(service: str, operation: str) -> float:
    value = REGISTRY.get_sample_value(
        "collaborator_failures_total", {"service": service, "operation": operation}
    )
    return value or 0.0


# Booking


@pytest.mark.asyncio
async def test_book_appointment(service, collaborators, dispatcher) -> None:
    appointment = await service.book_appointment(make_booking(reason="Checkup"))

    assert appointment.status is AppointmentStatus.SCHEDULED
    assert appointment.version == 1
    assert appointment.reschedule_count == 0
    assert appointment.doctor_id == 7
    assert appointment.reason == "Checkup"

    await dispatcher.drain()
    [notification] = collaborators.notifications.sent
    assert notification["type"] == "APPOINTMENT_CONFIRMATION"
    assert notification["patient_id"] == 1
    assert "Dr. Jane Smith" in notification["message"]
    assert notification["metadata"] == {
        "appointment_id": appointment.id,
        "doctor_name": "Dr. Jane Smith",
        "date": "2025-03-01",
        "time": "10:00",
    }


@pytest.mark.asyncio
async def test_overlapping_booking_scenario(service) -> None:
    """10:00-10:30 books, 10:15-10:45 conflicts, adjacent 10:30-11:00 books."""
    first = await service.book_appointment(make_booking("10:00", "10:30"))
    assert first.id

    with pytest.raises(SlotConflict):
        await service.book_appointment(make_booking("10:15", "10:45"))

    adjacent = await service.book_appointment(make_booking("10:30", "11:00"))
    assert adjacent.id != first.id


@pytest.mark.asyncio
@pytest.mark.parametrize("start", ["08:00", "07:59", "06:00"])
async def test_booking_at_or_before_now_is_invalid(service, start) -> None:
    end = (time.fromisoformat(start).hour + 1) % 24
    with pytest.raises(InvalidDate):
        await service.book_appointment(make_booking(start, f"{end:02d}:00"))

    listing = await service.list_appointments(AppointmentFilters())
    assert listing.total == 0


@pytest.mark.asyncio
async def test_booking_fails_closed_on_unknown_patient(service, collaborators) -> None:
    collaborators.patients.missing.add(1)

    with pytest.raises(PatientNotFound):
        await service.book_appointment(make_booking())

    assert (await service.list_appointments(AppointmentFilters())).total == 0


@pytest.mark.asyncio
async def test_booking_fails_closed_on_unknown_doctor(service, collaborators) -> None:
    collaborators.doctors.missing.add(7)

    with pytest.raises(DoctorNotFound):
        await service.book_appointment(make_booking())

    assert (await service.list_appointments(AppointmentFilters())).total == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("collaborator", ["patients", "doctors"])
async def test_booking_unavailable_collaborator(service, collaborators, collaborator) -> None:
    getattr(collaborators, collaborator).unavailable = True

    with pytest.raises(ServiceUnavailable):
        await service.book_appointment(make_booking())

    assert (await service.list_appointments(AppointmentFilters())).total == 0


@pytest.mark.asyncio
async def test_booking_with_malformed_patient_response(service, collaborators) -> None:
    """A 200 whose body is not a JSON object counts as an unavailable service."""

    def reply(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": 1}])

    collaborators.patients = PatientClient(
        "http://patients", timeout=1.0, transport=httpx.MockTransport(reply)
    )

    with pytest.raises(ServiceUnavailable):
        await service.book_appointment(make_booking())

    await collaborators.patients.close()
    assert (await service.list_appointments(AppointmentFilters())).total == 0


@pytest.mark.asyncio
async def test_unique_slot_index_backstops_conflict_check(service, monkeypatch) -> None:
    """A write racing past the conflict check is rejected by the unique index."""
    await service.book_appointment(make_booking("10:00", "10:30"))

    async def no_conflict(*args, **kwargs) -> bool:
        return False

    monkeypatch.setattr(service.slots, "has_conflict", no_conflict)

    with pytest.raises(SlotConflict):
        await service.book_appointment(make_booking("10:00", "10:20", patient_id=2))

    # The session is usable again after the rollback
    later = await service.book_appointment(make_booking("11:00", "11:30"))
    assert later.version == 1
    assert (await service.list_appointments(AppointmentFilters())).total == 2


@pytest.mark.asyncio
async def test_booking_succeeds_when_notification_fails(service, collaborators, dispatcher) -> None:
    collaborators.notifications.unavailable = True
    before = failures("notification", "APPOINTMENT_CONFIRMATION")

    appointment = await service.book_appointment(make_booking())
    await dispatcher.drain()

    stored = await service.get_appointment(appointment.id)
    assert stored.status is AppointmentStatus.SCHEDULED
    assert failures("notification", "APPOINTMENT_CONFIRMATION") == before + 1


# Rescheduling


@pytest.mark.asyncio
async def test_reschedule_appointment(service, collaborators, dispatcher) -> None:
    booked = await service.book_appointment(make_booking(notes="Bring reports"))

    moved = await service.reschedule_appointment(
        booked.id, move_to("09:00", "09:30", reason="Clash at work")
    )

    assert moved.id == booked.id
    assert moved.appointment_date == NEXT_DAY
    assert moved.start_time == time(9, 0)
    assert moved.reschedule_count == 1
    assert moved.version == 2
    assert moved.notes == "Bring reports\nRescheduled: Clash at work"

    await dispatcher.drain()
    assert sorted(n["type"] for n in collaborators.notifications.sent) == [
        "APPOINTMENT_CONFIRMATION",
        "APPOINTMENT_RESCHEDULED",
    ]


@pytest.mark.asyncio
async def test_third_reschedule_is_rejected(service) -> None:
    booked = await service.book_appointment(make_booking())
    await service.reschedule_appointment(booked.id, move_to("09:00", "09:30"))
    await service.reschedule_appointment(booked.id, move_to("11:00", "11:30"))

    with pytest.raises(MaxRescheduleExceeded):
        await service.reschedule_appointment(booked.id, move_to("13:00", "13:30"))

    stored = await service.get_appointment(booked.id)
    assert stored.reschedule_count == 2
    assert stored.version == 3
    assert stored.start_time == time(11, 0)


@pytest.mark.asyncio
async def test_reschedule_cutoff_scenarios(service, clock) -> None:
    # Appointment two hours out; 30 minutes left when the reschedule arrives
    soon = await service.book_appointment(make_booking("10:00", "10:30"))
    clock.now = NOW + timedelta(hours=1.5)
    with pytest.raises(CutoffExceeded):
        await service.reschedule_appointment(soon.id, move_to("09:00", "09:30"))

    # 0.9 hours left
    clock.now = NOW + timedelta(hours=1.1)
    with pytest.raises(CutoffExceeded):
        await service.reschedule_appointment(soon.id, move_to("09:00", "09:30"))

    # Appointment three hours out, rescheduled ten minutes later
    clock.now = NOW
    later = await service.book_appointment(make_booking("11:00", "11:30"))
    clock.now = NOW + timedelta(minutes=10)
    moved = await service.reschedule_appointment(later.id, move_to("09:00", "09:30"))
    assert moved.reschedule_count == 1


@pytest.mark.asyncio
async def test_reschedule_into_past_is_invalid(service) -> None:
    booked = await service.book_appointment(make_booking())

    with pytest.raises(InvalidDate):
        await service.reschedule_appointment(
            booked.id, move_to("07:00", "07:30", day=APPOINTMENT_DATE)
        )


@pytest.mark.asyncio
async def test_reschedule_conflict_leaves_row_untouched(service) -> None:
    booked = await service.book_appointment(make_booking("10:00", "10:30"))
    await service.book_appointment(make_booking("09:00", "09:30", appointment_date=NEXT_DAY))

    with pytest.raises(SlotConflict):
        await service.reschedule_appointment(booked.id, move_to("09:15", "09:45"))

    stored = await service.get_appointment(booked.id)
    assert stored.appointment_date == APPOINTMENT_DATE
    assert stored.version == 1
    assert stored.reschedule_count == 0


@pytest.mark.asyncio
async def test_reschedule_may_overlap_its_own_slot(service) -> None:
    booked = await service.book_appointment(make_booking("10:00", "10:30"))

    moved = await service.reschedule_appointment(
        booked.id, move_to("10:15", "10:45", day=APPOINTMENT_DATE)
    )

    assert moved.start_time == time(10, 15)


@pytest.mark.asyncio
async def test_reschedule_unknown_appointment(service) -> None:
    with pytest.raises(AppointmentNotFound):
        await service.reschedule_appointment(999, move_to("09:00", "09:30"))


# Cancellation


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("lead", "expected"),
    [
        (timedelta(hours=30), RefundPolicy.FULL_REFUND),
        (timedelta(hours=24), RefundPolicy.FULL_REFUND),
        (timedelta(hours=12), RefundPolicy.PARTIAL_REFUND),
        (timedelta(hours=2), RefundPolicy.CANCELLATION_FEE),
    ],
)
async def test_cancel_applies_refund_tier(service, clock, lead, expected) -> None:
    booked = await service.book_appointment(
        make_booking("10:00", "10:30", appointment_date=NEXT_DAY)
    )
    # Appointment starts 2025-03-02 10:00 UTC
    clock.now = NOW + timedelta(hours=26) - lead

    cancelled = await service.cancel_appointment(booked.id, AppointmentCancel(reason="Travel"))

    assert cancelled.refund_policy is expected
    assert cancelled.status is AppointmentStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.notes == "Cancelled: Travel"


@pytest.mark.asyncio
async def test_cancel_notifies_billing_and_patient(service, collaborators, dispatcher) -> None:
    booked = await service.book_appointment(make_booking())

    cancelled = await service.cancel_appointment(booked.id, AppointmentCancel())
    await dispatcher.drain()

    assert cancelled.version == 2
    assert collaborators.billing.cancellations == [
        {"appointment_id": booked.id, "refund_policy": "CANCELLATION_FEE"}
    ]
    notification = collaborators.notifications.sent[-1]
    assert notification["type"] == "CANCELLATION"
    assert notification["message"] == "Appointment cancelled. Refund policy: CANCELLATION_FEE"
    assert notification["metadata"]["refund_policy"] == "CANCELLATION_FEE"


@pytest.mark.asyncio
async def test_cancel_twice_is_rejected(service, collaborators, dispatcher) -> None:
    booked = await service.book_appointment(make_booking())
    await service.cancel_appointment(booked.id, AppointmentCancel())

    with pytest.raises(InvalidStatus):
        await service.cancel_appointment(booked.id, AppointmentCancel())

    await dispatcher.drain()
    assert len(collaborators.billing.cancellations) == 1


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(service) -> None:
    booked = await service.book_appointment(make_booking("10:00", "10:30"))
    await service.cancel_appointment(booked.id, AppointmentCancel())

    rebooked = await service.book_appointment(make_booking("10:00", "10:30", patient_id=2))

    assert rebooked.id != booked.id
    assert rebooked.status is AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_cancelled_appointment_cannot_be_rescheduled(service) -> None:
    booked = await service.book_appointment(make_booking())
    await service.cancel_appointment(booked.id, AppointmentCancel())

    with pytest.raises(InvalidStatus):
        await service.reschedule_appointment(booked.id, move_to("09:00", "09:30"))


# Completion and no-show


@pytest.mark.asyncio
async def test_complete_bills_once(service, collaborators, dispatcher) -> None:
    booked = await service.book_appointment(make_booking())

    completed = await service.complete_appointment(
        booked.id, AppointmentComplete(notes="Prescribed rest")
    )
    with pytest.raises(InvalidStatus):
        await service.complete_appointment(booked.id, AppointmentComplete())
    await dispatcher.drain()

    assert completed.status is AppointmentStatus.COMPLETED
    assert completed.version == 2
    assert completed.notes == "Completion notes: Prescribed rest"
    assert collaborators.billing.bills == [
        {
            "appointment_id": booked.id,
            "patient_id": 1,
            "doctor_id": 7,
            "amount": Decimal("500.00"),
            "bill_type": None,
        }
    ]


@pytest.mark.asyncio
async def test_complete_survives_billing_outage(service, collaborators, dispatcher) -> None:
    collaborators.billing.unavailable = True
    before = failures("billing", "create_bill")
    booked = await service.book_appointment(make_booking())

    completed = await service.complete_appointment(booked.id, AppointmentComplete())
    await dispatcher.drain()

    assert completed.status is AppointmentStatus.COMPLETED
    assert (await service.get_appointment(booked.id)).status is AppointmentStatus.COMPLETED
    assert failures("billing", "create_bill") == before + 1


@pytest.mark.asyncio
async def test_mark_no_show_applies_fee(service, collaborators, dispatcher) -> None:
    booked = await service.book_appointment(make_booking())

    no_show = await service.mark_no_show(booked.id)
    await dispatcher.drain()

    assert no_show.status is AppointmentStatus.NO_SHOW
    assert no_show.version == 2
    assert collaborators.billing.bills[-1]["amount"] == Decimal("100.00")
    assert collaborators.billing.bills[-1]["bill_type"] == "NO_SHOW_FEE"


@pytest.mark.asyncio
async def test_no_show_is_terminal_and_keeps_its_slot(service) -> None:
    booked = await service.book_appointment(make_booking("10:00", "10:30"))
    await service.mark_no_show(booked.id)

    with pytest.raises(InvalidStatus):
        await service.cancel_appointment(booked.id, AppointmentCancel())
    with pytest.raises(InvalidStatus):
        await service.mark_no_show(booked.id)

    # NO_SHOW still blocks rebooking of the slot
    with pytest.raises(SlotConflict):
        await service.book_appointment(make_booking("10:00", "10:30", patient_id=2))


@pytest.mark.asyncio
async def test_completed_slot_is_released(service) -> None:
    booked = await service.book_appointment(make_booking("10:00", "10:30"))
    await service.complete_appointment(booked.id, AppointmentComplete())

    rebooked = await service.book_appointment(make_booking("10:15", "10:45", patient_id=2))
    assert rebooked.status is AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_transitions_on_unknown_appointment(service) -> None:
    with pytest.raises(AppointmentNotFound):
        await service.cancel_appointment(42, AppointmentCancel())
    with pytest.raises(AppointmentNotFound):
        await service.complete_appointment(42, AppointmentComplete())
    with pytest.raises(AppointmentNotFound):
        await service.mark_no_show(42)
    with pytest.raises(AppointmentNotFound):
        await service.get_appointment(42)


# Invariants and queries


@pytest.mark.asyncio
async def test_scheduled_appointments_never_overlap(service) -> None:
    """Book a dense grid of candidate slots and check no two accepted ones overlap."""
    for minutes in range(0, 240, 10):
        start_minutes = 9 * 60 + minutes
        for duration in (20, 30, 45):
            end_minutes = start_minutes + duration
            start = time(start_minutes // 60, start_minutes % 60)
            end = time(end_minutes // 60, end_minutes % 60)
            try:
                await service.book_appointment(
                    make_booking(start.strftime("%H:%M"), end.strftime("%H:%M"))
                )
            except SlotConflict:
                pass

    listing = await service.list_appointments(
        AppointmentFilters(doctor_id=7, status=AppointmentStatus.SCHEDULED, page_size=100)
    )
    assert listing.total > 1
    for a, b in combinations(listing.items, 2):
        assert not (a.start_time < b.end_time and b.start_time < a.end_time)


@pytest.mark.asyncio
async def test_list_appointments_filters_and_pages(service) -> None:
    await service.book_appointment(make_booking("10:00", "10:30", patient_id=1))
    await service.book_appointment(make_booking("11:00", "11:30", patient_id=2))
    third = await service.book_appointment(make_booking("12:00", "12:30", patient_id=1))
    await service.cancel_appointment(third.id, AppointmentCancel())

    by_patient = await service.list_appointments(AppointmentFilters(patient_id=1))
    assert by_patient.total == 2

    cancelled = await service.list_appointments(
        AppointmentFilters(status=AppointmentStatus.CANCELLED)
    )
    assert [item.id for item in cancelled.items] == [third.id]

    page = await service.list_appointments(AppointmentFilters(page=2, page_size=2))
    assert page.total == 3
    assert len(page.items) == 1
    # Latest slot first, so the last page holds the earliest one
    assert page.items[0].start_time == time(10, 0)
