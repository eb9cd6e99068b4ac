"""Slot conflict detection for doctor schedules."""

from datetime import date, time

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus

# Statuses that release their slot. NO_SHOW keeps blocking it.
SLOT_RELEASING_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
)


class SlotConflictDetector:
    """Checks a doctor's schedule for overlapping active appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize with the session of the surrounding transaction."""
        self.db = db

    async def has_conflict(
        self,
        doctor_id: int,
        appointment_date: date,
        start_time: time,
        end_time: time,
        exclude_appointment_id: int | None = None,
    ) -> bool:
        """
        Check whether ``[start_time, end_time)`` overlaps an active appointment.

        Args:
            doctor_id: Doctor whose schedule is checked
            appointment_date: Calendar date of the slot
            start_time: Inclusive slot start
            end_time: Exclusive slot end
            exclude_appointment_id: Appointment being moved, ignored in the scan

        Returns:
            True if an overlapping appointment exists
        """
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_date == appointment_date,
            appointments.c.status.not_in(SLOT_RELEASING_STATUSES),
            appointments.c.start_time < end_time,
            appointments.c.end_time > start_time,
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        stmt = select(appointments.c.id).where(and_(*conditions)).limit(1)
        result = await self.db.execute(stmt)
        return result.first() is not None
