"""Appointment service for business logic."""

from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.collaborators import CollaboratorClients
from app.config import Settings
from app.core import policy, state_machine
from app.core.exceptions import (
    AppointmentNotFound,
    CollaboratorError,
    CollaboratorNotFound,
    DoctorNotFound,
    InvalidDate,
    PatientNotFound,
    ServiceUnavailable,
    SlotConflict,
)
from app.core.metrics import (
    appointments_cancelled_total,
    appointments_created_total,
    appointments_rescheduled_total,
)
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCancelResponse,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    NotificationType,
)
from app.services.dispatcher import BackgroundDispatcher
from app.services.slot_service import SlotConflictDetector

logger = structlog.get_logger(__name__)

NO_SHOW_BILL_TYPE = "NO_SHOW_FEE"


def utc_now() -> datetime:
    """Current instant in UTC."""
    return datetime.now(UTC)


class AppointmentService:
    """
    Orchestrates the appointment lifecycle.

    Every command runs its checks and its write inside one database
    transaction. Billing and notification calls are dispatched only after the
    commit and cannot undo it.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        clients: CollaboratorClients,
        dispatcher: BackgroundDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service with database session, configuration and collaborators."""
        self.db = db
        self.settings = settings
        self.clients = clients
        self.dispatcher = dispatcher
        self.clock = clock
        self.slots = SlotConflictDetector(db)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """Commit on success, roll back and re-raise on any failure."""
        try:
            yield
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning("slot_constraint_violation", error=str(e.orig))
            raise SlotConflict() from e
        except Exception:
            await self.db.rollback()
            raise

    async def _validate_patient(self, patient_id: int) -> dict[str, Any]:
        try:
            return await self.clients.patients.get_patient(patient_id)
        except CollaboratorNotFound:
            raise PatientNotFound() from None
        except CollaboratorError as e:
            logger.warning("patient_validation_failed", patient_id=patient_id, error=str(e))
            raise ServiceUnavailable("Failed to validate patient") from e

    async def _validate_doctor(self, doctor_id: int) -> dict[str, Any]:
        try:
            return await self.clients.doctors.get_doctor(doctor_id)
        except CollaboratorNotFound:
            raise DoctorNotFound() from None
        except CollaboratorError as e:
            logger.warning("doctor_validation_failed", doctor_id=doctor_id, error=str(e))
            raise ServiceUnavailable("Failed to validate doctor") from e

    async def _load_for_update(self, appointment_id: int) -> Mapping[str, Any]:
        stmt = select(appointments).where(appointments.c.id == appointment_id).with_for_update()
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if row is None:
            raise AppointmentNotFound()
        return row

    async def _update(self, appointment_id: int, values: dict[str, Any]) -> Mapping[str, Any]:
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        return result.mappings().one()

    def _notify(
        self,
        notification_type: NotificationType,
        appointment: AppointmentResponse,
        message: str,
        metadata: dict[str, Any],
    ) -> None:
        self.dispatcher.dispatch(
            "notification",
            notification_type.value,
            self.clients.notifications.send(
                notification_type.value,
                appointment.patient_id,
                message,
                {"appointment_id": appointment.id, **metadata},
            ),
            appointment_id=appointment.id,
        )

    async def book_appointment(self, data: AppointmentCreate) -> AppointmentResponse:
        """
        Book a new appointment.

        Patient and doctor are validated with their services before the
        transaction starts.

        Args:
            data: Appointment booking data

        Returns:
            Created appointment

        Raises:
            PatientNotFound: If the patient service does not know the patient
            DoctorNotFound: If the doctor service does not know the doctor
            ServiceUnavailable: If either service cannot be reached
            InvalidDate: If the slot does not start in the future
            SlotConflict: If the doctor already has an overlapping appointment
        """
        await self._validate_patient(data.patient_id)
        doctor = await self._validate_doctor(data.doctor_id)

        now = self.clock()
        start_at = policy.appointment_datetime(
            data.appointment_date, data.start_time, self.settings.clinic_timezone
        )
        if not policy.is_future(start_at, now):
            raise InvalidDate()

        async with self._transaction():
            if await self.slots.has_conflict(
                data.doctor_id, data.appointment_date, data.start_time, data.end_time
            ):
                raise SlotConflict()

            stmt = (
                insert(appointments)
                .values(
                    patient_id=data.patient_id,
                    doctor_id=data.doctor_id,
                    appointment_date=data.appointment_date,
                    start_time=data.start_time,
                    end_time=data.end_time,
                    reason=data.reason,
                    notes=data.notes,
                    status=AppointmentStatus.SCHEDULED.value,
                    reschedule_count=0,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                .returning(appointments)
            )
            result = await self.db.execute(stmt)
            row = result.mappings().one()

        appointment = AppointmentResponse.model_validate(dict(row))
        appointments_created_total.inc()
        logger.info(
            "appointment_booked",
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
        )

        doctor_name = doctor.get("name") or f"doctor {data.doctor_id}"
        start = appointment.start_time.strftime("%H:%M")
        self._notify(
            NotificationType.CONFIRMATION,
            appointment,
            f"Appointment confirmed with {doctor_name} on {appointment.appointment_date} at {start}",
            {
                "doctor_name": doctor_name,
                "date": appointment.appointment_date.isoformat(),
                "time": start,
            },
        )
        return appointment

    async def reschedule_appointment(
        self,
        appointment_id: int,
        data: AppointmentReschedule,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new slot.

        Args:
            appointment_id: Appointment ID
            data: New slot and optional reason

        Returns:
            Rescheduled appointment

        Raises:
            AppointmentNotFound: If appointment not found
            InvalidStatus: If the appointment is no longer scheduled
            MaxRescheduleExceeded: If it was already rescheduled twice
            CutoffExceeded: If less than one hour remains before the current slot
            InvalidDate: If the new slot is not in the future
            SlotConflict: If the new slot overlaps another appointment
        """
        now = self.clock()
        async with self._transaction():
            current = await self._load_for_update(appointment_id)
            values = state_machine.reschedule(
                current,
                data.appointment_date,
                data.start_time,
                data.end_time,
                data.reason,
                now,
                self.settings.clinic_timezone,
            )
            if await self.slots.has_conflict(
                current["doctor_id"],
                data.appointment_date,
                data.start_time,
                data.end_time,
                exclude_appointment_id=appointment_id,
            ):
                raise SlotConflict("New time slot not available")
            row = await self._update(appointment_id, values)

        appointment = AppointmentResponse.model_validate(dict(row))
        appointments_rescheduled_total.inc()
        logger.info(
            "appointment_rescheduled",
            appointment_id=appointment_id,
            reschedule_count=appointment.reschedule_count,
            version=appointment.version,
        )

        start = appointment.start_time.strftime("%H:%M")
        self._notify(
            NotificationType.RESCHEDULED,
            appointment,
            f"Appointment rescheduled to {appointment.appointment_date} at {start}",
            {"date": appointment.appointment_date.isoformat(), "time": start},
        )
        return appointment

    async def cancel_appointment(
        self,
        appointment_id: int,
        data: AppointmentCancel,
    ) -> AppointmentCancelResponse:
        """
        Cancel an appointment and apply the refund tier for its lead time.

        Args:
            appointment_id: Appointment ID
            data: Optional cancellation reason

        Returns:
            Cancelled appointment with its refund policy

        Raises:
            AppointmentNotFound: If appointment not found
            InvalidStatus: If the appointment is no longer scheduled
        """
        now = self.clock()
        async with self._transaction():
            current = await self._load_for_update(appointment_id)
            values, refund = state_machine.cancel(
                current, data.reason, now, self.settings.clinic_timezone
            )
            row = await self._update(appointment_id, values)

        appointment = AppointmentCancelResponse.model_validate({**row, "refund_policy": refund})
        appointments_cancelled_total.inc()
        logger.info(
            "appointment_cancelled",
            appointment_id=appointment_id,
            refund_policy=refund.value,
        )

        self.dispatcher.dispatch(
            "billing",
            "cancel_bill",
            self.clients.billing.cancel_bill(appointment_id, refund.value),
            appointment_id=appointment_id,
        )
        self._notify(
            NotificationType.CANCELLATION,
            appointment,
            f"Appointment cancelled. Refund policy: {refund.value}",
            {"refund_policy": refund.value},
        )
        return appointment

    async def complete_appointment(
        self,
        appointment_id: int,
        data: AppointmentComplete,
    ) -> AppointmentResponse:
        """
        Mark an appointment as completed and bill the consultation.

        Raises:
            AppointmentNotFound: If appointment not found
            InvalidStatus: If the appointment is not scheduled
        """
        now = self.clock()
        async with self._transaction():
            current = await self._load_for_update(appointment_id)
            values = state_machine.complete(current, data.notes, now)
            row = await self._update(appointment_id, values)

        appointment = AppointmentResponse.model_validate(dict(row))
        logger.info("appointment_completed", appointment_id=appointment_id)

        self.dispatcher.dispatch(
            "billing",
            "create_bill",
            self.clients.billing.create_bill(
                appointment_id,
                appointment.patient_id,
                appointment.doctor_id,
                self.settings.consultation_fee,
            ),
            appointment_id=appointment_id,
        )
        return appointment

    async def mark_no_show(self, appointment_id: int) -> AppointmentResponse:
        """
        Mark an appointment as a no-show and bill the no-show fee.

        Raises:
            AppointmentNotFound: If appointment not found
            InvalidStatus: If the appointment is not scheduled
        """
        now = self.clock()
        async with self._transaction():
            current = await self._load_for_update(appointment_id)
            values = state_machine.mark_no_show(current, now)
            row = await self._update(appointment_id, values)

        appointment = AppointmentResponse.model_validate(dict(row))
        logger.info("appointment_marked_no_show", appointment_id=appointment_id)

        self.dispatcher.dispatch(
            "billing",
            "create_no_show_bill",
            self.clients.billing.create_bill(
                appointment_id,
                appointment.patient_id,
                appointment.doctor_id,
                self.settings.no_show_fee,
                bill_type=NO_SHOW_BILL_TYPE,
            ),
            appointment_id=appointment_id,
        )
        return appointment

    async def get_appointment(self, appointment_id: int) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            AppointmentNotFound: If appointment not found
        """
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        if row is None:
            raise AppointmentNotFound()
        return AppointmentResponse.model_validate(dict(row))

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments, latest slot first
        """
        conditions = []

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.appointment_date:
            conditions.append(appointments.c.appointment_date == filters.appointment_date)

        where = and_(*conditions) if conditions else None

        count_stmt = select(func.count()).select_from(appointments)
        stmt = select(appointments)
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)

        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            stmt.order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.start_time.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )
