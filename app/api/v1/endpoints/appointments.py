"""Appointment endpoints."""

from datetime import date

from fastapi import APIRouter, Query, status

from app.dependencies import AppointmentServiceDep
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
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book a new appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Book an appointment after validating patient, doctor and slot.

    Args:
        data: Appointment booking data
        service: Appointment service

    Returns:
        Created appointment
    """
    return await service.book_appointment(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    service: AppointmentServiceDep,
    patient_id: int | None = Query(None, gt=0),
    doctor_id: int | None = Query(None, gt=0),
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    appointment_date: date | None = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        service: Appointment service
        patient_id: Filter by patient
        doctor_id: Filter by doctor
        status_filter: Filter by status
        appointment_date: Filter by calendar date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=status_filter,
        appointment_date=appointment_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: int,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    return await service.get_appointment(appointment_id)


@router.put(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment (max 2 times, 1h cutoff)",
)
async def reschedule_appointment(
    appointment_id: int,
    data: AppointmentReschedule,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Move an appointment to a new slot.

    Args:
        appointment_id: Appointment ID
        data: New slot and optional reason
        service: Appointment service

    Returns:
        Rescheduled appointment
    """
    return await service.reschedule_appointment(appointment_id, data)


@router.put(
    "/{appointment_id}/cancel",
    response_model=AppointmentCancelResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment with refund policy",
)
async def cancel_appointment(
    appointment_id: int,
    service: AppointmentServiceDep,
    data: AppointmentCancel | None = None,
) -> AppointmentCancelResponse:
    """
    Cancel an appointment.

    Args:
        appointment_id: Appointment ID
        service: Appointment service
        data: Optional cancellation reason

    Returns:
        Cancelled appointment and the refund policy applied
    """
    return await service.cancel_appointment(appointment_id, data or AppointmentCancel())


@router.put(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark appointment as completed",
)
async def complete_appointment(
    appointment_id: int,
    service: AppointmentServiceDep,
    data: AppointmentComplete | None = None,
) -> AppointmentResponse:
    """Mark an appointment as completed and trigger billing."""
    return await service.complete_appointment(appointment_id, data or AppointmentComplete())


@router.put(
    "/{appointment_id}/no-show",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark appointment as no-show",
)
async def mark_no_show(
    appointment_id: int,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Mark an appointment as a no-show and apply the no-show fee."""
    return await service.mark_no_show(appointment_id)
