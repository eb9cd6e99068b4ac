"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class RefundPolicy(str, Enum):
    """Refund tier assigned on cancellation."""

    FULL_REFUND = "FULL_REFUND"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    CANCELLATION_FEE = "CANCELLATION_FEE"


class NotificationType(str, Enum):
    """Event types sent to the notification service."""

    CONFIRMATION = "APPOINTMENT_CONFIRMATION"
    RESCHEDULED = "APPOINTMENT_RESCHEDULED"
    CANCELLATION = "CANCELLATION"


class SlotMixin(BaseModel):
    """Date and half-open time range of an appointment slot."""

    appointment_date: date
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_whole_minutes(cls, v: time) -> time:
        """Slot bounds are HH:MM; seconds and fractions are rejected."""
        if v.second or v.microsecond:
            raise ValueError("Time must be in HH:MM format")
        return v

    @field_validator("end_time")
    @classmethod
    def validate_end_time(cls, v: time, info: ValidationInfo) -> time:
        """Validate end time is after start time."""
        start = info.data.get("start_time")
        if start is not None and v <= start:
            raise ValueError("End time must be after start time")
        return v


class AppointmentCreate(SlotMixin):
    """Schema for booking a new appointment."""

    patient_id: int = Field(..., gt=0)
    doctor_id: int = Field(..., gt=0)
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AppointmentReschedule(SlotMixin):
    """Schema for moving an appointment to a new slot."""

    reason: str | None = Field(None, max_length=500)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class AppointmentComplete(BaseModel):
    """Schema for completing an appointment."""

    notes: str | None = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    reschedule_count: int
    version: int
    reason: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentCancelResponse(AppointmentResponse):
    """Cancelled appointment together with the refund tier applied."""

    refund_policy: RefundPolicy


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    patient_id: int | None = Field(default=None, gt=0)
    doctor_id: int | None = Field(default=None, gt=0)
    status: AppointmentStatus | None = None
    appointment_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)
