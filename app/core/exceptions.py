"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int = 500, code: str | None = None):
        """Initialize exception with message, status code and error code."""
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class AppointmentNotFound(NotFoundException):
    """Appointment does not exist."""

    code = "APPOINTMENT_NOT_FOUND"

    def __init__(self, message: str = "Appointment not found"):
        super().__init__(message)


class PatientNotFound(NotFoundException):
    """Patient service reported the patient as unknown."""

    code = "PATIENT_NOT_FOUND"

    def __init__(self, message: str = "Patient not found"):
        super().__init__(message)


class DoctorNotFound(NotFoundException):
    """Doctor service reported the doctor as unknown."""

    code = "DOCTOR_NOT_FOUND"

    def __init__(self, message: str = "Doctor not found"):
        super().__init__(message)


class BadRequestException(AppException):
    """Bad request exception."""

    code = "BAD_REQUEST"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class InvalidStatus(BadRequestException):
    """Transition is not legal from the appointment's current status."""

    code = "INVALID_STATUS"


class InvalidDate(BadRequestException):
    """Requested appointment time is not in the future."""

    code = "INVALID_DATE"

    def __init__(self, message: str = "Appointment must be in the future"):
        super().__init__(message)


class MaxRescheduleExceeded(BadRequestException):
    """Appointment has already been rescheduled the maximum number of times."""

    code = "MAX_RESCHEDULE_EXCEEDED"


class CutoffExceeded(BadRequestException):
    """Too close to the appointment to reschedule it."""

    code = "CUTOFF_TIME_EXCEEDED"


class ConflictException(AppException):
    """Conflict exception."""

    code = "CONFLICT"

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class SlotConflict(ConflictException):
    """Doctor already has an active appointment overlapping the requested slot."""

    code = "SLOT_CONFLICT"

    def __init__(self, message: str = "Time slot not available"):
        super().__init__(message)


class ValidationException(AppException):
    """Validation error exception."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class ServiceUnavailable(AppException):
    """A collaborating service could not answer a synchronous check."""

    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class CollaboratorError(Exception):
    """Raised by collaborator clients when a call does not succeed."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
        *,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.cause = cause


class CollaboratorNotFound(CollaboratorError):
    """Collaborator answered 404 for the requested resource."""
