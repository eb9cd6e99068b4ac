"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Time,
    func,
    text,
)

# Metadata for all tables
metadata = MetaData()

ACTIVE_SLOT_PREDICATE = "status NOT IN ('CANCELLED', 'COMPLETED')"

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # External references (patient / doctor services)
    Column("patient_id", Integer, nullable=False),
    Column("doctor_id", Integer, nullable=False),
    # Slot, half-open [start_time, end_time)
    Column("appointment_date", Date, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="SCHEDULED"),
    Column("reschedule_count", Integer, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="1"),
    # Free text; action history is appended to notes
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint("end_time > start_time", name="appointments_time_range_check"),
    CheckConstraint(
        "status IN ('SCHEDULED', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "reschedule_count >= 0 AND reschedule_count <= 2",
        name="appointments_reschedule_count_check",
    ),
    Index("ix_appointments_doctor_date", "doctor_id", "appointment_date"),
    Index("ix_appointments_patient_id", "patient_id"),
    Index("ix_appointments_status", "status"),
)

# One active appointment per doctor slot start; cancelled and completed rows release it
Index(
    "uq_appointments_doctor_slot",
    appointments.c.doctor_id,
    appointments.c.appointment_date,
    appointments.c.start_time,
    unique=True,
    postgresql_where=text(ACTIVE_SLOT_PREDICATE),
    sqlite_where=text(ACTIVE_SLOT_PREDICATE),
)
