#!/usr/bin/env python3
"""
Load appointments from a CSV export into the database.

Expected columns: appointment_id, patient_id, doctor_id, appointment_date,
start_time, end_time, status, reason, created_at. Rows whose id or active
doctor slot already exists are skipped.

Usage: python scripts/load_seed_data.py [path/to/hms_appointments.csv]
"""

import asyncio
import csv
import sys
from datetime import date, datetime, time
from pathlib import Path

import structlog
from sqlalchemy import insert, text
from sqlalchemy.exc import IntegrityError

from app.database import AsyncSessionLocal, engine
from app.middleware.logging import configure_logging
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus

DEFAULT_CSV = Path("seed-data/hms_appointments.csv")

logger = structlog.get_logger(__name__)


def parse_row(row: dict[str, str]) -> dict:
    """Convert one CSV record into appointment column values."""
    created_at = datetime.fromisoformat(row["created_at"]) if row.get("created_at") else None
    values = {
        "id": int(row["appointment_id"]),
        "patient_id": int(row["patient_id"]),
        "doctor_id": int(row["doctor_id"]),
        "appointment_date": date.fromisoformat(row["appointment_date"]),
        "start_time": time.fromisoformat(row["start_time"]),
        "end_time": time.fromisoformat(row["end_time"]),
        "status": AppointmentStatus(row["status"].strip().upper()).value,
        "reason": row.get("reason") or None,
    }
    if created_at is not None:
        values["created_at"] = created_at
        values["updated_at"] = created_at
    return values


async def load_seed_data(csv_path: Path) -> int:
    """Insert appointments from ``csv_path`` and return the number loaded."""
    if not csv_path.exists():
        logger.warning("seed_data_file_not_found", path=str(csv_path))
        return 0

    with csv_path.open(newline="", encoding="utf-8") as handle:
        rows = [parse_row(record) for record in csv.DictReader(handle)]

    loaded = 0
    async with AsyncSessionLocal() as session:
        for values in rows:
            # Rows colliding on id or on an active doctor slot are skipped
            try:
                await session.execute(insert(appointments).values(**values))
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info("seed_row_skipped", appointment_id=values["id"], error=str(e.orig))
                continue
            loaded += 1
        if loaded and engine.dialect.name == "postgresql":
            # Explicit ids do not advance the serial sequence
            await session.execute(
                text(
                    "SELECT setval(pg_get_serial_sequence('appointments', 'id'), "
                    "(SELECT MAX(id) FROM appointments))"
                )
            )
        await session.commit()

    logger.info("seed_data_loaded", path=str(csv_path), loaded=loaded, total=len(rows))
    return loaded


async def main() -> None:
    configure_logging()
    csv_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_CSV
    try:
        await load_seed_data(csv_path)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
