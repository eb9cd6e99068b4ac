"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.collaborators import CollaboratorClients
from app.config import Settings, get_settings
from app.database import get_db
from app.services.appointment_service import AppointmentService
from app.services.dispatcher import BackgroundDispatcher


def get_collaborators(request: Request) -> CollaboratorClients:
    """Collaborator clients created at application startup."""
    return request.app.state.collaborators


def get_dispatcher(request: Request) -> BackgroundDispatcher:
    """Background dispatcher created at application startup."""
    return request.app.state.dispatcher


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
    clients: Annotated[CollaboratorClients, Depends(get_collaborators)],
    dispatcher: Annotated[BackgroundDispatcher, Depends(get_dispatcher)],
) -> AppointmentService:
    """Build the appointment orchestrator for one request."""
    return AppointmentService(db, settings, clients, dispatcher)


# Type aliases for dependency injection
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
