"""HTTP clients for the patient, doctor, billing and notification services."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx
import structlog

from app.config import Settings
from app.core.exceptions import CollaboratorError, CollaboratorNotFound

logger = structlog.get_logger(__name__)


class ServiceClient:
    """Async JSON client for one collaborating service."""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            error_cls = CollaboratorNotFound if status_code == 404 else CollaboratorError
            raise error_cls(
                self.service_name,
                f"{self.service_name} service returned {status_code}",
                status_code=status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            raise CollaboratorError(
                self.service_name,
                f"Unable to reach {self.service_name} service: {exc.__class__.__name__}",
                cause=exc,
            ) from exc

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise CollaboratorError(
                self.service_name,
                f"{self.service_name} service returned a non-JSON body",
                status_code=response.status_code,
                cause=exc,
            ) from exc
        if not isinstance(body, dict):
            raise CollaboratorError(
                self.service_name,
                f"{self.service_name} service returned an unexpected body",
                status_code=response.status_code,
            )
        return body

    def _unwrap(self, body: dict[str, Any]) -> dict[str, Any]:
        """Return the ``data`` object of a lookup response."""
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise CollaboratorError(
                self.service_name, f"{self.service_name} service returned an unexpected body"
            )
        return data

    async def get(self, path: str) -> dict[str, Any]:
        return await self._request("GET", path)

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", path, json=payload)


class PatientClient(ServiceClient):
    service_name = "patient"

    async def get_patient(self, patient_id: int) -> dict[str, Any]:
        """Fetch the patient descriptor, raising CollaboratorNotFound on 404."""
        body = await self.get(f"/v1/patients/{patient_id}")
        return self._unwrap(body)


class DoctorClient(ServiceClient):
    service_name = "doctor"

    async def get_doctor(self, doctor_id: int) -> dict[str, Any]:
        """Fetch the doctor descriptor, raising CollaboratorNotFound on 404."""
        body = await self.get(f"/v1/doctors/{doctor_id}")
        return self._unwrap(body)


class BillingClient(ServiceClient):
    service_name = "billing"

    async def create_bill(
        self,
        appointment_id: int,
        patient_id: int,
        doctor_id: int,
        amount: Decimal,
        bill_type: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "appointment_id": appointment_id,
            "patient_id": patient_id,
            "doctor_id": doctor_id,
            "amount": float(amount),
        }
        if bill_type is not None:
            payload["bill_type"] = bill_type
        return await self.post("/v1/bills", payload)

    async def cancel_bill(self, appointment_id: int, refund_policy: str) -> dict[str, Any]:
        return await self.post(
            "/v1/bills/cancel",
            {"appointment_id": appointment_id, "refund_policy": refund_policy},
        )


class NotificationClient(ServiceClient):
    service_name = "notification"

    async def send(
        self,
        notification_type: str,
        patient_id: int,
        message: str,
        metadata: dict[str, Any],
    ) -> dict[str, Any]:
        return await self.post(
            "/v1/notifications",
            {
                "type": notification_type,
                "patient_id": patient_id,
                "message": message,
                "metadata": metadata,
            },
        )


@dataclass
class CollaboratorClients:
    """The set of collaborator clients shared by all requests."""

    patients: PatientClient
    doctors: DoctorClient
    billing: BillingClient
    notifications: NotificationClient

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CollaboratorClients":
        """Build clients for the service URLs configured in ``settings``."""
        timeout = settings.collaborator_timeout_seconds
        return cls(
            patients=PatientClient(
                settings.patient_service_url, timeout=timeout, transport=transport
            ),
            doctors=DoctorClient(settings.doctor_service_url, timeout=timeout, transport=transport),
            billing=BillingClient(
                settings.billing_service_url, timeout=timeout, transport=transport
            ),
            notifications=NotificationClient(
                settings.notification_service_url, timeout=timeout, transport=transport
            ),
        )

    async def close(self) -> None:
        for client in (self.patients, self.doctors, self.billing, self.notifications):
            await client.close()
        logger.info("collaborator_clients_closed")
