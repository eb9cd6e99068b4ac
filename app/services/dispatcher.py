"""Background dispatch of post-commit calls to collaborating services."""

import asyncio
from collections.abc import Awaitable
from typing import Any

import structlog

from app.core.metrics import collaborator_failures_total

logger = structlog.get_logger(__name__)


class BackgroundDispatcher:
    """
    Runs best-effort collaborator calls as background tasks.

    Each call is bounded by ``timeout``. Failures are logged and counted and
    never reach the request that scheduled them.
    """

    def __init__(self, timeout: float):
        """Initialize dispatcher with a per-call timeout in seconds."""
        self.timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of calls still running."""
        return len(self._tasks)

    def dispatch(
        self,
        service: str,
        operation: str,
        call: Awaitable[Any],
        **context: Any,
    ) -> asyncio.Task[None]:
        """
        Schedule ``call`` without waiting for it.

        Args:
            service: Collaborator name, used in logs and metrics
            operation: Operation name, used in logs and metrics
            call: Awaitable performing the request
            context: Extra fields logged on failure (appointment_id etc.)

        Returns:
            The scheduled task
        """
        task = asyncio.create_task(self._run(service, operation, call, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        service: str,
        operation: str,
        call: Awaitable[Any],
        context: dict[str, Any],
    ) -> None:
        try:
            await asyncio.wait_for(call, timeout=self.timeout)
        except TimeoutError:
            collaborator_failures_total.labels(service=service, operation=operation).inc()
            logger.warning(
                "collaborator_call_failed",
                service=service,
                operation=operation,
                error="timeout",
                timeout=self.timeout,
                **context,
            )
        except Exception as e:
            collaborator_failures_total.labels(service=service, operation=operation).inc()
            logger.warning(
                "collaborator_call_failed",
                service=service,
                operation=operation,
                error=str(e),
                status_code=getattr(e, "status_code", None),
                **context,
            )
        else:
            logger.debug("collaborator_call_succeeded", service=service, operation=operation, **context)

    async def drain(self) -> None:
        """Wait for every scheduled call to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
