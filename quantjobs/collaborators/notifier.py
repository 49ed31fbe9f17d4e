"""
Owner notification adapters.

Notifications are best effort: failures are logged and dropped, a job's
outcome never depends on delivery.
"""

import asyncio
import logging
from typing import Any

import httpx

from quantjobs.collaborators.interfaces import Notifier
from quantjobs.types.events import JobEvent

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Writes notifications to the log. Default when no webhook is configured."""

    async def notify(
        self,
        owner_id: str,
        event: str,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "Notification",
            extra={"owner_id": owner_id, "event": event, "payload": payload}
        )


class WebhookNotifier:
    """
    POSTs notifications as JSON to a webhook URL.

    Raises httpx errors on transport failures or non-2xx responses.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(
        self,
        owner_id: str,
        event: str,
        payload: dict[str, Any],
    ) -> None:
        response = await self._client.post(
            self._url,
            json={"owner_id": owner_id, "event": event, "payload": payload},
        )
        response.raise_for_status()
        logger.debug(
            "Webhook delivered",
            extra={"event": event, "status_code": response.status_code}
        )

    async def aclose(self) -> None:
        await self._client.aclose()


async def send_event(notifier: Notifier, event: JobEvent) -> bool:
    """
    Deliver a job event, logging instead of raising on failure.

    Returns:
        True if the notifier accepted the event.
    """
    try:
        await notifier.notify(
            event.owner_id,
            event.event_type,
            event.model_dump(mode="json"),
        )
    except Exception as e:
        logger.warning(
            "Notification failed",
            extra={
                "job_id": str(event.job_id),
                "event": event.event_type,
                "error": str(e),
            }
        )
        return False
    return True


class EventSender:
    """
    Fire-and-forget delivery of job events.

    send() schedules send_event() as a task and returns at once; the task
    is kept until it finishes so it is not garbage collected. Owners call
    drain() on shutdown to let pending deliveries finish.
    """

    def __init__(self, notifier: Notifier):
        self._notifier = notifier
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Deliveries scheduled but not finished."""
        return len(self._pending)

    def send(self, event: JobEvent) -> asyncio.Task:
        task = asyncio.create_task(send_event(self._notifier, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled delivery."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
