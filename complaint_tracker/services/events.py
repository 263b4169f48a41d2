"""
Change notifications.

The service publishes one ComplaintEvent after each committed mutation. The
hosting application decides how events travel (websocket, queue, polling
endpoint) by supplying a publisher; the core never picks a transport.
"""
from __future__ import annotations

import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from pydantic import Field

from complaint_tracker.models.common import TrackerBaseModel, utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    new_complaint = "NEW_COMPLAINT"
    status_changed = "STATUS_CHANGED"
    task_assigned = "TASK_ASSIGNED"
    task_reassigned = "TASK_REASSIGNED"
    task_started = "TASK_STARTED"
    progress_update = "PROGRESS_UPDATE"
    task_completed = "TASK_COMPLETED"
    complaint_updated = "COMPLAINT_UPDATED"
    timeline_entry = "TIMELINE_ENTRY"
    complaint_deleted = "COMPLAINT_DELETED"


class ComplaintEvent(TrackerBaseModel):
    type: EventType
    complaint_id: str
    occurred_at: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


class EventPublisher(Protocol):
    async def publish(self, event: ComplaintEvent) -> None: ...


class LoggingEventPublisher:
    """Default publisher: records each event in the application log."""

    async def publish(self, event: ComplaintEvent) -> None:
        logger.info("event %s complaint=%s", event.type, event.complaint_id)


Subscriber = Callable[[ComplaintEvent], Union[None, Awaitable[None]]]


class InMemoryEventBus:
    """In-process fan-out to subscribers; sync and async callbacks both work."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: ComplaintEvent) -> None:
        for callback in list(self._subscribers):
            result = callback(event)
            if inspect.isawaitable(result):
                await result


async def publish_safely(
    publisher: Optional[EventPublisher], event: ComplaintEvent
) -> None:
    """Fire-and-forget: a failing publisher is logged, the committed write stands."""
    if publisher is None:
        return
    try:
        await publisher.publish(event)
    except Exception:
        logger.exception(
            "publishing %s for %s failed",
            event.type,
            event.complaint_id,
            extra={"complaint_id": event.complaint_id, "event_type": str(event.type)},
        )
