"""Shared fixtures: an in-memory store, a recording event bus and a service."""

from datetime import datetime, timedelta, timezone

import pytest

from complaint_tracker.core.config import Settings
from complaint_tracker.repositories.memory import InMemoryComplaintRepository
from complaint_tracker.services.complaints import ComplaintService
from complaint_tracker.services.events import InMemoryEventBus


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


@pytest.fixture
def settings() -> Settings:
    return Settings(
        store_backend="memory",
        id_retry_base_delay=0,
        log_level="DEBUG",
    )


@pytest.fixture
def repo() -> InMemoryComplaintRepository:
    return InMemoryComplaintRepository()


@pytest.fixture
def bus():
    bus = InMemoryEventBus()
    bus.received = []
    bus.subscribe(bus.received.append)
    return bus


@pytest.fixture
def clock() -> StepClock:
    return StepClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(repo, settings, bus, clock) -> ComplaintService:
    return ComplaintService(repo, settings, publisher=bus, clock=clock)


@pytest.fixture
def complaint_data() -> dict:
    return {
        "category": "Water",
        "description": "Pipe burst on Main St",
        "location": "Gulshan-2",
        "citizen": {"name": "Jane Roe", "email": "jane@citymail.org"},
    }
