from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import AfterValidator, ConfigDict, EmailStr, Field

from complaint_tracker.core.enums import (
    ActorRole,
    Category,
    ComplaintStatus,
    Priority,
    TimelineType,
)
from complaint_tracker.models.common import TrackerBaseModel, as_utc, utcnow

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class Citizen(TrackerBaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    initials: str = "NA"


class Assignee(TrackerBaseModel):
    id: str
    name: str
    specialty: Optional[str] = None


class TimelineEntry(TrackerBaseModel):
    model_config = ConfigDict(frozen=True)

    type: TimelineType
    title: str
    description: str = ""
    actor: str
    actor_role: ActorRole = ActorRole.system
    timestamp: UTCDateTime = Field(default_factory=utcnow)


class ProgressUpdate(TrackerBaseModel):
    model_config = ConfigDict(frozen=True)

    notes: str
    time_spent: float = Field(0.0, ge=0)
    technician: str
    date: UTCDateTime = Field(default_factory=utcnow)
    photos: List[str] = Field(default_factory=list)
    is_completion: bool = False


class Complaint(TrackerBaseModel):
    complaint_id: str
    complaint_seq: int
    category: Category
    category_label: str
    description: str
    location: str
    status: ComplaintStatus = ComplaintStatus.new
    priority: Priority = Priority.normal

    citizen: Citizen
    assigned_to: Optional[Assignee] = None
    resolved_by: Optional[str] = None

    timeline: List[TimelineEntry] = Field(default_factory=list)
    progress_updates: List[ProgressUpdate] = Field(default_factory=list)
    total_time_spent: float = 0.0

    assigned_at: Optional[UTCDateTime] = None
    reassigned_at: Optional[UTCDateTime] = None
    work_started_at: Optional[UTCDateTime] = None
    resolved_at: Optional[UTCDateTime] = None
    closed_at: Optional[UTCDateTime] = None
    created_at: UTCDateTime
    updated_at: UTCDateTime

    version: int = 0

    def latest_milestone(self) -> datetime:
        stamps = [
            s
            for s in (self.created_at, self.work_started_at, self.resolved_at, self.closed_at)
            if s is not None
        ]
        return max(stamps)


class Pagination(TrackerBaseModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class ComplaintPage(TrackerBaseModel):
    data: List[Complaint]
    pagination: Pagination


class ComplaintStats(TrackerBaseModel):
    total: int = 0
    new: int = 0
    acknowledged: int = 0
    assigned: int = 0
    in_progress: int = 0
    resolved: int = 0
    completed: int = 0
    rejected: int = 0
    closed: int = 0
    other: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    new_this_week: int = 0
    generated_at: UTCDateTime = Field(default_factory=utcnow)


class TechnicianStats(TrackerBaseModel):
    technician_id: str
    total_tasks: int = 0
    active_tasks: int = 0
    completed_tasks: int = 0
    total_time_spent: float = 0.0
    average_time: float = 0.0
