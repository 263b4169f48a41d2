from typing import Any, List, Optional

from pydantic import EmailStr, Field

from complaint_tracker.core.enums import ActorRole, Category, ComplaintStatus, Priority
from complaint_tracker.models.common import TrackerBaseModel
from complaint_tracker.models.complaint import TimelineEntry


class CitizenIn(TrackerBaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None


class ComplaintCreate(TrackerBaseModel):
    category: Category
    description: str
    location: str
    priority: Priority = Priority.normal
    citizen: CitizenIn


class ComplaintDetailsUpdate(TrackerBaseModel):
    priority: Optional[Priority] = None
    description: Optional[str] = None
    actor: str = "System"
    actor_role: ActorRole = ActorRole.system


class StatusChangeBody(TrackerBaseModel):
    status: ComplaintStatus
    actor: str = "System"
    actor_role: ActorRole = ActorRole.system
    description: Optional[str] = None


class AssignmentBody(TrackerBaseModel):
    technician_id: str
    technician_name: str
    assigned_by: str = "Officer"
    assigned_by_role: ActorRole = ActorRole.officer
    specialty: Optional[str] = None


class ProgressBody(TrackerBaseModel):
    notes: str
    # coerced by the progress tracker, not here
    time_spent: Any = 0
    technician: str = "Technician"
    photos: List[str] = Field(default_factory=list)


class StartWorkBody(TrackerBaseModel):
    technician: str = "Technician"


class CompleteBody(TrackerBaseModel):
    technician: str = "Technician"
    notes: Optional[str] = None
    time_spent: Any = None
    photos: List[str] = Field(default_factory=list)


class ReopenBody(TrackerBaseModel):
    actor: str = "System"
    actor_role: ActorRole = ActorRole.system
    reason: Optional[str] = None


class OverrideBody(TrackerBaseModel):
    status: ComplaintStatus
    actor: str
    actor_role: ActorRole = ActorRole.admin
    reason: str


class CommentBody(TrackerBaseModel):
    description: str
    actor: str
    actor_role: ActorRole = ActorRole.system
    title: str = "Comment"


class TimelineOut(TrackerBaseModel):
    complaint_id: str
    data: List[TimelineEntry]


class DeletedOut(TrackerBaseModel):
    id: str
    deleted: bool = True
