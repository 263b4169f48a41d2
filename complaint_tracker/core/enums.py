from enum import Enum


class ComplaintStatus(str, Enum):
    new = "new"
    acknowledged = "acknowledged"
    assigned = "assigned"
    in_progress = "in-progress"
    resolved = "resolved"
    completed = "completed"
    rejected = "rejected"
    closed = "closed"


class Category(str, Enum):
    water = "Water"
    road = "Road"
    waste = "Waste"
    light = "Light"
    drainage = "Drainage"
    other = "Other"


class Priority(str, Enum):
    low = "low"
    normal = "normal"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class ActorRole(str, Enum):
    citizen = "citizen"
    officer = "officer"
    technician = "technician"
    admin = "admin"
    system = "system"


class TimelineType(str, Enum):
    submitted = "submitted"
    acknowledged = "acknowledged"
    assigned = "assigned"
    in_progress = "in-progress"
    progress = "progress"
    resolved = "resolved"
    completed = "completed"
    rejected = "rejected"
    closed = "closed"
    reopened = "reopened"
    comment = "comment"
    update = "update"
    override = "override"


class AssignmentPolicy(str, Enum):
    assigned = "assigned"
    in_progress = "in-progress"
