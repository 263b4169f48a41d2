from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from complaint_tracker.core.enums import ActorRole, ComplaintStatus, TimelineType
from complaint_tracker.core.exceptions import InvalidTransition, ValidationFailed
from complaint_tracker.models.complaint import Complaint, ProgressUpdate
from complaint_tracker.services.timeline import build_entry, push_timeline

# technicians may log preparation work before formally starting
PROGRESS_STATES = {ComplaintStatus.assigned.value, ComplaintStatus.in_progress.value}


def coerce_time_spent(value: Any, strict: bool = False) -> float:
    """
    Hours as a non-negative float. Unparseable, negative or non-finite input
    becomes 0, or raises ValidationFailed when strict.
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        if strict:
            raise ValidationFailed({"timeSpent": "Time spent must be a number of hours"})
        return 0.0
    try:
        hours = float(value)
    except (TypeError, ValueError):
        if strict:
            raise ValidationFailed({"timeSpent": "Time spent must be a number of hours"})
        return 0.0
    if not math.isfinite(hours) or hours < 0:
        if strict:
            raise ValidationFailed({"timeSpent": "Time spent must be a non-negative number"})
        return 0.0
    return hours


def format_hours(hours: float) -> str:
    return f"{hours:g}"


def total_time(updates: Iterable[ProgressUpdate]) -> float:
    return float(sum(u.time_spent for u in updates))


def progress_updates(
    complaint: Complaint,
    notes: str,
    time_spent: Any,
    technician: Optional[str],
    now: datetime,
    photos: Optional[List[str]] = None,
    strict: bool = False,
) -> Tuple[Dict[str, Any], ProgressUpdate]:
    """
    Update document for one progress report: the ProgressUpdate, the new
    running total and the matching `progress` timeline entry, in one write.
    """
    notes = (notes or "").strip()
    if not notes:
        raise ValidationFailed({"notes": "Notes are required"})
    if complaint.status not in PROGRESS_STATES:
        raise InvalidTransition(complaint.status, ComplaintStatus.in_progress.value)

    hours = coerce_time_spent(time_spent, strict=strict)
    technician = technician or "Technician"

    update = ProgressUpdate(
        notes=notes,
        time_spent=hours,
        technician=technician,
        date=now,
        photos=list(photos or []),
    )
    total = total_time([*complaint.progress_updates, update])

    entry = build_entry(
        TimelineType.progress,
        "Progress Update",
        actor=technician,
        actor_role=ActorRole.technician,
        description=f"{notes} ({format_hours(hours)} hours spent)",
        timestamp=now,
    )

    return (
        {
            "$set": {"total_time_spent": total, "updated_at": now},
            "$push": {
                "progress_updates": {"$each": [update.model_dump()]},
                **push_timeline(entry),
            },
        },
        update,
    )
