"""
Complaint lifecycle state machine.

Each function validates an intent against the complaint as read and returns
the Mongo-style update document (`$set` / `$push`) that applies it. The
status change and its timeline entries always travel in the same update, so
a single write commits both.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from complaint_tracker.core.enums import (
    ActorRole,
    AssignmentPolicy,
    ComplaintStatus,
    Priority,
    TimelineType,
)
from complaint_tracker.core.exceptions import Forbidden, InvalidTransition, ValidationFailed
from complaint_tracker.models.complaint import Citizen, Complaint, ProgressUpdate, TimelineEntry
from complaint_tracker.schemas.complaint import ComplaintCreate
from complaint_tracker.services.progress import (
    coerce_time_spent,
    format_hours,
    total_time,
)
from complaint_tracker.services.timeline import build_entry, push_timeline

S = ComplaintStatus

ALLOWED_TRANSITIONS: Dict[str, List[str]] = {
    S.new.value: [S.acknowledged.value, S.assigned.value, S.rejected.value],
    S.acknowledged.value: [S.assigned.value, S.rejected.value],
    S.assigned.value: [S.in_progress.value, S.rejected.value],
    S.in_progress.value: [S.resolved.value, S.completed.value, S.rejected.value],
    S.resolved.value: [S.closed.value, S.in_progress.value],
    S.completed.value: [S.closed.value, S.in_progress.value],
    S.closed.value: [S.in_progress.value],
    S.rejected.value: [],
}

REOPENABLE = {S.resolved.value, S.completed.value, S.closed.value}
ASSIGNABLE = {S.new.value, S.acknowledged.value, S.assigned.value}
REASSIGNABLE = {S.assigned.value, S.in_progress.value}

STATUS_TITLES: Dict[str, str] = {
    S.new.value: "Complaint Submitted",
    S.acknowledged.value: "Complaint Acknowledged",
    S.assigned.value: "Assigned to Technician",
    S.in_progress.value: "Work In Progress",
    S.resolved.value: "Issue Resolved",
    S.completed.value: "Task Completed",
    S.rejected.value: "Complaint Rejected",
    S.closed.value: "Complaint Closed",
}

CATEGORY_LABELS: Dict[str, str] = {
    "Water": "Water Leakage",
    "Road": "Pothole",
    "Waste": "Waste Management",
    "Light": "Street Lighting",
}

PHONE_RE = re.compile(r"^[\+]?[(]?[0-9]{1,4}[)]?[-\s\./0-9]*$")
PHONE_MAX_LENGTH = 20


def get_allowed_next(state: str) -> List[str]:
    return ALLOWED_TRANSITIONS.get(state, [])


def validate_transition(current_state: str, target_state: str) -> None:
    allowed = get_allowed_next(current_state)
    if target_state not in allowed:
        raise InvalidTransition(current_state, target_state, allowed)


def coerce_status(value: str) -> str:
    try:
        return S(value).value
    except ValueError:
        raise ValidationFailed({"status": f"Unknown status {value!r}"}) from None


def coerce_priority(value: str) -> str:
    try:
        return Priority(value).value
    except ValueError:
        raise ValidationFailed({"priority": f"Unknown priority {value!r}"}) from None


def _require_assignee(complaint: Complaint, target: str) -> None:
    # `assigned` always carries a technician; only assign/reassign set one
    if target == S.assigned.value and complaint.assigned_to is None:
        raise ValidationFailed(
            {"technicianId": "No technician assigned; use assign to move a complaint to assigned"}
        )


def category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category, category)


def initials(name: str) -> str:
    parts = [p for p in (name or "").split() if p]
    if not parts:
        return "NA"
    return "".join(p[0] for p in parts[:2]).upper()


def _milestone_updates(complaint: Complaint, target: str, now: datetime) -> Dict[str, Any]:
    """
    Stamp workStartedAt / resolvedAt / closedAt on first entry only. A stamp
    is skipped once a later milestone exists, and is never earlier than the
    latest milestone already set.
    """
    stamp = max(now, complaint.latest_milestone())
    updates: Dict[str, Any] = {}
    if target == S.in_progress.value:
        if complaint.work_started_at is None and complaint.resolved_at is None and complaint.closed_at is None:
            updates["work_started_at"] = stamp
    elif target in (S.resolved.value, S.completed.value):
        if complaint.resolved_at is None and complaint.closed_at is None:
            updates["resolved_at"] = stamp
    elif target == S.closed.value:
        if complaint.closed_at is None:
            updates["closed_at"] = stamp
    return updates


# ------------------------------------------------------------------
# Create
# ------------------------------------------------------------------
def validate_new_complaint(
    data: ComplaintCreate,
    min_length: int = 10,
    max_length: int = 2000,
) -> ComplaintCreate:
    errors: Dict[str, str] = {}

    description = (data.description or "").strip()
    if not description:
        errors["description"] = "Description is required"
    elif len(description) < min_length:
        errors["description"] = f"Description must be at least {min_length} characters"
    elif len(description) > max_length:
        errors["description"] = f"Description cannot exceed {max_length} characters"

    location = (data.location or "").strip()
    if not location:
        errors["location"] = "Location is required"

    name = (data.citizen.name or "").strip()
    if not name:
        errors["citizen.name"] = "Citizen name is required"

    # format already checked by EmailStr
    email = data.citizen.email.strip().lower()

    phone = (data.citizen.phone or "").strip() or None
    if phone is not None:
        if len(phone) > PHONE_MAX_LENGTH:
            errors["citizen.phone"] = f"Phone number cannot exceed {PHONE_MAX_LENGTH} characters"
        elif not PHONE_RE.match(phone):
            errors["citizen.phone"] = "Please provide a valid phone number"

    if errors:
        raise ValidationFailed(errors)

    return data.model_copy(
        update={
            "description": description,
            "location": location,
            "citizen": data.citizen.model_copy(
                update={"name": name, "email": email, "phone": phone}
            ),
        }
    )


def new_complaint(
    data: ComplaintCreate,
    complaint_id: str,
    complaint_seq: int,
    now: datetime,
) -> Complaint:
    """A `new` complaint seeded with its `submitted` entry. `data` must be validated."""
    citizen = Citizen(
        name=data.citizen.name,
        email=data.citizen.email,
        phone=data.citizen.phone,
        initials=initials(data.citizen.name),
    )
    submitted = build_entry(
        TimelineType.submitted,
        "Complaint Submitted",
        actor=citizen.name,
        actor_role=ActorRole.citizen,
        description="Received from Citizen Portal",
        timestamp=now,
    )
    return Complaint(
        complaint_id=complaint_id,
        complaint_seq=complaint_seq,
        category=data.category,
        category_label=category_label(data.category),
        description=data.description,
        location=data.location,
        status=S.new,
        priority=data.priority,
        citizen=citizen,
        timeline=[submitted],
        created_at=now,
        updated_at=now,
        version=0,
    )


# ------------------------------------------------------------------
# Status transitions
# ------------------------------------------------------------------
def apply_transition_updates(
    complaint: Complaint,
    target_state: str,
    actor: str,
    actor_role: str,
    now: datetime,
    description: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Returns None when nothing should be written: a same-state request
    without a description.
    """
    current = complaint.status
    target_state = coerce_status(target_state)

    if target_state == current:
        if not description:
            return None
        entry = build_entry(
            TimelineType.comment,
            "Status Unchanged",
            actor=actor,
            actor_role=actor_role,
            description=description,
            timestamp=now,
        )
        return {"$set": {"updated_at": now}, "$push": push_timeline(entry)}

    validate_transition(current, target_state)
    _require_assignee(complaint, target_state)

    reopening = current in REOPENABLE and target_state == S.in_progress.value
    entry = build_entry(
        TimelineType.reopened if reopening else TimelineType(target_state),
        "Complaint Reopened" if reopening else STATUS_TITLES[target_state],
        actor=actor,
        actor_role=actor_role,
        description=description or f"Status changed from {current} to {target_state}",
        timestamp=now,
    )
    return {
        "$set": {
            "status": target_state,
            "updated_at": now,
            **_milestone_updates(complaint, target_state, now),
        },
        "$push": push_timeline(entry),
    }


def reopen_updates(
    complaint: Complaint,
    actor: str,
    actor_role: str,
    now: datetime,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    if complaint.status not in REOPENABLE:
        raise InvalidTransition(
            complaint.status, S.in_progress.value, get_allowed_next(complaint.status)
        )
    description = f"Reopened from {complaint.status}"
    if reason:
        description = f"{description}: {reason}"
    return apply_transition_updates(
        complaint, S.in_progress.value, actor, actor_role, now, description
    )


def override_updates(
    complaint: Complaint,
    target_state: str,
    actor: str,
    actor_role: str,
    reason: str,
    now: datetime,
) -> Dict[str, Any]:
    """Administrative write of any status, bypassing the transition table."""
    if actor_role != ActorRole.admin.value:
        raise Forbidden("Status override requires the admin role")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed({"reason": "A reason is required for a status override"})

    target_state = coerce_status(target_state)
    current = complaint.status
    if target_state == current:
        raise ValidationFailed({"status": f"Complaint is already {current}"})
    _require_assignee(complaint, target_state)

    entry = build_entry(
        TimelineType.override,
        "Status Overridden",
        actor=actor,
        actor_role=actor_role,
        description=f"Status overridden from {current} to {target_state}: {reason}",
        timestamp=now,
    )
    return {
        "$set": {
            "status": target_state,
            "updated_at": now,
            **_milestone_updates(complaint, target_state, now),
        },
        "$push": push_timeline(entry),
    }


# ------------------------------------------------------------------
# Assignment
# ------------------------------------------------------------------
def _require_technician(technician_id: str, technician_name: str) -> None:
    errors = {}
    if not (technician_id or "").strip():
        errors["technicianId"] = "Technician ID is required"
    if not (technician_name or "").strip():
        errors["technicianName"] = "Technician name is required"
    if errors:
        raise ValidationFailed(errors)


def _assignee(technician_id: str, technician_name: str, specialty: Optional[str]) -> Dict[str, Any]:
    return {
        "id": technician_id.strip(),
        "name": technician_name.strip(),
        "specialty": (specialty or "").strip() or None,
    }


def assign_updates(
    complaint: Complaint,
    technician_id: str,
    technician_name: str,
    assigned_by: str,
    assigned_by_role: str,
    now: datetime,
    specialty: Optional[str] = None,
    policy: str = AssignmentPolicy.in_progress.value,
) -> Dict[str, Any]:
    _require_technician(technician_id, technician_name)

    current = complaint.status
    if current not in ASSIGNABLE:
        raise InvalidTransition(current, S.assigned.value, get_allowed_next(current))
    if current != S.assigned.value:
        validate_transition(current, S.assigned.value)
    target = AssignmentPolicy(policy).value
    if target == S.in_progress.value:
        validate_transition(S.assigned.value, S.in_progress.value)

    assignee = _assignee(technician_id, technician_name, specialty)
    description = f"Assigned to {assignee['name']} ({assignee['id']})"
    if assignee["specialty"]:
        description += f" - {assignee['specialty']}"

    entry = build_entry(
        TimelineType.assigned,
        "Task Assigned to Technician",
        actor=assigned_by or "Officer",
        actor_role=assigned_by_role or ActorRole.officer,
        description=description,
        timestamp=now,
    )
    return {
        "$set": {
            "assigned_to": assignee,
            "assigned_at": now,
            "status": target,
            "updated_at": now,
            **_milestone_updates(complaint, target, now),
        },
        "$push": push_timeline(entry),
    }


def reassign_updates(
    complaint: Complaint,
    technician_id: str,
    technician_name: str,
    reassigned_by: str,
    reassigned_by_role: str,
    now: datetime,
    specialty: Optional[str] = None,
) -> Dict[str, Any]:
    _require_technician(technician_id, technician_name)
    if complaint.status not in REASSIGNABLE:
        raise ValidationFailed(
            {"status": f"Only assigned or in-progress complaints can be reassigned, not {complaint.status}"}
        )

    old = complaint.assigned_to
    previous = f"{old.name} ({old.id})" if old else "Unassigned"
    assignee = _assignee(technician_id, technician_name, specialty)

    entry = build_entry(
        TimelineType.assigned,
        "Task Reassigned",
        actor=reassigned_by or "Officer",
        actor_role=reassigned_by_role or ActorRole.officer,
        description=f"Reassigned from {previous} to {assignee['name']} ({assignee['id']})",
        timestamp=now,
    )
    return {
        "$set": {
            "assigned_to": assignee,
            "reassigned_at": now,
            "updated_at": now,
        },
        "$push": push_timeline(entry),
    }


# ------------------------------------------------------------------
# Technician work
# ------------------------------------------------------------------
def start_work_updates(
    complaint: Complaint,
    technician_name: Optional[str],
    now: datetime,
) -> Dict[str, Any]:
    current = complaint.status
    if current not in (S.assigned.value, S.in_progress.value):
        raise InvalidTransition(current, S.in_progress.value, get_allowed_next(current))

    tech = technician_name or "Technician"
    entry = build_entry(
        TimelineType.in_progress,
        "Work Started",
        actor=tech,
        actor_role=ActorRole.technician,
        description=f"{tech} has started working on this issue.",
        timestamp=now,
    )
    return {
        "$set": {
            "status": S.in_progress.value,
            "updated_at": now,
            **_milestone_updates(complaint, S.in_progress.value, now),
        },
        "$push": push_timeline(entry),
    }


def complete_updates(
    complaint: Complaint,
    technician_name: Optional[str],
    now: datetime,
    notes: Optional[str] = None,
    time_spent: Any = None,
    photos: Optional[List[str]] = None,
    strict: bool = False,
) -> Dict[str, Any]:
    current = complaint.status
    if current != S.in_progress.value:
        raise InvalidTransition(current, S.resolved.value, get_allowed_next(current))
    validate_transition(current, S.resolved.value)

    tech = technician_name or "Technician"
    notes = (notes or "").strip()
    updates = list(complaint.progress_updates)
    push: Dict[str, Any] = {}
    if notes:
        final = ProgressUpdate(
            notes=notes,
            time_spent=coerce_time_spent(time_spent, strict=strict),
            technician=tech,
            date=now,
            photos=list(photos or []),
            is_completion=True,
        )
        updates.append(final)
        push["progress_updates"] = {"$each": [final.model_dump()]}

    total = total_time(updates)
    description = f"Work completed by {tech}. {notes or 'Issue has been resolved successfully.'}"
    if total > 0:
        description += f" Total time spent: {format_hours(total)} hours."

    entry = build_entry(
        TimelineType.resolved,
        "Task Completed",
        actor=tech,
        actor_role=ActorRole.technician,
        description=description,
        timestamp=now,
    )
    push.update(push_timeline(entry))
    return {
        "$set": {
            "status": S.resolved.value,
            "resolved_by": tech,
            "total_time_spent": total,
            "updated_at": now,
            **_milestone_updates(complaint, S.resolved.value, now),
        },
        "$push": push,
    }


# ------------------------------------------------------------------
# Non-status edits
# ------------------------------------------------------------------
def details_updates(
    complaint: Complaint,
    actor: str,
    actor_role: str,
    now: datetime,
    priority: Optional[str] = None,
    description: Optional[str] = None,
    min_length: int = 10,
    max_length: int = 2000,
) -> Optional[Dict[str, Any]]:
    changes: Dict[str, Any] = {}
    notes: List[str] = []

    if priority is not None:
        priority = coerce_priority(priority)
    if priority is not None and priority != complaint.priority:
        changes["priority"] = priority
        notes.append(f"Priority changed from {complaint.priority} to {priority}")

    if description is not None:
        text = description.strip()
        if not text or len(text) < min_length:
            raise ValidationFailed(
                {"description": f"Description must be at least {min_length} characters"}
            )
        if len(text) > max_length:
            raise ValidationFailed(
                {"description": f"Description cannot exceed {max_length} characters"}
            )
        if text != complaint.description:
            changes["description"] = text
            notes.append("Description updated")

    if not changes:
        return None

    entry = build_entry(
        TimelineType.update,
        "Complaint Updated",
        actor=actor,
        actor_role=actor_role,
        description="; ".join(notes),
        timestamp=now,
    )
    return {
        "$set": {**changes, "updated_at": now},
        "$push": push_timeline(entry),
    }


def comment_entry(
    description: str,
    actor: str,
    actor_role: str,
    now: datetime,
    title: str = "Comment",
) -> TimelineEntry:
    errors = {}
    if not (description or "").strip():
        errors["description"] = "Description is required"
    if not (actor or "").strip():
        errors["actor"] = "Actor is required"
    if errors:
        raise ValidationFailed(errors)
    return build_entry(
        TimelineType.comment,
        title or "Comment",
        actor=actor.strip(),
        actor_role=actor_role,
        description=description.strip(),
        timestamp=now,
    )
