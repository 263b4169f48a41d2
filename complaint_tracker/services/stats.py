"""
Point-in-time statistics over a complaint collection.

Pure functions: the caller supplies the complaints (stored documents or
Complaint models) and gets a fresh snapshot back. Nothing is cached.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Union

from complaint_tracker.core.enums import ComplaintStatus
from complaint_tracker.models.common import as_utc, utcnow
from complaint_tracker.models.complaint import Complaint, ComplaintStats, TechnicianStats

ComplaintLike = Union[Complaint, Mapping[str, Any]]

# ComplaintStats attribute for each known status
STATUS_FIELDS = {
    ComplaintStatus.new.value: "new",
    ComplaintStatus.acknowledged.value: "acknowledged",
    ComplaintStatus.assigned.value: "assigned",
    ComplaintStatus.in_progress.value: "in_progress",
    ComplaintStatus.resolved.value: "resolved",
    ComplaintStatus.completed.value: "completed",
    ComplaintStatus.rejected.value: "rejected",
    ComplaintStatus.closed.value: "closed",
}


def _get(c: ComplaintLike, name: str, default=None):
    if isinstance(c, Mapping):
        return c.get(name, default)
    return getattr(c, name, default)


def _dt(v) -> Optional[datetime]:
    if isinstance(v, datetime):
        return as_utc(v)
    if isinstance(v, str):
        try:
            return as_utc(datetime.fromisoformat(v.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def compute_stats(
    complaints: Iterable[ComplaintLike],
    now: Optional[datetime] = None,
    window_days: int = 7,
) -> ComplaintStats:
    now = as_utc(now) or utcnow()
    since = now - timedelta(days=window_days)

    by_status: Counter = Counter()
    by_category: Counter = Counter()
    by_priority: Counter = Counter()
    total = 0
    recent = 0

    for c in complaints:
        total += 1
        by_status[str(_get(c, "status") or "unknown")] += 1
        by_category[str(_get(c, "category") or "unknown")] += 1
        by_priority[str(_get(c, "priority") or "unknown")] += 1

        created_at = _dt(_get(c, "created_at"))
        if created_at is not None and created_at >= since:
            recent += 1

    flat = {field: by_status.get(status, 0) for status, field in STATUS_FIELDS.items()}
    other = sum(n for status, n in by_status.items() if status not in STATUS_FIELDS)

    return ComplaintStats(
        total=total,
        **flat,
        other=other,
        by_status=dict(by_status),
        by_category=dict(by_category),
        by_priority=dict(by_priority),
        new_this_week=recent,
        generated_at=now,
    )


def compute_technician_stats(
    complaints: Iterable[ComplaintLike],
    technician_id: str,
) -> TechnicianStats:
    tasks = []
    for c in complaints:
        assigned = _get(c, "assigned_to")
        if assigned is None:
            continue
        if _get(assigned, "id") == technician_id:
            tasks.append(c)

    active = [t for t in tasks if _get(t, "status") == ComplaintStatus.in_progress.value]
    completed = [
        t
        for t in tasks
        if _get(t, "status") in (ComplaintStatus.resolved.value, ComplaintStatus.completed.value)
    ]
    total_time = float(sum(float(_get(t, "total_time_spent") or 0) for t in tasks))

    return TechnicianStats(
        technician_id=technician_id,
        total_tasks=len(tasks),
        active_tasks=len(active),
        completed_tasks=len(completed),
        total_time_spent=total_time,
        average_time=round(total_time / len(completed), 1) if completed else 0.0,
    )
