from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from complaint_tracker.api.deps import get_complaint_service
from complaint_tracker.core.enums import Category, ComplaintStatus, Priority
from complaint_tracker.core.security import require_admin
from complaint_tracker.models.complaint import (
    Complaint,
    ComplaintPage,
    ComplaintStats,
    TechnicianStats,
    TimelineEntry,
)
from complaint_tracker.schemas.complaint import (
    AssignmentBody,
    CommentBody,
    CompleteBody,
    ComplaintCreate,
    ComplaintDetailsUpdate,
    DeletedOut,
    OverrideBody,
    ProgressBody,
    ReopenBody,
    StartWorkBody,
    StatusChangeBody,
    TimelineOut,
)
from complaint_tracker.services.complaints import ComplaintService

router = APIRouter(prefix="/complaints", tags=["Complaints"])


# =========================
# Read
# =========================
@router.get("", response_model=ComplaintPage)
async def list_complaints(
    status_: Optional[ComplaintStatus] = Query(None, alias="status"),
    category: Optional[Category] = Query(None),
    priority: Optional[Priority] = Query(None),
    citizen_email: Optional[str] = Query(None, alias="citizenEmail"),
    technician_id: Optional[str] = Query(None, alias="technicianId"),
    limit: Optional[int] = Query(None),
    skip: int = Query(0),
    sort: str = Query("createdAt"),
    order: str = Query("desc"),
    service: ComplaintService = Depends(get_complaint_service),
) -> ComplaintPage:
    return await service.list(
        status=status_,
        category=category,
        priority=priority,
        citizen_email=citizen_email,
        technician_id=technician_id,
        limit=limit,
        skip=skip,
        sort=sort,
        order=order,
    )


@router.get("/stats", response_model=ComplaintStats)
async def get_stats(service: ComplaintService = Depends(get_complaint_service)) -> ComplaintStats:
    return await service.stats()


@router.get("/citizen/{email}", response_model=List[Complaint])
async def citizen_complaints(
    email: str, service: ComplaintService = Depends(get_complaint_service)
) -> List[Complaint]:
    return await service.for_citizen(email)


@router.get("/technician/{technician_id}", response_model=List[Complaint])
async def technician_tasks(
    technician_id: str, service: ComplaintService = Depends(get_complaint_service)
) -> List[Complaint]:
    return await service.for_technician(technician_id)


@router.get("/technician/{technician_id}/stats", response_model=TechnicianStats)
async def technician_stats(
    technician_id: str, service: ComplaintService = Depends(get_complaint_service)
) -> TechnicianStats:
    return await service.technician_stats(technician_id)


@router.get("/{complaint_id}", response_model=Complaint)
async def get_complaint(
    complaint_id: str, service: ComplaintService = Depends(get_complaint_service)
) -> Complaint:
    return await service.get(complaint_id)


@router.get("/{complaint_id}/timeline", response_model=TimelineOut)
async def get_timeline(
    complaint_id: str,
    order: str = Query("asc", pattern="^(asc|desc)$"),
    service: ComplaintService = Depends(get_complaint_service),
) -> TimelineOut:
    entries = await service.timeline(complaint_id, newest_first=order == "desc")
    return TimelineOut(complaint_id=complaint_id, data=entries)


# =========================
# Create / edit
# =========================
@router.post("", response_model=Complaint, status_code=status.HTTP_201_CREATED)
async def create_complaint(
    body: ComplaintCreate, service: ComplaintService = Depends(get_complaint_service)
) -> Complaint:
    return await service.create(body)


@router.put("/{complaint_id}", response_model=Complaint)
async def update_complaint(
    complaint_id: str,
    body: ComplaintDetailsUpdate,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.update_details(
        complaint_id,
        actor=body.actor,
        actor_role=body.actor_role,
        priority=body.priority,
        description=body.description,
    )


# =========================
# Lifecycle
# =========================
@router.patch("/{complaint_id}/status", response_model=Complaint)
async def change_status(
    complaint_id: str,
    body: StatusChangeBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.transition_status(
        complaint_id,
        body.status,
        actor=body.actor,
        actor_role=body.actor_role,
        description=body.description,
    )


@router.post(
    "/{complaint_id}/timeline",
    response_model=List[TimelineEntry],
    status_code=status.HTTP_201_CREATED,
)
async def add_timeline_comment(
    complaint_id: str,
    body: CommentBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> List[TimelineEntry]:
    return await service.add_comment(
        complaint_id,
        body.description,
        body.actor,
        actor_role=body.actor_role,
        title=body.title,
    )


@router.post(
    "/{complaint_id}/progress",
    response_model=Complaint,
    status_code=status.HTTP_201_CREATED,
)
async def add_progress(
    complaint_id: str,
    body: ProgressBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.add_progress(
        complaint_id,
        body.notes,
        time_spent=body.time_spent,
        technician=body.technician,
        photos=body.photos,
    )


@router.patch("/{complaint_id}/assign", response_model=Complaint)
async def assign_complaint(
    complaint_id: str,
    body: AssignmentBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.assign(
        complaint_id,
        body.technician_id,
        body.technician_name,
        assigned_by=body.assigned_by,
        assigned_by_role=body.assigned_by_role,
        specialty=body.specialty,
    )


@router.patch("/{complaint_id}/reassign", response_model=Complaint)
async def reassign_complaint(
    complaint_id: str,
    body: AssignmentBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.reassign(
        complaint_id,
        body.technician_id,
        body.technician_name,
        reassigned_by=body.assigned_by,
        reassigned_by_role=body.assigned_by_role,
        specialty=body.specialty,
    )


@router.post("/{complaint_id}/start", response_model=Complaint)
async def start_work(
    complaint_id: str,
    body: StartWorkBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.start_work(complaint_id, body.technician)


@router.post("/{complaint_id}/complete", response_model=Complaint)
async def complete_task(
    complaint_id: str,
    body: CompleteBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.complete(
        complaint_id,
        body.technician,
        notes=body.notes,
        time_spent=body.time_spent,
        photos=body.photos,
    )


@router.post("/{complaint_id}/reopen", response_model=Complaint)
async def reopen_complaint(
    complaint_id: str,
    body: ReopenBody,
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.reopen(
        complaint_id, actor=body.actor, actor_role=body.actor_role, reason=body.reason
    )


# =========================
# Admin
# =========================
@router.post("/{complaint_id}/override", response_model=Complaint)
async def override_status(
    complaint_id: str,
    body: OverrideBody,
    _: str = Depends(require_admin),
    service: ComplaintService = Depends(get_complaint_service),
) -> Complaint:
    return await service.override_status(
        complaint_id, body.status, body.actor, body.actor_role, body.reason
    )


@router.delete("/{complaint_id}", response_model=DeletedOut)
async def delete_complaint(
    complaint_id: str,
    _: str = Depends(require_admin),
    service: ComplaintService = Depends(get_complaint_service),
) -> DeletedOut:
    await service.delete(complaint_id)
    return DeletedOut(id=complaint_id)
