from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from complaint_tracker.core.config import Settings
from complaint_tracker.core.exceptions import (
    ComplaintNotFound,
    ConcurrentModification,
    ValidationFailed,
)
from complaint_tracker.models.common import utcnow
from complaint_tracker.models.complaint import (
    Complaint,
    ComplaintPage,
    ComplaintStats,
    Pagination,
    TechnicianStats,
    TimelineEntry,
)
from complaint_tracker.repositories.base import SORTABLE_FIELDS, ComplaintRepository
from complaint_tracker.schemas.complaint import ComplaintCreate
from complaint_tracker.services import workflow
from complaint_tracker.services.events import (
    ComplaintEvent,
    EventPublisher,
    EventType,
    LoggingEventPublisher,
    publish_safely,
)
from complaint_tracker.services.id_generator import ComplaintIdGenerator
from complaint_tracker.services.progress import progress_updates
from complaint_tracker.services.stats import compute_stats, compute_technician_stats
from complaint_tracker.services.timeline import TimelineLedger, pushed_entries

logger = logging.getLogger(__name__)

Builder = Callable[[Complaint], Optional[Dict[str, Any]]]


def _validation_fields(exc: ValidationError) -> Dict[str, str]:
    return {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}


def _camel_sort(value: str) -> str:
    # accept createdAt as well as created_at
    out = []
    for ch in value:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


class ComplaintService:
    """
    Entry point for every complaint operation.

    Mutations follow read / build update / compare-and-swap write. A lost
    race re-reads and rebuilds, up to settings.max_write_attempts times.
    Events are published only after the write has committed.
    """

    def __init__(
        self,
        repo: ComplaintRepository,
        settings: Settings,
        publisher: Optional[EventPublisher] = None,
        id_generator: Optional[ComplaintIdGenerator] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.settings = settings
        self.publisher = publisher if publisher is not None else LoggingEventPublisher()
        self.ids = id_generator or ComplaintIdGenerator(
            repo,
            prefix=settings.id_prefix,
            floor=settings.id_floor,
            max_attempts=settings.id_max_attempts,
            base_delay=settings.id_retry_base_delay,
        )
        self.clock = clock
        self.ledger = TimelineLedger(repo, clock)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    async def _load(self, complaint_id: str) -> Complaint:
        doc = await self.repo.get(complaint_id)
        if doc is None:
            raise ComplaintNotFound(complaint_id)
        return Complaint.model_validate(doc)

    async def _mutate(
        self, complaint_id: str, build: Builder
    ) -> Tuple[Complaint, Complaint, Optional[Dict[str, Any]]]:
        """Returns (before, after, update). update is None when build chose not to write."""
        attempts = self.settings.max_write_attempts
        for attempt in range(attempts):
            before = await self._load(complaint_id)
            update = build(before)
            if update is None:
                return before, before, None

            doc = await self.repo.apply(complaint_id, update, expected_version=before.version)
            if doc is not None:
                return before, Complaint.model_validate(doc), update

            # either deleted under us or another writer won
            if await self.repo.get(complaint_id) is None:
                raise ComplaintNotFound(complaint_id)
            logger.info(
                "version conflict on %s (attempt %d/%d)",
                complaint_id,
                attempt + 1,
                attempts,
                extra={"complaint_id": complaint_id, "attempt": attempt + 1},
            )

        raise ConcurrentModification(complaint_id, attempts)

    async def _publish(self, event_type: EventType, complaint: Complaint, **payload: Any) -> None:
        event = ComplaintEvent(
            type=event_type,
            complaint_id=complaint.complaint_id,
            payload={"complaint": complaint.model_dump(mode="json", by_alias=True), **payload},
        )
        await publish_safely(self.publisher, event)

    @staticmethod
    def _entries_payload(update: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [e.model_dump(mode="json", by_alias=True) for e in pushed_entries(update)]

    # ------------------------------------------------------------------
    # create / read
    # ------------------------------------------------------------------
    async def create(self, data: Union[ComplaintCreate, Dict[str, Any]]) -> Complaint:
        if not isinstance(data, ComplaintCreate):
            try:
                data = ComplaintCreate.model_validate(data)
            except ValidationError as exc:
                raise ValidationFailed(_validation_fields(exc)) from None

        data = workflow.validate_new_complaint(
            data,
            min_length=self.settings.description_min_length,
            max_length=self.settings.description_max_length,
        )

        def build(complaint_id: str, seq: int) -> Dict[str, Any]:
            now = self.clock()
            return workflow.new_complaint(data, complaint_id, seq, now).model_dump()

        doc = await self.ids.insert_with_unique_id(build)
        complaint = Complaint.model_validate(doc)
        logger.info("complaint %s created (%s)", complaint.complaint_id, complaint.category)

        await self._publish(EventType.new_complaint, complaint)
        return complaint

    async def get(self, complaint_id: str) -> Complaint:
        return await self._load(complaint_id)

    @staticmethod
    def build_filters(
        status: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        citizen_email: Optional[str] = None,
        technician_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = getattr(status, "value", status)
        if category:
            filters["category"] = getattr(category, "value", category)
        if priority:
            filters["priority"] = getattr(priority, "value", priority)
        if citizen_email:
            filters["citizen.email"] = citizen_email.strip().lower()
        if technician_id:
            filters["assigned_to.id"] = technician_id
        return filters

    async def list(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        citizen_email: Optional[str] = None,
        technician_id: Optional[str] = None,
        limit: Optional[int] = None,
        skip: int = 0,
        sort: str = "created_at",
        order: str = "desc",
    ) -> ComplaintPage:
        sort_field = _camel_sort(sort or "created_at")
        if sort_field not in SORTABLE_FIELDS:
            raise ValidationFailed({"sort": f"Cannot sort by {sort}"})
        if order not in ("asc", "desc"):
            raise ValidationFailed({"order": "Order must be asc or desc"})

        limit = self.settings.list_default_limit if limit is None else limit
        limit = min(max(int(limit), 1), self.settings.list_max_limit)
        skip = max(int(skip or 0), 0)

        filters = self.build_filters(status, category, priority, citizen_email, technician_id)
        docs = await self.repo.list(filters, limit, skip, sort_field, order == "desc")
        total = await self.repo.count(filters)

        return ComplaintPage(
            data=[Complaint.model_validate(d) for d in docs],
            pagination=Pagination(
                total=total,
                limit=limit,
                skip=skip,
                has_more=skip + len(docs) < total,
            ),
        )

    async def for_citizen(self, email: str) -> List[Complaint]:
        docs = await self.repo.find_all(self.build_filters(citizen_email=email))
        return [Complaint.model_validate(d) for d in docs]

    async def for_technician(self, technician_id: str) -> List[Complaint]:
        docs = await self.repo.find_all(self.build_filters(technician_id=technician_id))
        return [Complaint.model_validate(d) for d in docs]

    async def stats(self) -> ComplaintStats:
        # raw documents: an unrecognised status must count as "other", not fail validation
        docs = await self.repo.find_all()
        return compute_stats(docs, now=self.clock(), window_days=self.settings.recent_window_days)

    async def technician_stats(self, technician_id: str) -> TechnicianStats:
        docs = await self.repo.find_all(self.build_filters(technician_id=technician_id))
        return compute_technician_stats(docs, technician_id)

    async def timeline(self, complaint_id: str, newest_first: bool = False) -> List[TimelineEntry]:
        return await self.ledger.get(complaint_id, newest_first=newest_first)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def transition_status(
        self,
        complaint_id: str,
        new_status: str,
        actor: str = "System",
        actor_role: str = "system",
        description: Optional[str] = None,
    ) -> Complaint:
        target = workflow.coerce_status(new_status)
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.apply_transition_updates(
                c, target, actor, actor_role, self.clock(), description
            ),
        )
        if update is not None and before.status != after.status:
            await self._publish(
                EventType.status_changed,
                after,
                old_status=before.status,
                new_status=after.status,
                timeline=self._entries_payload(update),
            )
        elif update is not None:
            await self._publish(
                EventType.timeline_entry, after, timeline=self._entries_payload(update)
            )
        return after

    async def assign(
        self,
        complaint_id: str,
        technician_id: str,
        technician_name: str,
        assigned_by: str = "Officer",
        assigned_by_role: str = "officer",
        specialty: Optional[str] = None,
    ) -> Complaint:
        policy = self.settings.assignment_policy
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.assign_updates(
                c,
                technician_id,
                technician_name,
                assigned_by,
                assigned_by_role,
                self.clock(),
                specialty=specialty,
                policy=policy,
            ),
        )
        entries = self._entries_payload(update)
        await self._publish(
            EventType.task_assigned,
            after,
            technician=after.assigned_to.model_dump(by_alias=True) if after.assigned_to else None,
            assigned_by=assigned_by,
            timeline=entries,
        )
        if before.status != after.status:
            await self._publish(
                EventType.status_changed,
                after,
                old_status=before.status,
                new_status=after.status,
            )
        return after

    async def reassign(
        self,
        complaint_id: str,
        technician_id: str,
        technician_name: str,
        reassigned_by: str = "Officer",
        reassigned_by_role: str = "officer",
        specialty: Optional[str] = None,
    ) -> Complaint:
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.reassign_updates(
                c,
                technician_id,
                technician_name,
                reassigned_by,
                reassigned_by_role,
                self.clock(),
                specialty=specialty,
            ),
        )
        await self._publish(
            EventType.task_reassigned,
            after,
            old_technician=before.assigned_to.model_dump(by_alias=True) if before.assigned_to else None,
            new_technician=after.assigned_to.model_dump(by_alias=True) if after.assigned_to else None,
            reassigned_by=reassigned_by,
            timeline=self._entries_payload(update),
        )
        return after

    async def start_work(self, complaint_id: str, technician_name: Optional[str] = None) -> Complaint:
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.start_work_updates(c, technician_name, self.clock()),
        )
        await self._publish(
            EventType.task_started, after, timeline=self._entries_payload(update)
        )
        return after

    async def add_progress(
        self,
        complaint_id: str,
        notes: str,
        time_spent: Any = 0,
        technician: Optional[str] = None,
        photos: Optional[List[str]] = None,
    ) -> Complaint:
        """The new ProgressUpdate is the last item of the returned complaint's progress_updates."""
        strict = self.settings.strict_time_spent

        def build(c: Complaint) -> Dict[str, Any]:
            update, _ = progress_updates(
                c, notes, time_spent, technician, self.clock(), photos=photos, strict=strict
            )
            return update

        _, after, update = await self._mutate(complaint_id, build)
        await self._publish(
            EventType.progress_update,
            after,
            progress=after.progress_updates[-1].model_dump(mode="json", by_alias=True),
            timeline=self._entries_payload(update),
        )
        return after

    async def complete(
        self,
        complaint_id: str,
        technician_name: Optional[str] = None,
        notes: Optional[str] = None,
        time_spent: Any = None,
        photos: Optional[List[str]] = None,
    ) -> Complaint:
        strict = self.settings.strict_time_spent
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.complete_updates(
                c,
                technician_name,
                self.clock(),
                notes=notes,
                time_spent=time_spent,
                photos=photos,
                strict=strict,
            ),
        )
        entries = self._entries_payload(update)
        await self._publish(
            EventType.task_completed,
            after,
            total_time_spent=after.total_time_spent,
            timeline=entries,
        )
        await self._publish(
            EventType.status_changed,
            after,
            old_status=before.status,
            new_status=after.status,
        )
        return after

    async def reopen(
        self,
        complaint_id: str,
        actor: str = "System",
        actor_role: str = "system",
        reason: Optional[str] = None,
    ) -> Complaint:
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.reopen_updates(c, actor, actor_role, self.clock(), reason),
        )
        await self._publish(
            EventType.status_changed,
            after,
            old_status=before.status,
            new_status=after.status,
            timeline=self._entries_payload(update),
        )
        return after

    async def override_status(
        self,
        complaint_id: str,
        new_status: str,
        actor: str,
        actor_role: str,
        reason: str,
    ) -> Complaint:
        before, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.override_updates(
                c, new_status, actor, actor_role, reason, self.clock()
            ),
        )
        logger.warning(
            "status override on %s: %s -> %s by %s",
            complaint_id,
            before.status,
            after.status,
            actor,
        )
        await self._publish(
            EventType.status_changed,
            after,
            old_status=before.status,
            new_status=after.status,
            override=True,
            timeline=self._entries_payload(update),
        )
        return after

    async def update_details(
        self,
        complaint_id: str,
        actor: str = "System",
        actor_role: str = "system",
        priority: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Complaint:
        _, after, update = await self._mutate(
            complaint_id,
            lambda c: workflow.details_updates(
                c,
                actor,
                actor_role,
                self.clock(),
                priority=priority,
                description=description,
                min_length=self.settings.description_min_length,
                max_length=self.settings.description_max_length,
            ),
        )
        if update is not None:
            await self._publish(
                EventType.complaint_updated, after, timeline=self._entries_payload(update)
            )
        return after

    async def add_comment(
        self,
        complaint_id: str,
        description: str,
        actor: str,
        actor_role: str = "system",
        title: str = "Comment",
    ) -> List[TimelineEntry]:
        entry = workflow.comment_entry(description, actor, actor_role, self.clock(), title)
        await self.ledger.append(complaint_id, entry)
        complaint = await self._load(complaint_id)
        await self._publish(
            EventType.timeline_entry,
            complaint,
            timeline=[entry.model_dump(mode="json", by_alias=True)],
        )
        return complaint.timeline

    async def delete(self, complaint_id: str) -> None:
        if not await self.repo.delete(complaint_id):
            raise ComplaintNotFound(complaint_id)
        logger.warning("complaint %s deleted", complaint_id)
        await publish_safely(
            self.publisher,
            ComplaintEvent(type=EventType.complaint_deleted, complaint_id=complaint_id),
        )

