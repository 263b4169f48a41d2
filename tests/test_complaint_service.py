"""Service-level behaviour against the in-memory store."""

import asyncio
import re

import pytest

from complaint_tracker.core.exceptions import (
    ComplaintNotFound,
    ConcurrentModification,
    InvalidTransition,
    ValidationFailed,
)
from complaint_tracker.repositories.memory import InMemoryComplaintRepository
from complaint_tracker.services.complaints import ComplaintService
from complaint_tracker.services.events import EventType


class YieldingRepository(InMemoryComplaintRepository):
    """Yields on every read so concurrent writers interleave."""

    async def get(self, complaint_id):
        doc = await super().get(complaint_id)
        await asyncio.sleep(0)
        return doc


class StaleRepository(InMemoryComplaintRepository):
    """Every guarded write loses the race."""

    async def apply(self, complaint_id, update, expected_version=None):
        if expected_version is not None:
            return None
        return await super().apply(complaint_id, update)


def _milestones_in_order(c):
    stamps = [
        s
        for s in (c.created_at, c.work_started_at, c.resolved_at, c.closed_at)
        if s is not None
    ]
    return stamps == sorted(stamps)


class TestEndToEnd:
    async def test_create_assign_progress_complete(self, service, complaint_data):
        c = await service.create(complaint_data)
        assert c.status == "new"
        assert re.match(r"^CMPT-\d+$", c.complaint_id)
        assert len(c.timeline) == 1
        assert c.timeline[0].type == "submitted"

        c = await service.assign(c.complaint_id, "TECH-01", "Bob Tech", "Officer X", "officer")
        assert c.status in ("assigned", "in-progress")
        assert c.assigned_to.id == "TECH-01"
        assert len(c.timeline) == 2

        c = await service.add_progress(c.complaint_id, "Found the leak", 1.5, "Bob Tech")
        assert c.total_time_spent == 1.5
        assert len(c.timeline) == 3

        c = await service.complete(c.complaint_id, "Bob Tech")
        assert c.status == "resolved"
        assert c.resolved_at is not None
        assert len(c.timeline) == 4
        assert _milestones_in_order(c)

    async def test_first_id_and_sequence(self, service, complaint_data):
        first = await service.create(complaint_data)
        second = await service.create(complaint_data)
        assert first.complaint_id == "CMPT-131"
        assert second.complaint_id == "CMPT-132"
        assert second.complaint_seq == first.complaint_seq + 1


class TestCreate:
    async def test_invalid_payload(self, service):
        with pytest.raises(ValidationFailed) as exc:
            await service.create({"category": "Water"})
        assert "description" in exc.value.fields

    async def test_business_validation(self, service, complaint_data):
        complaint_data["citizen"]["email"] = "not-an-email"
        with pytest.raises(ValidationFailed) as exc:
            await service.create(complaint_data)
        assert list(exc.value.fields) == ["citizen.email"]

    async def test_fifty_concurrent_creates_get_distinct_ids(self, settings, complaint_data):
        service = ComplaintService(YieldingRepository(), settings)
        created = await asyncio.gather(*(service.create(complaint_data) for _ in range(50)))
        ids = {c.complaint_id for c in created}
        assert len(ids) == 50

    @pytest.mark.parametrize("email", ["jane..roe@citymail.org", "jane@citymail..org", "jane@"])
    async def test_malformed_email_rejected(self, service, repo, complaint_data, email):
        complaint_data["citizen"]["email"] = email
        with pytest.raises(ValidationFailed) as exc:
            await service.create(complaint_data)
        assert "citizen.email" in exc.value.fields
        assert await repo.find_all() == []

    async def test_email_stored_lowercase(self, service, complaint_data):
        complaint_data["citizen"]["email"] = "Jane.Roe@CityMail.org"
        c = await service.create(complaint_data)
        assert c.citizen.email == "jane.roe@citymail.org"


class TestLifecycle:
    async def test_start_work_twice_keeps_first_stamp(self, service, settings, complaint_data):
        settings.assignment_policy = "assigned"
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")

        first = await service.start_work(c.complaint_id, "Bob Tech")
        second = await service.start_work(c.complaint_id, "Bob Tech")

        assert first.work_started_at is not None
        assert second.work_started_at == first.work_started_at
        assert second.status == "in-progress"

    async def test_rejected_is_terminal(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.transition_status(c.complaint_id, "rejected", "Officer X", "officer")

        for target in ("new", "acknowledged", "in-progress", "closed"):
            with pytest.raises(InvalidTransition):
                await service.transition_status(c.complaint_id, target, "Officer X", "officer")

        c = await service.get(c.complaint_id)
        assert c.status == "rejected"
        assert len(c.timeline) == 2

    async def test_invalid_transition_leaves_no_trace(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(InvalidTransition):
            await service.transition_status(c.complaint_id, "closed")
        after = await service.get(c.complaint_id)
        assert after.timeline == c.timeline
        assert after.version == c.version

    async def test_unknown_status_is_validation_error(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(ValidationFailed):
            await service.transition_status(c.complaint_id, "archived")

    async def test_timeline_is_append_only(self, service, complaint_data):
        c = await service.create(complaint_data)
        cid = c.complaint_id
        snapshots = [c.timeline]

        c = await service.transition_status(cid, "acknowledged", "Officer X", "officer")
        snapshots.append(c.timeline)
        c = await service.assign(cid, "TECH-01", "Bob Tech")
        snapshots.append(c.timeline)
        c = await service.add_progress(cid, "Dug trench", 2, "Bob Tech")
        snapshots.append(c.timeline)
        await service.add_comment(cid, "Citizen called for an update", "Officer X", "officer")
        c = await service.get(cid)
        snapshots.append(c.timeline)

        for earlier, later in zip(snapshots, snapshots[1:]):
            assert len(later) == len(earlier) + 1
            assert later[: len(earlier)] == earlier

    async def test_total_time_equals_sum_of_updates(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")
        for hours in (1.5, "2", "bad", 0.25):
            c = await service.add_progress(c.complaint_id, "work", hours, "Bob Tech")
        assert c.total_time_spent == sum(u.time_spent for u in c.progress_updates)
        assert c.total_time_spent == 3.75

        c = await service.complete(c.complaint_id, "Bob Tech", notes="Done", time_spent=1)
        assert c.total_time_spent == sum(u.time_spent for u in c.progress_updates)

    async def test_strict_time_spent(self, service, settings, complaint_data):
        settings.strict_time_spent = True
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")
        with pytest.raises(ValidationFailed):
            await service.add_progress(c.complaint_id, "work", "lots", "Bob Tech")

    async def test_milestones_monotonic_across_reopen_and_override(self, service, complaint_data):
        c = await service.create(complaint_data)
        cid = c.complaint_id
        await service.assign(cid, "TECH-01", "Bob Tech")
        await service.complete(cid, "Bob Tech")
        await service.transition_status(cid, "closed", "Officer X", "officer")
        c = await service.reopen(cid, "Jane Roe", "citizen", reason="Leaking again")
        assert c.status == "in-progress"
        assert _milestones_in_order(c)

        c = await service.override_status(cid, "new", "Admin", "admin", "Re-triage")
        assert c.status == "new"
        assert _milestones_in_order(c)

        c = await service.assign(cid, "TECH-02", "Ann Fixer")
        c = await service.complete(cid, "Ann Fixer")
        assert _milestones_in_order(c)
        assert c.timeline[-1].type == "resolved"

    async def test_reassign(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")
        c = await service.reassign(c.complaint_id, "TECH-02", "Ann Fixer")
        assert c.assigned_to.id == "TECH-02"
        assert c.reassigned_at is not None
        assert "Bob Tech (TECH-01)" in c.timeline[-1].description

    async def test_update_details(self, service, complaint_data):
        c = await service.create(complaint_data)
        c = await service.update_details(c.complaint_id, "Officer X", "officer", priority="urgent")
        assert c.priority == "urgent"
        assert c.timeline[-1].type == "update"

        unchanged = await service.update_details(c.complaint_id, priority="urgent")
        assert unchanged.version == c.version

    async def test_missing_complaint(self, service):
        with pytest.raises(ComplaintNotFound):
            await service.transition_status("CMPT-999", "acknowledged")
        with pytest.raises(ComplaintNotFound):
            await service.delete("CMPT-999")

    async def test_assigned_without_technician_rejected(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(ValidationFailed) as exc:
            await service.transition_status(c.complaint_id, "assigned", "Officer X", "officer")
        assert "technicianId" in exc.value.fields

        after = await service.get(c.complaint_id)
        assert after.status == "new"
        assert after.assigned_to is None
        assert after.version == c.version

    async def test_unknown_priority_not_written(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(ValidationFailed) as exc:
            await service.update_details(c.complaint_id, "Officer X", "officer", priority="super")
        assert "priority" in exc.value.fields

        after = await service.get(c.complaint_id)
        assert after.priority == c.priority
        assert after.version == c.version
        assert len(after.timeline) == 1

    async def test_unknown_actor_role_not_written(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(ValidationFailed) as exc:
            await service.transition_status(c.complaint_id, "acknowledged", "X", "mayor")
        assert "actorRole" in exc.value.fields
        assert (await service.get(c.complaint_id)).status == "new"

    async def test_reassign_unassigned_complaint_rejected(self, service, complaint_data):
        c = await service.create(complaint_data)
        with pytest.raises(ValidationFailed) as exc:
            await service.reassign(c.complaint_id, "TECH-02", "Ann Fixer")
        assert "status" in exc.value.fields

    async def test_progress_on_closed_complaint_reports_in_progress(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.transition_status(c.complaint_id, "rejected", "Officer X", "officer")
        with pytest.raises(InvalidTransition) as exc:
            await service.add_progress(c.complaint_id, "Late visit", 1, "Bob Tech")
        assert exc.value.requested == "in-progress"


class TestConcurrency:
    async def test_racing_transitions_apply_once_each(self, settings, complaint_data):
        repo = YieldingRepository()
        service = ComplaintService(repo, settings)
        c = await service.create(complaint_data)

        results = await asyncio.gather(
            service.transition_status(c.complaint_id, "acknowledged", "Officer X", "officer"),
            service.transition_status(c.complaint_id, "rejected", "Officer Y", "officer"),
            return_exceptions=True,
        )

        after = await service.get(c.complaint_id)
        applied = [r for r in results if not isinstance(r, Exception)]
        # every applied change left exactly one entry, in one linear history
        assert len(after.timeline) == 1 + len(applied)
        assert after.version == len(applied)
        for r in results:
            if isinstance(r, Exception):
                assert isinstance(r, InvalidTransition)

    async def test_gives_up_after_bounded_retries(self, settings, complaint_data):
        service = ComplaintService(StaleRepository(), settings)
        c = await service.create(complaint_data)
        with pytest.raises(ConcurrentModification) as exc:
            await service.transition_status(c.complaint_id, "acknowledged")
        assert exc.value.attempts == settings.max_write_attempts


class TestReads:
    async def test_list_filters_and_pagination(self, service, complaint_data):
        for _ in range(3):
            await service.create(complaint_data)
        other = dict(complaint_data, category="Road")
        road = await service.create(other)

        page = await service.list(category="Road")
        assert page.pagination.total == 1
        assert page.data[0].complaint_id == road.complaint_id

        page = await service.list(limit=2, skip=0)
        assert page.pagination.total == 4
        assert page.pagination.has_more is True
        assert len(page.data) == 2

        page = await service.list(limit=10_000)
        assert page.pagination.limit == 500

    async def test_list_sorting(self, service, complaint_data):
        ids = [(await service.create(complaint_data)).complaint_id for _ in range(3)]
        page = await service.list(sort="complaintSeq", order="asc")
        assert [c.complaint_id for c in page.data] == ids

        with pytest.raises(ValidationFailed):
            await service.list(sort="citizen")
        with pytest.raises(ValidationFailed):
            await service.list(order="sideways")

    async def test_citizen_and_technician_views(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")

        mine = await service.for_citizen("JANE@citymail.org")
        assert [x.complaint_id for x in mine] == [c.complaint_id]
        tasks = await service.for_technician("TECH-01")
        assert [x.complaint_id for x in tasks] == [c.complaint_id]

        stats = await service.technician_stats("TECH-01")
        assert stats.total_tasks == 1
        assert stats.active_tasks == 1

    async def test_stats_tolerates_unknown_status(self, service, repo, complaint_data):
        await service.create(complaint_data)
        c = await service.create(complaint_data)
        repo._docs[c.complaint_id]["status"] = "archived"

        stats = await service.stats()
        assert stats.total == 2
        assert stats.new == 1
        assert stats.other == 1
        assert stats.new_this_week == 2

    async def test_timeline_order(self, service, complaint_data):
        c = await service.create(complaint_data)
        await service.transition_status(c.complaint_id, "acknowledged")
        newest = await service.timeline(c.complaint_id, newest_first=True)
        assert [e.type for e in newest] == ["acknowledged", "submitted"]


class TestEvents:
    async def test_events_follow_commits(self, service, bus, complaint_data):
        c = await service.create(complaint_data)
        await service.assign(c.complaint_id, "TECH-01", "Bob Tech")
        await service.add_progress(c.complaint_id, "Found the leak", 1, "Bob Tech")
        await service.complete(c.complaint_id, "Bob Tech")
        await service.delete(c.complaint_id)

        types = [e.type for e in bus.received]
        assert types == [
            EventType.new_complaint,
            EventType.task_assigned,
            EventType.status_changed,
            EventType.progress_update,
            EventType.task_completed,
            EventType.status_changed,
            EventType.complaint_deleted,
        ]
        assert all(e.complaint_id == c.complaint_id for e in bus.received)

    async def test_failed_validation_publishes_nothing(self, service, bus, complaint_data):
        c = await service.create(complaint_data)
        bus.received.clear()
        with pytest.raises(InvalidTransition):
            await service.complete(c.complaint_id, "Bob Tech")
        assert bus.received == []

    async def test_publisher_failure_does_not_undo_write(self, repo, settings, complaint_data):
        class Broken:
            async def publish(self, event):
                raise RuntimeError("socket closed")

        service = ComplaintService(repo, settings, publisher=Broken())
        c = await service.create(complaint_data)
        assert await repo.get(c.complaint_id) is not None
