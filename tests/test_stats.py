from datetime import datetime, timedelta, timezone

from complaint_tracker.services.stats import compute_stats, compute_technician_stats

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _doc(status, category="Water", priority="normal", age_days=1, **extra):
    return {
        "status": status,
        "category": category,
        "priority": priority,
        "created_at": NOW - timedelta(days=age_days),
        **extra,
    }


class TestComputeStats:
    def test_empty(self):
        stats = compute_stats([], now=NOW)
        assert stats.total == 0
        assert stats.by_status == {}
        assert stats.generated_at == NOW

    def test_tally_adds_up(self):
        docs = [
            _doc("new"),
            _doc("new", category="Road"),
            _doc("in-progress", priority="high"),
            _doc("resolved", age_days=30),
            _doc("rejected", age_days=8),
            _doc("archived"),
        ]
        stats = compute_stats(docs, now=NOW)

        assert stats.total == 6
        assert stats.new == 2
        assert stats.in_progress == 1
        assert stats.resolved == 1
        assert stats.rejected == 1
        assert stats.other == 1
        assert (
            stats.new
            + stats.acknowledged
            + stats.assigned
            + stats.in_progress
            + stats.resolved
            + stats.completed
            + stats.rejected
            + stats.closed
            + stats.other
            == stats.total
        )
        assert stats.by_category == {"Water": 5, "Road": 1}
        assert stats.by_priority == {"normal": 5, "high": 1}
        assert stats.new_this_week == 4

    def test_window_boundary_is_inclusive(self):
        stats = compute_stats([_doc("new", age_days=7)], now=NOW)
        assert stats.new_this_week == 1

    def test_iso_string_dates(self):
        doc = _doc("new")
        doc["created_at"] = (NOW - timedelta(days=2)).isoformat().replace("+00:00", "Z")
        assert compute_stats([doc], now=NOW).new_this_week == 1

    def test_serialises_camel_case(self):
        body = compute_stats([_doc("in-progress")], now=NOW).model_dump(by_alias=True)
        assert body["inProgress"] == 1
        assert "newThisWeek" in body


class TestTechnicianStats:
    def test_counts_only_that_technician(self):
        docs = [
            _doc("in-progress", assigned_to={"id": "TECH-01"}, total_time_spent=2),
            _doc("resolved", assigned_to={"id": "TECH-01"}, total_time_spent=3),
            _doc("completed", assigned_to={"id": "TECH-01"}, total_time_spent=4),
            _doc("resolved", assigned_to={"id": "TECH-02"}, total_time_spent=9),
            _doc("new"),
        ]
        stats = compute_technician_stats(docs, "TECH-01")

        assert stats.total_tasks == 3
        assert stats.active_tasks == 1
        assert stats.completed_tasks == 2
        assert stats.total_time_spent == 9
        assert stats.average_time == 4.5

    def test_no_tasks(self):
        stats = compute_technician_stats([], "TECH-09")
        assert stats.total_tasks == 0
        assert stats.average_time == 0
