import asyncio
from unittest.mock import AsyncMock

import pytest

from complaint_tracker.core.exceptions import DuplicateComplaintId, ResourceExhausted
from complaint_tracker.repositories.memory import InMemoryComplaintRepository
from complaint_tracker.services.id_generator import ComplaintIdGenerator


def _doc(complaint_id, seq):
    return {"complaint_id": complaint_id, "complaint_seq": seq, "version": 0}


class TestComplaintIdGenerator:
    async def test_first_id_is_above_floor(self, repo):
        gen = ComplaintIdGenerator(repo, floor=130)
        assert await gen.next_complaint_id() == "CMPT-131"
        assert await gen.next_complaint_id() == "CMPT-132"

    def test_parse_seq(self, repo):
        gen = ComplaintIdGenerator(repo)
        assert gen.parse_seq("CMPT-457") == 457
        assert gen.parse_seq("CST-457") is None
        assert gen.parse_seq("") is None

    async def test_insert_uses_allocated_id(self, repo):
        gen = ComplaintIdGenerator(repo, base_delay=0)
        doc = await gen.insert_with_unique_id(_doc)
        assert doc["complaint_id"] == "CMPT-131"
        assert doc["complaint_seq"] == 131

    async def test_collision_resyncs_counter(self, repo):
        # a row written by another process the counter never saw
        await repo.insert(_doc("CMPT-131", 131))
        await repo.insert(_doc("CMPT-200", 200))
        gen = ComplaintIdGenerator(repo, base_delay=0)

        doc = await gen.insert_with_unique_id(_doc)
        assert doc["complaint_id"] == "CMPT-201"

    async def test_exhausted_after_max_attempts(self, monkeypatch):
        repo = InMemoryComplaintRepository()
        repo.insert = AsyncMock(side_effect=DuplicateComplaintId("CMPT-131"))
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        gen = ComplaintIdGenerator(repo, max_attempts=5, base_delay=0.1)

        with pytest.raises(ResourceExhausted) as exc:
            await gen.insert_with_unique_id(_doc)

        assert exc.value.attempts == 5
        assert repo.insert.await_count == 5
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8])

    async def test_concurrent_inserts_are_distinct(self, repo):
        gen = ComplaintIdGenerator(repo, base_delay=0)
        docs = await asyncio.gather(*(gen.insert_with_unique_id(_doc) for _ in range(50)))
        ids = [d["complaint_id"] for d in docs]
        assert len(set(ids)) == 50
