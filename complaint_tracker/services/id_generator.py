from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Dict, Optional, Tuple

from complaint_tracker.core.exceptions import DuplicateComplaintId, ResourceExhausted
from complaint_tracker.repositories.base import ComplaintRepository

logger = logging.getLogger(__name__)


class ComplaintIdGenerator:
    """
    Allocates CMPT-<n> identifiers from an atomic counter kept at or above
    the highest suffix in use. The store's unique index is the final word:
    a colliding insert re-syncs the counter and retries with backoff.
    """

    def __init__(
        self,
        repo: ComplaintRepository,
        prefix: str = "CMPT",
        floor: int = 130,
        max_attempts: int = 5,
        base_delay: float = 0.1,
    ):
        self.repo = repo
        self.prefix = prefix
        self.floor = floor
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")

    def format_id(self, seq: int) -> str:
        return f"{self.prefix}-{seq}"

    def parse_seq(self, complaint_id: str) -> Optional[int]:
        m = self._pattern.match(complaint_id or "")
        return int(m.group(1)) if m else None

    async def _allocate(self) -> Tuple[str, int]:
        seq = await self.repo.next_sequence(self.floor)
        return self.format_id(seq), seq

    async def next_complaint_id(self) -> str:
        complaint_id, _ = await self._allocate()
        return complaint_id

    async def insert_with_unique_id(
        self, build: Callable[[str, int], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        `build(complaint_id, seq)` returns the document to insert. Retries on
        a duplicate id, sleeping base_delay * 2**attempt between attempts.
        """
        for attempt in range(self.max_attempts):
            complaint_id, seq = await self._allocate()
            try:
                return await self.repo.insert(build(complaint_id, seq))
            except DuplicateComplaintId:
                logger.warning(
                    "complaint id %s already taken (attempt %d/%d)",
                    complaint_id,
                    attempt + 1,
                    self.max_attempts,
                    extra={"complaint_id": complaint_id, "attempt": attempt + 1},
                )
                await self.repo.sync_sequence(self.floor)
                if attempt + 1 < self.max_attempts:
                    await asyncio.sleep(self.base_delay * 2**attempt)

        raise ResourceExhausted(self.max_attempts)
