"""
Timeline ledger: the append-only, per-complaint audit trail.

Entries are stored oldest first. Nothing here edits or removes an entry;
corrections are new entries.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from complaint_tracker.core.enums import ActorRole, TimelineType
from complaint_tracker.core.exceptions import ComplaintNotFound, ValidationFailed
from complaint_tracker.models.common import utcnow
from complaint_tracker.models.complaint import TimelineEntry
from complaint_tracker.repositories.base import ComplaintRepository

logger = logging.getLogger(__name__)


def coerce_role(value: Union[ActorRole, str, None]) -> str:
    if not value:
        return ActorRole.system.value
    try:
        return ActorRole(value).value
    except ValueError:
        raise ValidationFailed({"actorRole": f"Unknown actor role {value!r}"}) from None


def _entry_fields(exc: ValidationError) -> Dict[str, str]:
    return {".".join(str(p) for p in err["loc"]): err["msg"] for err in exc.errors()}


def build_entry(
    entry_type: Union[TimelineType, str],
    title: str,
    actor: str,
    actor_role: Union[ActorRole, str] = ActorRole.system,
    description: str = "",
    timestamp: Optional[datetime] = None,
) -> TimelineEntry:
    data: Dict[str, Any] = {
        "type": entry_type,
        "title": title,
        "description": description or "",
        "actor": actor,
        "actor_role": coerce_role(actor_role),
    }
    if timestamp is not None:
        data["timestamp"] = timestamp
    try:
        return TimelineEntry(**data)
    except ValidationError as exc:
        raise ValidationFailed(_entry_fields(exc)) from None


def push_timeline(*entries: TimelineEntry) -> Dict[str, Any]:
    """`$push` clause appending entries at the tail of the timeline."""
    return {"timeline": {"$each": [e.model_dump() for e in entries]}}


def pushed_entries(update: Optional[Dict[str, Any]]) -> List[TimelineEntry]:
    if not update:
        return []
    clause = update.get("$push", {}).get("timeline")
    if clause is None:
        return []
    docs = clause["$each"] if isinstance(clause, dict) and "$each" in clause else [clause]
    return [TimelineEntry.model_validate(d) for d in docs]


class TimelineLedger:
    def __init__(
        self,
        repo: ComplaintRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repo = repo
        self.clock = clock

    async def append(
        self, complaint_id: str, entry: Union[TimelineEntry, Dict[str, Any]]
    ) -> TimelineEntry:
        now = self.clock()
        if not isinstance(entry, TimelineEntry):
            data = dict(entry)
            data.setdefault("timestamp", now)
            try:
                entry = TimelineEntry.model_validate(data)
            except ValidationError as exc:
                raise ValidationFailed(_entry_fields(exc)) from None

        updated = await self.repo.apply(
            complaint_id,
            {
                "$set": {"updated_at": now},
                "$push": push_timeline(entry),
            },
        )
        if updated is None:
            raise ComplaintNotFound(complaint_id)

        logger.debug("timeline %s += %s", complaint_id, entry.type)
        return entry

    async def get(self, complaint_id: str, newest_first: bool = False) -> List[TimelineEntry]:
        doc = await self.repo.get(complaint_id)
        if doc is None:
            raise ComplaintNotFound(complaint_id)
        entries = [TimelineEntry.model_validate(e) for e in doc.get("timeline") or []]
        if newest_first:
            entries.reverse()
        return entries
