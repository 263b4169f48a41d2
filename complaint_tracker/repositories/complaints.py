from __future__ import annotations

import functools
import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, ExecutionTimeout

from complaint_tracker.core.exceptions import DuplicateComplaintId, StoreUnavailable

logger = logging.getLogger(__name__)

COUNTER_KEY = "complaints"


def _guard_store(fn):
    """Driver connectivity/timeout failures surface as StoreUnavailable."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except (ConnectionFailure, ExecutionTimeout) as exc:
            logger.error("mongo call %s failed: %s", fn.__name__, exc)
            raise StoreUnavailable(str(exc)) from exc

    return wrapper


class MongoComplaintRepository:
    def __init__(self, collection, counters):
        self.collection = collection
        self.counters = counters
        self._seeded = False

    @_guard_store
    async def ensure_indexes(self) -> None:
        await self.collection.create_index("complaint_id", unique=True)
        await self.collection.create_index([("complaint_seq", DESCENDING)])
        await self.collection.create_index("status")
        await self.collection.create_index("category")
        await self.collection.create_index("priority")
        await self.collection.create_index("citizen.email")
        await self.collection.create_index("assigned_to.id")
        await self.collection.create_index([("created_at", DESCENDING)])
        await self.collection.create_index([("status", ASCENDING), ("created_at", DESCENDING)])

    @_guard_store
    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self.collection.insert_one(document)
        except DuplicateKeyError as exc:
            raise DuplicateComplaintId(document["complaint_id"]) from exc
        document["_id"] = result.inserted_id
        return document

    @_guard_store
    async def get(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"complaint_id": complaint_id})

    @_guard_store
    async def list(
        self,
        filters: Dict[str, Any],
        limit: int,
        skip: int,
        sort: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        cursor = (
            self.collection.find(filters)
            .sort(sort, DESCENDING if descending else ASCENDING)
            .skip(skip)
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    @_guard_store
    async def count(self, filters: Dict[str, Any]) -> int:
        return await self.collection.count_documents(filters)

    @_guard_store
    async def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        cursor = self.collection.find(filters or {}).sort("created_at", DESCENDING)
        return await cursor.to_list(length=None)

    @_guard_store
    async def apply(
        self,
        complaint_id: str,
        update: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        query: Dict[str, Any] = {"complaint_id": complaint_id}
        if expected_version is not None:
            query["version"] = expected_version

        update = dict(update)
        update["$inc"] = {**update.get("$inc", {}), "version": 1}

        return await self.collection.find_one_and_update(
            query,
            update,
            return_document=ReturnDocument.AFTER,
        )

    @_guard_store
    async def delete(self, complaint_id: str) -> bool:
        res = await self.collection.delete_one({"complaint_id": complaint_id})
        return res.deleted_count == 1

    @_guard_store
    async def next_sequence(self, floor: int) -> int:
        """
        Atomic counter:
        counters: { _id: "complaints", seq: 131 }
        """
        if not self._seeded:
            await self.counters.update_one(
                {"_id": COUNTER_KEY},
                {"$max": {"seq": floor}},
                upsert=True,
            )
            self._seeded = True

        doc = await self.counters.find_one_and_update(
            {"_id": COUNTER_KEY},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    @_guard_store
    async def sync_sequence(self, floor: int) -> int:
        last = await self.collection.find_one(
            {},
            projection={"complaint_seq": 1},
            sort=[("complaint_seq", DESCENDING)],
        )
        highest = max(floor, int((last or {}).get("complaint_seq") or 0))
        await self.counters.update_one(
            {"_id": COUNTER_KEY},
            {"$max": {"seq": highest}},
            upsert=True,
        )
        self._seeded = True
        return highest
