"""
In-memory complaint store for development and tests.

Mirrors MongoComplaintRepository: unique complaint_id, version-guarded
writes and an atomic counter. Every method completes without yielding to
the event loop, so each call is atomic with respect to other coroutines.
Not for production use.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from complaint_tracker.core.exceptions import DuplicateComplaintId

_MISSING = object()


def _lookup(doc: Dict[str, Any], path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _matches(doc: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for path, expected in filters.items():
        value = _lookup(doc, path)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if value is _MISSING or value is None:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
                if op == "$in" and value not in operand:
                    return False
        elif value is _MISSING or value != expected:
            return False
    return True


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def apply_update(doc: Dict[str, Any], update: Dict[str, Any]) -> None:
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
        elif op == "$push":
            for path, value in fields.items():
                items = value["$each"] if isinstance(value, dict) and "$each" in value else [value]
                current = _lookup(doc, path)
                if current is _MISSING or current is None:
                    current = []
                    _set_path(doc, path, current)
                current.extend(copy.deepcopy(items))
        elif op == "$inc":
            for path, amount in fields.items():
                current = _lookup(doc, path)
                _set_path(doc, path, (0 if current is _MISSING else current) + amount)
        else:
            raise ValueError(f"Unsupported update operator {op}")


class InMemoryComplaintRepository:
    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._seq = 0

    async def ensure_indexes(self) -> None:
        return None

    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        complaint_id = document["complaint_id"]
        if complaint_id in self._docs:
            raise DuplicateComplaintId(complaint_id)
        self._docs[complaint_id] = copy.deepcopy(document)
        return copy.deepcopy(document)

    async def get(self, complaint_id: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(complaint_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _select(
        self,
        filters: Optional[Dict[str, Any]],
        sort: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        docs = [d for d in self._docs.values() if _matches(d, filters or {})]
        present = [d for d in docs if d.get(sort) is not None]
        absent = [d for d in docs if d.get(sort) is None]
        present.sort(key=lambda d: d[sort], reverse=descending)
        return present + absent

    async def list(
        self,
        filters: Dict[str, Any],
        limit: int,
        skip: int,
        sort: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        docs = self._select(filters, sort, descending)[skip : skip + limit]
        return copy.deepcopy(docs)

    async def count(self, filters: Dict[str, Any]) -> int:
        return len(self._select(filters))

    async def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._select(filters))

    async def apply(
        self,
        complaint_id: str,
        update: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(complaint_id)
        if doc is None:
            return None
        if expected_version is not None and doc.get("version", 0) != expected_version:
            return None

        staged = copy.deepcopy(doc)
        apply_update(staged, update)
        staged["version"] = staged.get("version", 0) + 1
        self._docs[complaint_id] = staged
        return copy.deepcopy(staged)

    async def delete(self, complaint_id: str) -> bool:
        return self._docs.pop(complaint_id, None) is not None

    async def next_sequence(self, floor: int) -> int:
        self._seq = max(self._seq, floor) + 1
        return self._seq

    async def sync_sequence(self, floor: int) -> int:
        highest = max([floor] + [int(d.get("complaint_seq") or 0) for d in self._docs.values()])
        self._seq = max(self._seq, highest)
        return highest
