from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

SORTABLE_FIELDS = {
    "created_at",
    "updated_at",
    "complaint_seq",
    "priority",
    "status",
    "category",
}


class ComplaintRepository(Protocol):
    """Storage seam for complaint documents (snake_case dicts)."""

    async def ensure_indexes(self) -> None: ...

    async def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Raises DuplicateComplaintId when complaint_id is taken."""
        ...

    async def get(self, complaint_id: str) -> Optional[Dict[str, Any]]: ...

    async def list(
        self,
        filters: Dict[str, Any],
        limit: int,
        skip: int,
        sort: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]: ...

    async def count(self, filters: Dict[str, Any]) -> int: ...

    async def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    async def apply(
        self,
        complaint_id: str,
        update: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Apply `$set` / `$push` / `$inc` atomically and bump `version`.
        With expected_version, only applies when the stored version matches.
        Returns the updated document, or None when nothing matched.
        """
        ...

    async def delete(self, complaint_id: str) -> bool: ...

    async def next_sequence(self, floor: int) -> int: ...

    async def sync_sequence(self, floor: int) -> int:
        """Raise the counter to the highest complaint_seq in use (never lowers it)."""
        ...
