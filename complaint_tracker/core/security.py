# complaint_tracker/core/security.py
from fastapi import Header

from complaint_tracker.core.enums import ActorRole
from complaint_tracker.core.exceptions import Forbidden


def require_admin(x_role: str | None = Header(default=None, alias="X-Role")) -> str:
    """
    Admin guard for destructive routes.
    The identity layer in front of this service sets X-Role; this only checks it.
    """
    if (x_role or "").strip().lower() != ActorRole.admin.value:
        raise Forbidden()
    return ActorRole.admin.value
