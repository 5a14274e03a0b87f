"""Trusted-header authentication and role guards.

The upstream gateway authenticates the caller and forwards the identity as a
JSON document in the ``X-User-Data`` header.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Depends, Request

from services.shared import ADMIN_ROLES, AUDITOR_ROLES, determine_creator_type
from .errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Data"


@dataclass
class CurrentUser:
    """Identity forwarded by the gateway."""
    user_id: int
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    @property
    def creator_type(self) -> str:
        return determine_creator_type(self.roles)

    def has_any_role(self, roles) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_any_role(ADMIN_ROLES)

    @property
    def is_auditor(self) -> bool:
        return self.has_any_role(AUDITOR_ROLES)


def parse_user_header(raw: Optional[str]) -> CurrentUser:
    """
    Decode the gateway identity header.

    Raises:
        Unauthorized: If the header is missing, not JSON, has no user id or
            carries roles that are not strings
    """
    if not raw:
        raise Unauthorized("Authentication required")

    try:
        data = json.loads(raw)
        user_id = int(data["userId"])
        roles = data.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        if not isinstance(roles, list) or not all(isinstance(role, str) for role in roles):
            raise TypeError("roles must be a list of strings")
    except (ValueError, TypeError, KeyError, AttributeError):
        logger.warning("Rejected malformed user header")
        raise Unauthorized("Invalid authentication data")

    return CurrentUser(user_id=user_id, email=data.get("email"), roles=roles)


async def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency returning the authenticated user."""
    return parse_user_header(request.headers.get(USER_HEADER))


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Allow Manager and Admin roles only."""
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


async def require_auditor(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Allow Manager, Admin and Auditor roles only."""
    if not user.is_auditor:
        raise Forbidden("Auditor access required")
    return user
