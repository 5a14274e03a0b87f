"""API key administration endpoints (Admin and Manager roles)."""
from fastapi import APIRouter, Depends, Query, status

from services.shared import format_response
from ..api_keys import api_key_service
from ..auth import CurrentUser, require_admin
from ..config import settings
from ..models import ApiKeyCreate, ApiKeyUpdate

router = APIRouter(
    prefix=f"{settings.api_prefix}/admin/api-keys",
    tags=["admin"],
    dependencies=[Depends(require_admin)]
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_api_key(request: ApiKeyCreate, user: CurrentUser = Depends(require_admin)):
    """
    Issue a new API key.

    The plaintext **api_key** is only returned in this response. Store it
    securely; it cannot be retrieved again.
    """
    created = await api_key_service.create_api_key(user, request)
    return format_response(True, created, "API key created successfully")


@router.get("")
async def list_api_keys(user: CurrentUser = Depends(require_admin)):
    keys = await api_key_service.list_api_keys(user)
    return format_response(True, keys, "API keys retrieved successfully")


@router.get("/{key_id}")
async def get_api_key(key_id: str):
    key = await api_key_service.get_api_key(key_id)
    return format_response(True, key, "API key retrieved successfully")


@router.patch("/{key_id}")
async def update_api_key(key_id: str, request: ApiKeyUpdate):
    key = await api_key_service.update_api_key(key_id, request)
    return format_response(True, key, "API key updated successfully")


@router.delete("/{key_id}")
async def revoke_api_key(key_id: str):
    await api_key_service.revoke_api_key(key_id)
    return format_response(True, None, "API key revoked successfully")


@router.get("/{key_id}/usage")
async def get_api_key_usage(key_id: str, days: int = Query(7, ge=1)):
    usage = await api_key_service.get_usage(key_id, days)
    return format_response(True, usage, "API key usage retrieved successfully")
