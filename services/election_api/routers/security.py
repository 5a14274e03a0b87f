"""Security settings and audit trail endpoints."""
from fastapi import APIRouter, Depends, Query, Request, status

from services.shared import format_response
from ..auth import CurrentUser, get_current_user
from ..config import settings
from ..models import AuditEventCreate, FeatureToggle, SecurityConfigRequest
from ..security import security_service

router = APIRouter(prefix=f"{settings.api_prefix}/security", tags=["security"])


@router.post("/elections/{election_id}/config")
async def configure_security(
    election_id: int,
    config: SecurityConfigRequest,
    user: CurrentUser = Depends(get_current_user)
):
    saved = await security_service.configure_security(election_id, user, config)
    return format_response(True, saved, "Security configuration saved successfully")


@router.get("/elections/{election_id}/config")
async def get_security_config(election_id: int):
    config = await security_service.get_security_config(election_id)
    return format_response(True, config, "Security configuration retrieved successfully")


@router.patch("/elections/{election_id}/features")
async def toggle_feature(
    election_id: int,
    toggle: FeatureToggle,
    user: CurrentUser = Depends(get_current_user)
):
    config = await security_service.toggle_feature(election_id, user, toggle.feature, toggle.enabled)
    return format_response(True, config, f"{toggle.feature.value} set to {toggle.enabled}")


@router.post("/audit", status_code=status.HTTP_201_CREATED)
async def log_audit_event(
    request: Request,
    event: AuditEventCreate,
    user: CurrentUser = Depends(get_current_user)
):
    """Append an event to the audit trail of an election."""
    saved = await security_service.log_audit_event(
        user,
        event,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )
    return format_response(True, saved, "Audit event logged successfully")


@router.get("/elections/{election_id}/audit-trail")
async def get_audit_trail(
    election_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user)
):
    trail = await security_service.get_audit_trail(election_id, user, page, limit)
    return format_response(True, trail, "Audit trail retrieved successfully")


@router.get("/elections/{election_id}/verify")
async def verify_integrity(election_id: int, user: CurrentUser = Depends(get_current_user)):
    report = await security_service.verify_integrity(election_id, user)
    message = "Audit trail is intact" if report["is_intact"] else "Audit trail integrity compromised"
    return format_response(True, report, message)


@router.get("/elections/{election_id}/summary")
async def security_summary(election_id: int, user: CurrentUser = Depends(get_current_user)):
    summary = await security_service.security_summary(election_id, user)
    return format_response(True, summary, "Security summary retrieved successfully")
