"""Content creator endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from services.shared import format_response
from ..auth import CurrentUser, get_current_user
from ..config import settings
from ..content_creator import content_creator_service
from ..models import IconCreate, IconVisibility, OneTimeLinkCreate, RevenueTrack
from ..throttling import limiter

router = APIRouter(prefix=f"{settings.api_prefix}/content-creator", tags=["content-creator"])


@router.post("/elections/{election_id}/one-time-links", status_code=status.HTTP_201_CREATED)
async def create_one_time_link(
    election_id: int,
    link: Optional[OneTimeLinkCreate] = None,
    user: CurrentUser = Depends(get_current_user)
):
    created = await content_creator_service.create_one_time_link(
        election_id, user, link or OneTimeLinkCreate()
    )
    return format_response(True, created, "One-time voting link created successfully")


@router.get("/one-time-links/{token}/validate")
@limiter.limit(settings.RATE_LIMIT)
async def validate_one_time_link(request: Request, token: str):
    """Check a one-time link before showing the ballot. Returns 410 once used or expired."""
    link = await content_creator_service.validate_one_time_link(token)
    return format_response(True, link, "Voting link is valid")


@router.post("/one-time-links/{token}/use")
async def mark_link_used(token: str, user: CurrentUser = Depends(get_current_user)):
    link = await content_creator_service.mark_link_used(token)
    return format_response(True, link, "Voting link marked as used")


@router.post("/revenue", status_code=status.HTTP_201_CREATED)
async def track_revenue(revenue: RevenueTrack, user: CurrentUser = Depends(get_current_user)):
    saved = await content_creator_service.track_revenue(user, revenue)
    return format_response(True, saved, "Projected revenue recorded successfully")


@router.get("/revenue")
async def revenue_report(
    election_id: Optional[int] = Query(None),
    user: CurrentUser = Depends(get_current_user)
):
    report = await content_creator_service.revenue_report(user, election_id)
    return format_response(True, report, "Revenue report retrieved successfully")


@router.post("/icons", status_code=status.HTTP_201_CREATED)
async def create_icon(icon: IconCreate, user: CurrentUser = Depends(get_current_user)):
    created = await content_creator_service.create_icon(user, icon)
    return format_response(True, created, "Icon created successfully")


@router.patch("/icons/{icon_id}")
async def set_icon_visibility(
    icon_id: int,
    visibility: IconVisibility,
    user: CurrentUser = Depends(get_current_user)
):
    icon = await content_creator_service.set_icon_visibility(icon_id, user, visibility.is_visible)
    return format_response(True, icon, "Icon visibility updated successfully")


@router.get("/icons")
async def list_icons(user: CurrentUser = Depends(get_current_user)):
    icons = await content_creator_service.list_icons(user)
    return format_response(True, icons, "Icons retrieved successfully")
