"""Lottery endpoints."""
from fastapi import APIRouter, Depends, Query, Request

from services.shared import format_response
from ..auth import CurrentUser, get_current_user, require_admin
from ..config import settings
from ..lottery import lottery_service
from ..models import LotteryConfigRequest
from ..throttling import limiter

router = APIRouter(prefix=f"{settings.api_prefix}/lottery", tags=["lottery"])


@router.post("/elections/{election_id}/config")
async def configure_lottery(
    election_id: int,
    config: LotteryConfigRequest,
    user: CurrentUser = Depends(get_current_user)
):
    saved = await lottery_service.configure_lottery(election_id, user, config)
    return format_response(True, saved, "Lottery configured successfully")


@router.get("/elections/{election_id}/config")
async def get_lottery_config(election_id: int):
    config = await lottery_service.get_lottery_config(election_id)
    return format_response(True, config, "Lottery configuration retrieved successfully")


@router.post(
    "/elections/{election_id}/draw",
    responses={
        400: {"description": "Election not completed, lottery disabled or no participants"},
        403: {"description": "Caller is not the election creator"},
        409: {"description": "Winners already selected"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def draw_winners(request: Request, election_id: int, user: CurrentUser = Depends(get_current_user)):
    """
    Draw lottery winners among the election's valid voters.

    Only allowed once, by the creator, after the election has completed.
    """
    result = await lottery_service.draw_winners(election_id, user)
    return format_response(True, result, "Winners selected successfully")


@router.post("/elections/{election_id}/auto-trigger")
async def auto_trigger(election_id: int, user: CurrentUser = Depends(require_admin)):
    result = await lottery_service.auto_trigger(election_id)
    return format_response(True, result, "Lottery triggered successfully")


@router.get("/elections/{election_id}/winners")
async def get_winners(
    election_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100)
):
    result = await lottery_service.get_winners(election_id, page, limit)
    return format_response(True, result, "Winners retrieved successfully")


@router.post("/winners/{winner_id}/claim")
async def claim_prize(winner_id: int, user: CurrentUser = Depends(get_current_user)):
    winner = await lottery_service.claim_prize(winner_id, user)
    return format_response(True, winner, "Prize claimed successfully")


@router.get("/my-wins")
async def my_wins(user: CurrentUser = Depends(get_current_user)):
    wins = await lottery_service.my_wins(user)
    return format_response(True, wins, "Wins retrieved successfully")
