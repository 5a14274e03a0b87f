"""Public read-only API. Every route except /health needs an API key."""
from typing import Any, Optional

from fastapi import APIRouter, Query, Request

from services.shared import ElectionStatus, VotingType, get_current_timestamp
from ..config import settings
from ..public import public_service

router = APIRouter(prefix=f"{settings.api_prefix}/public", tags=["public"])


def public_response(request: Request, data: Any, pagination: Optional[dict] = None) -> dict:
    """Envelope with the caller's rate-limit status attached."""
    meta = {}
    rate_limit = getattr(request.state, "rate_limit", None)
    if rate_limit is not None:
        meta["rate_limit"] = {
            "limit": rate_limit.limit,
            "remaining": rate_limit.remaining,
            "reset": rate_limit.reset_at.isoformat(),
        }
    if pagination is not None:
        meta["pagination"] = pagination
    return {"success": True, "data": data, "meta": meta}


@router.get("/health")
async def public_health():
    return {
        "success": True,
        "status": "ok",
        "version": settings.API_VERSION,
        "timestamp": get_current_timestamp(),
    }


@router.get("/elections")
async def list_public_elections(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[ElectionStatus] = Query(None),
    category_id: Optional[int] = Query(None),
    voting_type: Optional[VotingType] = Query(None),
    sort_by: str = Query("created_at"),
    order: str = Query("desc")
):
    """
    List public elections.

    - **sort_by**: created_at, start_date, end_date or title
    - **order**: asc or desc
    """
    result = await public_service.list_elections(
        page=page,
        limit=limit,
        status=status.value if status else None,
        category_id=category_id,
        voting_type=voting_type.value if voting_type else None,
        sort_by=sort_by,
        order=order
    )
    return public_response(request, result["elections"], result["pagination"])


@router.get("/elections/{election_id}")
async def get_public_election(request: Request, election_id: int):
    election = await public_service.get_election(election_id)
    return public_response(request, election)


@router.get("/elections/{election_id}/questions")
async def get_public_questions(request: Request, election_id: int):
    questions = await public_service.get_questions(election_id)
    return public_response(request, questions)


@router.get("/elections/{election_id}/results")
async def get_public_results(request: Request, election_id: int):
    results = await public_service.get_results(election_id)
    return public_response(request, results)


@router.get("/elections/{election_id}/stats")
async def get_public_stats(request: Request, election_id: int):
    stats = await public_service.get_stats(election_id)
    return public_response(request, stats)


@router.get("/categories")
async def get_public_categories(request: Request):
    categories = await public_service.get_categories()
    return public_response(request, categories)
