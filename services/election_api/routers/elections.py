"""Draft, election, question and clone/export endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from services.shared import ElectionStatus, format_response
from ..auth import CurrentUser, get_current_user
from ..config import settings
from ..elections import election_service
from ..models import (
    CloneRequest,
    DraftCreate,
    DraftUpdate,
    ElectionUpdate,
    OptionCreate,
    PublishRequest,
    QuestionCreate,
)
from ..publishing import draft_service
from ..questions import question_service
from ..throttling import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{settings.api_prefix}/elections", tags=["elections"])


# ═══════════════════════════════════════════════════════════════════
# DRAFTS
# ═══════════════════════════════════════════════════════════════════

@router.post("/drafts", status_code=status.HTTP_201_CREATED)
async def create_draft(draft: DraftCreate, user: CurrentUser = Depends(get_current_user)):
    """
    Save a new election draft.

    Any field besides **title** and **description** is stored as-is in the
    draft JSON and merged into the election when it is published.
    """
    created = await draft_service.create_draft(user, draft.model_dump(exclude_none=True))
    return format_response(True, created, "Draft saved successfully")


@router.get("/drafts")
async def list_drafts(user: CurrentUser = Depends(get_current_user)):
    drafts = await draft_service.list_drafts(user)
    return format_response(True, drafts, "Drafts retrieved successfully")


@router.get("/drafts/{draft_id}")
async def get_draft(draft_id: int, user: CurrentUser = Depends(get_current_user)):
    draft = await draft_service.get_draft(draft_id, user)
    return format_response(True, draft, "Draft retrieved successfully")


@router.put("/drafts/{draft_id}")
async def update_draft(draft_id: int, update: DraftUpdate, user: CurrentUser = Depends(get_current_user)):
    draft = await draft_service.update_draft(draft_id, user, update.model_dump(exclude_unset=True))
    return format_response(True, draft, "Draft updated successfully")


@router.delete("/drafts/{draft_id}")
async def delete_draft(draft_id: int, user: CurrentUser = Depends(get_current_user)):
    await draft_service.delete_draft(draft_id, user)
    return format_response(True, None, "Draft deleted successfully")


@router.post(
    "/drafts/{draft_id}/publish",
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid dates or draft data"},
        404: {"description": "Draft not found"},
        409: {"description": "Slug already taken"},
        429: {"description": "Rate limit exceeded"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def publish_draft(
    request: Request,
    draft_id: int,
    overrides: Optional[PublishRequest] = None,
    user: CurrentUser = Depends(get_current_user)
):
    """
    Publish a draft as an election.

    - **election**: field overrides merged over the stored draft
    - **questions**: ballot questions with their options
    - **regional_pricing**: per-region participation fees
    - **lottery_config**: lottery settings

    Everything is written in one transaction and the draft is removed.
    """
    result = await draft_service.publish_draft(draft_id, user, overrides or PublishRequest())
    return format_response(True, result, "Election published successfully")


# ═══════════════════════════════════════════════════════════════════
# ELECTIONS
# ═══════════════════════════════════════════════════════════════════

@router.get("/my-elections")
async def list_my_elections(
    status_filter: Optional[ElectionStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user)
):
    result = await election_service.list_my_elections(
        user, status_filter.value if status_filter else None, page, limit
    )
    return format_response(True, result, "Elections retrieved successfully")


@router.get("/slug/{slug}")
async def get_election_by_slug(slug: str):
    election = await election_service.get_election_by_slug(slug)
    return format_response(True, election, "Election retrieved successfully")


@router.delete("/questions/{question_id}")
async def delete_question(question_id: int, user: CurrentUser = Depends(get_current_user)):
    await question_service.delete_question(question_id, user)
    return format_response(True, None, "Question deleted successfully")


@router.post("/questions/{question_id}/options", status_code=status.HTTP_201_CREATED)
async def add_option(question_id: int, option: OptionCreate, user: CurrentUser = Depends(get_current_user)):
    created = await question_service.add_option(question_id, user, option)
    return format_response(True, created, "Option added successfully")


@router.delete("/options/{option_id}")
async def delete_option(option_id: int, user: CurrentUser = Depends(get_current_user)):
    await question_service.delete_option(option_id, user)
    return format_response(True, None, "Option deleted successfully")


@router.get("/{election_id}")
async def get_election(election_id: int):
    """Election with questions, options, pricing and lottery settings."""
    election = await election_service.get_election(election_id)
    return format_response(True, election, "Election retrieved successfully")


@router.put("/{election_id}")
async def update_election(
    election_id: int,
    update: ElectionUpdate,
    user: CurrentUser = Depends(get_current_user)
):
    election = await election_service.update_election(election_id, user, update)
    return format_response(True, election, "Election updated successfully")


@router.delete("/{election_id}")
async def delete_election(election_id: int, user: CurrentUser = Depends(get_current_user)):
    await election_service.delete_election(election_id, user)
    return format_response(True, None, "Election deleted successfully")


@router.post("/{election_id}/clone", status_code=status.HTTP_201_CREATED)
async def clone_election(
    election_id: int,
    clone: Optional[CloneRequest] = None,
    user: CurrentUser = Depends(get_current_user)
):
    result = await election_service.clone_election(
        election_id, user, clone.new_title if clone else None
    )
    return format_response(True, result, "Election cloned successfully")


@router.get("/{election_id}/export")
async def export_election(election_id: int, user: CurrentUser = Depends(get_current_user)):
    document = await election_service.export_election(election_id, user)
    return format_response(True, document, "Election exported successfully")


@router.get("/{election_id}/questions")
async def list_questions(election_id: int):
    questions = await question_service.list_questions(election_id)
    return format_response(True, questions, "Questions retrieved successfully")


@router.post("/{election_id}/questions", status_code=status.HTTP_201_CREATED)
async def add_question(
    election_id: int,
    question: QuestionCreate,
    user: CurrentUser = Depends(get_current_user)
):
    created = await question_service.add_question(election_id, user, question)
    return format_response(True, created, "Question added successfully")
