"""Election drafts and the draft-to-published transaction."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import asyncpg
from pydantic import ValidationError

from services.shared import (
    CHOICE_VOTING_TYPES,
    ElectionStatus,
    PermissionType,
    PricingType,
    QuestionType,
    VotingType,
    generate_shareable_url,
    generate_unique_slug,
    validate_election_window,
    ElectionWindow,
)
from .auth import CurrentUser
from .config import settings
from .database import Database, database
from .errors import AppError, Conflict, NotFound, ValidationFailed
from .metrics import elections_published, publish_errors
from .models import ElectionFieldsIn, LotterySettingsIn, PublishRequest, QuestionIn, RegionalPriceIn

logger = logging.getLogger(__name__)

# Draft keys that are not election columns
NESTED_DRAFT_KEYS = ("questions", "regional_pricing", "lottery_config", "category_id")


def merge_publish_payload(draft_data: Dict[str, Any], request: PublishRequest) -> Dict[str, Any]:
    """
    Merge a stored draft with the overrides sent at publish time.

    Election fields from the request win over the draft's. Question,
    pricing and lottery sections from the request replace the draft's
    sections when present.

    Args:
        draft_data: JSON stored with the draft
        request: Publish overrides

    Returns:
        dict with ``election``, ``questions``, ``regional_pricing``,
        ``lottery`` and ``category_id``

    Raises:
        ValidationFailed: If an election field or a draft section is malformed
    """
    draft_data = dict(draft_data or {})
    election = {
        key: value for key, value in draft_data.items() if key not in NESTED_DRAFT_KEYS
    }
    election.update(request.election)

    try:
        if request.questions is not None:
            questions = request.questions
        else:
            questions = [QuestionIn(**item) for item in draft_data.get("questions") or []]

        if request.regional_pricing is not None:
            regional_pricing = request.regional_pricing
        else:
            regional_pricing = [
                RegionalPriceIn(**item) for item in draft_data.get("regional_pricing") or []
            ]

        if request.lottery_config is not None:
            lottery = request.lottery_config
        elif draft_data.get("lottery_config"):
            lottery = LotterySettingsIn(**draft_data["lottery_config"])
        else:
            lottery = LotterySettingsIn()
    except ValidationError as e:
        raise ValidationFailed(f"Invalid draft data: {e.errors()[0]['msg']}")

    category_id = (
        request.category_id
        or election.pop("category_id", None)
        or draft_data.get("category_id")
    )
    election.pop("category_id", None)

    try:
        fields = ElectionFieldsIn(**election)
    except ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise ValidationFailed(f"Invalid election data: {location}: {error['msg']}")

    return {
        "election": fields.model_dump(mode="json", exclude_unset=True),
        "questions": questions,
        "regional_pricing": regional_pricing,
        "lottery": lottery,
        "category_id": category_id,
    }


def _as_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValidationFailed(f"Invalid amount: {value}")


class DraftService:
    """Draft CRUD and publishing."""

    def __init__(self, db: Database):
        self.db = db

    async def create_draft(self, user: CurrentUser, data: Dict[str, Any]) -> dict:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO election_drafts (creator_id, draft_data)
                VALUES ($1, $2)
                RETURNING *
                """,
                user.user_id, data
            )
        logger.info(f"Draft created: id={row['id']}, user={user.user_id}")
        return dict(row)

    async def get_draft(self, draft_id: int, user: CurrentUser) -> dict:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM election_drafts WHERE id = $1 AND creator_id = $2",
                draft_id, user.user_id
            )
        if row is None:
            raise NotFound("Draft not found")
        return dict(row)

    async def list_drafts(self, user: CurrentUser) -> List[dict]:
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM election_drafts
                WHERE creator_id = $1
                ORDER BY updated_at DESC
                """,
                user.user_id
            )
        return [dict(row) for row in rows]

    async def update_draft(self, draft_id: int, user: CurrentUser, data: Dict[str, Any]) -> dict:
        """Shallow-merge new keys into the stored draft JSON."""
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE election_drafts
                SET draft_data = draft_data || $3::jsonb, updated_at = NOW()
                WHERE id = $1 AND creator_id = $2
                RETURNING *
                """,
                draft_id, user.user_id, data
            )
        if row is None:
            raise NotFound("Draft not found")
        return dict(row)

    async def delete_draft(self, draft_id: int, user: CurrentUser):
        async with self.db.connection() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM election_drafts WHERE id = $1 AND creator_id = $2 RETURNING id",
                draft_id, user.user_id
            )
        if deleted is None:
            raise NotFound("Draft not found")

    async def publish_draft(self, draft_id: int, user: CurrentUser, request: PublishRequest) -> dict:
        """
        Publish a draft as an election in a single transaction.

        The election row, its category mapping, regional pricing, questions,
        options and lottery settings are inserted and the draft is deleted.
        If any step fails the transaction rolls back, the draft stays in
        place and no part of the election is visible.

        Args:
            draft_id: Draft identifier
            user: Authenticated creator
            request: Overrides merged over the draft

        Returns:
            dict with the election row, inserted counts and shareable URL

        Raises:
            NotFound: Draft missing or owned by someone else
            ValidationFailed: Bad dates or missing title
            Conflict: Slug already used by another election
        """
        try:
            async with self.db.transaction() as conn:
                draft = await conn.fetchrow(
                    """
                    SELECT * FROM election_drafts
                    WHERE id = $1 AND creator_id = $2
                    FOR UPDATE
                    """,
                    draft_id, user.user_id
                )
                if draft is None:
                    raise NotFound("Draft not found")

                payload = merge_publish_payload(draft["draft_data"], request)
                data = payload["election"]

                title = (data.get("title") or "").strip()
                if not title:
                    raise ValidationFailed("Title is required")

                try:
                    window = validate_election_window(
                        data.get("start_date"),
                        data.get("end_date"),
                        start_time=data.get("start_time"),
                        end_time=data.get("end_time"),
                        allow_past_start=settings.ALLOW_PAST_START_DATE
                    )
                except ValueError as e:
                    raise ValidationFailed(str(e))

                # Checked under the same transaction as the insert. Without a
                # unique index two concurrent publishes can still both pass.
                slug = data.get("slug") or generate_unique_slug(title)
                taken = await conn.fetchval("SELECT id FROM elections WHERE slug = $1", slug)
                if taken is not None:
                    raise Conflict("This slug is already taken", code="SLUG_EXISTS")

                election = await self._insert_election(conn, user, data, title, slug, window)
                election_id = election["id"]

                if payload["category_id"]:
                    await conn.execute(
                        """
                        INSERT INTO election_category_mappings (election_id, category_id)
                        VALUES ($1, $2)
                        """,
                        election_id, int(payload["category_id"])
                    )

                pricing_count = await self._insert_regional_pricing(
                    conn, election_id, payload["regional_pricing"],
                    election["processing_fee_percentage"]
                )
                questions_count = await self._insert_questions(
                    conn, election_id, election["voting_type"], payload["questions"]
                )
                lottery = await self._insert_lottery_settings(conn, election_id, payload["lottery"])

                await conn.execute("DELETE FROM election_drafts WHERE id = $1", draft_id)

        except AppError as e:
            publish_errors.labels(error_type=e.code.lower()).inc()
            raise
        except Exception as e:
            publish_errors.labels(error_type="internal_error").inc()
            logger.error(f"Error publishing draft {draft_id}: {e}")
            raise

        elections_published.inc()
        logger.info(
            f"Draft published: draft={draft_id}, election={election_id}, slug={slug}, "
            f"questions={questions_count}, pricing_rows={pricing_count}"
        )

        return {
            "election": election,
            "questions_count": questions_count,
            "regional_pricing_count": pricing_count,
            "lottery_config": lottery,
            "shareable_url": generate_shareable_url(settings.FRONTEND_URL, slug),
        }

    async def _insert_election(
        self,
        conn: asyncpg.Connection,
        user: CurrentUser,
        data: Dict[str, Any],
        title: str,
        slug: str,
        window: ElectionWindow
    ) -> dict:
        pricing_type = data.get("pricing_type") or PricingType.FREE.value
        row = await conn.fetchrow(
            """
            INSERT INTO elections (
                creator_id, creator_type, organization_id, title, description, slug,
                topic_image_url, topic_video_url, logo_url, start_date, end_date,
                timezone, voting_type, permission_type, allowed_countries,
                pricing_type, is_free, general_participation_fee,
                processing_fee_percentage, authentication_methods,
                biometric_required, show_live_results, vote_editing_allowed,
                anonymous_voting_enabled, custom_url, status, published_at
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
                $16, $17, $18, $19, $20, $21, $22, $23, $24, $25, $26, NOW()
            )
            RETURNING *
            """,
            user.user_id,
            data.get("creator_type") or user.creator_type,
            data.get("organization_id"),
            title,
            data.get("description"),
            slug,
            data.get("topic_image_url"),
            data.get("topic_video_url"),
            data.get("logo_url"),
            window.start,
            window.end,
            data.get("timezone") or "UTC",
            data.get("voting_type") or VotingType.PLURALITY.value,
            data.get("permission_type") or PermissionType.PUBLIC.value,
            data.get("allowed_countries"),
            pricing_type,
            pricing_type == PricingType.FREE.value,
            _as_decimal(data.get("general_participation_fee")),
            _as_decimal(data.get("processing_fee_percentage")),
            data.get("authentication_methods") or ["passkey"],
            bool(data.get("biometric_required", False)),
            bool(data.get("show_live_results", False)),
            bool(data.get("vote_editing_allowed", False)),
            bool(data.get("anonymous_voting_enabled", False)),
            data.get("custom_url"),
            ElectionStatus.PUBLISHED.value
        )
        return dict(row)

    async def _insert_regional_pricing(
        self,
        conn: asyncpg.Connection,
        election_id: int,
        prices: List[RegionalPriceIn],
        processing_fee_percentage: Decimal
    ) -> int:
        for price in prices:
            await conn.execute(
                """
                INSERT INTO election_regional_pricing
                    (election_id, region_code, region_name, participation_fee,
                     currency, processing_fee_percentage)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (election_id, region_code) DO UPDATE
                SET region_name = EXCLUDED.region_name,
                    participation_fee = EXCLUDED.participation_fee,
                    currency = EXCLUDED.currency,
                    processing_fee_percentage = EXCLUDED.processing_fee_percentage
                """,
                election_id, price.region_code, price.region_name,
                price.participation_fee, price.currency.upper(), processing_fee_percentage
            )
        return len(prices)

    async def _insert_questions(
        self,
        conn: asyncpg.Connection,
        election_id: int,
        voting_type: str,
        questions: List[QuestionIn]
    ) -> int:
        for index, question in enumerate(questions, start=1):
            question_type = question.question_type.value
            if voting_type in CHOICE_VOTING_TYPES:
                question_type = QuestionType.MULTIPLE_CHOICE.value

            max_selections = question.max_selections
            if max_selections is None:
                max_selections = 1 if voting_type == VotingType.PLURALITY.value else 999

            question_id = await conn.fetchval(
                """
                INSERT INTO election_questions
                    (election_id, question_text, question_type, question_order,
                     question_image_url, is_required, max_selections)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id
                """,
                election_id, question.question_text, question_type,
                question.question_order or index, question.question_image_url,
                question.is_required, max_selections
            )

            if question.options:
                await conn.executemany(
                    """
                    INSERT INTO election_options
                        (question_id, option_text, option_image_url, option_order)
                    VALUES ($1, $2, $3, $4)
                    """,
                    [
                        (question_id, option.option_text, option.option_image_url,
                         option.option_order or position)
                        for position, option in enumerate(question.options, start=1)
                    ]
                )
        return len(questions)

    async def _insert_lottery_settings(
        self,
        conn: asyncpg.Connection,
        election_id: int,
        lottery: LotterySettingsIn
    ) -> Optional[dict]:
        row = await conn.fetchrow(
            """
            INSERT INTO election_lottery_config
                (election_id, is_lotterized, reward_type, reward_amount,
                 reward_description, winner_count, prize_pool_total,
                 prize_funding_source, lottery_machine_visible, auto_trigger_at_end)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING *
            """,
            election_id, lottery.lottery_enabled, lottery.reward_type.value,
            lottery.reward_amount, lottery.prize_description, lottery.winner_count,
            lottery.total_prize_pool, lottery.prize_funding_source,
            lottery.lottery_machine_visible, lottery.auto_trigger_at_end
        )
        return dict(row) if row else None


# Global draft service instance
draft_service = DraftService(database)
