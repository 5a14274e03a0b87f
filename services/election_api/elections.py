"""Election reads, edits, cloning and export."""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import asyncpg

from services.shared import (
    ElectionStatus,
    calculate_pagination_meta,
    generate_shareable_url,
    generate_unique_slug,
    get_current_timestamp,
    validate_election_window,
)
from .auth import CurrentUser
from .config import settings
from .database import Database, database
from .errors import Forbidden, NotFound, ValidationFailed
from .models import ElectionUpdate

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


async def fetch_election(conn: asyncpg.Connection, election_id: int) -> dict:
    """Load an election row or raise NotFound."""
    row = await conn.fetchrow("SELECT * FROM elections WHERE id = $1", election_id)
    if row is None:
        raise NotFound("Election not found")
    return dict(row)


async def fetch_owned_election(conn: asyncpg.Connection, election_id: int, user: CurrentUser) -> dict:
    """Load an election the user created, raising NotFound or Forbidden."""
    election = await fetch_election(conn, election_id)
    if election["creator_id"] != user.user_id:
        raise Forbidden("You do not have permission to perform this action")
    return election


async def count_election_votes(conn: asyncpg.Connection, election_id: int) -> int:
    """Valid votes plus anonymous votes cast in an election."""
    total = await conn.fetchval(
        """
        SELECT
            (SELECT COUNT(*) FROM votes WHERE election_id = $1 AND is_valid = TRUE)
          + (SELECT COUNT(*) FROM anonymous_votes WHERE election_id = $1)
        """,
        election_id
    )
    return int(total or 0)


async def ensure_no_votes(conn: asyncpg.Connection, election_id: int, action: str):
    """Refuse structural changes once voting has started."""
    if await count_election_votes(conn, election_id) > 0:
        raise ValidationFailed(f"Cannot {action} an election that already has votes")


async def load_questions(conn: asyncpg.Connection, election_id: int) -> List[dict]:
    """Questions of an election in ballot order, each with its options."""
    question_rows = await conn.fetch(
        """
        SELECT id, election_id, question_text, question_type, question_order,
               question_image_url, is_required, max_selections
        FROM election_questions
        WHERE election_id = $1
        ORDER BY question_order, id
        """,
        election_id
    )
    questions = [dict(row) for row in question_rows]
    if not questions:
        return questions

    option_rows = await conn.fetch(
        """
        SELECT id, question_id, option_text, option_image_url, option_order
        FROM election_options
        WHERE question_id = ANY($1::int[])
        ORDER BY option_order, id
        """,
        [question["id"] for question in questions]
    )
    options_by_question: Dict[int, List[dict]] = {}
    for row in option_rows:
        options_by_question.setdefault(row["question_id"], []).append(dict(row))

    for question in questions:
        question["options"] = options_by_question.get(question["id"], [])
    return questions


def _date_part(changes: dict, election: dict, prefix: str):
    """
    Date to revalidate for one end of the window.

    A new time without a new date applies to the stored calendar day.
    """
    date_key, time_key = f"{prefix}_date", f"{prefix}_time"
    if changes.get(date_key):
        return changes[date_key]
    stored = election[date_key]
    if changes.get(time_key):
        return stored.astimezone(timezone.utc).date().isoformat()
    return stored


class ElectionService:
    """Published election management."""

    # Columns copied verbatim when cloning
    CLONED_COLUMNS = (
        "creator_id", "creator_type", "organization_id", "description",
        "topic_image_url", "topic_video_url", "logo_url", "start_date",
        "end_date", "timezone", "voting_type", "permission_type",
        "allowed_countries", "pricing_type", "is_free",
        "general_participation_fee", "processing_fee_percentage",
        "authentication_methods", "biometric_required", "show_live_results",
        "vote_editing_allowed", "anonymous_voting_enabled",
    )

    def __init__(self, db: Database):
        self.db = db

    async def _details(self, conn: asyncpg.Connection, election: dict) -> dict:
        election_id = election["id"]
        pricing = await conn.fetch(
            """
            SELECT region_code, region_name, participation_fee, currency,
                   processing_fee_percentage
            FROM election_regional_pricing
            WHERE election_id = $1
            ORDER BY region_code
            """,
            election_id
        )
        lottery = await conn.fetchrow(
            "SELECT * FROM election_lottery_config WHERE election_id = $1",
            election_id
        )

        details = dict(election)
        details["questions"] = await load_questions(conn, election_id)
        details["regional_pricing"] = [dict(row) for row in pricing]
        details["lottery_config"] = dict(lottery) if lottery else None
        details["vote_count"] = await count_election_votes(conn, election_id)
        details["shareable_url"] = generate_shareable_url(settings.FRONTEND_URL, election["slug"])
        return details

    async def get_election(self, election_id: int) -> dict:
        """
        Get an election with its ballot, pricing and lottery settings.

        Args:
            election_id: Election identifier

        Returns:
            Election dictionary with nested questions and options

        Raises:
            NotFound: If the election does not exist
        """
        async with self.db.connection() as conn:
            election = await fetch_election(conn, election_id)
            return await self._details(conn, election)

    async def get_election_by_slug(self, slug: str) -> dict:
        """Same as get_election, looked up by slug."""
        async with self.db.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM elections WHERE slug = $1", slug)
            if row is None:
                raise NotFound("Election not found")
            return await self._details(conn, dict(row))

    async def list_my_elections(
        self,
        user: CurrentUser,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> dict:
        """Elections created by a user, newest first."""
        offset = (page - 1) * limit
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, title, slug, status, voting_type, start_date, end_date,
                       published_at, created_at
                FROM elections
                WHERE creator_id = $1 AND ($2::text IS NULL OR status = $2)
                ORDER BY created_at DESC
                LIMIT $3 OFFSET $4
                """,
                user.user_id, status, limit, offset
            )
            total = await conn.fetchval(
                """
                SELECT COUNT(*) FROM elections
                WHERE creator_id = $1 AND ($2::text IS NULL OR status = $2)
                """,
                user.user_id, status
            )

        return {
            "elections": [dict(row) for row in rows],
            "pagination": calculate_pagination_meta(page, limit, int(total or 0)),
        }

    async def update_election(self, election_id: int, user: CurrentUser, update: ElectionUpdate) -> dict:
        """
        Update editable fields of an election the user owns.

        Date changes are revalidated against the stored window. Elections
        with votes cannot be edited.
        """
        changes = update.model_dump(mode="json", exclude_unset=True)
        if not changes:
            raise ValidationFailed("No fields to update")

        async with self.db.transaction() as conn:
            election = await fetch_owned_election(conn, election_id, user)
            await ensure_no_votes(conn, election_id, "update")

            date_keys = ("start_date", "start_time", "end_date", "end_time")
            if any(key in changes for key in date_keys):
                try:
                    window = validate_election_window(
                        _date_part(changes, election, "start"),
                        _date_part(changes, election, "end"),
                        start_time=changes.get("start_time"),
                        end_time=changes.get("end_time"),
                        allow_past_start=(
                            settings.ALLOW_PAST_START_DATE or "start_date" not in changes
                        )
                    )
                except ValueError as e:
                    raise ValidationFailed(str(e))
                for key in date_keys:
                    changes.pop(key, None)
                changes["start_date"] = window.start
                changes["end_date"] = window.end

            columns = list(changes)
            assignments = ", ".join(
                f"{column} = ${index}" for index, column in enumerate(columns, start=2)
            )
            row = await conn.fetchrow(
                f"UPDATE elections SET {assignments}, updated_at = NOW() "
                f"WHERE id = $1 RETURNING *",
                election_id, *[changes[column] for column in columns]
            )

        logger.info(f"Election updated: id={election_id}, fields={columns}")
        return dict(row)

    async def delete_election(self, election_id: int, user: CurrentUser):
        """Delete an election the user owns, refusing once it has votes."""
        async with self.db.transaction() as conn:
            await fetch_owned_election(conn, election_id, user)
            await ensure_no_votes(conn, election_id, "delete")
            await conn.execute("DELETE FROM elections WHERE id = $1", election_id)

        logger.info(f"Election deleted: id={election_id}, user={user.user_id}")

    async def clone_election(self, election_id: int, user: CurrentUser, new_title: Optional[str] = None) -> dict:
        """
        Copy an election into a new draft-status election.

        Pricing, questions, options and lottery settings are copied in the
        same transaction. The clone gets a fresh slug.
        """
        async with self.db.transaction() as conn:
            source = await fetch_owned_election(conn, election_id, user)
            title = new_title or f"{source['title']} (Copy)"
            slug = generate_unique_slug(title)

            columns = ", ".join(self.CLONED_COLUMNS)
            clone = await conn.fetchrow(
                f"""
                INSERT INTO elections ({columns}, title, slug, status)
                SELECT {columns}, $2, $3, $4
                FROM elections WHERE id = $1
                RETURNING *
                """,
                election_id, title, slug, ElectionStatus.DRAFT.value
            )
            clone_id = clone["id"]

            await conn.execute(
                """
                INSERT INTO election_regional_pricing
                    (election_id, region_code, region_name, participation_fee,
                     currency, processing_fee_percentage)
                SELECT $2, region_code, region_name, participation_fee,
                       currency, processing_fee_percentage
                FROM election_regional_pricing WHERE election_id = $1
                """,
                election_id, clone_id
            )

            questions = await conn.fetch(
                "SELECT * FROM election_questions WHERE election_id = $1 ORDER BY question_order, id",
                election_id
            )
            for question in questions:
                new_question_id = await conn.fetchval(
                    """
                    INSERT INTO election_questions
                        (election_id, question_text, question_type, question_order,
                         question_image_url, is_required, max_selections)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    RETURNING id
                    """,
                    clone_id, question["question_text"], question["question_type"],
                    question["question_order"], question["question_image_url"],
                    question["is_required"], question["max_selections"]
                )
                await conn.execute(
                    """
                    INSERT INTO election_options
                        (question_id, option_text, option_image_url, option_order)
                    SELECT $2, option_text, option_image_url, option_order
                    FROM election_options WHERE question_id = $1
                    """,
                    question["id"], new_question_id
                )

            await conn.execute(
                """
                INSERT INTO election_lottery_config
                    (election_id, is_lotterized, reward_type, reward_amount,
                     reward_description, winner_count, prize_pool_total,
                     prize_funding_source, lottery_machine_visible, auto_trigger_at_end)
                SELECT $2, is_lotterized, reward_type, reward_amount,
                       reward_description, winner_count, prize_pool_total,
                       prize_funding_source, lottery_machine_visible, auto_trigger_at_end
                FROM election_lottery_config WHERE election_id = $1
                """,
                election_id, clone_id
            )

        logger.info(f"Election cloned: source={election_id}, clone={clone_id}, questions={len(questions)}")
        return {"election": dict(clone), "questions_count": len(questions)}

    async def export_election(self, election_id: int, user: CurrentUser) -> dict:
        """Export an owned election as a self-contained JSON document."""
        async with self.db.connection() as conn:
            election = await fetch_owned_election(conn, election_id, user)
            details = await self._details(conn, election)

        return {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": get_current_timestamp(),
            "election": {
                key: value for key, value in details.items()
                if key not in ("questions", "regional_pricing", "lottery_config")
            },
            "questions": details["questions"],
            "regional_pricing": details["regional_pricing"],
            "lottery_config": details["lottery_config"],
        }

    async def complete_ended_elections(self, now: Optional[datetime] = None) -> List[int]:
        """Mark published or active elections past their end date as completed."""
        now = now or datetime.now(timezone.utc)
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                UPDATE elections
                SET status = $1, updated_at = NOW()
                WHERE status = ANY($2::text[]) AND end_date < $3
                RETURNING id
                """,
                ElectionStatus.COMPLETED.value,
                [ElectionStatus.PUBLISHED.value, ElectionStatus.ACTIVE.value],
                now
            )
        completed = [row["id"] for row in rows]
        if completed:
            logger.info(f"Completed {len(completed)} elections past their end date: {completed}")
        return completed


# Global election service instance
election_service = ElectionService(database)
