"""Read-only queries behind the API-key gated public API."""
import math
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from services.shared import ElectionStatus, PermissionType, calculate_pagination_meta
from .database import Database, database
from .elections import load_questions
from .errors import Forbidden, NotFound

SORTABLE_COLUMNS = ("created_at", "start_date", "end_date", "title")
MAX_PAGE_SIZE = 100

# Statuses visible to API consumers
LISTED_STATUSES = (
    ElectionStatus.PUBLISHED.value,
    ElectionStatus.ACTIVE.value,
    ElectionStatus.COMPLETED.value,
)

LIST_COLUMNS = """
    e.id, e.title, e.description, e.slug, e.topic_image_url, e.start_date,
    e.end_date, e.timezone, e.voting_type, e.pricing_type, e.status,
    e.show_live_results, e.published_at, e.created_at
"""


def compute_timeline(start: datetime, end: datetime, now: Optional[datetime] = None) -> Tuple[str, int]:
    """
    Where ``now`` sits relative to the voting window.

    Returns:
        tuple: (``upcoming`` | ``active`` | ``ended``, whole days until the end)
    """
    now = now or datetime.now(timezone.utc)
    if now < start:
        status = "upcoming"
    elif now <= end:
        status = "active"
    else:
        status = "ended"
    days_remaining = max(0, math.ceil((end - now).total_seconds() / 86400))
    return status, days_remaining


class PublicService:
    def __init__(self, db: Database):
        self.db = db

    async def _public_election(self, conn, election_id: int) -> dict:
        row = await conn.fetchrow(
            """
            SELECT * FROM elections
            WHERE id = $1 AND permission_type = $2 AND status = ANY($3::text[])
            """,
            election_id, PermissionType.PUBLIC.value, list(LISTED_STATUSES)
        )
        if row is None:
            raise NotFound("Election not found")
        return dict(row)

    async def list_elections(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        category_id: Optional[int] = None,
        voting_type: Optional[str] = None,
        sort_by: str = "created_at",
        order: str = "desc"
    ) -> dict:
        """Public elections with filters, sorting and pagination."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        page = max(1, page)
        sort_column = sort_by if sort_by in SORTABLE_COLUMNS else "created_at"
        direction = "ASC" if order.lower() == "asc" else "DESC"

        filters = """
            e.permission_type = $1
            AND e.status = ANY($2::text[])
            AND ($3::text IS NULL OR e.status = $3)
            AND ($4::int IS NULL OR EXISTS (
                SELECT 1 FROM election_category_mappings m
                WHERE m.election_id = e.id AND m.category_id = $4
            ))
            AND ($5::text IS NULL OR e.voting_type = $5)
        """
        params = [PermissionType.PUBLIC.value, list(LISTED_STATUSES), status, category_id, voting_type]

        async with self.db.connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {LIST_COLUMNS}
                FROM elections e
                WHERE {filters}
                ORDER BY e.{sort_column} {direction}, e.id {direction}
                LIMIT $6 OFFSET $7
                """,
                *params, limit, (page - 1) * limit
            )
            total = await conn.fetchval(
                f"SELECT COUNT(*) FROM elections e WHERE {filters}",
                *params
            )

        return {
            "elections": [dict(row) for row in rows],
            "pagination": calculate_pagination_meta(page, limit, int(total or 0)),
        }

    async def get_election(self, election_id: int) -> dict:
        async with self.db.connection() as conn:
            election = await self._public_election(conn, election_id)
            election["questions"] = await load_questions(conn, election_id)
            lottery = await conn.fetchrow(
                """
                SELECT is_lotterized, reward_type, reward_amount, reward_description,
                       winner_count, prize_pool_total, lottery_machine_visible
                FROM election_lottery_config
                WHERE election_id = $1
                """,
                election_id
            )
        election["lottery_config"] = dict(lottery) if lottery else None
        return election

    async def get_questions(self, election_id: int) -> List[dict]:
        async with self.db.connection() as conn:
            await self._public_election(conn, election_id)
            return await load_questions(conn, election_id)

    async def get_results(self, election_id: int, now: Optional[datetime] = None) -> dict:
        """
        Vote counts per option.

        Raises:
            Forbidden: While the election is still running
        """
        now = now or datetime.now(timezone.utc)
        async with self.db.connection() as conn:
            election = await self._public_election(conn, election_id)
            finished = (
                election["status"] == ElectionStatus.COMPLETED.value
                or election["end_date"] < now
            )
            if not finished:
                raise Forbidden(
                    "Results are available once the election has ended",
                    code="RESULTS_NOT_AVAILABLE"
                )

            rows = await conn.fetch(
                """
                SELECT q.id AS question_id, q.question_text, q.question_order,
                       o.id AS option_id, o.option_text, o.option_order,
                       (SELECT COUNT(*) FROM votes v
                        WHERE v.option_id = o.id AND v.is_valid = TRUE)
                     + (SELECT COUNT(*) FROM anonymous_votes a
                        WHERE a.option_id = o.id) AS vote_count
                FROM election_questions q
                JOIN election_options o ON o.question_id = q.id
                WHERE q.election_id = $1
                ORDER BY q.question_order, q.id, o.option_order, o.id
                """,
                election_id
            )

        questions = {}
        for row in rows:
            question = questions.setdefault(row["question_id"], {
                "question_id": row["question_id"],
                "question_text": row["question_text"],
                "total_votes": 0,
                "options": [],
            })
            votes = int(row["vote_count"])
            question["total_votes"] += votes
            question["options"].append({
                "option_id": row["option_id"],
                "option_text": row["option_text"],
                "vote_count": votes,
            })

        for question in questions.values():
            for option in question["options"]:
                option["percentage"] = (
                    round(option["vote_count"] * 100 / question["total_votes"], 2)
                    if question["total_votes"] else 0.0
                )

        return {
            "election_id": election_id,
            "title": election["title"],
            "status": election["status"],
            "results": list(questions.values()),
        }

    async def get_stats(self, election_id: int, now: Optional[datetime] = None) -> dict:
        async with self.db.connection() as conn:
            election = await self._public_election(conn, election_id)
            counts = await conn.fetchrow(
                """
                SELECT
                    (SELECT COUNT(*) FROM votes
                     WHERE election_id = $1 AND is_valid = TRUE) AS total_votes,
                    (SELECT COUNT(DISTINCT user_id) FROM votes
                     WHERE election_id = $1 AND is_valid = TRUE) AS unique_voters,
                    (SELECT COUNT(*) FROM anonymous_votes
                     WHERE election_id = $1) AS anonymous_votes,
                    (SELECT COUNT(*) FROM election_questions
                     WHERE election_id = $1) AS total_questions
                """,
                election_id
            )

        timeline_status, days_remaining = compute_timeline(
            election["start_date"], election["end_date"], now
        )
        return {
            "election_id": election_id,
            "status": election["status"],
            "total_votes": int(counts["total_votes"]),
            "unique_voters": int(counts["unique_voters"]),
            "anonymous_votes": int(counts["anonymous_votes"]),
            "total_questions": int(counts["total_questions"]),
            "timeline_status": timeline_status,
            "days_remaining": days_remaining,
            "start_date": election["start_date"],
            "end_date": election["end_date"],
        }

    async def get_categories(self) -> List[dict]:
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, category_name, description
                FROM election_categories
                WHERE is_active = TRUE
                ORDER BY category_name
                """
            )
        return [dict(row) for row in rows]


# Global public API service instance
public_service = PublicService(database)
