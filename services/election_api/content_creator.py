"""Content creator tools: one-time voting links, projected revenue and icons."""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .auth import CurrentUser
from .config import settings
from .database import Database, database
from .elections import fetch_owned_election
from .errors import Forbidden, Gone, NotFound
from .models import IconCreate, OneTimeLinkCreate, RevenueTrack

logger = logging.getLogger(__name__)

LINK_TOKEN_BYTES = 32


def build_one_time_link(election_id: int, token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/vote/{election_id}/otl/{token}"


class ContentCreatorService:
    def __init__(self, db: Database):
        self.db = db

    async def create_one_time_link(self, election_id: int, user: CurrentUser, request: OneTimeLinkCreate) -> dict:
        """Generate a single-use voting link for one viewer."""
        token = secrets.token_hex(LINK_TOKEN_BYTES)
        hours = request.expires_in_hours or settings.ONE_TIME_LINK_DEFAULT_HOURS
        expires_at = datetime.now(timezone.utc) + timedelta(hours=hours)

        async with self.db.connection() as conn:
            await fetch_owned_election(conn, election_id, user)
            row = await conn.fetchrow(
                """
                INSERT INTO one_time_voting_links
                    (election_id, creator_id, link_token, link_url,
                     viewer_identifier, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                """,
                election_id, user.user_id, token, build_one_time_link(election_id, token),
                request.viewer_identifier, expires_at
            )
        logger.info(f"One-time link created: election={election_id}, expires_at={expires_at.isoformat()}")
        return dict(row)

    async def validate_one_time_link(self, token: str, now: Optional[datetime] = None) -> dict:
        """
        Check that a link can still be used.

        Raises:
            NotFound: Unknown token
            Gone: Link already used or expired
        """
        now = now or datetime.now(timezone.utc)
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT l.*, e.title AS election_title, e.slug AS election_slug
                FROM one_time_voting_links l
                JOIN elections e ON e.id = l.election_id
                WHERE l.link_token = $1
                """,
                token
            )
        if row is None:
            raise NotFound("Voting link not found")
        if row["is_used"]:
            raise Gone("This voting link has already been used", code="LINK_USED")
        if row["expires_at"] < now:
            raise Gone("This voting link has expired", code="LINK_EXPIRED")
        return dict(row)

    async def mark_link_used(self, token: str) -> dict:
        async with self.db.connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE one_time_voting_links
                SET is_used = TRUE, used_at = NOW()
                WHERE link_token = $1 AND is_used = FALSE AND expires_at > NOW()
                RETURNING *
                """,
                token
            )
            if row is None:
                exists = await conn.fetchval(
                    "SELECT 1 FROM one_time_voting_links WHERE link_token = $1",
                    token
                )
        if row is None:
            if exists:
                raise Gone("This voting link is no longer valid", code="LINK_USED")
            raise NotFound("Voting link not found")
        return dict(row)

    async def track_revenue(self, user: CurrentUser, request: RevenueTrack) -> dict:
        async with self.db.connection() as conn:
            await fetch_owned_election(conn, request.election_id, user)
            row = await conn.fetchrow(
                """
                INSERT INTO projected_revenue
                    (election_id, creator_id, content_platform, projected_amount,
                     actual_amount, currency)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                """,
                request.election_id, user.user_id, request.content_platform,
                request.projected_amount, request.actual_amount, request.currency.upper()
            )
        return dict(row)

    async def revenue_report(self, user: CurrentUser, election_id: Optional[int] = None) -> dict:
        """Projected and actual revenue per platform for the creator."""
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT content_platform,
                       currency,
                       COUNT(*) AS entries,
                       SUM(projected_amount) AS total_projected,
                       COALESCE(SUM(actual_amount), 0) AS total_actual
                FROM projected_revenue
                WHERE creator_id = $1 AND ($2::int IS NULL OR election_id = $2)
                GROUP BY content_platform, currency
                ORDER BY content_platform
                """,
                user.user_id, election_id
            )
        platforms = [dict(row) for row in rows]
        return {
            "creator_id": user.user_id,
            "election_id": election_id,
            "platforms": platforms,
            "total_projected": sum(row["total_projected"] for row in platforms),
            "total_actual": sum(row["total_actual"] for row in platforms),
        }

    async def create_icon(self, user: CurrentUser, request: IconCreate) -> dict:
        async with self.db.connection() as conn:
            await fetch_owned_election(conn, request.election_id, user)
            row = await conn.fetchrow(
                """
                INSERT INTO creator_icons
                    (election_id, creator_id, icon_url, icon_position, is_visible)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                request.election_id, user.user_id, request.icon_url,
                request.icon_position, request.is_visible
            )
        return dict(row)

    async def set_icon_visibility(self, icon_id: int, user: CurrentUser, is_visible: bool) -> dict:
        async with self.db.connection() as conn:
            icon = await conn.fetchrow("SELECT creator_id FROM creator_icons WHERE id = $1", icon_id)
            if icon is None:
                raise NotFound("Icon not found")
            if icon["creator_id"] != user.user_id:
                raise Forbidden("You do not have permission to perform this action")
            row = await conn.fetchrow(
                """
                UPDATE creator_icons
                SET is_visible = $2, updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                icon_id, is_visible
            )
        return dict(row)

    async def list_icons(self, user: CurrentUser) -> List[dict]:
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                "SELECT * FROM creator_icons WHERE creator_id = $1 ORDER BY created_at DESC",
                user.user_id
            )
        return [dict(row) for row in rows]


# Global content creator service instance
content_creator_service = ContentCreatorService(database)
