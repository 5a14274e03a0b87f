"""Lottery configuration and winner draws.

Winners are picked with a Fisher-Yates shuffle driven by the operating
system CSPRNG. Each swap index comes from a 32-bit random integer mapped
onto the remaining range by rejection sampling, so every permutation is
equally likely.
"""
import logging
import secrets
from decimal import ROUND_DOWN, Decimal
from typing import Callable, List, Optional, Sequence, TypeVar

import asyncpg

from services.shared import ElectionStatus, calculate_pagination_meta
from .auth import CurrentUser
from .database import Database, database
from .elections import fetch_election, fetch_owned_election
from .errors import Conflict, Forbidden, NotFound, ValidationFailed
from .metrics import lottery_draws, lottery_winners_selected
from .models import LotteryConfigRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")

RANDOM_WIDTH_BYTES = 4
RANDOM_SPACE = 1 << (8 * RANDOM_WIDTH_BYTES)
CENT = Decimal("0.01")


def secure_randbelow(n: int, randbytes: Callable[[int], bytes] = secrets.token_bytes) -> int:
    """
    Uniform random integer in ``[0, n)`` from fixed-width random reads.

    Draws that fall in the incomplete top bucket of the 32-bit space are
    discarded and redrawn.

    Args:
        n: Exclusive upper bound, 1 <= n <= 2**32
        randbytes: Source of random bytes

    Returns:
        int: Random index
    """
    if n <= 0 or n > RANDOM_SPACE:
        raise ValueError(f"Range must be between 1 and {RANDOM_SPACE}, got {n}")

    limit = RANDOM_SPACE - (RANDOM_SPACE % n)
    while True:
        value = int.from_bytes(randbytes(RANDOM_WIDTH_BYTES), "big")
        if value < limit:
            return value % n


def secure_shuffle(items: Sequence[T], randbytes: Callable[[int], bytes] = secrets.token_bytes) -> List[T]:
    """Return a Fisher-Yates shuffled copy of ``items``."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = secure_randbelow(i + 1, randbytes)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def select_random_winners(
    participants: Sequence[T],
    winner_count: int,
    randbytes: Callable[[int], bytes] = secrets.token_bytes
) -> List[T]:
    """
    Pick distinct winners from the participants.

    The count is clamped to the number of participants.
    """
    if winner_count <= 0 or not participants:
        return []
    count = min(winner_count, len(participants))
    return secure_shuffle(participants, randbytes)[:count]


def compute_prize_per_winner(
    prize_pool_total: Optional[Decimal],
    reward_amount: Optional[Decimal],
    winner_count: int
) -> Optional[Decimal]:
    """
    Prize each winner receives.

    A configured pool is split evenly and rounded down to the cent so the
    payout never exceeds the pool. Without a pool the flat reward applies.
    """
    if winner_count <= 0:
        return None
    if prize_pool_total is not None and Decimal(prize_pool_total) > 0:
        return (Decimal(prize_pool_total) / winner_count).quantize(CENT, rounding=ROUND_DOWN)
    if reward_amount is not None:
        return Decimal(reward_amount).quantize(CENT)
    return None


class LotteryService:
    """Lottery settings, draws and prize claims."""

    def __init__(self, db: Database, randbytes: Callable[[int], bytes] = secrets.token_bytes):
        self.db = db
        self.randbytes = randbytes

    async def configure_lottery(self, election_id: int, user: CurrentUser, config: LotteryConfigRequest) -> dict:
        async with self.db.connection() as conn:
            await fetch_owned_election(conn, election_id, user)
            row = await conn.fetchrow(
                """
                INSERT INTO election_lottery_config
                    (election_id, is_lotterized, reward_type, reward_amount,
                     reward_description, winner_count, prize_pool_total,
                     lottery_machine_visible, auto_trigger_at_end)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (election_id) DO UPDATE
                SET is_lotterized = EXCLUDED.is_lotterized,
                    reward_type = EXCLUDED.reward_type,
                    reward_amount = EXCLUDED.reward_amount,
                    reward_description = EXCLUDED.reward_description,
                    winner_count = EXCLUDED.winner_count,
                    prize_pool_total = EXCLUDED.prize_pool_total,
                    lottery_machine_visible = EXCLUDED.lottery_machine_visible,
                    auto_trigger_at_end = EXCLUDED.auto_trigger_at_end,
                    updated_at = NOW()
                RETURNING *
                """,
                election_id, config.is_lotterized, config.reward_type.value,
                config.reward_amount, config.reward_description, config.winner_count,
                config.prize_pool_total, config.lottery_machine_visible,
                config.auto_trigger_at_end
            )
        logger.info(f"Lottery configured: election={election_id}, winners={config.winner_count}")
        return dict(row)

    async def get_lottery_config(self, election_id: int) -> dict:
        async with self.db.connection() as conn:
            await fetch_election(conn, election_id)
            row = await conn.fetchrow(
                "SELECT * FROM election_lottery_config WHERE election_id = $1",
                election_id
            )
        if row is None:
            return {"election_id": election_id, "is_lotterized": False}
        return dict(row)

    async def draw_winners(self, election_id: int, user: CurrentUser) -> dict:
        """
        Draw lottery winners for a completed election.

        Only the creator may draw. See ``_draw`` for the checks.
        """
        return await self._draw(election_id, actor_id=user.user_id, trigger="manual")

    async def auto_trigger(self, election_id: int) -> dict:
        """Draw on behalf of the creator when automatic drawing is enabled."""
        async with self.db.connection() as conn:
            election = await fetch_election(conn, election_id)
            config = await conn.fetchrow(
                "SELECT auto_trigger_at_end FROM election_lottery_config WHERE election_id = $1",
                election_id
            )
        if config is None or not config["auto_trigger_at_end"]:
            raise ValidationFailed("Automatic drawing is not enabled for this election")
        if election["status"] != ElectionStatus.COMPLETED.value:
            raise ValidationFailed("Election has not completed yet")

        return await self._draw(election_id, actor_id=None, trigger="auto")

    async def _draw(self, election_id: int, actor_id: Optional[int], trigger: str) -> dict:
        """
        Run the draw in one transaction.

        The settings row is locked so concurrent draws serialize, and the
        existing-winners check runs under that lock.

        Raises:
            NotFound: Election missing
            Forbidden: Actor is not the creator
            ValidationFailed: Not completed, lottery disabled, or no voters
            Conflict: Winners already drawn
        """
        async with self.db.transaction() as conn:
            election = await fetch_election(conn, election_id)
            if actor_id is not None and election["creator_id"] != actor_id:
                raise Forbidden("Only the election creator can select winners")
            if election["status"] != ElectionStatus.COMPLETED.value:
                raise ValidationFailed("Winners can only be selected after the election has completed")

            config = await conn.fetchrow(
                "SELECT * FROM election_lottery_config WHERE election_id = $1 FOR UPDATE",
                election_id
            )
            if config is None or not config["is_lotterized"]:
                raise ValidationFailed("Lottery is not enabled for this election")

            existing = await conn.fetchval(
                "SELECT COUNT(*) FROM election_lottery_winners WHERE election_id = $1",
                election_id
            )
            if existing:
                raise Conflict(
                    "Winners have already been selected for this election",
                    code="WINNERS_ALREADY_SELECTED"
                )

            participants = await self._participants(conn, election_id)
            if not participants:
                raise ValidationFailed("No eligible participants found")

            selected = select_random_winners(participants, config["winner_count"], self.randbytes)
            prize = compute_prize_per_winner(
                config["prize_pool_total"], config["reward_amount"], len(selected)
            )

            winners = []
            for rank, user_id in enumerate(selected, start=1):
                row = await conn.fetchrow(
                    """
                    INSERT INTO election_lottery_winners
                        (election_id, user_id, winner_rank, prize_amount, prize_description)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    """,
                    election_id, user_id, rank, prize, config["reward_description"]
                )
                winners.append(dict(row))

        lottery_draws.labels(trigger=trigger).inc()
        lottery_winners_selected.inc(len(winners))
        logger.info(
            f"Lottery drawn: election={election_id}, trigger={trigger}, "
            f"participants={len(participants)}, winners={len(winners)}, prize={prize}"
        )

        return {
            "election_id": election_id,
            "total_participants": len(participants),
            "winner_count": len(winners),
            "prize_per_winner": prize,
            "winners": winners,
        }

    async def _participants(self, conn: asyncpg.Connection, election_id: int) -> List[int]:
        rows = await conn.fetch(
            """
            SELECT DISTINCT user_id
            FROM votes
            WHERE election_id = $1 AND is_valid = TRUE
            ORDER BY user_id
            """,
            election_id
        )
        return [row["user_id"] for row in rows]

    async def get_winners(self, election_id: int, page: int = 1, limit: int = 20) -> dict:
        offset = (page - 1) * limit
        async with self.db.connection() as conn:
            await fetch_election(conn, election_id)
            rows = await conn.fetch(
                """
                SELECT w.*, u.email
                FROM election_lottery_winners w
                LEFT JOIN users u ON u.id = w.user_id
                WHERE w.election_id = $1
                ORDER BY w.winner_rank
                LIMIT $2 OFFSET $3
                """,
                election_id, limit, offset
            )
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM election_lottery_winners WHERE election_id = $1",
                election_id
            )
        return {
            "winners": [dict(row) for row in rows],
            "pagination": calculate_pagination_meta(page, limit, int(total or 0)),
        }

    async def claim_prize(self, winner_id: int, user: CurrentUser) -> dict:
        async with self.db.connection() as conn:
            winner = await conn.fetchrow(
                "SELECT * FROM election_lottery_winners WHERE id = $1",
                winner_id
            )
            if winner is None:
                raise NotFound("Winner record not found")
            if winner["user_id"] != user.user_id:
                raise Forbidden("You can only claim your own prize")
            if winner["claimed"]:
                raise Conflict("Prize already claimed")

            row = await conn.fetchrow(
                """
                UPDATE election_lottery_winners
                SET claimed = TRUE, claimed_at = NOW()
                WHERE id = $1 AND claimed = FALSE
                RETURNING *
                """,
                winner_id
            )
        if row is None:
            raise Conflict("Prize already claimed")

        logger.info(f"Prize claimed: winner={winner_id}, user={user.user_id}")
        return dict(row)

    async def my_wins(self, user: CurrentUser) -> List[dict]:
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT w.*, e.title AS election_title, e.slug AS election_slug
                FROM election_lottery_winners w
                JOIN elections e ON e.id = w.election_id
                WHERE w.user_id = $1
                ORDER BY w.selected_at DESC
                """,
                user.user_id
            )
        return [dict(row) for row in rows]

    async def find_pending_auto_draws(self) -> List[int]:
        """Completed lotterized elections set to draw automatically and not drawn yet."""
        async with self.db.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT e.id
                FROM elections e
                JOIN election_lottery_config c ON c.election_id = e.id
                WHERE e.status = $1
                  AND c.is_lotterized = TRUE
                  AND c.auto_trigger_at_end = TRUE
                  AND NOT EXISTS (
                      SELECT 1 FROM election_lottery_winners w WHERE w.election_id = e.id
                  )
                ORDER BY e.end_date
                """,
                ElectionStatus.COMPLETED.value
            )
        return [row["id"] for row in rows]


# Global lottery service instance
lottery_service = LotteryService(database)
