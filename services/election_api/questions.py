"""Ballot questions and options of published elections."""
import logging
from typing import List

import asyncpg

from services.shared import CHOICE_VOTING_TYPES, QuestionType, VotingType
from .auth import CurrentUser
from .database import Database, database
from .elections import ensure_no_votes, fetch_election, fetch_owned_election, load_questions
from .errors import Forbidden, NotFound
from .models import OptionCreate, QuestionCreate

logger = logging.getLogger(__name__)


class QuestionService:
    """Add and remove questions and options while an election has no votes."""

    def __init__(self, db: Database):
        self.db = db

    async def _owned_question(self, conn: asyncpg.Connection, question_id: int, user: CurrentUser) -> dict:
        row = await conn.fetchrow(
            """
            SELECT q.*, e.creator_id
            FROM election_questions q
            JOIN elections e ON e.id = q.election_id
            WHERE q.id = $1
            """,
            question_id
        )
        if row is None:
            raise NotFound("Question not found")
        if row["creator_id"] != user.user_id:
            raise Forbidden("You do not have permission to perform this action")
        return dict(row)

    async def list_questions(self, election_id: int) -> List[dict]:
        async with self.db.connection() as conn:
            await fetch_election(conn, election_id)
            return await load_questions(conn, election_id)

    async def add_question(self, election_id: int, user: CurrentUser, question: QuestionCreate) -> dict:
        """Append a question, with its options, to an owned election."""
        async with self.db.transaction() as conn:
            election = await fetch_owned_election(conn, election_id, user)
            await ensure_no_votes(conn, election_id, "modify questions of")

            voting_type = election["voting_type"]
            question_type = question.question_type.value
            if voting_type in CHOICE_VOTING_TYPES:
                question_type = QuestionType.MULTIPLE_CHOICE.value

            max_selections = question.max_selections
            if max_selections is None:
                max_selections = 1 if voting_type == VotingType.PLURALITY.value else 999

            question_order = question.question_order
            if question_order is None:
                question_order = await conn.fetchval(
                    "SELECT COALESCE(MAX(question_order), 0) + 1 FROM election_questions WHERE election_id = $1",
                    election_id
                )

            row = await conn.fetchrow(
                """
                INSERT INTO election_questions
                    (election_id, question_text, question_type, question_order,
                     question_image_url, is_required, max_selections)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                election_id, question.question_text, question_type, question_order,
                question.question_image_url, question.is_required, max_selections
            )
            created = dict(row)

            options = []
            for position, option in enumerate(question.options, start=1):
                option_row = await conn.fetchrow(
                    """
                    INSERT INTO election_options
                        (question_id, option_text, option_image_url, option_order)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                    """,
                    created["id"], option.option_text, option.option_image_url,
                    option.option_order or position
                )
                options.append(dict(option_row))
            created["options"] = options

        logger.info(f"Question added: election={election_id}, question={created['id']}")
        return created

    async def delete_question(self, question_id: int, user: CurrentUser):
        async with self.db.transaction() as conn:
            question = await self._owned_question(conn, question_id, user)
            await ensure_no_votes(conn, question["election_id"], "modify questions of")
            await conn.execute("DELETE FROM election_questions WHERE id = $1", question_id)

    async def add_option(self, question_id: int, user: CurrentUser, option: OptionCreate) -> dict:
        async with self.db.transaction() as conn:
            question = await self._owned_question(conn, question_id, user)
            await ensure_no_votes(conn, question["election_id"], "modify questions of")

            option_order = option.option_order
            if option_order is None:
                option_order = await conn.fetchval(
                    "SELECT COALESCE(MAX(option_order), 0) + 1 FROM election_options WHERE question_id = $1",
                    question_id
                )

            row = await conn.fetchrow(
                """
                INSERT INTO election_options
                    (question_id, option_text, option_image_url, option_order)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                """,
                question_id, option.option_text, option.option_image_url, option_order
            )
        return dict(row)

    async def delete_option(self, option_id: int, user: CurrentUser):
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                "SELECT question_id FROM election_options WHERE id = $1",
                option_id
            )
            if row is None:
                raise NotFound("Option not found")
            question = await self._owned_question(conn, row["question_id"], user)
            await ensure_no_votes(conn, question["election_id"], "modify questions of")
            await conn.execute("DELETE FROM election_options WHERE id = $1", option_id)


# Global question service instance
question_service = QuestionService(database)
