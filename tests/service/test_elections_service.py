"""Tests for election management and ballot editing."""

from datetime import datetime, timezone

import pytest

from services.election_api.auth import CurrentUser
from services.election_api.errors import Forbidden, NotFound, ValidationFailed
from services.election_api.elections import election_service
from services.election_api.models import ElectionUpdate, OptionIn, QuestionCreate
from services.election_api.questions import question_service

VOTE_COUNT = "(SELECT COUNT(*) FROM votes WHERE election_id = $1 AND is_valid = TRUE)"


def stored_election(**overrides):
    values = {
        "id": 5, "creator_id": 7, "title": "Budget Vote", "slug": "budget-vote",
        "status": "published", "voting_type": "plurality",
        "start_date": datetime(2099, 1, 1, tzinfo=timezone.utc),
        "end_date": datetime(2099, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return values


@pytest.fixture
def election_conn(fake_conn, fake_db):
    fake_conn.on("SELECT * FROM elections WHERE id", stored_election())
    fake_conn.on(VOTE_COUNT, 0)
    return fake_conn


@pytest.mark.asyncio
class TestElectionDetails:
    """Reading elections."""

    async def test_details_include_ballot_and_url(self, election_conn):
        election_conn.on("FROM election_questions WHERE election_id", [{"id": 1, "question_text": "Q"}])
        election_conn.on("FROM election_options WHERE question_id = ANY", [
            {"id": 10, "question_id": 1, "option_text": "Yes"},
        ])
        election_conn.on(VOTE_COUNT, 4)

        election = await election_service.get_election(5)

        assert election["questions"][0]["options"][0]["option_text"] == "Yes"
        assert election["vote_count"] == 4
        assert election["shareable_url"].endswith("/vote/budget-vote")
        assert election["lottery_config"] is None

    async def test_missing_election(self, fake_conn, fake_db):
        with pytest.raises(NotFound):
            await election_service.get_election(5)

    async def test_export_document(self, election_conn, creator):
        document = await election_service.export_election(5, creator)
        assert document["format_version"] == "1.0"
        assert document["election"]["slug"] == "budget-vote"
        assert "questions" not in document["election"]


@pytest.mark.asyncio
class TestElectionChanges:
    """Updating, deleting and cloning."""

    async def test_update_writes_only_given_fields(self, election_conn, creator):
        election_conn.on("UPDATE elections SET", {"id": 5, "title": "Renamed"})
        await election_service.update_election(5, creator, ElectionUpdate(title="Renamed"))

        _, sql, args = election_conn.queries("UPDATE elections SET")[0]
        assert sql.startswith("UPDATE elections SET title = $2, updated_at = NOW()")
        assert args == (5, "Renamed")

    async def test_update_revalidates_dates(self, election_conn, creator):
        with pytest.raises(ValidationFailed, match="End date must be after start date"):
            await election_service.update_election(5, creator, ElectionUpdate(end_date="2098-12-01"))
        assert election_conn.rollbacks == 1

    async def test_time_only_change_applies_to_stored_day(self, election_conn, creator):
        election_conn.on("UPDATE elections SET", {"id": 5})
        await election_service.update_election(5, creator, ElectionUpdate(start_time="10:00:00"))

        _, sql, args = election_conn.queries("UPDATE elections SET")[0]
        assert "start_date = $2" in sql
        assert args[1] == datetime(2099, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert args[2] == datetime(2099, 1, 31, 23, 59, 59, tzinfo=timezone.utc)

    async def test_end_time_change_keeps_end_day(self, election_conn, creator):
        election_conn.on("UPDATE elections SET", {"id": 5})
        await election_service.update_election(5, creator, ElectionUpdate(end_time="18:30:00"))

        args = election_conn.queries("UPDATE elections SET")[0][2]
        assert args[2] == datetime(2099, 1, 31, 18, 30, tzinfo=timezone.utc)

    async def test_update_blocked_once_voted(self, election_conn, creator):
        election_conn.on(VOTE_COUNT, 1)
        with pytest.raises(ValidationFailed, match="already has votes"):
            await election_service.update_election(5, creator, ElectionUpdate(title="Renamed"))
        assert election_conn.queries("UPDATE elections SET") == []

    async def test_update_by_other_user(self, election_conn):
        with pytest.raises(Forbidden):
            await election_service.update_election(5, CurrentUser(user_id=8), ElectionUpdate(title="X"))

    async def test_delete_blocked_once_voted(self, election_conn, creator):
        election_conn.on(VOTE_COUNT, 2)
        with pytest.raises(ValidationFailed):
            await election_service.delete_election(5, creator)
        assert election_conn.queries("DELETE FROM elections") == []

    async def test_clone_copies_ballot_in_one_transaction(self, election_conn, creator):
        election_conn.on("INSERT INTO elections", lambda *args: {"id": 77, "title": args[1], "slug": args[2], "status": args[3]})
        election_conn.on("SELECT * FROM election_questions WHERE election_id", [
            {"id": 1, "question_text": "Q1", "question_type": "multiple_choice", "question_order": 1,
             "question_image_url": None, "is_required": True, "max_selections": 1},
        ])
        election_conn.on("INSERT INTO election_questions", 500)

        result = await election_service.clone_election(5, creator)

        assert result["election"]["title"] == "Budget Vote (Copy)"
        assert result["election"]["status"] == "draft"
        assert result["election"]["slug"].startswith("budget-vote-copy-")
        assert result["questions_count"] == 1
        options_copy = election_conn.queries("INSERT INTO election_options")[0]
        assert options_copy[2] == (1, 500)
        assert election_conn.queries("INSERT INTO election_lottery_config")
        assert election_conn.commits == 1


@pytest.mark.asyncio
class TestQuestionEditing:
    """QuestionService."""

    async def test_plurality_question_defaults(self, election_conn, creator):
        election_conn.on("SELECT COALESCE(MAX(question_order), 0) + 1", 3)
        election_conn.on("INSERT INTO election_questions", lambda *args: {"id": 40, "question_type": args[2],
                                                                            "question_order": args[3],
                                                                            "max_selections": args[6]})
        election_conn.on("INSERT INTO election_options", lambda *args: {"question_id": args[0], "option_order": args[3]})

        question = await question_service.add_question(5, creator, QuestionCreate(
            question_text="Pick one", question_type="open_text",
            options=[OptionIn(option_text="A"), OptionIn(option_text="B")]
        ))

        assert question["question_type"] == "multiple_choice"
        assert question["question_order"] == 3
        assert question["max_selections"] == 1
        assert [option["option_order"] for option in question["options"]] == [1, 2]

    async def test_questions_locked_once_voted(self, election_conn, creator):
        election_conn.on(VOTE_COUNT, 1)
        with pytest.raises(ValidationFailed):
            await question_service.add_question(5, creator, QuestionCreate(question_text="Late"))
