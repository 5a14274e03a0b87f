"""Tests for drafts and the draft-to-published transaction."""

from decimal import Decimal

import pytest

from services.election_api.errors import Conflict, NotFound, ValidationFailed
from services.election_api.models import PublishRequest, QuestionIn
from services.election_api.publishing import draft_service, merge_publish_payload


def counter(start):
    """Answer returning increasing ids."""
    ids = iter(range(start, start + 1000))
    return lambda *args: next(ids)


DRAFT_DATA = {
    "title": "Neighbourhood Budget 2099",
    "description": "Pick the projects",
    "start_date": "2099-01-01",
    "end_date": "2099-01-31",
    "voting_type": "plurality",
    "category_id": 4,
    "questions": [
        {
            "question_text": "Which park upgrade?",
            "question_type": "open_text",
            "options": [{"option_text": "Playground"}, {"option_text": "Benches"}],
        },
        {
            "question_text": "Which street?",
            "options": [{"option_text": "Main"}, {"option_text": "High"}, {"option_text": "Elm"}],
        },
    ],
    "regional_pricing": [
        {"region_code": "region_1_us_canada", "region_name": "US & Canada", "participation_fee": "2.50"},
    ],
    "lottery_config": {"lottery_enabled": True, "winner_count": 3, "total_prize_pool": "90"},
}


def election_row(*args):
    """Echo the election INSERT arguments back as a stored row."""
    return {
        "id": 42,
        "creator_id": args[0],
        "creator_type": args[1],
        "title": args[3],
        "slug": args[5],
        "start_date": args[9],
        "end_date": args[10],
        "voting_type": args[12],
        "pricing_type": args[15],
        "processing_fee_percentage": args[18],
        "status": args[25],
    }


def lottery_row(*args):
    return {"election_id": args[0], "is_lotterized": args[1], "winner_count": args[5],
            "prize_pool_total": args[6]}


@pytest.fixture
def publish_conn(fake_conn, fake_db, creator):
    fake_conn.on("SELECT * FROM election_drafts", {
        "id": 1, "creator_id": creator.user_id, "draft_data": dict(DRAFT_DATA),
    })
    fake_conn.on("SELECT id FROM elections WHERE slug", None)
    fake_conn.on("INSERT INTO elections", election_row)
    fake_conn.on("INSERT INTO election_questions", counter(100))
    fake_conn.on("INSERT INTO election_lottery_config", lottery_row)
    return fake_conn


class TestMergePublishPayload:
    """Combining the stored draft with publish overrides."""

    def test_request_election_fields_override_draft(self):
        payload = merge_publish_payload(
            {"title": "Draft title", "timezone": "UTC"},
            PublishRequest(election={"title": "Final title"})
        )
        assert payload["election"] == {"title": "Final title", "timezone": "UTC"}

    def test_draft_sections_used_when_request_omits_them(self):
        payload = merge_publish_payload(DRAFT_DATA, PublishRequest())
        assert len(payload["questions"]) == 2
        assert payload["regional_pricing"][0].participation_fee == Decimal("2.50")
        assert payload["lottery"].winner_count == 3
        assert payload["category_id"] == 4
        assert "questions" not in payload["election"]

    def test_request_questions_replace_draft_questions(self):
        payload = merge_publish_payload(
            DRAFT_DATA, PublishRequest(questions=[QuestionIn(question_text="Only one?")])
        )
        assert [q.question_text for q in payload["questions"]] == ["Only one?"]

    def test_missing_lottery_section_defaults_to_disabled(self):
        payload = merge_publish_payload({"title": "x"}, PublishRequest())
        assert payload["lottery"].lottery_enabled is False

    def test_malformed_draft_section_rejected(self):
        with pytest.raises(ValidationFailed):
            merge_publish_payload({"questions": [{"options": []}]}, PublishRequest())

    def test_unknown_voting_type_rejected(self):
        with pytest.raises(ValidationFailed, match="voting_type"):
            merge_publish_payload({"title": "x", "voting_type": "bogus"}, PublishRequest())

    def test_string_flags_rejected(self):
        with pytest.raises(ValidationFailed, match="biometric_required"):
            merge_publish_payload({"title": "x", "biometric_required": "false"}, PublishRequest())

    def test_non_string_title_rejected(self):
        with pytest.raises(ValidationFailed, match="title"):
            merge_publish_payload({"title": 2099}, PublishRequest())

    def test_non_column_keys_dropped(self):
        payload = merge_publish_payload(
            {"title": "x", "wizard_step": 4}, PublishRequest(election={"general_participation_fee": "1.50"})
        )
        assert payload["election"] == {"title": "x", "general_participation_fee": "1.50"}


@pytest.mark.asyncio
class TestPublishDraft:
    """DraftService.publish_draft."""

    async def test_publishes_everything_in_one_commit(self, publish_conn, creator):
        result = await draft_service.publish_draft(1, creator, PublishRequest())

        assert result["election"]["id"] == 42
        assert result["election"]["status"] == "published"
        assert result["questions_count"] == 2
        assert result["regional_pricing_count"] == 1
        assert result["lottery_config"]["is_lotterized"] is True
        assert result["shareable_url"].endswith(f"/vote/{result['election']['slug']}")

        assert publish_conn.commits == 1
        assert publish_conn.rollbacks == 0
        assert len(publish_conn.queries("INSERT INTO election_category_mappings")) == 1
        assert len(publish_conn.queries("INSERT INTO election_regional_pricing")) == 1
        assert len(publish_conn.queries("INSERT INTO election_options")) == 5
        assert len(publish_conn.queries("DELETE FROM election_drafts")) == 1

    async def test_draft_deleted_after_all_inserts(self, publish_conn, creator):
        await draft_service.publish_draft(1, creator, PublishRequest())
        statements = [sql for _, sql, _ in publish_conn.calls]
        delete_index = next(i for i, sql in enumerate(statements) if sql.startswith("DELETE FROM election_drafts"))
        assert all(not sql.startswith("INSERT") for sql in statements[delete_index + 1:])

    async def test_choice_voting_forces_multiple_choice_and_single_selection(self, publish_conn, creator):
        await draft_service.publish_draft(1, creator, PublishRequest())
        first_question = publish_conn.queries("INSERT INTO election_questions")[0][2]
        # (election_id, text, type, order, image, required, max_selections)
        assert first_question[2] == "multiple_choice"
        assert first_question[3] == 1
        assert first_question[5] is True
        assert first_question[6] == 1

    async def test_approval_voting_allows_many_selections(self, publish_conn, creator):
        await draft_service.publish_draft(
            1, creator, PublishRequest(election={"voting_type": "approval"})
        )
        first_question = publish_conn.queries("INSERT INTO election_questions")[0][2]
        assert first_question[6] == 999

    async def test_options_numbered_in_order(self, publish_conn, creator):
        await draft_service.publish_draft(1, creator, PublishRequest())
        orders = [call[2][3] for call in publish_conn.queries("INSERT INTO election_options")]
        assert orders == [1, 2, 1, 2, 3]

    async def test_zero_questions_is_allowed(self, publish_conn, creator):
        result = await draft_service.publish_draft(1, creator, PublishRequest(questions=[]))
        assert result["questions_count"] == 0
        assert publish_conn.queries("INSERT INTO election_questions") == []
        assert publish_conn.commits == 1

    async def test_defaults_applied_to_election_row(self, publish_conn, creator):
        await draft_service.publish_draft(1, creator, PublishRequest())
        args = publish_conn.queries("INSERT INTO elections")[0][2]
        assert args[11] == "UTC"
        assert args[13] == "public"
        assert args[15] == "free"
        assert args[16] is True
        assert args[19] == ["passkey"]

    async def test_explicit_slug_is_kept(self, publish_conn, creator):
        result = await draft_service.publish_draft(
            1, creator, PublishRequest(election={"slug": "budget-2099"})
        )
        assert result["election"]["slug"] == "budget-2099"

    async def test_taken_slug_conflicts_and_rolls_back(self, publish_conn, creator):
        publish_conn.on("SELECT id FROM elections WHERE slug", 9)

        with pytest.raises(Conflict) as exc_info:
            await draft_service.publish_draft(1, creator, PublishRequest(election={"slug": "taken"}))

        assert exc_info.value.code == "SLUG_EXISTS"
        assert publish_conn.rollbacks == 1
        assert publish_conn.commits == 0
        assert publish_conn.queries("INSERT INTO elections") == []
        assert publish_conn.queries("DELETE FROM election_drafts") == []

    async def test_slug_checked_inside_transaction(self, publish_conn, creator):
        seen = []
        publish_conn.on("SELECT id FROM elections WHERE slug", lambda *args: seen.append(publish_conn.in_transaction))
        await draft_service.publish_draft(1, creator, PublishRequest())
        assert seen == [True]

    async def test_failure_midway_rolls_back_and_keeps_draft(self, publish_conn, creator):
        publish_conn.on("INSERT INTO election_options", RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            await draft_service.publish_draft(1, creator, PublishRequest())

        assert publish_conn.rollbacks == 1
        assert publish_conn.commits == 0
        assert publish_conn.queries("DELETE FROM election_drafts") == []

    async def test_end_before_start_rejected(self, publish_conn, creator):
        with pytest.raises(ValidationFailed, match="End date must be after start date"):
            await draft_service.publish_draft(
                1, creator, PublishRequest(election={"end_date": "2098-12-01"})
            )
        assert publish_conn.rollbacks == 1

    async def test_malformed_date_rejected(self, publish_conn, creator):
        with pytest.raises(ValidationFailed, match="Invalid date format"):
            await draft_service.publish_draft(
                1, creator, PublishRequest(election={"start_date": "soon"})
            )

    async def test_missing_title_rejected(self, publish_conn, creator):
        with pytest.raises(ValidationFailed, match="Title is required"):
            await draft_service.publish_draft(1, creator, PublishRequest(election={"title": "  "}))

    async def test_invalid_election_fields_rejected_before_insert(self, publish_conn, creator):
        publish_conn.on("SELECT * FROM election_drafts", {
            "id": 1, "creator_id": creator.user_id,
            "draft_data": {**DRAFT_DATA, "voting_type": "bogus"},
        })
        with pytest.raises(ValidationFailed):
            await draft_service.publish_draft(1, creator, PublishRequest())
        assert publish_conn.queries("INSERT INTO elections") == []
        assert publish_conn.rollbacks == 1

    async def test_flags_stored_as_given(self, publish_conn, creator):
        await draft_service.publish_draft(
            1, creator, PublishRequest(election={"biometric_required": False, "show_live_results": True})
        )
        args = publish_conn.queries("INSERT INTO elections")[0][2]
        assert args[20] is False
        assert args[21] is True

    async def test_unknown_draft(self, publish_conn, creator):
        publish_conn.on("SELECT * FROM election_drafts", None)
        with pytest.raises(NotFound):
            await draft_service.publish_draft(99, creator, PublishRequest())
        assert publish_conn.queries("INSERT INTO elections") == []


@pytest.mark.asyncio
class TestDraftCrud:
    """Draft create/read/update/delete."""

    async def test_create_draft(self, fake_conn, fake_db, creator):
        fake_conn.on("INSERT INTO election_drafts", lambda user_id, data: {"id": 5, "creator_id": user_id, "draft_data": data})
        draft = await draft_service.create_draft(creator, {"title": "Poll"})
        assert draft == {"id": 5, "creator_id": 7, "draft_data": {"title": "Poll"}}

    async def test_get_missing_draft(self, fake_conn, fake_db, creator):
        with pytest.raises(NotFound, match="Draft not found"):
            await draft_service.get_draft(3, creator)

    async def test_update_merges_json(self, fake_conn, fake_db, creator):
        fake_conn.on("UPDATE election_drafts", {"id": 3, "draft_data": {"title": "New"}})
        await draft_service.update_draft(3, creator, {"title": "New"})
        sql, args = fake_conn.queries("UPDATE election_drafts")[0][1:]
        assert "draft_data || $3::jsonb" in sql
        assert args == (3, 7, {"title": "New"})

    async def test_delete_missing_draft(self, fake_conn, fake_db, creator):
        with pytest.raises(NotFound):
            await draft_service.delete_draft(3, creator)
