"""Tests for the deterministic daily question rotation."""

import uuid
from datetime import date, datetime, timedelta, timezone

from mundapdari.models.answer import Answer
from mundapdari.models.question import Question
from mundapdari.services import question_service
from mundapdari.services.question_service import day_number, get_todays_question
from tests.conftest import CHILD_PHONE, PARENT_PHONE, create_active_pair, create_user


class TestDayNumber:
    def test_epoch(self):
        assert day_number(date(1970, 1, 1)) == 0

    def test_known_date(self):
        assert day_number(date(2024, 1, 1)) == 19723

    def test_defaults_to_today(self):
        assert day_number() >= day_number(date(2026, 1, 1))


class TestTodaysQuestion:
    async def test_empty_catalog(self, db_session):
        assert await get_todays_question(db_session, date(2024, 1, 1)) is None

    async def test_stable_within_a_day(self, db_session, questions):
        day = date(2024, 3, 15)
        first = await get_todays_question(db_session, day)
        second = await get_todays_question(db_session, day)
        assert first is not None
        assert first.id == second.id

    async def test_index_is_day_modulo_count(self, db_session, questions):
        day = date(2024, 1, 1)  # 19723 % 5 == 3
        question = await get_todays_question(db_session, day)
        assert question.id == questions[3].id

    async def test_rotates_through_catalog(self, db_session, questions):
        start = date(2024, 1, 1)
        seen = [
            (await get_todays_question(db_session, start + timedelta(days=i))).id
            for i in range(5)
        ]
        assert len(set(seen)) == 5

        # Wraps around after N days
        again = await get_todays_question(db_session, start + timedelta(days=5))
        assert again.id == seen[0]

    async def test_inactive_questions_skipped(self, db_session, questions):
        for question in questions[1:]:
            question.active = False
        await db_session.flush()

        for offset in range(3):
            question = await get_todays_question(db_session, date(2024, 1, 1) + timedelta(days=offset))
            assert question.id == questions[0].id

    async def test_order_num_defines_sequence(self, db_session):
        late = Question(content="나중에 추가된 질문입니다?", category="daily", order_num=2)
        early = Question(content="먼저 나와야 하는 질문입니다?", category="daily", order_num=1)
        db_session.add_all([late, early])
        await db_session.flush()

        # 19724 is even -> index 0
        question = await get_todays_question(db_session, date(2024, 1, 2))
        assert question.id == early.id

    async def test_count_active(self, db_session, questions):
        assert await question_service.count_active(db_session) == 5


class TestTodaysQuestionWithPair:
    async def test_without_pair_has_no_answers(self, db_session, questions):
        question = await get_todays_question(db_session, date(2024, 1, 1))
        assert question.answers == []

    async def test_attaches_pair_answers_in_order(self, db_session, questions):
        parent = await create_user(db_session, "김엄마", PARENT_PHONE, "parent")
        child = await create_user(db_session, "김지우", CHILD_PHONE, "child")
        pair = await create_active_pair(db_session, parent, child)

        day = date(2024, 1, 1)
        today = questions[3]
        db_session.add_all([
            Answer(
                question_id=today.id, user_id=child.id, pair_id=pair.id,
                content="아이의 대답입니다",
                answered_at=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
            ),
            Answer(
                question_id=today.id, user_id=parent.id, pair_id=pair.id,
                content="엄마의 대답입니다",
                answered_at=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
            ),
        ])
        await db_session.flush()

        question = await get_todays_question(db_session, day, pair_id=pair.id)
        assert question.id == today.id
        assert [a["user_name"] for a in question.answers] == ["김엄마", "김지우"]
        assert [a["user_role"] for a in question.answers] == ["parent", "child"]

    async def test_other_pairs_answers_not_attached(self, db_session, questions):
        parent = await create_user(db_session, "김엄마", PARENT_PHONE, "parent")
        child = await create_user(db_session, "김지우", CHILD_PHONE, "child")
        pair = await create_active_pair(db_session, parent, child)
        db_session.add(Answer(
            question_id=questions[3].id, user_id=parent.id, pair_id=pair.id, content="대답입니다",
        ))
        await db_session.flush()

        question = await get_todays_question(db_session, date(2024, 1, 1), pair_id=uuid.uuid4())
        assert question.answers == []
