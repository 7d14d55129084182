"""Answers, reactions and per-pair answer history."""

import csv
import io
import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from mundapdari.models.answer import Answer, Reaction
from mundapdari.models.pair import Pair
from mundapdari.models.question import Question
from mundapdari.models.user import User
from mundapdari.schemas.answer import AnswerResponse, ReactionResponse

logger = logging.getLogger(__name__)

CSV_HEADER = ["Date", "Question", "Answer", "User", "Role"]


def _detailed_select():
    return (
        select(Answer, User.name, User.role, Question.content, Question.category)
        .join(User, User.id == Answer.user_id)
        .join(Question, Question.id == Answer.question_id)
    )


def _date_range_filters(date_from: date | None, date_to: date | None) -> list:
    filters = []
    if date_from is not None:
        filters.append(Answer.answered_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to is not None:
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        filters.append(Answer.answered_at < end)
    return filters


def serialize_answer(
    answer: Answer,
    user_name: str | None = None,
    user_role: str | None = None,
    question_content: str | None = None,
    category: str | None = None,
    reactions: list[dict] | None = None,
) -> dict:
    return AnswerResponse(
        id=answer.id,
        question_id=answer.question_id,
        user_id=answer.user_id,
        pair_id=answer.pair_id,
        content=answer.content,
        answered_at=answer.answered_at,
        updated_at=answer.updated_at,
        user_name=user_name,
        user_role=user_role,
        question_content=question_content,
        category=category,
        reactions=[ReactionResponse(**r) for r in reactions or []],
    ).model_dump()


async def _reactions_by_answer(db: AsyncSession, answer_ids: list[uuid.UUID]) -> dict:
    grouped: dict[uuid.UUID, list[dict]] = defaultdict(list)
    if not answer_ids:
        return grouped
    result = await db.execute(
        select(Reaction, User.name)
        .join(User, User.id == Reaction.user_id)
        .where(Reaction.answer_id.in_(answer_ids))
        .order_by(Reaction.created_at.asc())
    )
    for reaction, name in result.all():
        grouped[reaction.answer_id].append({
            "id": reaction.id,
            "answer_id": reaction.answer_id,
            "user_id": reaction.user_id,
            "emoji": reaction.emoji,
            "created_at": reaction.created_at,
            "user_name": name,
        })
    return grouped


async def _serialize_rows(db: AsyncSession, rows) -> list[dict]:
    rows = list(rows)
    reactions = await _reactions_by_answer(db, [row[0].id for row in rows])
    return [
        serialize_answer(answer, name, role, content, category, reactions.get(answer.id))
        for answer, name, role, content, category in rows
    ]


async def get_answer(db: AsyncSession, answer_id: uuid.UUID) -> Answer:
    answer = await db.get(Answer, answer_id)
    if answer is None:
        raise NotFoundError("Answer not found")
    return answer


async def get_answer_detail(db: AsyncSession, answer_id: uuid.UUID) -> dict:
    result = await db.execute(_detailed_select().where(Answer.id == answer_id))
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("Answer not found")
    return (await _serialize_rows(db, [row]))[0]


async def ensure_pair_access(db: AsyncSession, answer: Answer, user: User) -> Pair:
    pair = await db.get(Pair, answer.pair_id)
    if pair is None or not pair.has_member(user.id):
        raise ForbiddenError("Access denied to this answer")
    return pair


async def find_user_answer(
    db: AsyncSession,
    question_id: uuid.UUID,
    user_id: uuid.UUID,
    pair_id: uuid.UUID | None = None,
) -> Answer | None:
    query = select(Answer).where(Answer.question_id == question_id, Answer.user_id == user_id)
    if pair_id is not None:
        query = query.where(Answer.pair_id == pair_id)
    result = await db.execute(query.order_by(Answer.answered_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def submit_answer(
    db: AsyncSession,
    user: User,
    pair: Pair,
    question_id: uuid.UUID,
    content: str,
) -> Answer:
    """Store a user's answer within a pair.

    Raises:
        NotFoundError: If the question does not exist or is inactive.
        ConflictError: If the user already answered this question in this pair.
    """
    question = await db.get(Question, question_id)
    if question is None or not question.active:
        raise NotFoundError("Question not found or inactive")

    if await find_user_answer(db, question_id, user.id, pair.id) is not None:
        raise ConflictError("You have already answered this question")

    answer = Answer(
        question_id=question_id,
        user_id=user.id,
        pair_id=pair.id,
        content=content,
        answered_at=datetime.now(timezone.utc),
    )
    db.add(answer)
    await db.flush()
    logger.info("Answer submitted: %s by %s in pair %s", answer.id, user.id, pair.id)
    return answer


async def update_answer(db: AsyncSession, answer: Answer, user: User, content: str) -> Answer:
    if answer.user_id != user.id:
        raise ForbiddenError("You can only edit your own answers")
    answer.content = content
    await db.flush()
    return answer


async def delete_answer(db: AsyncSession, answer: Answer, user: User) -> None:
    if answer.user_id != user.id:
        raise ForbiddenError("You can only delete your own answers")
    await db.execute(delete(Reaction).where(Reaction.answer_id == answer.id))
    await db.delete(answer)
    await db.flush()
    logger.info("Answer deleted: %s", answer.id)


async def find_by_question_and_pair(
    db: AsyncSession,
    question_id: uuid.UUID,
    pair_id: uuid.UUID,
) -> list[dict]:
    result = await db.execute(
        _detailed_select()
        .where(Answer.question_id == question_id, Answer.pair_id == pair_id)
        .order_by(Answer.answered_at.asc())
    )
    return await _serialize_rows(db, result.all())


async def list_pair_answers(
    db: AsyncSession,
    pair_id: uuid.UUID,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[dict], int]:
    total = (await db.execute(
        select(func.count(Answer.id)).where(Answer.pair_id == pair_id)
    )).scalar() or 0
    result = await db.execute(
        _detailed_select()
        .where(Answer.pair_id == pair_id)
        .order_by(Answer.answered_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return await _serialize_rows(db, result.all()), total


async def recent_answers(db: AsyncSession, pair_id: uuid.UUID, days: int = 7) -> list[dict]:
    since = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        _detailed_select()
        .where(Answer.pair_id == pair_id, Answer.answered_at >= since)
        .order_by(Answer.answered_at.desc())
    )
    return await _serialize_rows(db, result.all())


async def user_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    pair_id: uuid.UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[dict], int]:
    filters = [Answer.user_id == user_id, *_date_range_filters(date_from, date_to)]
    if pair_id is not None:
        filters.append(Answer.pair_id == pair_id)

    total = (await db.execute(select(func.count(Answer.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        _detailed_select()
        .where(*filters)
        .order_by(Answer.answered_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return await _serialize_rows(db, result.all()), total


async def add_reaction(db: AsyncSession, answer: Answer, user: User, emoji: str) -> Reaction:
    """Create or replace the user's reaction on an answer."""
    result = await db.execute(
        select(Reaction).where(Reaction.answer_id == answer.id, Reaction.user_id == user.id)
    )
    reaction = result.scalar_one_or_none()
    if reaction is None:
        reaction = Reaction(answer_id=answer.id, user_id=user.id, emoji=emoji)
        db.add(reaction)
    else:
        reaction.emoji = emoji
    await db.flush()
    return reaction


async def remove_reaction(db: AsyncSession, answer_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        delete(Reaction).where(Reaction.answer_id == answer_id, Reaction.user_id == user_id)
    )
    return (result.rowcount or 0) > 0


async def list_reactions(db: AsyncSession, answer_id: uuid.UUID) -> list[dict]:
    grouped = await _reactions_by_answer(db, [answer_id])
    return grouped.get(answer_id, [])


async def get_pair_answer_stats(db: AsyncSession, pair_id: uuid.UUID) -> dict:
    row = (await db.execute(
        select(
            func.count(Answer.id),
            func.count(distinct(Answer.question_id)),
            func.count(distinct(func.date(Answer.answered_at))),
            func.avg(func.length(Answer.content)),
        ).where(Answer.pair_id == pair_id)
    )).one()

    reactions = (await db.execute(
        select(func.count(Reaction.id))
        .join(Answer, Answer.id == Reaction.answer_id)
        .where(Answer.pair_id == pair_id)
    )).scalar() or 0

    per_user = await db.execute(
        select(User.id, User.name, func.count(Answer.id))
        .join(Answer, Answer.user_id == User.id)
        .where(Answer.pair_id == pair_id)
        .group_by(User.id, User.name)
    )

    return {
        "total_answers": row[0] or 0,
        "questions_answered": row[1] or 0,
        "active_days": row[2] or 0,
        "avg_answer_length": round(float(row[3] or 0), 1),
        "total_reactions": reactions,
        "answers_by_user": [
            {"user_id": uid, "user_name": name, "answer_count": count}
            for uid, name, count in per_user.all()
        ],
    }


async def export_answers(
    db: AsyncSession,
    pair_id: uuid.UUID,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    result = await db.execute(
        _detailed_select()
        .where(Answer.pair_id == pair_id, *_date_range_filters(date_from, date_to))
        .order_by(Answer.answered_at.asc())
    )
    return await _serialize_rows(db, result.all())


def answers_to_csv(answers: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for answer in answers:
        writer.writerow([
            answer["answered_at"].date().isoformat(),
            answer["question_content"] or "",
            answer["content"],
            answer["user_name"] or "",
            answer["user_role"] or "",
        ])
    return buffer.getvalue()
