"""Question catalog and the daily question rotation.

Today's question is not stored anywhere. It is derived from the number
of days since the Unix epoch (UTC) modulo the number of active
questions, over a stable ``order_num, created_at`` ordering. Adding or
deactivating questions therefore shifts which question a given day maps
to.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.exceptions import ConflictError, NotFoundError
from mundapdari.models.answer import Answer, Reaction
from mundapdari.models.question import Question
from mundapdari.services import answer_service

logger = logging.getLogger(__name__)

_EPOCH = date(1970, 1, 1)


def day_number(today: date | None = None) -> int:
    """Days since 1970-01-01 for *today* (defaults to the current UTC date)."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    return (today - _EPOCH).days


def _active_ordered():
    return (
        select(Question)
        .where(Question.active == True)  # noqa: E712
        .order_by(Question.order_num.asc(), Question.created_at.asc())
    )


async def count_active(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Question.id)).where(Question.active == True)  # noqa: E712
    )
    return result.scalar() or 0


@dataclass
class TodaysQuestion:
    """The question of the day plus, when asked for, one pair's answers."""

    question: Question
    answers: list[dict] = field(default_factory=list)

    @property
    def id(self) -> uuid.UUID:
        return self.question.id

    @property
    def content(self) -> str:
        return self.question.content

    @property
    def category(self) -> str:
        return self.question.category


async def get_todays_question(
    db: AsyncSession,
    today: date | None = None,
    pair_id: uuid.UUID | None = None,
) -> TodaysQuestion | None:
    """Return the question for *today*, or None if the catalog is empty.

    With *pair_id* the pair's answers to it are attached, oldest first,
    each carrying ``user_name`` and ``user_role``.
    """
    total = await count_active(db)
    if total == 0:
        logger.warning("No active questions found")
        return None

    index = day_number(today) % total
    result = await db.execute(_active_ordered().offset(index).limit(1))
    question = result.scalar_one_or_none()
    if question is None:
        return None

    answers = []
    if pair_id is not None:
        answers = await answer_service.find_by_question_and_pair(db, question.id, pair_id)
    return TodaysQuestion(question, answers)


async def get_question(db: AsyncSession, question_id: uuid.UUID) -> Question:
    question = await db.get(Question, question_id)
    if question is None:
        raise NotFoundError("Question not found")
    return question


async def get_active_question(db: AsyncSession, question_id: uuid.UUID) -> Question:
    question = await get_question(db, question_id)
    if not question.active:
        raise NotFoundError("Question not found")
    return question


async def list_active(
    db: AsyncSession,
    page: int = 1,
    limit: int = 10,
    category: str | None = None,
) -> tuple[list[Question], int]:
    query = _active_ordered()
    count_query = select(func.count(Question.id)).where(Question.active == True)  # noqa: E712
    if category is not None:
        query = query.where(Question.category == category)
        count_query = count_query.where(Question.category == category)

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total


async def search(db: AsyncSession, term: str, limit: int = 20) -> list[Question]:
    pattern = f"%{term}%"
    result = await db.execute(
        _active_ordered()
        .where(or_(Question.content.ilike(pattern), Question.category.ilike(pattern)))
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_categories(db: AsyncSession) -> list[dict]:
    result = await db.execute(
        select(Question.category, func.count(Question.id))
        .where(Question.active == True)  # noqa: E712
        .group_by(Question.category)
        .order_by(Question.category)
    )
    return [
        {"category": category, "question_count": count}
        for category, count in result.all()
    ]


async def get_max_order_number(db: AsyncSession) -> int:
    result = await db.execute(select(func.max(Question.order_num)))
    return result.scalar() or 0


async def create_question(
    db: AsyncSession,
    content: str,
    category: str,
    order_num: int | None = None,
) -> Question:
    if order_num is None:
        order_num = await get_max_order_number(db) + 1
    question = Question(content=content, category=category, order_num=order_num, active=True)
    db.add(question)
    await db.flush()
    logger.info("Question created: %s (order %d)", question.id, order_num)
    return question


async def update_question(db: AsyncSession, question: Question, **fields) -> Question:
    for key, value in fields.items():
        if value is not None:
            setattr(question, key, value)
    await db.flush()
    return question


async def delete_question(db: AsyncSession, question: Question) -> None:
    """Delete a question that nobody has answered yet."""
    answers = (await db.execute(
        select(func.count(Answer.id)).where(Answer.question_id == question.id)
    )).scalar() or 0
    if answers:
        raise ConflictError("Cannot delete question with existing answers")
    await db.delete(question)
    await db.flush()
    logger.info("Question deleted: %s", question.id)


async def get_question_stats(db: AsyncSession, question_id: uuid.UUID) -> dict:
    row = (await db.execute(
        select(
            func.count(Answer.id),
            func.count(distinct(Answer.pair_id)),
            func.avg(func.length(Answer.content)),
        ).where(Answer.question_id == question_id)
    )).one()

    reactions = (await db.execute(
        select(func.count(Reaction.id))
        .join(Answer, Answer.id == Reaction.answer_id)
        .where(Answer.question_id == question_id)
    )).scalar() or 0

    return {
        "total_answers": row[0] or 0,
        "pairs_answered": row[1] or 0,
        "total_reactions": reactions,
        "avg_answer_length": round(float(row[2] or 0), 1),
    }
