"""Answers router.

Submitting and editing answers, per-pair history, statistics and export,
and emoji reactions.
"""

import logging
import uuid
from datetime import date
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.dependencies import get_current_user, get_notifications, require_pair_membership
from mundapdari.core.exceptions import ForbiddenError, NotFoundError
from mundapdari.core.responses import api_response, paginated_response
from mundapdari.database import get_db
from mundapdari.models.pair import Pair
from mundapdari.models.user import User
from mundapdari.schemas.answer import AnswerCreate, AnswerUpdate, ReactionCreate
from mundapdari.services import answer_service, pair_service, question_service
from mundapdari.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/answers", tags=["Answers"])

DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
MemberPair = Annotated[Pair, Depends(require_pair_membership)]
Notifications = Annotated[NotificationService, Depends(get_notifications)]
Page = Annotated[int, Query(ge=1)]
Limit = Annotated[int, Query(ge=1, le=100)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_answer(
    body: AnswerCreate,
    current_user: CurrentUser,
    db: DbSession,
    notifications: Notifications,
):
    """Answer a question within the user's primary pair."""
    pair = await pair_service.find_primary_pair(db, current_user.id)
    if pair is None:
        raise ForbiddenError("You need an active pair to submit answers")

    answer = await answer_service.submit_answer(db, current_user, pair, body.question_id, body.content)
    question = await question_service.get_question(db, body.question_id)
    await db.commit()

    await notifications.schedule_answer_notification(answer.id, pair.partner_id_of(current_user.id))

    return api_response(
        {
            "id": answer.id,
            "content": answer.content,
            "answered_at": answer.answered_at,
            "question": {
                "id": question.id,
                "content": question.content,
                "category": question.category,
            },
            "user": {
                "id": current_user.id,
                "name": current_user.name,
                "role": current_user.role,
            },
            "reactions": [],
        },
        "Answer submitted successfully",
    )


@router.get("/question/{question_id}")
async def answers_for_question(question_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """All answers to a question within the user's primary pair."""
    await question_service.get_question(db, question_id)
    pair = await pair_service.find_primary_pair(db, current_user.id)
    if pair is None:
        raise ForbiddenError("You need an active pair to view answers")

    answers = await answer_service.find_by_question_and_pair(db, question_id, pair.id)
    return api_response(
        {"answers": answers, "question_id": question_id, "pair_id": pair.id},
        "Answers retrieved successfully",
    )


@router.get("/question/{question_id}/mine")
async def my_answer(question_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.find_user_answer(db, question_id, current_user.id)
    if answer is None:
        raise NotFoundError("You have not answered this question yet")
    return api_response(
        {"answer": await answer_service.get_answer_detail(db, answer.id)},
        "Answer retrieved successfully",
    )


@router.get("/pair/{pair_id}")
async def pair_answers(pair: MemberPair, db: DbSession, page: Page = 1, limit: Limit = 10):
    answers, total = await answer_service.list_pair_answers(db, pair.id, page, limit)
    return paginated_response(answers, page, limit, total, "Pair answers retrieved successfully")


@router.get("/pair/{pair_id}/recent")
async def recent_pair_answers(
    pair: MemberPair,
    db: DbSession,
    days: Annotated[int, Query(ge=1, le=30)] = 7,
):
    answers = await answer_service.recent_answers(db, pair.id, days)
    return api_response(
        {"answers": answers, "days": days, "count": len(answers)},
        "Recent answers retrieved successfully",
    )


@router.get("/pair/{pair_id}/stats")
async def pair_answer_stats(pair: MemberPair, db: DbSession):
    return api_response(
        {"pair_id": pair.id, "stats": await answer_service.get_pair_answer_stats(db, pair.id)},
        "Pair statistics retrieved successfully",
    )


@router.get("/pair/{pair_id}/export")
async def export_pair_answers(
    pair: MemberPair,
    db: DbSession,
    export_format: Annotated[Literal["csv", "json"], Query(alias="format")] = "csv",
    date_from: date | None = None,
    date_to: date | None = None,
):
    """Download a pair's answers as CSV (default) or JSON."""
    answers = await answer_service.export_answers(db, pair.id, date_from, date_to)
    logger.info("Exported %d answers for pair %s as %s", len(answers), pair.id, export_format)

    if export_format == "json":
        return api_response(
            {"pair_id": pair.id, "answers": answers, "count": len(answers)},
            "Answers exported successfully",
        )

    return Response(
        content=answer_service.answers_to_csv(answers),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="answers-{pair.id}.csv"'},
    )


@router.get("/user/history")
async def answer_history(
    current_user: CurrentUser,
    db: DbSession,
    pair_id: uuid.UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: Page = 1,
    limit: Limit = 10,
):
    """The user's own answers, optionally limited to one pair and a date range."""
    if pair_id is not None:
        pair = await pair_service.get_pair(db, pair_id)
        if pair is None or not pair.has_member(current_user.id):
            raise ForbiddenError("Access denied to this pair")

    answers, total = await answer_service.user_history(
        db, current_user.id, pair_id, date_from, date_to, page, limit,
    )
    return paginated_response(answers, page, limit, total, "Answer history retrieved successfully")


@router.get("/{answer_id}")
async def get_answer(answer_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.ensure_pair_access(db, answer, current_user)
    return api_response(
        {"answer": await answer_service.get_answer_detail(db, answer.id)},
        "Answer retrieved successfully",
    )


@router.put("/{answer_id}")
async def update_answer(answer_id: uuid.UUID, body: AnswerUpdate, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.update_answer(db, answer, current_user, body.content)
    await db.commit()
    return api_response(
        {"answer": await answer_service.get_answer_detail(db, answer.id)},
        "Answer updated successfully",
    )


@router.delete("/{answer_id}")
async def delete_answer(answer_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.delete_answer(db, answer, current_user)
    await db.commit()
    return api_response(message="Answer deleted successfully")


@router.post("/{answer_id}/reaction", status_code=status.HTTP_201_CREATED)
async def add_reaction(
    answer_id: uuid.UUID,
    body: ReactionCreate,
    current_user: CurrentUser,
    db: DbSession,
    notifications: Notifications,
):
    """Add or replace the user's emoji reaction on an answer."""
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.ensure_pair_access(db, answer, current_user)
    reaction = await answer_service.add_reaction(db, answer, current_user, body.emoji)
    await db.commit()

    if answer.user_id != current_user.id:
        await notifications.schedule_reaction_notification(
            answer.id, current_user.id, answer.user_id, reaction.emoji,
        )

    return api_response(
        {
            "reaction": {
                "id": reaction.id,
                "answer_id": reaction.answer_id,
                "user_id": reaction.user_id,
                "emoji": reaction.emoji,
                "created_at": reaction.created_at,
            },
        },
        "Reaction added successfully",
    )


@router.delete("/{answer_id}/reaction")
async def remove_reaction(answer_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.ensure_pair_access(db, answer, current_user)
    if not await answer_service.remove_reaction(db, answer.id, current_user.id):
        raise NotFoundError("Reaction not found")
    await db.commit()
    return api_response(message="Reaction removed successfully")


@router.get("/{answer_id}/reactions")
async def list_reactions(answer_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    answer = await answer_service.get_answer(db, answer_id)
    await answer_service.ensure_pair_access(db, answer, current_user)
    reactions = await answer_service.list_reactions(db, answer.id)
    return api_response(
        {"reactions": reactions, "count": len(reactions)},
        "Reactions retrieved successfully",
    )
