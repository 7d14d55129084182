"""Questions router.

Today's question, catalog browsing and search for paired users, plus
catalog management for admins.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.dependencies import get_current_user, require_role
from mundapdari.core.responses import api_response, paginated_response
from mundapdari.database import get_db
from mundapdari.models.user import User
from mundapdari.schemas.question import (
    QuestionCreate,
    QuestionOrderUpdate,
    QuestionResponse,
    QuestionStatusUpdate,
    QuestionUpdate,
)
from mundapdari.services import answer_service, pair_service, question_service

router = APIRouter(prefix="/questions", tags=["Questions"])

DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_role("admin"))]
Page = Annotated[int, Query(ge=1)]
Limit = Annotated[int, Query(ge=1, le=100)]


def _question_data(question) -> dict:
    return QuestionResponse.model_validate(question).model_dump()


@router.get("/today")
async def get_today(current_user: CurrentUser, db: DbSession):
    """Today's question with both pair members' answers."""
    pair = await pair_service.find_primary_pair(db, current_user.id)
    if pair is None:
        return api_response(
            {"question": None, "message": "Create or accept an invitation to receive daily questions"},
            "No active pairs",
        )

    question = await question_service.get_todays_question(db, pair_id=pair.id)
    if question is None:
        return api_response({"question": None}, "No question available for today")

    answers = question.answers
    my_answer = next((a for a in answers if a["user_id"] == current_user.id), None)
    partner_answer = next((a for a in answers if a["user_id"] != current_user.id), None)
    partner = await pair_service.get_pair_partner(db, pair, current_user.id)

    return api_response(
        {
            "question": {
                "id": question.id,
                "content": question.content,
                "category": question.category,
            },
            "pair": {
                "id": pair.id,
                "partner_name": partner["partner_name"] if partner else None,
            },
            "my_answer": my_answer,
            "partner_answer": partner_answer,
            "both_answered": my_answer is not None and partner_answer is not None,
        },
        "Today's question retrieved successfully",
    )


@router.get("/search")
async def search_questions(
    current_user: CurrentUser,
    db: DbSession,
    q: Annotated[str, Query(min_length=2, max_length=100)],
    limit: Annotated[int, Query(ge=1, le=50)] = 20,
):
    questions = await question_service.search(db, q.strip(), limit)
    return api_response(
        {"questions": [_question_data(x) for x in questions], "query": q, "count": len(questions)},
        "Search completed successfully",
    )


@router.get("/meta/categories")
async def list_categories(current_user: CurrentUser, db: DbSession):
    return api_response(
        {"categories": await question_service.get_categories(db)},
        "Categories retrieved successfully",
    )


@router.get("/category/{category}")
async def list_by_category(
    category: str,
    current_user: CurrentUser,
    db: DbSession,
    page: Page = 1,
    limit: Limit = 10,
):
    questions, total = await question_service.list_active(db, page, limit, category=category)
    return paginated_response(
        [_question_data(x) for x in questions], page, limit, total,
        f"Questions in category '{category}' retrieved successfully",
    )


@router.get("")
async def list_questions(current_user: CurrentUser, db: DbSession, page: Page = 1, limit: Limit = 10):
    questions, total = await question_service.list_active(db, page, limit)
    return paginated_response(
        [_question_data(x) for x in questions], page, limit, total,
        "Questions retrieved successfully",
    )


@router.get("/{question_id}")
async def get_question(question_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    """A question with the answers given in the user's primary pair."""
    question = await question_service.get_active_question(db, question_id)
    pair = await pair_service.find_primary_pair(db, current_user.id)
    answers = []
    if pair is not None:
        answers = await answer_service.find_by_question_and_pair(db, question.id, pair.id)
    return api_response(
        {
            "question": _question_data(question),
            "answers": answers,
            "pair_id": pair.id if pair else None,
        },
        "Question retrieved successfully",
    )


@router.get("/{question_id}/stats")
async def get_question_stats(question_id: uuid.UUID, current_user: CurrentUser, db: DbSession):
    question = await question_service.get_question(db, question_id)
    return api_response(
        {
            "question_id": question.id,
            "stats": await question_service.get_question_stats(db, question.id),
        },
        "Question statistics retrieved successfully",
    )


# -- Admin ---------------------------------------------------------------------


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_question(body: QuestionCreate, admin: AdminUser, db: DbSession):
    question = await question_service.create_question(db, body.content, body.category, body.order_num)
    await db.commit()
    return api_response({"question": _question_data(question)}, "Question created successfully")


@router.put("/{question_id}")
async def update_question(question_id: uuid.UUID, body: QuestionUpdate, admin: AdminUser, db: DbSession):
    question = await question_service.get_question(db, question_id)
    question = await question_service.update_question(db, question, **body.model_dump())
    await db.commit()
    return api_response({"question": _question_data(question)}, "Question updated successfully")


@router.patch("/{question_id}/order")
async def update_question_order(
    question_id: uuid.UUID, body: QuestionOrderUpdate, admin: AdminUser, db: DbSession,
):
    question = await question_service.get_question(db, question_id)
    question = await question_service.update_question(db, question, order_num=body.order_num)
    await db.commit()
    return api_response({"question": _question_data(question)}, "Question order updated successfully")


@router.patch("/{question_id}/status")
async def update_question_status(
    question_id: uuid.UUID, body: QuestionStatusUpdate, admin: AdminUser, db: DbSession,
):
    question = await question_service.get_question(db, question_id)
    question.active = body.active
    await db.flush()
    await db.commit()
    state = "activated" if body.active else "deactivated"
    return api_response({"question": _question_data(question)}, f"Question {state} successfully")


@router.delete("/{question_id}")
async def delete_question(question_id: uuid.UUID, admin: AdminUser, db: DbSession):
    question = await question_service.get_question(db, question_id)
    await question_service.delete_question(db, question)
    await db.commit()
    return api_response(message="Question deleted successfully")
