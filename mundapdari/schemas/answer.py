import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, StringConstraints

from mundapdari.schemas.common import Emoji

AnswerContent = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]


class AnswerCreate(BaseModel):
    question_id: uuid.UUID
    content: AnswerContent


class AnswerUpdate(BaseModel):
    content: AnswerContent


class ReactionCreate(BaseModel):
    emoji: Emoji


class ReactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    answer_id: uuid.UUID
    user_id: uuid.UUID
    emoji: str
    created_at: datetime | None = None
    user_name: str | None = None


class AnswerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    user_id: uuid.UUID
    pair_id: uuid.UUID
    content: str
    answered_at: datetime
    updated_at: datetime | None = None
    user_name: str | None = None
    user_role: str | None = None
    question_content: str | None = None
    category: str | None = None
    reactions: list[ReactionResponse] = []
