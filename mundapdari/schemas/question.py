import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

QuestionContent = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=500)]
Category = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


class QuestionCreate(BaseModel):
    content: QuestionContent
    category: Category
    order_num: int | None = Field(default=None, ge=0)


class QuestionUpdate(BaseModel):
    content: QuestionContent | None = None
    category: Category | None = None
    order_num: int | None = Field(default=None, ge=0)
    active: bool | None = None


class QuestionOrderUpdate(BaseModel):
    order_num: int = Field(ge=0)


class QuestionStatusUpdate(BaseModel):
    active: bool


class QuestionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content: str
    category: str
    order_num: int
    active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
