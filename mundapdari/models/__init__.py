"""SQLAlchemy ORM models.

All models are imported here so that Alembic can discover them
via ``Base.metadata`` when generating migrations.
"""

from mundapdari.models.answer import Answer, Reaction  # noqa: F401
from mundapdari.models.pair import Pair  # noqa: F401
from mundapdari.models.question import Question  # noqa: F401
from mundapdari.models.user import RefreshToken, User  # noqa: F401

__all__ = [
    "Answer",
    "Pair",
    "Question",
    "Reaction",
    "RefreshToken",
    "User",
]
