import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mundapdari.database import Base
from mundapdari.types import UTCDateTime, utcnow


class Pair(Base):
    """Parent/child relationship that scopes questions and answers.

    Lifecycle: ``pending`` (one side set, invitation token live) ->
    ``active`` (both sides set, token cleared) -> ``inactive``.
    """

    __tablename__ = "pairs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True,
    )
    child_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    invitation_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    invitation_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def has_member(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.parent_id, self.child_id)

    def partner_id_of(self, user_id: uuid.UUID) -> uuid.UUID | None:
        return self.child_id if self.parent_id == user_id else self.parent_id

    @property
    def is_usable(self) -> bool:
        return self.status == "active" and self.parent_id is not None and self.child_id is not None

    def __repr__(self) -> str:
        return f"<Pair(id={self.id}, status={self.status!r})>"
