"""Pairing and invitation state machine.

A pair starts ``pending`` with only the inviter's slot filled and a live
invitation token. Accepting the invitation fills the other slot, clears
the token and makes the pair ``active``. Either member (or account
closure) can later make it ``inactive``. Pending pairs whose token has
expired are deleted by :func:`cleanup_expired_invitations`.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from mundapdari.config import settings
from mundapdari.core.encryption import generate_token
from mundapdari.core.exceptions import ConflictError, ValidationError
from mundapdari.models.answer import Answer, Reaction
from mundapdari.models.pair import Pair
from mundapdari.models.user import User

logger = logging.getLogger(__name__)


def _member_filter(user_id: uuid.UUID):
    return or_(Pair.parent_id == user_id, Pair.child_id == user_id)


async def get_pair(db: AsyncSession, pair_id: uuid.UUID) -> Pair | None:
    return await db.get(Pair, pair_id)


async def has_open_invitation(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(func.count(Pair.id)).where(
            _member_filter(user_id),
            Pair.status == "pending",
            Pair.invitation_expires_at > datetime.now(timezone.utc),
        )
    )
    return (result.scalar() or 0) > 0


async def create_invitation(db: AsyncSession, inviter: User) -> Pair:
    """Open a pending pair with the inviter's slot filled."""
    pair = Pair(
        parent_id=inviter.id if inviter.role == "parent" else None,
        child_id=inviter.id if inviter.role == "child" else None,
        status="pending",
        invitation_token=generate_token(32),
        invitation_expires_at=datetime.now(timezone.utc)
        + timedelta(hours=settings.INVITATION_EXPIRE_HOURS),
    )
    db.add(pair)
    await db.flush()
    logger.info("Invitation created: pair %s by %s", pair.id, inviter.id)
    return pair


async def find_by_invitation_token(db: AsyncSession, token: str) -> Pair | None:
    """Return the pending pair for *token*, or None if unknown or expired."""
    result = await db.execute(
        select(Pair).where(
            Pair.invitation_token == token,
            Pair.status == "pending",
        )
    )
    pair = result.scalar_one_or_none()
    if pair is None:
        return None
    if pair.invitation_expires_at is None or pair.invitation_expires_at <= datetime.now(timezone.utc):
        return None
    return pair


def open_role(pair: Pair) -> str | None:
    """Role needed to complete *pair*, or None if it is not half-filled."""
    if pair.parent_id is not None and pair.child_id is None:
        return "child"
    if pair.child_id is not None and pair.parent_id is None:
        return "parent"
    return None


async def accept_invitation(db: AsyncSession, pair: Pair, user: User) -> Pair:
    """Fill the open slot of a pending pair and activate it.

    Raises:
        ValidationError: If the pair is not a half-filled pending pair.
        ConflictError: If the user's role does not match the open slot or
            the user is the inviter.
    """
    needed = open_role(pair)
    if pair.status != "pending" or needed is None:
        raise ValidationError("Invalid pair state")
    if pair.has_member(user.id):
        raise ConflictError("You cannot accept your own invitation")
    if user.role != needed:
        raise ConflictError(f"This invitation requires a {needed} account")
    inviter_id = pair.parent_id or pair.child_id
    if await are_users_paired(db, inviter_id, user.id):
        raise ConflictError("Users are already paired")

    if needed == "child":
        pair.child_id = user.id
    else:
        pair.parent_id = user.id
    pair.status = "active"
    pair.invitation_token = None
    pair.invitation_expires_at = None
    await db.flush()
    logger.info("Pair activated: %s", pair.id)
    return pair


async def find_active_pairs_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[dict]:
    """Active pairs of a user with both members' names, newest first."""
    parent = aliased(User)
    child = aliased(User)
    result = await db.execute(
        select(Pair, parent.name, child.name)
        .outerjoin(parent, parent.id == Pair.parent_id)
        .outerjoin(child, child.id == Pair.child_id)
        .where(_member_filter(user_id), Pair.status == "active")
        .order_by(Pair.created_at.desc())
    )
    pairs = []
    for pair, parent_name, child_name in result.all():
        pairs.append({
            "id": pair.id,
            "parent_id": pair.parent_id,
            "child_id": pair.child_id,
            "parent_name": parent_name,
            "child_name": child_name,
            "status": pair.status,
            "created_at": pair.created_at,
        })
    return pairs


async def find_primary_pair(db: AsyncSession, user_id: uuid.UUID) -> Pair | None:
    """Most recently created usable pair of a user."""
    result = await db.execute(
        select(Pair)
        .where(
            _member_filter(user_id),
            Pair.status == "active",
            Pair.parent_id.is_not(None),
            Pair.child_id.is_not(None),
        )
        .order_by(Pair.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def are_users_paired(db: AsyncSession, user_a: uuid.UUID, user_b: uuid.UUID) -> bool:
    result = await db.execute(
        select(func.count(Pair.id)).where(
            Pair.status == "active",
            or_(
                (Pair.parent_id == user_a) & (Pair.child_id == user_b),
                (Pair.parent_id == user_b) & (Pair.child_id == user_a),
            ),
        )
    )
    return (result.scalar() or 0) > 0


async def get_pair_partner(db: AsyncSession, pair: Pair, user_id: uuid.UUID) -> dict | None:
    partner_id = pair.partner_id_of(user_id)
    if partner_id is None:
        return None
    partner = await db.get(User, partner_id)
    if partner is None:
        return None
    return {
        "pair_id": pair.id,
        "partner_id": partner.id,
        "partner_name": partner.name,
        "partner_role": partner.role,
    }


async def deactivate(db: AsyncSession, pair: Pair, reason: str) -> Pair:
    pair.status = "inactive"
    pair.deactivated_at = datetime.now(timezone.utc)
    pair.deactivation_reason = reason
    await db.flush()
    logger.info("Pair deactivated: %s (%s)", pair.id, reason)
    return pair


async def deactivate_all_for_user(db: AsyncSession, user_id: uuid.UUID, reason: str) -> int:
    result = await db.execute(
        select(Pair).where(_member_filter(user_id), Pair.status.in_(["active", "pending"]))
    )
    pairs = result.scalars().all()
    for pair in pairs:
        await deactivate(db, pair, reason)
    return len(pairs)


async def cleanup_expired_invitations(db: AsyncSession) -> int:
    """Delete pending pairs whose invitation has expired."""
    result = await db.execute(
        delete(Pair).where(
            Pair.status == "pending",
            Pair.invitation_expires_at < datetime.now(timezone.utc),
        )
    )
    count = result.rowcount or 0
    if count:
        logger.info("Cleaned up %d expired invitations", count)
    return count


async def list_usable_pairs(db: AsyncSession) -> list[Pair]:
    result = await db.execute(
        select(Pair).where(
            Pair.status == "active",
            Pair.parent_id.is_not(None),
            Pair.child_id.is_not(None),
        )
    )
    return list(result.scalars().all())


async def get_pair_stats(db: AsyncSession, pair_id: uuid.UUID) -> dict:
    row = (await db.execute(
        select(
            func.count(Answer.id),
            func.count(distinct(func.date(Answer.answered_at))),
            func.count(distinct(Answer.question_id)),
        ).where(Answer.pair_id == pair_id)
    )).one()

    reactions = (await db.execute(
        select(func.count(Reaction.id))
        .join(Answer, Answer.id == Reaction.answer_id)
        .where(Answer.pair_id == pair_id)
    )).scalar() or 0

    return {
        "total_answers": row[0] or 0,
        "active_days": row[1] or 0,
        "questions_answered": row[2] or 0,
        "total_reactions": reactions,
    }
