"""User lookup, creation and profile statistics."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.encryption import DecryptionError, PhoneCipher, mask_sensitive, normalize_phone
from mundapdari.core.exceptions import ConflictError
from mundapdari.models.answer import Answer, Reaction
from mundapdari.models.user import User

logger = logging.getLogger(__name__)


async def find_by_phone(db: AsyncSession, cipher: PhoneCipher, phone: str) -> User | None:
    """Look a user up through the indexed phone hash."""
    result = await db.execute(
        select(User).where(User.phone_hash == cipher.lookup_hash(phone))
    )
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    return await db.get(User, user_id)


async def create_user(
    db: AsyncSession,
    cipher: PhoneCipher,
    *,
    name: str,
    phone: str,
    role: str,
) -> User:
    """Create a user with an encrypted phone number.

    Raises:
        ConflictError: If a user with this phone already exists.
    """
    normalized = normalize_phone(phone)
    if await find_by_phone(db, cipher, normalized) is not None:
        raise ConflictError("User with this phone number already exists")

    user = User(
        name=name,
        role=role,
        phone_encrypted=cipher.encrypt_to_text(normalized),
        phone_hash=cipher.lookup_hash(normalized),
        status="active",
        last_active=datetime.now(timezone.utc),
    )
    db.add(user)
    await db.flush()
    logger.info("User created: %s (%s, phone %s)", user.id, role, mask_sensitive(normalized))
    return user


async def find_or_create_user(
    db: AsyncSession,
    cipher: PhoneCipher,
    *,
    name: str,
    phone: str,
    role: str,
) -> tuple[User, bool]:
    user = await find_by_phone(db, cipher, phone)
    if user is not None:
        return user, False
    return await create_user(db, cipher, name=name, phone=phone, role=role), True


def decrypt_phone(cipher: PhoneCipher, user: User) -> str | None:
    try:
        return cipher.decrypt_from_text(user.phone_encrypted)
    except DecryptionError:
        logger.error("Failed to decrypt phone for user %s", user.id)
        return None


def safe_user_data(cipher: PhoneCipher, user: User) -> dict:
    """Public view of a user: no ciphertext, phone masked."""
    phone = decrypt_phone(cipher, user)
    return {
        "id": user.id,
        "name": user.name,
        "role": user.role,
        "phone_masked": mask_sensitive(phone),
        "created_at": user.created_at,
        "last_active": user.last_active,
        "is_active": user.is_active,
    }


async def touch_last_active(db: AsyncSession, user: User) -> None:
    user.last_active = datetime.now(timezone.utc)
    await db.flush()


async def update_name(db: AsyncSession, user: User, name: str) -> User:
    user.name = name
    await db.flush()
    return user


async def deactivate(db: AsyncSession, user: User) -> None:
    user.status = "inactive"
    await db.flush()
    logger.info("User deactivated: %s", user.id)


async def get_user_stats(db: AsyncSession, user_id: uuid.UUID) -> dict:
    answers = (await db.execute(
        select(
            func.count(Answer.id),
            func.count(distinct(func.date(Answer.answered_at))),
        ).where(Answer.user_id == user_id)
    )).one()

    reactions_given = (await db.execute(
        select(func.count(Reaction.id)).where(Reaction.user_id == user_id)
    )).scalar() or 0

    reactions_received = (await db.execute(
        select(func.count(Reaction.id))
        .join(Answer, Answer.id == Reaction.answer_id)
        .where(Answer.user_id == user_id)
    )).scalar() or 0

    return {
        "total_answers": answers[0] or 0,
        "active_days": answers[1] or 0,
        "total_reactions_given": reactions_given,
        "total_reactions_received": reactions_received,
    }
