"""Seed the question catalog and optionally an admin user.

Usage::

    python -m mundapdari.seed [--reset] [--admin-phone PHONE --admin-name NAME]
"""

import argparse
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mundapdari.core.encryption import get_phone_cipher
from mundapdari.database import async_session, create_tables, drop_tables, engine
from mundapdari.models.question import Question
from mundapdari.services import user_service

logger = logging.getLogger(__name__)

STARTER_QUESTIONS: list[tuple[str, str]] = [
    ("gratitude", "오늘 가장 감사했던 순간은 무엇인가요?"),
    ("gratitude", "최근에 누군가에게 고마움을 느낀 일이 있나요?"),
    ("gratitude", "우리 가족만의 특별한 전통이 있다면?"),
    ("childhood", "어린 시절 가장 좋아했던 간식은 무엇이었나요?"),
    ("childhood", "가족과 함께한 추억 중 가장 소중한 기억은?"),
    ("childhood", "어렸을 때 가장 무서워했던 것은 무엇인가요?"),
    ("childhood", "초등학교 때 가장 친했던 친구는 누구였나요?"),
    ("daily", "오늘 하루 중 가장 기뻤던 일은?"),
    ("daily", "요즘 가장 관심 있는 것은 무엇인가요?"),
    ("daily", "오늘 처음 해본 일이 있나요?"),
    ("daily", "지금 가장 듣고 싶은 말은 무엇인가요?"),
    ("growth", "요즘 새로 배우고 싶은 것이 있다면?"),
    ("growth", "10년 후 나는 어떤 모습일까요?"),
    ("growth", "올해 꼭 이루고 싶은 목표가 있나요?"),
    ("growth", "언젠가 가보고 싶은 곳이 있다면?"),
    ("feelings", "어떤 순간에 가장 행복함을 느끼시나요?"),
    ("feelings", "힘들 때 가장 위로가 되는 것은?"),
    ("feelings", "화가 날 때는 어떻게 기분을 푸시나요?"),
    ("feelings", "가장 뿌듯했던 순간은 언제였나요?"),
    ("preferences", "가장 좋아하는 계절과 그 이유는?"),
    ("preferences", "어떤 음식을 먹을 때 가장 행복한가요?"),
    ("preferences", "가장 좋아하는 색깔과 그 이유는?"),
    ("preferences", "좋아하는 동물이 있다면 무엇인가요?"),
    ("family", "친구들에게 자랑하고 싶은 우리 가족만의 특별한 점은?"),
    ("family", "가족 중에서 가장 닮고 싶은 사람은 누구인가요?"),
    ("family", "집에서 가장 아늑한 공간은 어디인가요?"),
    ("family", "가족과 함께 하고 싶은 새로운 활동이 있나요?"),
    ("imagination", "만약 하루 동안 슈퍼파워를 가질 수 있다면?"),
    ("imagination", "동화 속 주인공이 될 수 있다면 누가 되고 싶나요?"),
    ("imagination", "만약 시간여행이 가능하다면 언제로 가고 싶나요?"),
    ("imagination", "마법사가 된다면 첫 번째로 뭘 하고 싶나요?"),
    ("learning", "학교에서 가장 좋아하는 과목은 무엇인가요?"),
    ("learning", "선생님께 감사인사를 전한다면?"),
    ("learning", "새로 배운 것 중 가장 신기했던 것은?"),
    ("achievement", "올해 가장 뿌듯했던 일은 무엇인가요?"),
    ("achievement", "최근에 칭찬받은 일이 있나요?"),
    ("achievement", "다른 사람을 도와준 경험이 있다면?"),
    ("travel", "가장 기억에 남는 여행지는 어디인가요?"),
    ("travel", "다음 가족여행으로 어디에 가고 싶나요?"),
    ("travel", "여행에서 가장 즐거웠던 순간은?"),
]


async def seed_questions(db: AsyncSession) -> int:
    """Insert the starter catalog, skipping questions whose content exists."""
    existing = set((await db.execute(select(Question.content))).scalars().all())
    created = 0
    for order_num, (category, content) in enumerate(STARTER_QUESTIONS, start=1):
        if content in existing:
            continue
        db.add(Question(content=content, category=category, order_num=order_num, active=True))
        created += 1
    await db.flush()
    return created


async def ensure_admin(db: AsyncSession, phone: str, name: str) -> bool:
    """Create an admin user, or promote the existing user with this phone.

    Returns True when a new user was created.
    """
    cipher = get_phone_cipher()
    user, created = await user_service.find_or_create_user(
        db, cipher, name=name, phone=phone, role="admin",
    )
    if user.role != "admin":
        user.role = "admin"
        await db.flush()
    return created


async def run(reset: bool = False, admin_phone: str | None = None, admin_name: str | None = None) -> None:
    if reset:
        logger.warning("Dropping all tables")
        await drop_tables()
    await create_tables()

    async with async_session() as db:
        created = await seed_questions(db)
        logger.info("Seeded %d questions (%d in catalog)", created, len(STARTER_QUESTIONS))
        if admin_phone:
            new = await ensure_admin(db, admin_phone, admin_name or "관리자")
            logger.info("Admin user %s", "created" if new else "promoted")
        await db.commit()

    await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed the Mundapdari database.")
    parser.add_argument("--reset", action="store_true", help="drop all tables before seeding")
    parser.add_argument("--admin-phone", help="phone number of the admin user to create or promote")
    parser.add_argument("--admin-name", help="display name of a newly created admin user")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    asyncio.run(run(args.reset, args.admin_phone, args.admin_name))


if __name__ == "__main__":
    main()
