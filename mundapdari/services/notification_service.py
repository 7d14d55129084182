"""Notification Service.

Queues notification jobs in Redis and delivers them through Kakao Talk.
Jobs live in a hash (``jobs``) and are scheduled in a sorted set
(``delayed``) keyed by their run-at timestamp. A worker task claims due
jobs with ``ZREM`` so that several API processes can share one queue.
Failed jobs are retried with exponential backoff and parked in the
``failed`` list after the last attempt.

Without Redis the service runs in log-only mode: jobs are logged and
reported as accepted, nothing is delivered.
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from mundapdari.config import settings
from mundapdari.core.encryption import PhoneCipher, mask_sensitive
from mundapdari.models.answer import Answer
from mundapdari.models.pair import Pair
from mundapdari.models.question import Question
from mundapdari.models.user import User

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "mundapdari:notifications"
JOBS_KEY = f"{QUEUE_PREFIX}:jobs"
DELAYED_KEY = f"{QUEUE_PREFIX}:delayed"
COMPLETED_KEY = f"{QUEUE_PREFIX}:completed"
FAILED_KEY = f"{QUEUE_PREFIX}:failed"

COMPLETED_RETENTION = 24 * 60 * 60
FAILED_RETENTION = 7 * 24 * 60 * 60

DAILY_QUESTION = "daily-question"
ANSWER_NOTIFICATION = "answer-notification"
REACTION_NOTIFICATION = "reaction-notification"
WEEKLY_SUMMARY = "weekly-summary"
INVITATION_NOTIFICATION = "invitation-notification"


class KakaoMessenger:
    """Sends text messages to phone numbers via a Kakao message gateway.

    When no gateway is configured the message is only logged with the
    phone number masked.
    """

    def __init__(self, api_url: str | None = None, api_key: str | None = None, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send(self, phone: str, message: str) -> dict:
        if not self.enabled:
            logger.info("Kakao message (log only) to %s: %s", mask_sensitive(phone), message)
            return {"success": True, "message_id": f"dev-{int(time.time() * 1000)}"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"phone": phone, "message": message},
            )
            response.raise_for_status()
            body = response.json() if response.content else {}

        logger.info("Kakao message sent to %s", mask_sensitive(phone))
        return {"success": True, "message_id": body.get("message_id")}


def backoff_delay(attempt: int, base: float | None = None) -> float:
    """Seconds to wait before retry number *attempt* (1-based)."""
    if base is None:
        base = settings.NOTIFICATION_RETRY_DELAY
    return base * (2 ** (attempt - 1))


class NotificationService:
    """Redis-backed notification queue with a log-only fallback."""

    def __init__(
        self,
        session_factory: Callable,
        cipher: PhoneCipher,
        redis: aioredis.Redis | None = None,
        messenger: KakaoMessenger | None = None,
        max_attempts: int | None = None,
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self.redis = redis
        self.messenger = messenger or KakaoMessenger(settings.KAKAO_API_URL, settings.KAKAO_API_KEY)
        self.max_attempts = max_attempts or settings.NOTIFICATION_RETRY_ATTEMPTS
        self._active = 0
        self._worker: asyncio.Task | None = None
        self._handlers = {
            DAILY_QUESTION: self._send_daily_question,
            ANSWER_NOTIFICATION: self._send_answer_notification,
            REACTION_NOTIFICATION: self._send_reaction_notification,
            WEEKLY_SUMMARY: self._send_weekly_summary,
            INVITATION_NOTIFICATION: self._send_invitation,
        }

    @property
    def available(self) -> bool:
        return self.redis is not None

    # -- Lifecycle -------------------------------------------------------------

    def start_worker(self, poll_interval: float = 1.0) -> None:
        if not self.available or self._worker is not None:
            return
        self._worker = asyncio.create_task(self._worker_loop(poll_interval))
        logger.info("Notification worker started")

    async def _worker_loop(self, poll_interval: float) -> None:
        while True:
            try:
                await self.process_due_jobs()
            except Exception:
                logger.exception("Notification worker error")
            await asyncio.sleep(poll_interval)

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.info("Notification service shut down")

    # -- Enqueue ---------------------------------------------------------------

    async def add_job(
        self,
        job_type: str,
        data: dict,
        delay: float = 0,
        job_id: str | None = None,
    ) -> dict:
        """Queue a job to run after *delay* seconds.

        A *job_id* that is already queued is not added twice.
        Redis failures are logged and reported, never raised.
        """
        if job_type not in self._handlers:
            raise ValueError(f"Unknown notification job type: {job_type}")

        if not self.available:
            logger.info("Development mode: job %s added (%s)", job_type, job_id or "-")
            return {"success": True, "mode": "development"}

        job_id = job_id or f"{job_type}-{uuid.uuid4().hex}"
        job = {
            "id": job_id,
            "type": job_type,
            "data": data,
            "attempts_made": 0,
            "created_at": time.time(),
        }
        try:
            added = await self.redis.hsetnx(JOBS_KEY, job_id, json.dumps(job))
            if not added:
                logger.info("Notification job %s already queued", job_id)
                return {"success": True, "mode": "queue", "job_id": job_id, "duplicate": True}
            await self.redis.zadd(DELAYED_KEY, {job_id: time.time() + max(0.0, delay)})
        except (RedisError, OSError) as exc:
            logger.exception("Could not queue notification job %s", job_id)
            return {"success": False, "mode": "log-only", "job_id": job_id, "error": str(exc)}

        logger.info("Notification job %s queued (delay %.0fs)", job_id, delay)
        return {"success": True, "mode": "queue", "job_id": job_id}

    async def schedule_daily_question(self, pair_id: uuid.UUID, question_id: uuid.UUID) -> dict:
        today = datetime.now(timezone.utc).date().isoformat()
        return await self.add_job(
            DAILY_QUESTION,
            {"pair_id": str(pair_id), "question_id": str(question_id)},
            job_id=f"daily-question-{pair_id}-{today}",
        )

    async def schedule_answer_notification(self, answer_id: uuid.UUID, recipient_id: uuid.UUID) -> dict:
        return await self.add_job(
            ANSWER_NOTIFICATION,
            {"answer_id": str(answer_id), "recipient_id": str(recipient_id)},
            delay=5,
        )

    async def schedule_reaction_notification(
        self,
        answer_id: uuid.UUID,
        reactor_id: uuid.UUID,
        recipient_id: uuid.UUID,
        emoji: str,
    ) -> dict:
        return await self.add_job(
            REACTION_NOTIFICATION,
            {
                "answer_id": str(answer_id),
                "reactor_id": str(reactor_id),
                "recipient_id": str(recipient_id),
                "emoji": emoji,
            },
            delay=1,
        )

    async def schedule_invitation(self, phone: str, inviter_name: str, invitation_url: str) -> dict:
        return await self.add_job(
            INVITATION_NOTIFICATION,
            {"phone": phone, "inviter_name": inviter_name, "invitation_url": invitation_url},
        )

    # -- Worker ----------------------------------------------------------------

    async def process_due_jobs(self, now: float | None = None, batch_size: int = 20) -> int:
        """Run every job whose run-at time has passed. Returns the count run."""
        if not self.available:
            return 0
        now = time.time() if now is None else now
        due = await self.redis.zrangebyscore(DELAYED_KEY, "-inf", now, start=0, num=batch_size)

        processed = 0
        for job_id in due:
            if not await self.redis.zrem(DELAYED_KEY, job_id):
                continue  # claimed by another worker
            raw = await self.redis.hget(JOBS_KEY, job_id)
            if raw is None:
                continue
            job = json.loads(raw)

            self._active += 1
            try:
                await self.run_job(job["type"], job["data"])
            except Exception as exc:
                await self._record_failure(job, exc)
            else:
                await self._record_completion(job)
            finally:
                self._active -= 1
            processed += 1
        return processed

    async def run_job(self, job_type: str, data: dict) -> dict:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise ValueError(f"Unknown notification job type: {job_type}")
        return await handler(data)

    async def _record_completion(self, job: dict) -> None:
        await self.redis.hdel(JOBS_KEY, job["id"])
        await self.redis.lpush(COMPLETED_KEY, json.dumps({
            "id": job["id"],
            "type": job["type"],
            "finished_at": time.time(),
        }))
        logger.info("Notification job completed: %s", job["id"])

    async def _record_failure(self, job: dict, exc: Exception) -> None:
        job["attempts_made"] += 1
        if job["attempts_made"] < self.max_attempts:
            delay = backoff_delay(job["attempts_made"])
            await self.redis.hset(JOBS_KEY, job["id"], json.dumps(job))
            await self.redis.zadd(DELAYED_KEY, {job["id"]: time.time() + delay})
            logger.warning(
                "Notification job %s failed (attempt %d/%d), retrying in %.0fs: %s",
                job["id"], job["attempts_made"], self.max_attempts, delay, exc,
            )
            return

        await self.redis.hdel(JOBS_KEY, job["id"])
        await self.redis.lpush(FAILED_KEY, json.dumps({
            "id": job["id"],
            "type": job["type"],
            "data": job["data"],
            "error": str(exc),
            "finished_at": time.time(),
        }))
        logger.error("Notification job %s failed permanently: %s", job["id"], exc)

    # -- Stats and housekeeping -----------------------------------------------

    async def get_queue_stats(self) -> dict:
        if not self.available:
            return {
                "redis_available": False,
                "mode": "development",
                "waiting": 0,
                "active": 0,
                "completed": 0,
                "failed": 0,
            }
        return {
            "redis_available": True,
            "mode": "queue",
            "waiting": await self.redis.zcard(DELAYED_KEY),
            "active": self._active,
            "completed": await self.redis.llen(COMPLETED_KEY),
            "failed": await self.redis.llen(FAILED_KEY),
        }

    async def cleanup_old_jobs(self, now: float | None = None) -> dict:
        """Drop completed entries older than a day and failed ones older than a week."""
        if not self.available:
            logger.info("Development mode: queue cleanup skipped")
            return {"completed": 0, "failed": 0}

        now = time.time() if now is None else now
        removed = {
            "completed": await self._trim_list(COMPLETED_KEY, now - COMPLETED_RETENTION),
            "failed": await self._trim_list(FAILED_KEY, now - FAILED_RETENTION),
        }
        logger.info("Queue cleanup: %d completed, %d failed removed", removed["completed"], removed["failed"])
        return removed

    async def _trim_list(self, key: str, cutoff: float) -> int:
        entries = await self.redis.lrange(key, 0, -1)
        removed = 0
        for raw in entries:
            if json.loads(raw).get("finished_at", 0) < cutoff:
                removed += await self.redis.lrem(key, 1, raw)
        return removed

    # -- Handlers ----------------------------------------------------------------

    async def _send_to_user(self, user: User, message: str) -> dict:
        phone = self._cipher.decrypt_from_text(user.phone_encrypted)
        return await self.messenger.send(phone, message)

    async def _send_to_all(self, users: list[User], message: str) -> dict:
        results = await asyncio.gather(
            *(self._send_to_user(user, message) for user in users),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        for err in errors:
            logger.warning("Notification delivery failed: %s", err)
        if errors and len(errors) == len(results):
            raise errors[0]
        return {"success": True, "sent": len(results) - len(errors), "failed": len(errors)}

    async def _send_daily_question(self, data: dict) -> dict:
        async with self._session_factory() as db:
            pair = await db.get(Pair, uuid.UUID(data["pair_id"]))
            question = await db.get(Question, uuid.UUID(data["question_id"]))
            if pair is None or question is None or not pair.is_usable:
                logger.warning("Daily question skipped for pair %s", data["pair_id"])
                return {"success": False, "skipped": True}
            users = [await db.get(User, pair.parent_id), await db.get(User, pair.child_id)]

        message = f'새로운 질문이 도착했어요! "{question.content}" 지금 답변해보세요 💝'
        return await self._send_to_all([u for u in users if u is not None], message)

    async def _send_answer_notification(self, data: dict) -> dict:
        async with self._session_factory() as db:
            answer = await db.get(Answer, uuid.UUID(data["answer_id"]))
            recipient = await db.get(User, uuid.UUID(data["recipient_id"]))
            if answer is None or recipient is None:
                logger.warning("Answer notification skipped: %s", data["answer_id"])
                return {"success": False, "skipped": True}
            author = await db.get(User, answer.user_id)
            question = await db.get(Question, answer.question_id)

        message = f'{author.name}님이 "{question.content}" 질문에 답변했어요! 지금 확인해보세요 💕'
        return await self._send_to_user(recipient, message)

    async def _send_reaction_notification(self, data: dict) -> dict:
        async with self._session_factory() as db:
            reactor = await db.get(User, uuid.UUID(data["reactor_id"]))
            recipient = await db.get(User, uuid.UUID(data["recipient_id"]))
            if reactor is None or recipient is None:
                logger.warning("Reaction notification skipped: %s", data["answer_id"])
                return {"success": False, "skipped": True}

        message = f"{reactor.name}님이 회원님의 답변에 {data['emoji']} 반응을 남겼어요!"
        return await self._send_to_user(recipient, message)

    async def _send_weekly_summary(self, data: dict) -> dict:
        async with self._session_factory() as db:
            pair = await db.get(Pair, uuid.UUID(data["pair_id"]))
            if pair is None or not pair.is_usable:
                return {"success": False, "skipped": True}
            users = [await db.get(User, pair.parent_id), await db.get(User, pair.child_id)]

        summary = data.get("summary", {})
        message = (
            f"이번 주 {summary.get('total_answers', 0)}개의 답변으로 "
            f"{summary.get('questions_answered', 0)}개의 질문에 함께 답했어요! "
            "지난 한 주를 돌아보세요 📖"
        )
        return await self._send_to_all([u for u in users if u is not None], message)

    async def _send_invitation(self, data: dict) -> dict:
        message = (
            f"{data['inviter_name']}님이 문답다리에 초대했어요! "
            f"함께 소중한 추억을 만들어보세요 🌉\n{data['invitation_url']}"
        )
        return await self.messenger.send(data["phone"], message)
