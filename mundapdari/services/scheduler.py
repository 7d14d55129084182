"""Background job scheduler.

Each job runs in its own asyncio task that sleeps until the next due
time in the configured timezone (Asia/Seoul by default), runs once and
loops. Failures are logged and the loop keeps going.

Jobs:
    daily-questions     09:00 daily   notify every active pair
    invitation-cleanup  02:00 daily   delete expired pending pairs
    queue-cleanup       03:00 daily   trim finished notification jobs
    weekly-summaries    Sun 20:00     per-pair summary of the past week
    health-check        every 5 min   warn on queue backlog
"""

import asyncio
import logging
import random
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select

from mundapdari.config import settings
from mundapdari.models.answer import Answer
from mundapdari.models.question import Question
from mundapdari.services import pair_service, question_service
from mundapdari.services.notification_service import WEEKLY_SUMMARY, NotificationService

logger = logging.getLogger(__name__)

WAITING_THRESHOLD = 100
FAILED_THRESHOLD = 50


@dataclass
class JobSpec:
    name: str
    description: str
    run: Callable[[], Awaitable[object]]
    at: time | None = None
    weekday: int | None = None  # Mon=0 .. Sun=6
    interval: timedelta | None = None

    def next_run(self, now: datetime) -> datetime:
        if self.interval is not None:
            return now + self.interval
        target = now.replace(hour=self.at.hour, minute=self.at.minute, second=0, microsecond=0)
        if self.weekday is not None:
            target += timedelta(days=(self.weekday - now.weekday()) % 7)
            if target <= now:
                target += timedelta(days=7)
        elif target <= now:
            target += timedelta(days=1)
        return target


def week_bounds(today: date) -> tuple[date, date]:
    """Last completed Sunday..Saturday week before *today*."""
    end = today - timedelta(days=(today.weekday() - 5) % 7 or 7)
    return end - timedelta(days=6), end


def summarize_week(rows: list[tuple[Answer, str]]) -> dict:
    """Build the weekly summary from ``(answer, category)`` rows."""
    if not rows:
        return {
            "total_answers": 0,
            "questions_answered": 0,
            "average_answer_length": 0,
            "top_categories": [],
            "highlights": [],
        }

    categories = Counter(category for _, category in rows)
    longest = sorted(rows, key=lambda row: len(row[0].content), reverse=True)[:3]
    highlights = []
    for answer, _ in longest:
        content = answer.content
        if len(content) > 100:
            content = content[:100] + "..."
        highlights.append({"answer_id": str(answer.id), "content": content})

    return {
        "total_answers": len(rows),
        "questions_answered": len({answer.question_id for answer, _ in rows}),
        "average_answer_length": round(sum(len(a.content) for a, _ in rows) / len(rows)),
        "top_categories": [
            {"category": name, "count": count} for name, count in categories.most_common(3)
        ],
        "highlights": highlights,
    }


class SchedulerService:
    """Owns the background job tasks for the lifetime of the app."""

    def __init__(
        self,
        session_factory: Callable,
        notifications: NotificationService,
        tz: str | None = None,
    ):
        self._session_factory = session_factory
        self._notifications = notifications
        self.tz = ZoneInfo(tz or settings.SCHEDULER_TIMEZONE)
        self._tasks: dict[str, asyncio.Task] = {}
        self._last_run: dict[str, datetime] = {}
        self.jobs: dict[str, JobSpec] = {
            spec.name: spec
            for spec in (
                JobSpec("daily-questions", "Send daily question notifications",
                        self.send_daily_question_notifications, at=time(9, 0)),
                JobSpec("invitation-cleanup", "Delete expired invitations",
                        self.cleanup_expired_invitations, at=time(2, 0)),
                JobSpec("queue-cleanup", "Trim finished notification jobs",
                        self.cleanup_queue, at=time(3, 0)),
                JobSpec("weekly-summaries", "Generate weekly summaries",
                        self.generate_weekly_summaries, at=time(20, 0), weekday=6),
                JobSpec("health-check", "Check notification queue backlog",
                        self.perform_health_check, interval=timedelta(minutes=5)),
            )
        }

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        for name, spec in self.jobs.items():
            self._tasks[name] = asyncio.create_task(self._loop(spec), name=f"scheduler:{name}")
        logger.info("Scheduler started with %d jobs (%s)", len(self.jobs), self.tz.key)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    def _now(self) -> datetime:
        return datetime.now(self.tz)

    async def _sleep_until(self, target: datetime) -> None:
        # sleep() follows the monotonic clock and can return before target
        while True:
            remaining = (target - self._now()).total_seconds()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def _loop(self, spec: JobSpec) -> None:
        target = spec.next_run(self._now())
        while True:
            await self._sleep_until(target)
            try:
                await self._run(spec)
            except Exception:
                logger.exception("Scheduled job %s failed", spec.name)
            target = spec.next_run(max(target, self._now()))

    async def _run(self, spec: JobSpec):
        logger.info("Running scheduled job: %s", spec.name)
        result = await spec.run()
        self._last_run[spec.name] = datetime.now(timezone.utc)
        return result

    async def trigger_job(self, name: str):
        """Run a job immediately, outside its schedule."""
        spec = self.jobs.get(name)
        if spec is None:
            raise ValueError(f"Unknown job: {name}")
        return await self._run(spec)

    def get_jobs_status(self) -> dict:
        now = datetime.now(self.tz)
        return {
            name: {
                "description": spec.description,
                "running": name in self._tasks and not self._tasks[name].done(),
                "last_run": self._last_run.get(name),
                "next_run": spec.next_run(now).isoformat() if name in self._tasks else None,
            }
            for name, spec in self.jobs.items()
        }

    # -- Jobs ------------------------------------------------------------------

    async def send_daily_question_notifications(self) -> dict:
        async with self._session_factory() as db:
            question = await question_service.get_todays_question(db)
            if question is None:
                logger.warning("No question for today, skipping notifications")
                return {"total": 0, "success": 0, "failure": 0}
            pairs = await pair_service.list_usable_pairs(db)

        results = await asyncio.gather(
            *(self._notifications.schedule_daily_question(pair.id, question.id) for pair in pairs),
            return_exceptions=True,
        )
        failures = sum(1 for r in results if isinstance(r, Exception))
        summary = {"total": len(pairs), "success": len(pairs) - failures, "failure": failures}
        logger.info(
            "Daily question notifications: %d scheduled, %d failed",
            summary["success"], summary["failure"],
        )
        return summary

    async def cleanup_expired_invitations(self) -> int:
        async with self._session_factory() as db:
            count = await pair_service.cleanup_expired_invitations(db)
            await db.commit()
        logger.info("Invitation cleanup: %d expired invitations removed", count)
        return count

    async def cleanup_queue(self) -> dict:
        return await self._notifications.cleanup_old_jobs()

    async def generate_weekly_summaries(self, today: date | None = None) -> dict:
        if today is None:
            today = datetime.now(self.tz).date()
        week_start, week_end = week_bounds(today)
        start = datetime.combine(week_start, time.min, tzinfo=self.tz)
        end = datetime.combine(week_end + timedelta(days=1), time.min, tzinfo=self.tz)

        summaries = {}
        async with self._session_factory() as db:
            for pair in await pair_service.list_usable_pairs(db):
                result = await db.execute(
                    select(Answer, Question.category)
                    .join(Question, Question.id == Answer.question_id)
                    .where(
                        Answer.pair_id == pair.id,
                        Answer.answered_at >= start,
                        Answer.answered_at < end,
                    )
                )
                summaries[pair.id] = summarize_week(list(result.all()))

        results = await asyncio.gather(
            *(
                self._notifications.add_job(
                    WEEKLY_SUMMARY,
                    {
                        "pair_id": str(pair_id),
                        "week_start": week_start.isoformat(),
                        "week_end": week_end.isoformat(),
                        "summary": summary,
                    },
                    delay=random.uniform(0, 30),
                )
                for pair_id, summary in summaries.items()
            ),
            return_exceptions=True,
        )
        failures = sum(1 for r in results if isinstance(r, Exception))
        logger.info("Weekly summaries: %d generated, %d failed", len(summaries) - failures, failures)
        return {
            "week_start": week_start,
            "week_end": week_end,
            "total": len(summaries),
            "success": len(summaries) - failures,
            "failure": failures,
            "summaries": summaries,
        }

    async def perform_health_check(self) -> dict:
        stats = await self._notifications.get_queue_stats()
        if stats["waiting"] > WAITING_THRESHOLD:
            logger.warning("Notification queue backlog: %d jobs waiting", stats["waiting"])
        if stats["failed"] > FAILED_THRESHOLD:
            logger.warning("Notification queue has %d failed jobs", stats["failed"])
        return stats
