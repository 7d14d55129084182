"""Tests for the notification queue and its message handlers."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from mundapdari.services.notification_service import (
    ANSWER_NOTIFICATION,
    COMPLETED_KEY,
    DAILY_QUESTION,
    DELAYED_KEY,
    FAILED_KEY,
    JOBS_KEY,
    KakaoMessenger,
    NotificationService,
    backoff_delay,
)
from tests.conftest import create_active_pair, create_user


@pytest.fixture()
def messenger():
    sender = AsyncMock(spec=KakaoMessenger)
    sender.send.return_value = {"success": True, "message_id": "m-1"}
    return sender


@pytest.fixture()
def redis():
    client = AsyncMock()
    client.hsetnx.return_value = True
    return client


def _job(job_type=DAILY_QUESTION, attempts=0):
    return {"id": "job-1", "type": job_type, "data": {"x": 1}, "attempts_made": attempts, "created_at": 0}


class TestBackoff:
    def test_exponential(self):
        assert [backoff_delay(n, base=2.0) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestDevelopmentMode:
    async def test_add_job_without_redis(self, session_factory, cipher, messenger):
        service = NotificationService(session_factory, cipher, messenger=messenger)
        assert service.available is False
        result = await service.add_job(DAILY_QUESTION, {"pair_id": "p"})
        assert result == {"success": True, "mode": "development"}

    async def test_unknown_job_type(self, session_factory, cipher):
        service = NotificationService(session_factory, cipher)
        with pytest.raises(ValueError):
            await service.add_job("carrier-pigeon", {})

    async def test_stats_and_cleanup(self, session_factory, cipher):
        service = NotificationService(session_factory, cipher)
        stats = await service.get_queue_stats()
        assert stats["redis_available"] is False
        assert stats["waiting"] == 0
        assert await service.cleanup_old_jobs() == {"completed": 0, "failed": 0}
        assert await service.process_due_jobs() == 0


class TestQueue:
    async def test_add_job_schedules_with_delay(self, session_factory, cipher, redis):
        service = NotificationService(session_factory, cipher, redis=redis)
        result = await service.add_job(ANSWER_NOTIFICATION, {"a": 1}, delay=5, job_id="job-1")

        assert result["job_id"] == "job-1"
        redis.hsetnx.assert_awaited_once()
        key, job_id, raw = redis.hsetnx.await_args.args
        assert (key, job_id) == (JOBS_KEY, "job-1")
        assert json.loads(raw)["attempts_made"] == 0
        redis.zadd.assert_awaited_once()
        assert redis.zadd.await_args.args[0] == DELAYED_KEY

    async def test_duplicate_job_id_not_requeued(self, session_factory, cipher, redis):
        redis.hsetnx.return_value = False
        service = NotificationService(session_factory, cipher, redis=redis)
        result = await service.add_job(DAILY_QUESTION, {}, job_id="daily-question-p-2024-01-01")
        assert result["duplicate"] is True
        redis.zadd.assert_not_awaited()

    async def test_redis_failure_is_reported_not_raised(self, session_factory, cipher, redis):
        redis.hsetnx.side_effect = RedisConnectionError("Connection refused")
        service = NotificationService(session_factory, cipher, redis=redis)
        result = await service.add_job(ANSWER_NOTIFICATION, {"a": 1}, job_id="job-1")
        assert result["success"] is False
        assert result["mode"] == "log-only"
        redis.zadd.assert_not_awaited()

    async def test_daily_question_job_id_is_per_pair_and_day(self, session_factory, cipher, redis):
        service = NotificationService(session_factory, cipher, redis=redis)
        result = await service.schedule_daily_question("pair-1", "question-1")
        assert result["job_id"].startswith("daily-question-pair-1-")

    async def test_process_success(self, session_factory, cipher, redis):
        redis.zrangebyscore.return_value = ["job-1"]
        redis.zrem.return_value = 1
        redis.hget.return_value = json.dumps(_job())
        service = NotificationService(session_factory, cipher, redis=redis)
        service.run_job = AsyncMock(return_value={"success": True})

        assert await service.process_due_jobs(now=100.0) == 1
        service.run_job.assert_awaited_once_with(DAILY_QUESTION, {"x": 1})
        redis.hdel.assert_awaited_once_with(JOBS_KEY, "job-1")
        assert redis.lpush.await_args.args[0] == COMPLETED_KEY

    async def test_process_skips_claimed_job(self, session_factory, cipher, redis):
        redis.zrangebyscore.return_value = ["job-1"]
        redis.zrem.return_value = 0
        service = NotificationService(session_factory, cipher, redis=redis)
        service.run_job = AsyncMock()

        assert await service.process_due_jobs() == 0
        service.run_job.assert_not_awaited()

    async def test_failure_is_retried_with_backoff(self, session_factory, cipher, redis):
        redis.zrangebyscore.return_value = ["job-1"]
        redis.zrem.return_value = 1
        redis.hget.return_value = json.dumps(_job())
        service = NotificationService(session_factory, cipher, redis=redis, max_attempts=3)
        service.run_job = AsyncMock(side_effect=RuntimeError("gateway down"))

        await service.process_due_jobs()
        stored = json.loads(redis.hset.await_args.args[2])
        assert stored["attempts_made"] == 1
        assert redis.zadd.await_args.args[0] == DELAYED_KEY
        redis.lpush.assert_not_awaited()

    async def test_final_failure_moves_to_failed(self, session_factory, cipher, redis):
        redis.zrangebyscore.return_value = ["job-1"]
        redis.zrem.return_value = 1
        redis.hget.return_value = json.dumps(_job(attempts=2))
        service = NotificationService(session_factory, cipher, redis=redis, max_attempts=3)
        service.run_job = AsyncMock(side_effect=RuntimeError("gateway down"))

        await service.process_due_jobs()
        redis.hdel.assert_awaited_once_with(JOBS_KEY, "job-1")
        key, raw = redis.lpush.await_args.args
        assert key == FAILED_KEY
        assert json.loads(raw)["error"] == "gateway down"

    async def test_cleanup_trims_old_entries(self, session_factory, cipher, redis):
        old = json.dumps({"id": "a", "finished_at": 0})
        fresh = json.dumps({"id": "b", "finished_at": 10_000_000})
        redis.lrange.return_value = [old, fresh]
        redis.lrem.return_value = 1
        service = NotificationService(session_factory, cipher, redis=redis)

        removed = await service.cleanup_old_jobs(now=10_000_000)
        assert removed == {"completed": 1, "failed": 1}
        redis.lrem.assert_any_await(COMPLETED_KEY, 1, old)


class TestHandlers:
    async def test_daily_question_sends_to_both(self, db_session, session_factory, cipher, messenger, questions):
        parent = await create_user(db_session, "김엄마", "010-1111-1111", "parent")
        child = await create_user(db_session, "김지우", "010-2222-2222", "child")
        pair = await create_active_pair(db_session, parent, child)
        await db_session.commit()

        service = NotificationService(session_factory, cipher, messenger=messenger)
        result = await service.run_job(
            DAILY_QUESTION, {"pair_id": str(pair.id), "question_id": str(questions[0].id)},
        )
        assert result["sent"] == 2
        phones = {call.args[0] for call in messenger.send.await_args_list}
        assert phones == {"+821011111111", "+821022222222"}
        assert questions[0].content in messenger.send.await_args.args[1]

    async def test_answer_notification(self, db_session, session_factory, cipher, messenger, questions):
        from mundapdari.models.answer import Answer

        parent = await create_user(db_session, "김엄마", "010-1111-1111", "parent")
        child = await create_user(db_session, "김지우", "010-2222-2222", "child")
        pair = await create_active_pair(db_session, parent, child)
        answer = Answer(question_id=questions[0].id, user_id=child.id, pair_id=pair.id, content="답변")
        db_session.add(answer)
        await db_session.commit()

        service = NotificationService(session_factory, cipher, messenger=messenger)
        await service.run_job(ANSWER_NOTIFICATION, {"answer_id": str(answer.id), "recipient_id": str(parent.id)})

        phone, message = messenger.send.await_args.args
        assert phone == "+821011111111"
        assert message.startswith("김지우님이")

    async def test_invitation_message(self, session_factory, cipher, messenger):
        service = NotificationService(session_factory, cipher, messenger=messenger)
        await service.schedule_invitation("+821012345678", "김엄마", "http://x/invite/t")  # dev mode: logged only
        messenger.send.assert_not_awaited()

        await service.run_job("invitation-notification", {
            "phone": "+821012345678", "inviter_name": "김엄마", "invitation_url": "http://x/invite/t",
        })
        assert "http://x/invite/t" in messenger.send.await_args.args[1]


class TestKakaoMessenger:
    async def test_log_only_without_config(self):
        result = await KakaoMessenger().send("+821012345678", "안녕하세요")
        assert result["success"] is True
        assert result["message_id"].startswith("dev-")
