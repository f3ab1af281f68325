"""Tests for the Celery tasks: stale message sweeper and title generation."""

import importlib
import json
from datetime import timedelta
from pathlib import Path

import pytest
import respx

from onechat.celery import SWEEP_INTERVAL_SECONDS, celery_app
from onechat.config import clear_settings_cache
from onechat.db.models import Message, Thread
from onechat.services.llm.openai_adapter import OPENAI_CHAT_URL
from onechat.services.streams import mark_stream_active
from onechat.services.thread_cache import ThreadCache
from onechat.tasks import generate_thread_title, sweep_stale_messages
from onechat.tasks.sweep_stale_messages import ORPHANED_MESSAGE, sweep_stale_messages_once
from tests.factories import BASE_TIME, at, create_test_message, create_test_thread

NOW = BASE_TIME + timedelta(minutes=10)
OPENAI_COMPLETION = Path(__file__).parent / "fixtures" / "llm" / "openai" / "success_nonstream.json"


@pytest.fixture
def no_redis(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    clear_settings_cache()


# =============================================================================
# Sweeper
# =============================================================================


class TestSweepStaleMessages:
    def _seed(self, db_session, user_id):
        create_test_thread(db_session, user_id, thread_id="t1")
        create_test_message(db_session, "t1", message_id="u1", role="user", created_at=at(0))
        create_test_message(
            db_session, "t1", message_id="stale", role="assistant", status="streaming", created_at=at(1)
        )
        create_test_message(
            db_session, "t1", message_id="pending", role="assistant", status="pending", created_at=at(2)
        )
        create_test_message(
            db_session,
            "t1",
            message_id="fresh",
            role="assistant",
            status="streaming",
            created_at=NOW - timedelta(minutes=1),
        )
        create_test_message(
            db_session, "t1", message_id="done", role="assistant", status="done", created_at=at(3)
        )

    def test_finalizes_only_stale_active_messages(
        self, db_session, fake_redis, thread_cache, test_user_id
    ):
        self._seed(db_session, test_user_id)
        thread_cache.prime_thread("t1", {"thread": {"id": "t1"}})

        assert sweep_stale_messages_once(db_session, fake_redis, now=NOW) == 2

        db_session.expire_all()
        stale = db_session.get(Message, "stale")
        assert stale.status == "error"
        assert stale.is_errored is True
        assert stale.error_message == ORPHANED_MESSAGE
        assert db_session.get(Message, "pending").status == "error"
        assert db_session.get(Message, "fresh").status == "streaming"
        assert db_session.get(Message, "done").status == "done"
        assert db_session.get(Message, "u1").status == "done"
        assert ThreadCache(fake_redis).get_thread("t1") is None

    def test_skips_live_streams(self, db_session, fake_redis, test_user_id):
        self._seed(db_session, test_user_id)
        mark_stream_active(fake_redis, "stale")

        assert sweep_stale_messages_once(db_session, fake_redis, now=NOW) == 1

        db_session.expire_all()
        assert db_session.get(Message, "stale").status == "streaming"

    def test_without_redis_everything_stale_is_orphaned(self, db_session, test_user_id):
        self._seed(db_session, test_user_id)

        assert sweep_stale_messages_once(db_session, None, now=NOW) == 2

    def test_nothing_to_do(self, db_session, fake_redis):
        assert sweep_stale_messages_once(db_session, fake_redis, now=NOW) == 0

    def test_task_entry_point(self, session_factory, db_session, test_user_id, no_redis):
        create_test_thread(db_session, test_user_id, thread_id="t1")
        create_test_message(
            db_session, "t1", message_id="old", role="assistant", status="streaming", created_at=at(0)
        )

        result = sweep_stale_messages.apply().get()

        assert result == {"status": "success", "finalized_count": 1}
        db_session.expire_all()
        assert db_session.get(Message, "old").status == "error"

    def test_beat_schedule(self):
        entry = celery_app.conf.beat_schedule["sweep-stale-messages"]
        assert entry == {"task": "sweep_stale_messages", "schedule": SWEEP_INTERVAL_SECONDS}

    def test_sweep_cannot_outlive_its_interval(self):
        limits = celery_app.conf.task_annotations["sweep_stale_messages"]
        assert limits["time_limit"] <= SWEEP_INTERVAL_SECONDS


# =============================================================================
# Title generation
# =============================================================================


class TestGenerateThreadTitle:
    @respx.mock
    def test_uses_platform_key(
        self, session_factory, db_session, test_user_id, no_redis, monkeypatch
    ):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-platform")
        clear_settings_cache()
        create_test_thread(db_session, test_user_id, thread_id="t1")
        route = respx.post(OPENAI_CHAT_URL).respond(
            200, json=json.loads(OPENAI_COMPLETION.read_text())
        )

        result = generate_thread_title.apply(args=["t1", test_user_id, "Say hi"]).get()

        assert result == {"status": "success", "title": "Hello! How can I help you today?"}
        assert route.calls.last.request.headers["authorization"] == "Bearer sk-platform"
        db_session.expire_all()
        assert db_session.get(Thread, "t1").title == "Hello! How can I help you today?"

    def test_fails_softly_without_key(
        self, session_factory, db_session, test_user_id, no_redis, monkeypatch
    ):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        clear_settings_cache()
        create_test_thread(db_session, test_user_id, thread_id="t1")

        result = generate_thread_title.apply(args=["t1", test_user_id, "Say hi"]).get()

        assert result["status"] == "failed"
        db_session.expire_all()
        assert db_session.get(Thread, "t1").title == "Test Thread"

    def test_task_module_is_registered(self):
        module = importlib.import_module("onechat.tasks.generate_thread_title")
        assert module.generate_thread_title is generate_thread_title
        assert "generate_thread_title" in celery_app.tasks
