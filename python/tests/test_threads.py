"""Tests for the thread and message store.

Tests cover:
- Thread creation, ownership and visibility
- Ordered reads through the cache
- Strict vs inclusive trailing deletes
- Retry history and last-model lookup
- Title generation
"""

import pytest
from sqlalchemy import select

from onechat.db.models import Message, Thread
from onechat.errors import ApiError, ForbiddenError, NotFoundError
from onechat.schemas.thread import MessageIn
from onechat.services import threads as threads_service
from onechat.services.api_keys import ApiKeys
from onechat.services.llm import LLMResponse
from onechat.services.thread_cache import thread_cache_key, user_threads_cache_key
from tests.factories import (
    at,
    create_conversation,
    create_test_attachment,
    create_test_message,
    create_test_thread,
)
from tests.support.fake_llm import FakeLLMRouter


class TestGetOrCreateThread:
    def test_creates_private_thread(self, db_session, thread_cache, test_user_id):
        thread = threads_service.get_or_create_thread(db_session, thread_cache, "t-new", test_user_id)

        assert thread.id == "t-new"
        assert thread.title == "New Thread"
        assert thread.visibility == "private"

    def test_returns_existing_for_owner(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1", title="Mine")

        thread = threads_service.get_or_create_thread(db_session, thread_cache, "t1", test_user_id)

        assert thread.title == "Mine"

    def test_other_users_thread_is_forbidden(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, "someone-else", thread_id="t1")

        with pytest.raises(ForbiddenError) as exc:
            threads_service.get_or_create_thread(db_session, thread_cache, "t1", test_user_id)
        assert exc.value.code == "forbidden:chat"


class TestReads:
    def test_messages_in_created_order(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, message_id="m2", created_at=at(2))
        create_test_message(db_session, thread.id, message_id="m1", created_at=at(1))

        messages = threads_service.load_chat(db_session, thread_cache, thread.id)

        assert [m.id for m in messages] == ["m1", "m2"]

    def test_read_populates_cache(self, db_session, thread_cache, fake_redis, test_user_id):
        thread, _ = create_conversation(db_session, test_user_id, turns=1)

        threads_service.get_thread_with_messages(db_session, thread_cache, thread.id)

        assert fake_redis.get(thread_cache_key(thread.id)) is not None

    def test_cached_read_skips_database(self, db_session, thread_cache, test_user_id):
        thread, _ = create_conversation(db_session, test_user_id, turns=1)
        threads_service.get_thread_with_messages(db_session, thread_cache, thread.id)

        # Bypass the service so the cache entry stays
        db_session.delete(db_session.get(Message, f"{thread.id}-a0"))
        db_session.commit()

        cached = threads_service.get_thread_with_messages(db_session, thread_cache, thread.id)
        assert len(cached.messages) == 2

        assert len(threads_service.list_thread_messages(db_session, thread.id)) == 1

    def test_missing_thread_loads_empty(self, db_session, thread_cache):
        assert threads_service.load_chat(db_session, thread_cache, "nope") == []

    def test_user_threads_ordered_by_last_activity(self, db_session, thread_cache, test_user_id):
        old = create_test_thread(db_session, test_user_id, thread_id="old", created_at=at(0))
        create_test_thread(db_session, test_user_id, thread_id="new", created_at=at(5))
        create_test_message(db_session, old.id, created_at=at(100))
        create_test_thread(db_session, "someone-else", thread_id="other")

        items = threads_service.get_user_threads(db_session, thread_cache, test_user_id)

        assert [item.id for item in items] == ["old", "new"]
        assert items[0].last_message_at == at(100)
        assert items[1].last_message_at is None

    def test_public_thread_rules(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="priv")
        create_test_thread(db_session, test_user_id, thread_id="pub", visibility="public")

        assert threads_service.get_public_thread(db_session, thread_cache, "pub", None)
        assert threads_service.get_public_thread(db_session, thread_cache, "priv", test_user_id)
        with pytest.raises(NotFoundError):
            threads_service.get_public_thread(db_session, thread_cache, "priv", "stranger")
        with pytest.raises(NotFoundError):
            threads_service.get_public_thread(db_session, thread_cache, "missing", None)


class TestThreadMutations:
    def test_toggle_visibility(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")

        first = threads_service.toggle_thread_visibility(db_session, thread_cache, test_user_id, "t1")
        second = threads_service.toggle_thread_visibility(db_session, thread_cache, test_user_id, "t1")

        assert first.visibility == "public"
        assert second.visibility == "private"

    def test_toggle_requires_owner(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, "owner", thread_id="t1")

        with pytest.raises(ForbiddenError) as exc:
            threads_service.toggle_thread_visibility(db_session, thread_cache, test_user_id, "t1")
        assert exc.value.code == "forbidden:thread"

    def test_rename_truncates(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")

        result = threads_service.rename_thread(db_session, thread_cache, test_user_id, "t1", "x" * 80)

        assert result.title == "x" * 60

    def test_delete_cascades_and_invalidates(
        self, db_session, thread_cache, fake_redis, test_user_id
    ):
        thread, _ = create_conversation(db_session, test_user_id)
        threads_service.get_thread_with_messages(db_session, thread_cache, thread.id)
        threads_service.get_user_threads(db_session, thread_cache, test_user_id)

        threads_service.delete_chat(db_session, thread_cache, test_user_id, thread.id)

        assert db_session.get(Thread, thread.id) is None
        assert db_session.scalars(select(Message).where(Message.thread_id == thread.id)).all() == []
        assert fake_redis.get(thread_cache_key(thread.id)) is None
        assert fake_redis.get(user_threads_cache_key(test_user_id)) is None

    def test_delete_keeps_branches(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="origin")
        branch = create_test_thread(db_session, test_user_id, thread_id="branch")
        branch.origin_thread_id = "origin"
        db_session.commit()

        threads_service.delete_chat(db_session, thread_cache, test_user_id, "origin")

        db_session.expire_all()
        assert db_session.get(Thread, "branch").origin_thread_id is None


# =============================================================================
# Messages
# =============================================================================


class TestUpsertMessage:
    def test_insert_then_update_in_place(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        message = MessageIn(id="a1", role="assistant", content="")

        threads_service.upsert_message(
            db_session, thread_cache, thread_id=thread.id, message=message, status="streaming"
        )
        out = threads_service.upsert_message(
            db_session,
            thread_cache,
            thread_id=thread.id,
            message=message.model_copy(update={"content": "done now"}),
            model="openai:gpt-4o",
            status="done",
        )

        assert out.content == "done now"
        assert out.status == "done"
        assert len(threads_service.list_thread_messages(db_session, thread.id)) == 1

    def test_status_drives_flags(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)

        errored = threads_service.upsert_message(
            db_session,
            thread_cache,
            thread_id=thread.id,
            message=MessageIn(id="a1", role="assistant"),
            status="error",
            error_message="boom",
        )
        stopped = threads_service.set_message_status(db_session, thread_cache, "a1", "stopped")

        assert errored.is_errored and not errored.is_stopped
        assert errored.error_message == "boom"
        assert stopped.is_stopped and not stopped.is_errored

    def test_id_from_another_thread_is_forbidden(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, "owner", thread_id="theirs")
        create_test_message(db_session, "theirs", message_id="m1", content="original")
        mine = create_test_thread(db_session, test_user_id)

        with pytest.raises(ForbiddenError):
            threads_service.upsert_message(
                db_session,
                thread_cache,
                thread_id=mine.id,
                message=MessageIn(id="m1", role="user", content="overwritten"),
            )

        db_session.expire_all()
        row = db_session.get(Message, "m1")
        assert (row.thread_id, row.content) == ("theirs", "original")

    def test_set_status_unknown_message(self, db_session, thread_cache):
        assert threads_service.set_message_status(db_session, thread_cache, "nope", "done") is None

    def test_explicit_attachment_ids_win(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)

        out = threads_service.upsert_message(
            db_session,
            thread_cache,
            thread_id=thread.id,
            message=MessageIn(id="u1", role="user", attachment_ids=["a"]),
            attachment_ids=["b"],
        )

        assert out.attachment_ids == ["b"]

    def test_delete_message_requires_owner(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, "owner")
        create_test_message(db_session, thread.id, message_id="m1")

        with pytest.raises(ForbiddenError):
            threads_service.delete_message(db_session, thread_cache, test_user_id, "m1")

        threads_service.delete_message(db_session, thread_cache, "owner", "m1")
        assert db_session.get(Message, "m1") is None


class TestTrailingDeletes:
    def test_strict_keeps_reference(self, db_session, thread_cache, test_user_id):
        thread, messages = create_conversation(db_session, test_user_id, turns=2)
        reference = messages[1]

        deleted = threads_service.delete_trailing_messages(
            db_session, thread_cache, test_user_id, thread.id, reference.id
        )

        remaining = [m.id for m in threads_service.list_thread_messages(db_session, thread.id)]
        assert deleted == 2
        assert remaining == [messages[0].id, messages[1].id]

    def test_inclusive_removes_reference(self, db_session, thread_cache, test_user_id):
        thread, messages = create_conversation(db_session, test_user_id, turns=2)
        reference = messages[1]

        deleted = threads_service.delete_message_and_trailing(
            db_session, thread_cache, test_user_id, thread.id, reference.id
        )

        remaining = [m.id for m in threads_service.list_thread_messages(db_session, thread.id)]
        assert deleted == 3
        assert remaining == [messages[0].id]

    def test_reference_in_other_thread(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        _, other_messages = create_conversation(db_session, test_user_id, turns=1)

        with pytest.raises(NotFoundError):
            threads_service.delete_trailing_messages(
                db_session, thread_cache, test_user_id, thread.id, other_messages[0].id
            )

    def test_other_users_thread(self, db_session, thread_cache, test_user_id):
        thread, messages = create_conversation(db_session, "owner", turns=1)

        with pytest.raises(ForbiddenError):
            threads_service.delete_message_and_trailing(
                db_session, thread_cache, test_user_id, thread.id, messages[0].id
            )


class TestRetry:
    def test_history_strictly_before_target(self, db_session, thread_cache, test_user_id):
        thread, messages = create_conversation(db_session, test_user_id, turns=2)
        target = messages[3]

        result = threads_service.retry_message_with_original_model(
            db_session, thread_cache, test_user_id, thread.id, target.id
        )

        assert [m.id for m in result.messages_up_to_retry] == [m.id for m in messages[:3]]
        assert result.model == "openai:gpt-4.1-mini"

    def test_model_falls_back_to_last_assistant(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(
            db_session, thread.id, role="assistant", model="anthropic:claude-sonnet-4-0", created_at=at(0)
        )
        target = create_test_message(db_session, thread.id, role="user", created_at=at(1))

        result = threads_service.retry_message_with_original_model(
            db_session, thread_cache, test_user_id, thread.id, target.id
        )

        assert result.model == "anthropic:claude-sonnet-4-0"

    def test_last_assistant_model_is_newest(self, db_session, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, role="assistant", model="openai:o3", created_at=at(0))
        create_test_message(db_session, thread.id, role="assistant", model="openai:gpt-4o", created_at=at(1))
        create_test_message(db_session, thread.id, role="assistant", model=None, created_at=at(2))

        assert threads_service.get_last_assistant_model(db_session, thread.id) == "openai:gpt-4o"


# =============================================================================
# Titles
# =============================================================================


class TestTitles:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ('  "Trip to Lisbon"  ', "Trip to Lisbon"),
            ("x" * 70, "x" * 60),
            ('""', ""),
        ],
    )
    def test_clean_title(self, raw, expected):
        assert threads_service.clean_title(raw) == expected

    @pytest.mark.asyncio
    async def test_generates_and_stores_title(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")
        router = FakeLLMRouter(responses=[LLMResponse(text='"Planning a trip"', usage=None, provider_request_id=None)])

        title = await threads_service.generate_and_update_thread_title(
            db_session,
            thread_cache,
            router,
            test_user_id,
            "t1",
            "help me plan a trip",
            ApiKeys(openai="sk-" + "o" * 40),
        )

        assert title == "Planning a trip"
        db_session.expire_all()
        assert db_session.get(Thread, "t1").title == "Planning a trip"

        provider, request, api_key, kwargs = router.calls[0]
        assert provider == "openai"
        assert request.model_name == "gpt-4.1-nano"
        assert request.max_tokens == 25
        assert "help me plan a trip" in request.messages[0].content
        assert kwargs["key_mode"] == "byok"

    @pytest.mark.asyncio
    async def test_empty_title_falls_back(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")
        router = FakeLLMRouter(responses=[LLMResponse(text="  ", usage=None, provider_request_id=None)])

        title = await threads_service.generate_and_update_thread_title(
            db_session, thread_cache, router, test_user_id, "t1", "q", ApiKeys(),
            platform_openai_key="sk-" + "p" * 40,
        )

        assert title == "New Thread"
        assert router.calls[0][3]["key_mode"] == "platform"

    @pytest.mark.asyncio
    async def test_no_key_at_all(self, db_session, thread_cache, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")

        with pytest.raises(ApiError) as exc:
            await threads_service.generate_and_update_thread_title(
                db_session, thread_cache, FakeLLMRouter(), test_user_id, "t1", "q", ApiKeys()
            )
        assert exc.value.code == "api_key_missing:models"


class TestAttachmentLinks:
    def test_link_skips_unknown_and_duplicates(self, db_session, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        message = create_test_message(db_session, thread.id)
        attachment = create_test_attachment(db_session, test_user_id)

        added = threads_service.link_attachments_to_message(
            db_session, message.id, [attachment.id, "missing", attachment.id], test_user_id
        )
        again = threads_service.link_attachments_to_message(
            db_session, message.id, [attachment.id], test_user_id
        )

        assert added == 1
        assert again == 0
        assert [a.id for a in threads_service.get_message_attachments(db_session, message.id)] == [
            attachment.id
        ]

    def test_link_skips_other_users_attachments(self, db_session, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        message = create_test_message(db_session, thread.id)
        foreign = create_test_attachment(db_session, "someone-else")

        added = threads_service.link_attachments_to_message(
            db_session, message.id, [foreign.id], test_user_id
        )

        assert added == 0
        assert threads_service.get_message_attachments(db_session, message.id) == []

    def test_create_and_link_requires_message(self, db_session, test_user_id):
        with pytest.raises(ApiError) as exc:
            threads_service.create_attachment_and_link_to_message(
                db_session,
                attachment_id="a1",
                user_id=test_user_id,
                message_id="missing",
                file_key="k",
                file_name="f.png",
                file_size=1,
                mime_type="image/png",
                attachment_type="image",
                attachment_url="https://x",
            )
        assert exc.value.code == "not_found:attachment"

    def test_messages_carry_attachments(self, db_session, thread_cache, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        message = create_test_message(db_session, thread.id)
        create_test_attachment(db_session, test_user_id, attachment_id="att-1", message_id=message.id)

        messages = threads_service.load_chat(db_session, thread_cache, thread.id)

        assert [a.id for a in messages[0].attachments] == ["att-1"]
