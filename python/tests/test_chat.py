"""Tests for the chat streaming service.

Tests cover:
- prepare_chat validation and persistence
- SSE event order for text, reasoning and tool rounds
- Error, stop and missing-key outcomes
- resume_stream and stop_chat_stream
"""

import asyncio

import httpx
import pytest

from onechat.db.models import Message, Thread
from onechat.errors import ApiError, BadRequestError, ForbiddenError
from onechat.schemas.chat import ChatRequest
from onechat.schemas.thread import MessageIn
from onechat.services import chat as chat_module
from onechat.services import threads as threads_service
from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import get_model_by_key
from onechat.services.chat import (
    ChatDeps,
    prepare_chat,
    resolve_search_mode,
    resume_stream,
    stop_chat_stream,
    stream_chat,
)
from onechat.services.llm import LLMChunk, LLMError, LLMErrorClass, LLMUsage, ToolCall
from onechat.services.provider_options import SearchMode
from onechat.services.streams import (
    append_stream_id,
    is_stream_active,
    load_streams,
    stop_channel,
    stop_stream,
)
from tests.factories import at, create_test_attachment, create_test_message, create_test_thread
from tests.helpers import parse_sse
from tests.support.fake_llm import FakeLLMRouter, text_stream
from tests.support.fake_redis import FakeAsyncRedis

OPENAI_KEYS = ApiKeys(openai="sk-" + "a" * 40)


def chat_request(thread_id="t1", text="Hi there", model="openai:gpt-4.1-mini", **kwargs):
    return ChatRequest(
        id=thread_id,
        message=MessageIn(
            id=f"{thread_id}-user",
            role="user",
            content=text,
            parts=[{"type": "text", "text": text}],
        ),
        selected_model=model,
        **kwargs,
    )


@pytest.fixture
def make_deps(session_factory, fake_redis):
    def _make(router: FakeLLMRouter, **kwargs) -> ChatDeps:
        return ChatDeps(
            db_factory=session_factory,
            llm_router=router,
            http_client=httpx.AsyncClient(),
            redis_client=fake_redis,
            pubsub_client=FakeAsyncRedis(fake_redis.broker),
            **kwargs,
        )

    return _make


@pytest.fixture
def prepared(db_session, thread_cache, fake_redis, test_user_id):
    def _prepare(**kwargs):
        return prepare_chat(db_session, thread_cache, fake_redis, test_user_id, chat_request(**kwargs))

    return _prepare


async def collect(stream) -> list[tuple[str, dict]]:
    return parse_sse([event async for event in stream])


def stored(db_session, thread_id):
    db_session.expire_all()
    return threads_service.list_thread_messages(db_session, thread_id)


# =============================================================================
# prepare_chat
# =============================================================================


class TestPrepareChat:
    def test_creates_thread_and_registers_stream(self, prepared, db_session, fake_redis):
        chat = prepared()

        assert chat.thread_id == "t1"
        assert load_streams(fake_redis, "t1") == [chat.stream_id]
        assert chat.user_message.content == "Hi there"
        assert [m["id"] for m in chat.history] == ["t1-user"]
        assert stored(db_session, "t1")[0].model == "openai:gpt-4.1-mini"

    def test_unknown_model(self, prepared):
        with pytest.raises(ApiError) as exc:
            prepared(model="openai:nope")
        assert exc.value.code == "model_not_found:models"

    def test_rejects_assistant_message(self, db_session, thread_cache, fake_redis, test_user_id):
        request = chat_request()
        request.message.role = "assistant"

        with pytest.raises(BadRequestError) as exc:
            prepare_chat(db_session, thread_cache, fake_redis, test_user_id, request)
        assert exc.value.code == "bad_request:chat"

    def test_other_users_thread(self, db_session, thread_cache, fake_redis):
        create_test_thread(db_session, "owner", thread_id="t1")

        with pytest.raises(ForbiddenError):
            prepare_chat(db_session, thread_cache, fake_redis, "intruder", chat_request())

    def test_links_attachments(self, db_session, thread_cache, fake_redis, test_user_id):
        attachment = create_test_attachment(db_session, test_user_id)
        request = chat_request()
        request.message.attachment_ids = [attachment.id]

        chat = prepare_chat(db_session, thread_cache, fake_redis, test_user_id, request)

        assert [a["id"] for a in chat.history[0]["attachments"]] == [attachment.id]

    def test_message_id_from_another_thread(self, db_session, thread_cache, fake_redis, test_user_id):
        create_test_thread(db_session, "victim", thread_id="victim-thread")
        create_test_message(
            db_session, "victim-thread", message_id="t1-user", role="user", content="private"
        )

        with pytest.raises(ForbiddenError) as exc:
            prepare_chat(db_session, thread_cache, fake_redis, test_user_id, chat_request())
        assert exc.value.code == "forbidden:chat"

        db_session.expire_all()
        victim = db_session.get(Message, "t1-user")
        assert victim.thread_id == "victim-thread"
        assert victim.content == "private"
        assert load_streams(fake_redis, "t1") == []
        assert db_session.get(Thread, "t1") is None

    def test_existing_assistant_id_is_rejected(self, db_session, thread_cache, fake_redis, test_user_id):
        create_test_thread(db_session, test_user_id, thread_id="t1")
        create_test_message(db_session, "t1", message_id="t1-user", role="assistant", content="answer")

        with pytest.raises(ForbiddenError):
            prepare_chat(db_session, thread_cache, fake_redis, test_user_id, chat_request())

        db_session.expire_all()
        row = db_session.get(Message, "t1-user")
        assert row.role == "assistant"
        assert row.content == "answer"

    def test_resending_own_user_message_updates_it(self, prepared, db_session):
        prepared(text="first")
        prepared(text="edited")

        messages = stored(db_session, "t1")
        assert [(m.id, m.content) for m in messages] == [("t1-user", "edited")]

    def test_skips_other_users_attachment(self, db_session, thread_cache, fake_redis, test_user_id):
        mine = create_test_attachment(db_session, test_user_id)
        theirs = create_test_attachment(db_session, "someone-else")
        request = chat_request()
        request.message.attachment_ids = [mine.id, theirs.id]

        chat = prepare_chat(db_session, thread_cache, fake_redis, test_user_id, request)

        assert [a["id"] for a in chat.history[0]["attachments"]] == [mine.id]
        db_session.expire_all()
        assert [a.id for a in threads_service.get_message_attachments(db_session, "t1-user")] == [
            mine.id
        ]

    @pytest.mark.parametrize(
        "model_key,enable,expected",
        [
            ("google:gemini-2.5-flash-preview-05-20", True, SearchMode.NATIVE),
            ("openai:gpt-4.1-mini", True, SearchMode.TOOL),
            ("openai:gpt-4.1-mini", False, SearchMode.OFF),
        ],
    )
    def test_search_mode(self, model_key, enable, expected):
        assert resolve_search_mode(get_model_by_key(model_key), enable) == expected


# =============================================================================
# stream_chat
# =============================================================================


class TestStreamChat:
    @pytest.mark.asyncio
    async def test_abort_watch_is_torn_down_when_the_stream_ends(self, prepared, make_deps):
        chat = prepared()
        deps = make_deps(FakeLLMRouter(streams=[text_stream("Hi")]))

        await collect(stream_chat(deps, chat, OPENAI_KEYS))

        assert all(p.closed and not p.channels for p in deps.pubsub_client.pubsubs)
        assert not deps.pubsub_client.broker.channels.get(stop_channel(chat.stream_id))

    @pytest.mark.asyncio
    async def test_liveness_writes_run_off_the_event_loop(self, prepared, make_deps, monkeypatch):
        chat = prepared()
        calls = []

        def recorder(name):
            def record(redis_client, message_id):
                try:
                    asyncio.get_running_loop()
                    calls.append((name, "loop"))
                except RuntimeError:
                    calls.append((name, "worker"))

            return record

        monkeypatch.setattr(chat_module, "mark_stream_active", recorder("mark"))
        monkeypatch.setattr(chat_module, "clear_stream_active", recorder("clear"))

        deps = make_deps(FakeLLMRouter(streams=[text_stream("Hi")]))
        await collect(stream_chat(deps, chat, OPENAI_KEYS))

        assert ("mark", "worker") in calls
        assert ("clear", "worker") in calls
        assert all(where == "worker" for _, where in calls)

    @pytest.mark.asyncio
    async def test_text_stream(self, prepared, make_deps, db_session, fake_redis):
        chat = prepared()
        chunks = text_stream("Hello", " world")
        chunks[-1] = LLMChunk(
            delta_text="", done=True, usage=LLMUsage(prompt_tokens=5, completion_tokens=2, total_tokens=7)
        )
        router = FakeLLMRouter(streams=[chunks])

        events = await collect(stream_chat(make_deps(router), chat, OPENAI_KEYS))

        assert [name for name, _ in events] == ["model", "text", "text", "finish"]
        model_event = events[0][1]
        assert model_event["model"] == "openai:gpt-4.1-mini"
        assert model_event["stream_id"] == chat.stream_id
        finish = events[-1][1]
        assert finish["status"] == "done"
        assert finish["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}

        assistant = stored(db_session, "t1")[-1]
        assert assistant.id == model_event["message_id"]
        assert assistant.content == "Hello world"
        assert assistant.status == "done"
        assert assistant.annotations == [{"type": "model", "model": "openai:gpt-4.1-mini"}]
        assert not is_stream_active(fake_redis, assistant.id)

    @pytest.mark.asyncio
    async def test_request_shape(self, prepared, make_deps):
        chat = prepared()
        router = FakeLLMRouter(streams=[text_stream("ok")])

        await collect(stream_chat(make_deps(router), chat, OPENAI_KEYS))

        provider, request, api_key, kwargs = router.calls[0]
        assert provider == "openai"
        assert api_key == OPENAI_KEYS.openai
        assert request.model_name == "gpt-4.1-mini"
        assert request.messages[0].role == "system"
        assert request.messages[-1].content == "Hi there"
        assert kwargs["call_context"].stream_id == chat.stream_id

    @pytest.mark.asyncio
    async def test_reasoning_is_kept_in_parts(self, prepared, make_deps, db_session):
        chat = prepared(model="anthropic:claude-sonnet-4-0")
        router = FakeLLMRouter(streams=[text_stream("Answer", reasoning=("Let me think",))])

        events = await collect(
            stream_chat(make_deps(router), chat, ApiKeys(anthropic="sk-ant-" + "b" * 40))
        )

        assert [name for name, _ in events] == ["model", "reasoning", "text", "finish"]
        assistant = stored(db_session, "t1")[-1]
        assert assistant.parts == [
            {"type": "reasoning", "reasoning": "Let me think"},
            {"type": "text", "text": "Answer"},
        ]

    @pytest.mark.asyncio
    async def test_missing_key_writes_nothing(self, prepared, make_deps, db_session):
        chat = prepared()
        router = FakeLLMRouter()

        events = await collect(stream_chat(make_deps(router), chat, ApiKeys()))

        assert [name for name, _ in events] == ["model", "error"]
        assert events[1][1]["code"] == "api_key_missing:models"
        assert len(stored(db_session, "t1")) == 1
        assert router.calls == []

    @pytest.mark.asyncio
    async def test_provider_error_marks_message(self, prepared, make_deps, db_session, fake_redis):
        chat = prepared()
        chunks = [
            LLMChunk(delta_text="Partial", done=False),
            LLMError(LLMErrorClass.RATE_LIMIT, "429", provider="openai"),
        ]
        router = FakeLLMRouter(streams=[chunks])

        events = await collect(stream_chat(make_deps(router), chat, OPENAI_KEYS))

        assert [name for name, _ in events] == ["model", "text", "error"]
        assert events[-1][1]["code"] == "rate_limit:chat"
        assistant = stored(db_session, "t1")[-1]
        assert assistant.status == "error"
        assert assistant.is_errored
        assert assistant.content == "Partial"
        assert not is_stream_active(fake_redis, assistant.id)

    @pytest.mark.asyncio
    async def test_unexpected_error(self, prepared, make_deps, db_session):
        chat = prepared()
        router = FakeLLMRouter(streams=[[RuntimeError("kaboom")]])

        events = await collect(stream_chat(make_deps(router), chat, OPENAI_KEYS))

        assert events[-1][0] == "error"
        assert events[-1][1]["code"] == "internal_server_error:stream"
        assert "kaboom" not in events[-1][1]["message"]
        assert stored(db_session, "t1")[-1].status == "error"

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_content(self, prepared, make_deps, db_session, fake_redis):
        chat = prepared()
        router = FakeLLMRouter(
            streams=[text_stream("Hello", " never", " sent")], chunk_delay_s=0.05
        )
        stream = stream_chat(make_deps(router), chat, OPENAI_KEYS)

        events = [await stream.__anext__(), await stream.__anext__()]
        assert stop_stream(fake_redis, chat.stream_id)
        events += [event async for event in stream]

        parsed = parse_sse(events)
        assert [name for name, _ in parsed] == ["model", "text", "finish"]
        assert parsed[-1][1]["status"] == "stopped"
        assistant = stored(db_session, "t1")[-1]
        assert assistant.content == "Hello"
        assert assistant.status == "stopped"
        assert assistant.is_stopped
        assert not fake_redis.broker.channels[stop_channel(chat.stream_id)]

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(self, prepared, make_deps, db_session):
        chat = prepared()
        call = ToolCall(id="call-1", name="mystery", arguments={"q": "x"})
        router = FakeLLMRouter(
            streams=[
                [LLMChunk(delta_text="", done=True, tool_calls=(call,))],
                text_stream("Final answer"),
            ]
        )

        events = await collect(stream_chat(make_deps(router), chat, OPENAI_KEYS))

        assert [name for name, _ in events] == ["model", "tool-call", "tool-result", "text", "finish"]
        assert events[2][1] == {"id": "call-1", "name": "mystery", "error": "Unknown tool"}

        follow_up = router.calls[1][1]
        assert [t.role for t in follow_up.messages[-2:]] == ["assistant", "tool"]
        assert follow_up.messages[-1].tool_call_id == "call-1"
        assert follow_up.tools == ()

        assistant = stored(db_session, "t1")[-1]
        assert assistant.content == "Final answer"
        assert assistant.parts[0]["type"] == "tool-invocation"
        assert assistant.parts[0]["toolInvocation"]["result"] == {"error": "Unknown tool: mystery"}

    @pytest.mark.asyncio
    async def test_image_model_requires_openai_key(self, prepared, make_deps):
        chat = prepared(model="openai:gpt-imagegen")

        events = await collect(stream_chat(make_deps(FakeLLMRouter()), chat, ApiKeys()))

        assert [name for name, _ in events] == ["model", "error"]
        assert events[1][1]["code"] == "api_key_missing:models"


# =============================================================================
# Resume and stop
# =============================================================================


class TestResumeStream:
    def test_nothing_streamed(self, db_session, thread_cache, fake_redis, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, role="assistant")

        assert resume_stream(db_session, thread_cache, fake_redis, thread.id) == []

    def test_replays_finished_assistant(self, db_session, thread_cache, fake_redis, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, role="user", created_at=at(0))
        create_test_message(
            db_session, thread.id, message_id="a1", role="assistant", model="openai:o3", created_at=at(1)
        )
        append_stream_id(fake_redis, thread.id, "s1")

        events = parse_sse(resume_stream(db_session, thread_cache, fake_redis, thread.id))

        assert [name for name, _ in events] == ["append-message", "annotation"]
        assert events[0][1]["message"]["id"] == "a1"
        assert events[1][1] == {"model": "openai:o3", "status": "completed"}

    @pytest.mark.parametrize("role,status", [("user", "done"), ("assistant", "streaming")])
    def test_nothing_to_replay(self, role, status, db_session, thread_cache, fake_redis, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, role=role, status=status)
        append_stream_id(fake_redis, thread.id, "s1")

        assert resume_stream(db_session, thread_cache, fake_redis, thread.id) == []


class TestStopChatStream:
    def test_stops_generating_message(self, db_session, thread_cache, fake_redis, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(
            db_session, thread.id, message_id="a1", role="assistant", content="Half", status="streaming"
        )
        append_stream_id(fake_redis, thread.id, "s1")

        result = stop_chat_stream(db_session, thread_cache, fake_redis, test_user_id, thread.id)

        assert result.stream_id == "s1"
        assert result.published is True
        assert fake_redis.published == [(stop_channel("s1"), "abort")]
        db_session.expire_all()
        message = db_session.get(Message, "a1")
        assert message.status == "stopped"
        assert message.content == "Half"

    def test_trailing_user_message_gets_stopped_reply(
        self, db_session, thread_cache, fake_redis, test_user_id
    ):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, role="user", created_at=at(0))

        result = stop_chat_stream(db_session, thread_cache, fake_redis, test_user_id, thread.id)

        assert result.stream_id is None
        assert result.published is False
        messages = stored(db_session, thread.id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[-1].status == "stopped"

    def test_finished_message_untouched(self, db_session, thread_cache, fake_redis, test_user_id):
        thread = create_test_thread(db_session, test_user_id)
        create_test_message(db_session, thread.id, message_id="a1", role="assistant", status="done")

        stop_chat_stream(db_session, thread_cache, fake_redis, test_user_id, thread.id)

        assert db_session.get(Message, "a1").status == "done"

    def test_other_users_thread(self, db_session, thread_cache, fake_redis):
        thread = create_test_thread(db_session, "owner")

        with pytest.raises(ForbiddenError) as exc:
            stop_chat_stream(db_session, thread_cache, fake_redis, "intruder", thread.id)
        assert exc.value.code == "forbidden:chat"


@pytest.mark.asyncio
async def test_stop_during_stream_is_not_overwritten(
    prepared, make_deps, db_session, thread_cache, fake_redis, test_user_id
):
    """A stop request that lands first keeps the message stopped at finalization."""
    chat = prepared()
    router = FakeLLMRouter(streams=[text_stream("a", "b", "c")], chunk_delay_s=0.05)
    deps = make_deps(router)
    deps.pubsub_client = None
    stream = stream_chat(deps, chat, OPENAI_KEYS)

    await stream.__anext__()
    await stream.__anext__()
    stop_chat_stream(db_session, thread_cache, fake_redis, test_user_id, "t1")
    rest = parse_sse([event async for event in stream])

    assert rest[-1][1]["status"] == "stopped"
    assistant = stored(db_session, "t1")[-1]
    assert assistant.status == "stopped"
    assert assistant.content == "abc"
