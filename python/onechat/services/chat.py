"""Chat streaming service.

A POST /chat request runs in two steps:

1. prepare_chat (sync, inside the request): get-or-create the thread,
   upsert the user message, register a stream id and load the history.
2. stream_chat (async generator): SSE events for one assistant turn.

SSE Events:
- model: {"type": "model", "model", "message_id", "stream_id"} (always first)
- reasoning: {"delta"} (only for models that emit reasoning)
- text: {"delta"}
- tool-call: {"id", "name", "args"}
- tool-result: {"id", "name", "result"} or {"id", "name", "error"}
- append-message: {"message"} (image generation)
- image-gen: {"attachment"} (image generation)
- finish: {"status": "done" | "stopped", "message_id", "usage"}
- error: {"code", "message"}

The assistant message is written as ``streaming`` before the first provider
byte and finalized exactly once as done, stopped or error. A stop published
for the stream id (see onechat.services.streams) ends generation early and
keeps the partial content.

Sync DB access uses run_in_threadpool (starlette) to avoid blocking the event loop.
"""

import asyncio
import contextlib
import json
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import httpx
import redis
import redis.asyncio as aioredis
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from onechat.db.models import Message, MessageRole, MessageStatus
from onechat.errors import ApiError, BadRequestError, ForbiddenError, NotFoundError, Surface
from onechat.logging import get_logger
from onechat.schemas.chat import ChatRequest, StopStreamOut
from onechat.schemas.thread import MessageIn, MessageOut
from onechat.services.api_keys import ApiKeys
from onechat.services.catalog import IMAGE_GENERATION_MODEL, ModelConfig, get_model_by_key
from onechat.services.llm import (
    LLMCallContext,
    LLMChunk,
    LLMError,
    LLMOperation,
    LLMRequest,
    LLMRouter,
    LLMUsage,
    PromptTooLargeError,
    ToolCall,
    Turn,
    get_system_prompt,
    render_prompt,
    validate_prompt_size,
)
from onechat.services.llm.prompt import message_text
from onechat.services.provider_options import (
    SearchMode,
    create_provider_options,
    create_tools_config,
)
from onechat.services.routing import ResolvedModel, resolve_model
from onechat.services.streams import (
    AbortSignal,
    append_stream_id,
    clear_stream_active,
    find_stream_chat_id,
    get_latest_stream_id,
    load_streams,
    mark_stream_active,
    start_abort_watch,
    stop_stream,
)
from onechat.services.thread_cache import ThreadCache
from onechat.services.threads import (
    get_or_create_thread,
    get_owned_thread_or_raise,
    link_attachments_to_message,
    list_thread_messages,
    messages_payload,
    upsert_message,
)
from onechat.services.tools import (
    ToolContext,
    ToolError,
    ToolSpec,
    generate_image_and_create_attachment,
)
from onechat.storage import StorageClientBase

logger = get_logger(__name__)

KEEPALIVE_INTERVAL_SECONDS = 15.0
MAX_OUTPUT_TOKENS = 16384

ACTIVE_STATUSES = (MessageStatus.pending.value, MessageStatus.streaming.value)


def format_sse_event(event: str, data: dict) -> str:
    """Format data as an SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def _error_event(error: ApiError, message: str | None = None) -> str:
    return format_sse_event(
        "error", {"code": error.code, "message": message or error.cause or error.message}
    )


def model_annotation(model_key: str) -> dict[str, str]:
    return {"type": "model", "model": model_key}


# =============================================================================
# Collaborators and prepared state
# =============================================================================


@dataclass
class ChatDeps:
    """Collaborators for one chat stream.

    The stream outlives the request-scoped session, so it opens its own
    session from db_factory.
    """

    db_factory: Callable[[], Session]
    llm_router: LLMRouter
    http_client: httpx.AsyncClient
    redis_client: redis.Redis | None = None
    pubsub_client: aioredis.Redis | None = None
    storage: StorageClientBase | None = None
    platform_openai_key: str | None = None
    firecrawl_api_key: str | None = None
    timeout_s: int = 120

    def cache(self) -> ThreadCache:
        return ThreadCache(self.redis_client)


@dataclass
class PreparedChat:
    user_id: str
    thread_id: str
    stream_id: str
    model_key: str
    config: ModelConfig
    effort: str
    search_mode: SearchMode
    user_message: MessageOut
    history: list[dict[str, Any]]


def new_stream_id() -> str:
    return uuid4().hex


def resolve_search_mode(config: ModelConfig, enable_search: bool) -> SearchMode:
    """Native grounding when the model has it, else the webSearch tool."""
    if not enable_search:
        return SearchMode.OFF
    if config.capabilities.native_search:
        return SearchMode.NATIVE
    if config.capabilities.tools:
        return SearchMode.TOOL
    return SearchMode.OFF


def prepare_chat(
    db: Session,
    cache: ThreadCache,
    redis_client: redis.Redis | None,
    user_id: str,
    request: ChatRequest,
) -> PreparedChat:
    """Persist the user's message and register a new stream.

    Raises:
        ApiError(model_not_found:models): Unknown model key.
        BadRequestError(bad_request:chat): The message is not a user message.
        ForbiddenError(forbidden:chat): The thread id belongs to another user.
        ForbiddenError(forbidden:chat): The message id is already taken by another
            thread or by a non-user message.
    """
    config = get_model_by_key(request.selected_model)
    if config is None:
        raise ApiError(
            "model_not_found:models",
            f'Model "{request.selected_model}" is not available or supported',
        )
    if request.message.role != MessageRole.user.value:
        raise BadRequestError(Surface.CHAT, "Only user messages can be sent")

    existing = db.get(Message, request.message.id)
    if existing is not None and (
        existing.thread_id != request.id or existing.role != MessageRole.user.value
    ):
        logger.warning(
            "chat_message_id_conflict", thread_id=request.id, message_id=request.message.id
        )
        raise ForbiddenError(Surface.CHAT, "Message id is not available")
    get_or_create_thread(db, cache, request.id, user_id)
    user_message = upsert_message(
        db,
        cache,
        thread_id=request.id,
        message=request.message,
        model=request.selected_model,
    )
    if request.message.attachment_ids:
        link_attachments_to_message(
            db, request.message.id, request.message.attachment_ids, user_id
        )

    stream_id = new_stream_id()
    append_stream_id(redis_client, request.id, stream_id)

    logger.info(
        "chat_prepared",
        thread_id=request.id,
        stream_id=stream_id,
        model=request.selected_model,
    )
    return PreparedChat(
        user_id=user_id,
        thread_id=request.id,
        stream_id=stream_id,
        model_key=request.selected_model,
        config=config,
        effort=request.effort,
        search_mode=resolve_search_mode(config, request.enable_search),
        user_message=user_message,
        history=messages_payload(list_thread_messages(db, request.id)),
    )


# =============================================================================
# Streaming
# =============================================================================


@dataclass
class _TurnState:
    """Everything produced so far for the assistant message."""

    text: str = ""
    reasoning: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_parts: list[dict[str, Any]] = field(default_factory=list)
    usage: LLMUsage | None = None
    stopped: bool = False

    def parts(self) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        if self.reasoning:
            parts.append({"type": "reasoning", "reasoning": self.reasoning})
        parts.extend(self.tool_parts)
        if self.text:
            parts.append({"type": "text", "text": self.text})
        return parts

    def add_usage(self, usage: LLMUsage | None) -> None:
        if usage is None:
            return
        if self.usage is None:
            self.usage = usage
            return

        def _sum(a: int | None, b: int | None) -> int | None:
            if a is None and b is None:
                return None
            return (a or 0) + (b or 0)

        self.usage = LLMUsage(
            prompt_tokens=_sum(self.usage.prompt_tokens, usage.prompt_tokens),
            completion_tokens=_sum(self.usage.completion_tokens, usage.completion_tokens),
            total_tokens=_sum(self.usage.total_tokens, usage.total_tokens),
        )


async def _next_chunk_or_abort(
    iterator: AsyncIterator[LLMChunk], signal: AbortSignal
) -> LLMChunk | None:
    """The next chunk, or None when the stream ends or an abort wins the race."""
    if signal.aborted:
        return None
    next_chunk = asyncio.ensure_future(iterator.__anext__())
    abort_wait = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {next_chunk, abort_wait}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        abort_wait.cancel()
    if next_chunk not in done:
        next_chunk.cancel()
        with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
            await next_chunk
        return None
    try:
        return next_chunk.result()
    except StopAsyncIteration:
        return None


async def _stream_round(
    deps: ChatDeps,
    chat: PreparedChat,
    resolved: ResolvedModel,
    request: LLMRequest,
    signal: AbortSignal,
    state: _TurnState,
    message_id: str,
) -> AsyncIterator[str]:
    """One provider call. Yields text/reasoning events and fills state."""
    stream = deps.llm_router.generate_stream(
        resolved.call_provider,
        request,
        resolved.api_key,
        timeout_s=deps.timeout_s,
        key_mode="byok",
        call_context=LLMCallContext(
            operation=LLMOperation.CHAT_SEND,
            thread_id=chat.thread_id,
            assistant_message_id=message_id,
            stream_id=chat.stream_id,
        ),
    )
    iterator = stream.__aiter__()
    last_keepalive = time.monotonic()
    state.tool_calls = ()

    try:
        while True:
            chunk = await _next_chunk_or_abort(iterator, signal)
            if chunk is None:
                state.stopped = signal.aborted
                break

            if chunk.delta_reasoning:
                state.reasoning += chunk.delta_reasoning
                yield format_sse_event("reasoning", {"delta": chunk.delta_reasoning})
            if chunk.delta_text:
                state.text += chunk.delta_text
                yield format_sse_event("text", {"delta": chunk.delta_text})

            if chunk.done:
                state.add_usage(chunk.usage)
                state.tool_calls = chunk.tool_calls
                break

            now = time.monotonic()
            if now - last_keepalive > KEEPALIVE_INTERVAL_SECONDS:
                yield ": keepalive\n\n"
                last_keepalive = now
                await run_in_threadpool(mark_stream_active, deps.redis_client, message_id)
    finally:
        await stream.aclose()


async def _run_tools(
    deps: ChatDeps,
    chat: PreparedChat,
    tools: dict[str, ToolSpec],
    state: _TurnState,
    message_id: str,
    db: Session,
    cache: ThreadCache,
) -> AsyncIterator[str]:
    """Execute the calls of the last round and record tool-invocation parts."""
    ctx = ToolContext(
        client=deps.http_client,
        db=db,
        cache=cache,
        storage=deps.storage,
        thread_id=chat.thread_id,
        message_id=message_id,
        firecrawl_api_key=deps.firecrawl_api_key,
    )
    for call in state.tool_calls:
        yield format_sse_event(
            "tool-call", {"id": call.id, "name": call.name, "args": call.arguments}
        )
        tool = tools.get(call.name)
        invocation = {
            "state": "result",
            "toolCallId": call.id,
            "toolName": call.name,
            "args": call.arguments,
        }
        if tool is None:
            invocation["result"] = {"error": f"Unknown tool: {call.name}"}
            yield format_sse_event(
                "tool-result", {"id": call.id, "name": call.name, "error": "Unknown tool"}
            )
        else:
            try:
                result = await tool.execute(call.arguments, ctx)
            except ToolError as e:
                logger.warning("chat_tool_failed", tool=call.name, error=str(e))
                invocation["result"] = {"error": str(e)}
                yield format_sse_event(
                    "tool-result", {"id": call.id, "name": call.name, "error": str(e)}
                )
            else:
                invocation["result"] = result
                yield format_sse_event(
                    "tool-result", {"id": call.id, "name": call.name, "result": result}
                )
        state.tool_parts.append({"type": "tool-invocation", "toolInvocation": invocation})


def _tool_turns(state: _TurnState) -> list[Turn]:
    """The assistant tool-call turn and one tool turn per result."""
    turns = [Turn(role="assistant", content=state.text, tool_calls=state.tool_calls)]
    for part in state.tool_parts:
        invocation = part["toolInvocation"]
        turns.append(
            Turn(
                role="tool",
                content=json.dumps(invocation.get("result")),
                tool_call_id=invocation["toolCallId"],
                name=invocation["toolName"],
            )
        )
    return turns


def _finalize_assistant_message(
    db: Session,
    cache: ThreadCache,
    thread_id: str,
    message_id: str,
    model_key: str,
    state: _TurnState,
    status: str,
    error_message: str | None,
) -> str:
    """Write the final assistant message. Returns the status written.

    A message already marked stopped (by a stop request) stays stopped; its
    content is still replaced with what was generated.
    """
    # Another session may have stopped the message since this one loaded it
    row = db.get(Message, message_id, populate_existing=True)
    if row is not None and row.status == MessageStatus.stopped.value:
        status = MessageStatus.stopped.value
    upsert_message(
        db,
        cache,
        thread_id=thread_id,
        message=MessageIn(
            id=message_id,
            role=MessageRole.assistant.value,
            content=state.text,
            parts=state.parts(),
            annotations=[model_annotation(model_key)],
        ),
        model=model_key,
        status=status,
        error_message=error_message,
    )
    return status


def _usage_payload(usage: LLMUsage | None) -> dict[str, int | None] | None:
    if usage is None:
        return None
    return {
        "prompt_tokens": usage.prompt_tokens,
        "completion_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }


async def stream_chat(
    deps: ChatDeps,
    chat: PreparedChat,
    keys: ApiKeys,
    *,
    force_openrouter: bool = False,
) -> AsyncIterator[str]:
    """Stream one assistant turn as SSE events.

    Args:
        deps: Collaborators.
        chat: Output of prepare_chat.
        keys: The user's credential set.
        force_openrouter: Route through the aggregator.

    Yields:
        SSE-formatted strings.
    """
    message_id = str(uuid4())
    yield format_sse_event(
        "model",
        {
            **model_annotation(chat.model_key),
            "message_id": message_id,
            "stream_id": chat.stream_id,
        },
    )

    if chat.model_key == IMAGE_GENERATION_MODEL:
        async for event in _stream_image_generation(deps, chat, keys, message_id):
            yield event
        return

    # --- Resolve model, prompt and options (no writes yet) ---
    try:
        resolved = resolve_model(
            chat.model_key,
            keys,
            force_openrouter=force_openrouter,
            search=chat.search_mode == SearchMode.NATIVE,
            effort=chat.effort,
        )
        turns = render_prompt(
            get_system_prompt(resolved.config.name, search_mode=chat.search_mode.value),
            chat.history,
        )
        validate_prompt_size(turns)
    except ApiError as e:
        yield _error_event(e)
        return
    except PromptTooLargeError:
        yield _error_event(
            ApiError("bad_request:chat", "The conversation is too long for this model.")
        )
        return

    tools: dict[str, ToolSpec] = create_tools_config(
        chat.model_key,
        chat.search_mode,
        chat.user_id,
        keys,
        platform_openai_key=deps.platform_openai_key,
    ).get("tools", {})

    llm_request = LLMRequest(
        model_name=resolved.call_model_id,
        messages=turns,
        max_tokens=min(resolved.config.max_tokens, MAX_OUTPUT_TOKENS),
        tools=tuple(tool.definition for tool in tools.values()),
        provider_options=create_provider_options(
            resolved.config,
            chat.effort,  # type: ignore[arg-type]
            routed_via_aggregator=resolved.routed_via_aggregator,
        ),
        reasoning_effort=resolved.reasoning_effort,
        search_grounding=resolved.search_grounding,
    )

    db = deps.db_factory()
    cache = deps.cache()
    signal = AbortSignal()
    watcher: asyncio.Task | None = None
    state = _TurnState()
    error: ApiError | None = None
    error_message: str | None = None
    disconnected = False
    final_status = MessageStatus.done.value
    start_time = time.monotonic()

    try:
        # --- Persist the streaming placeholder before the first byte ---
        await run_in_threadpool(
            upsert_message,
            db,
            cache,
            thread_id=chat.thread_id,
            message=MessageIn(
                id=message_id,
                role=MessageRole.assistant.value,
                content="",
                parts=[],
                annotations=[model_annotation(chat.model_key)],
            ),
            model=chat.model_key,
            status=MessageStatus.streaming.value,
        )
        await run_in_threadpool(mark_stream_active, deps.redis_client, message_id)
        watcher = start_abort_watch(deps.pubsub_client, chat.stream_id, signal)

        async for event in _stream_round(
            deps, chat, resolved, llm_request, signal, state, message_id
        ):
            yield event

        # --- One tool round, then a final answer without tools ---
        if state.tool_calls and not state.stopped:
            async for event in _run_tools(deps, chat, tools, state, message_id, db, cache):
                yield event
            follow_up = LLMRequest(
                model_name=llm_request.model_name,
                messages=[*llm_request.messages, *_tool_turns(state)],
                max_tokens=llm_request.max_tokens,
                provider_options=llm_request.provider_options,
                reasoning_effort=llm_request.reasoning_effort,
                search_grounding=llm_request.search_grounding,
            )
            state.text = ""
            async for event in _stream_round(
                deps, chat, resolved, follow_up, signal, state, message_id
            ):
                yield event

    except LLMError as e:
        error = e.to_api_error()
        error_message = e.user_message
        logger.warning(
            "chat_stream_llm_error",
            error_class=e.error_class.value,
            provider=e.provider,
        )
    except ApiError as e:
        error = e
        error_message = e.cause or e.message
    except (asyncio.CancelledError, GeneratorExit):
        disconnected = True
        logger.info("chat_stream_client_disconnect", message_id=message_id)
        raise
    except Exception as e:
        error = ApiError("internal_server_error:stream")
        error_message = error.message
        logger.error("chat_stream_unexpected_error", error=str(e), error_type=type(e).__name__)
    finally:
        if watcher is not None:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        if error is not None:
            final_status = MessageStatus.error.value
        elif state.stopped or disconnected:
            final_status = MessageStatus.stopped.value

        # A finalize cut short here leaves the message to the stale-message sweeper.
        try:
            final_status = await run_in_threadpool(
                _finalize_assistant_message,
                db,
                cache,
                chat.thread_id,
                message_id,
                chat.model_key,
                state,
                final_status,
                error_message,
            )
        except Exception as e:
            logger.error("chat_stream_finalize_failed", message_id=message_id, error=str(e))
        finally:
            db.close()
        await run_in_threadpool(clear_stream_active, deps.redis_client, message_id)

        logger.info(
            "chat_stream_end",
            thread_id=chat.thread_id,
            message_id=message_id,
            stream_id=chat.stream_id,
            provider=resolved.call_provider,
            model=chat.model_key,
            total_ms=int((time.monotonic() - start_time) * 1000),
            chars_generated=len(state.text),
            status=final_status,
            error_code=error.code if error else None,
        )

    if error is not None:
        yield _error_event(error, error_message)
    else:
        yield format_sse_event(
            "finish",
            {
                "status": final_status,
                "message_id": message_id,
                "usage": _usage_payload(state.usage),
            },
        )


# =============================================================================
# Image generation
# =============================================================================


def _image_message(
    message_id: str, model_key: str, status: str, attachment: dict[str, Any] | None = None
) -> dict[str, Any]:
    return {
        "id": message_id,
        "role": MessageRole.assistant.value,
        "content": "",
        "parts": [],
        "attachment_ids": [attachment["id"]] if attachment else [],
        "attachments": [attachment] if attachment else [],
        "model": model_key,
        "status": status,
    }


async def _stream_image_generation(
    deps: ChatDeps, chat: PreparedChat, keys: ApiKeys, message_id: str
) -> AsyncIterator[str]:
    """Image model path: no text stream, one generated image attachment."""
    api_key = keys.openai or deps.platform_openai_key
    if not api_key:
        yield _error_event(
            ApiError("api_key_missing:models", "OpenAI API key is required for image generation")
        )
        return
    if deps.storage is None:
        yield _error_event(ApiError("internal_server_error:files", "Storage is not configured"))
        return

    yield format_sse_event(
        "append-message",
        {"message": _image_message(message_id, chat.model_key, MessageStatus.streaming.value)},
    )

    prompt = message_text(chat.user_message.model_dump(mode="json"))
    db = deps.db_factory()
    cache = deps.cache()
    try:
        attachment = await generate_image_and_create_attachment(
            deps.http_client,
            db,
            cache,
            deps.storage,
            user_id=chat.user_id,
            thread_id=chat.thread_id,
            message_id=message_id,
            prompt=prompt,
            api_key=api_key,
            model=chat.model_key,
        )
    except ToolError as e:
        logger.warning("chat_image_generation_failed", thread_id=chat.thread_id, error=str(e))
        await run_in_threadpool(
            upsert_message,
            db,
            cache,
            thread_id=chat.thread_id,
            message=MessageIn(
                id=message_id,
                role=MessageRole.assistant.value,
                content="",
                parts=[],
                annotations=[model_annotation(chat.model_key)],
            ),
            model=chat.model_key,
            status=MessageStatus.error.value,
            error_message=str(e),
        )
        yield _error_event(ApiError("internal_server_error:stream"), str(e))
        return
    finally:
        db.close()

    payload = attachment.model_dump(mode="json")
    yield format_sse_event(
        "append-message",
        {
            "message": _image_message(
                message_id, chat.model_key, MessageStatus.done.value, payload
            )
        },
    )
    yield format_sse_event("image-gen", {"attachment": payload})
    yield format_sse_event(
        "finish", {"status": MessageStatus.done.value, "message_id": message_id, "usage": None}
    )


# =============================================================================
# Resume and stop
# =============================================================================


def resume_stream(
    db: Session, cache: ThreadCache, redis_client: redis.Redis | None, thread_id: str
) -> list[str]:
    """Events that catch a reconnecting client up with a thread.

    Empty when the chat never streamed, when the newest message is not an
    assistant message, or when that message is still being generated.
    Otherwise one append-message event carrying the message, followed by a
    model annotation marked completed.
    """
    if not load_streams(redis_client, thread_id):
        return []

    messages = list_thread_messages(db, thread_id)
    if not messages:
        return []
    latest = messages[-1]
    if latest.role != MessageRole.assistant.value or latest.status in ACTIVE_STATUSES:
        return []

    return [
        format_sse_event("append-message", {"message": latest.model_dump(mode="json")}),
        format_sse_event(
            "annotation", {"model": latest.model or "unknown", "status": "completed"}
        ),
    ]


def stop_chat_stream(
    db: Session,
    cache: ThreadCache,
    redis_client: redis.Redis | None,
    user_id: str,
    thread_id: str,
) -> StopStreamOut:
    """Stop a thread's latest stream and mark its message stopped.

    The local state is settled even when the abort could not be published:
    a generating assistant message becomes stopped, and a trailing user
    message gets an empty stopped assistant reply.

    Raises:
        NotFoundError / ForbiddenError: Owner check.
    """
    get_owned_thread_or_raise(db, user_id, thread_id, Surface.CHAT)

    stream_id = get_latest_stream_id(redis_client, thread_id)
    published = stop_stream(redis_client, stream_id) if stream_id else False

    messages = list_thread_messages(db, thread_id)
    latest = messages[-1] if messages else None
    if latest is not None and latest.role == MessageRole.assistant.value:
        if latest.status in ACTIVE_STATUSES:
            upsert_message(
                db,
                cache,
                thread_id=thread_id,
                message=MessageIn(
                    id=latest.id,
                    role=MessageRole.assistant.value,
                    content=latest.content,
                    parts=latest.parts,
                ),
                model=latest.model,
                status=MessageStatus.stopped.value,
                attachment_ids=latest.attachment_ids,
            )
    elif latest is not None and latest.role == MessageRole.user.value:
        upsert_message(
            db,
            cache,
            thread_id=thread_id,
            message=MessageIn(
                id=str(uuid4()), role=MessageRole.assistant.value, content="", parts=[]
            ),
            model=latest.model,
            status=MessageStatus.stopped.value,
        )

    logger.info(
        "chat_stream_stopped", thread_id=thread_id, stream_id=stream_id, published=published
    )
    return StopStreamOut(stream_id=stream_id, published=published)


def stop_owned_stream(
    db: Session, redis_client: redis.Redis | None, user_id: str, stream_id: str
) -> StopStreamOut:
    """Publish an abort for one stream of the user's own chats.

    Without redis nothing can be looked up or published, and ``published``
    is false.

    Raises:
        NotFoundError(not_found:chat): The stream is not registered on any chat.
        ForbiddenError(forbidden:chat): The stream belongs to another user's chat.
    """
    if redis_client is None:
        return StopStreamOut(stream_id=stream_id, published=False)

    thread_id = find_stream_chat_id(redis_client, stream_id)
    if thread_id is None:
        raise NotFoundError(Surface.CHAT, "Stream not found")
    get_owned_thread_or_raise(db, user_id, thread_id, Surface.CHAT)

    published = stop_stream(redis_client, stream_id)
    logger.info(
        "chat_stream_stop_requested", thread_id=thread_id, stream_id=stream_id, published=published
    )
    return StopStreamOut(stream_id=stream_id, published=published)
