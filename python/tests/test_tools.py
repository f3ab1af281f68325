"""Tests for the model-callable tools."""

import base64
import json

import httpx
import pytest
import respx

from onechat.db.models import Attachment, Message
from onechat.services.tools import (
    FIRECRAWL_SEARCH_URL,
    OPENAI_IMAGES_URL,
    ToolContext,
    ToolError,
    build_image_generation_tool,
    build_web_search_tool,
    search_web,
)
from onechat.storage import FakeStorageClient
from tests.factories import create_test_thread

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def firecrawl_response(**overrides) -> dict:
    body = {
        "success": True,
        "data": [
            {
                "url": "https://example.com/lisbon",
                "title": "Lisbon weather",
                "description": "Sunny",
                "markdown": "# Sunny",
                "metadata": {"ignored": True},
            }
        ],
    }
    body.update(overrides)
    return body


# =============================================================================
# Web search
# =============================================================================


class TestWebSearch:
    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_results(self):
        route = respx.post(FIRECRAWL_SEARCH_URL).respond(200, json=firecrawl_response())

        async with httpx.AsyncClient() as client:
            results = await search_web(client, "fc-key", "lisbon weather")

        assert results == [
            {
                "url": "https://example.com/lisbon",
                "title": "Lisbon weather",
                "description": "Sunny",
                "markdown": "# Sunny",
            }
        ]
        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer fc-key"
        body = json.loads(request.content)
        assert body["query"] == "lisbon weather"
        assert body["limit"] == 3
        assert body["scrapeOptions"] == {"formats": ["markdown"]}

    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        async with httpx.AsyncClient() as client:
            with pytest.raises(ToolError, match="^Failed to crawl"):
                await search_web(client, None, "q")

    @pytest.mark.asyncio
    @respx.mock
    async def test_unsuccessful_body(self):
        respx.post(FIRECRAWL_SEARCH_URL).respond(
            200, json={"success": False, "error": "quota exceeded"}
        )

        async with httpx.AsyncClient() as client:
            with pytest.raises(ToolError, match="Failed to crawl: quota exceeded"):
                await search_web(client, "fc-key", "q")

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_status(self):
        respx.post(FIRECRAWL_SEARCH_URL).respond(502, text="bad gateway")

        async with httpx.AsyncClient() as client:
            with pytest.raises(ToolError, match="Failed to crawl: HTTP 502"):
                await search_web(client, "fc-key", "q")

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error(self):
        respx.post(FIRECRAWL_SEARCH_URL).mock(side_effect=httpx.ConnectError("down"))

        async with httpx.AsyncClient() as client:
            with pytest.raises(ToolError, match="Failed to crawl: ConnectError"):
                await search_web(client, "fc-key", "q")

    @pytest.mark.asyncio
    @respx.mock
    async def test_tool_wraps_results(self):
        respx.post(FIRECRAWL_SEARCH_URL).respond(200, json=firecrawl_response(data=[]))
        tool = build_web_search_tool()

        async with httpx.AsyncClient() as client:
            out = await tool.execute(
                {"query": "x"}, ToolContext(client=client, firecrawl_api_key="fc-key")
            )

        assert out == {"results": []}
        assert tool.definition.name == "webSearch"
        assert tool.definition.parameters["required"] == ["query"]


# =============================================================================
# Image generation
# =============================================================================


class TestImageGeneration:
    @pytest.fixture
    def thread(self, db_session, test_user_id):
        return create_test_thread(db_session, test_user_id, thread_id="img-thread")

    @pytest.mark.asyncio
    @respx.mock
    async def test_stores_and_links_image(
        self, db_session, thread_cache, storage, thread, test_user_id
    ):
        route = respx.post(OPENAI_IMAGES_URL).respond(
            200, json={"data": [{"b64_json": base64.b64encode(PNG_BYTES).decode()}]}
        )
        tool = build_image_generation_tool(test_user_id, "sk-openai")
        thread_cache.prime_thread(thread.id, {"stale": True})

        async with httpx.AsyncClient() as client:
            ctx = ToolContext(
                client=client,
                db=db_session,
                cache=thread_cache,
                storage=storage,
                thread_id=thread.id,
                message_id="asst-1",
            )
            out = await tool.execute({"prompt": "a red fox"}, ctx)

        body = json.loads(route.calls.last.request.content)
        assert body == {"model": "gpt-image-1", "prompt": "a red fox", "size": "1024x1024", "n": 1}

        attachment = db_session.get(Attachment, out["attachment_id"])
        assert attachment.attachment_type == "generated-image"
        assert attachment.file_size == len(PNG_BYTES)
        assert attachment.file_key.startswith(f"{test_user_id}/generated-images/asst-1-")
        assert storage.get_object(attachment.file_key) == PNG_BYTES
        assert out["url"] == storage.public_url(attachment.file_key)
        assert out["content_type"] == "image/png"

        message = db_session.get(Message, "asst-1")
        assert message.role == "assistant"
        assert message.attachment_ids == [attachment.id]
        assert thread_cache.get_thread(thread.id) is None

    @pytest.mark.asyncio
    async def test_requires_openai_key(self, db_session, thread_cache, storage, thread):
        tool = build_image_generation_tool("u1", None)

        async with httpx.AsyncClient() as client:
            ctx = ToolContext(
                client=client,
                db=db_session,
                cache=thread_cache,
                storage=storage,
                thread_id=thread.id,
                message_id="m1",
            )
            with pytest.raises(ToolError, match="OpenAI API key is required"):
                await tool.execute({"prompt": "x"}, ctx)

    @pytest.mark.asyncio
    async def test_requires_persistence_context(self):
        tool = build_image_generation_tool("u1", "sk-openai")

        async with httpx.AsyncClient() as client:
            with pytest.raises(ToolError, match="not available"):
                await tool.execute({"prompt": "x"}, ToolContext(client=client))

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_failure(self, db_session, thread_cache, storage, thread, test_user_id):
        respx.post(OPENAI_IMAGES_URL).respond(400, json={"error": {"message": "bad prompt"}})
        tool = build_image_generation_tool(test_user_id, "sk-openai")

        async with httpx.AsyncClient() as client:
            ctx = ToolContext(
                client=client,
                db=db_session,
                cache=thread_cache,
                storage=storage,
                thread_id=thread.id,
                message_id="m1",
            )
            with pytest.raises(ToolError, match="Failed to generate image: 400"):
                await tool.execute({"prompt": "x"}, ctx)

        assert db_session.get(Message, "m1") is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_response(self, db_session, thread_cache, thread, test_user_id):
        respx.post(OPENAI_IMAGES_URL).respond(200, json={"data": []})
        tool = build_image_generation_tool(test_user_id, "sk-openai")

        async with httpx.AsyncClient() as client:
            ctx = ToolContext(
                client=client,
                db=db_session,
                cache=thread_cache,
                storage=FakeStorageClient(),
                thread_id=thread.id,
                message_id="m1",
            )
            with pytest.raises(ToolError, match="empty response"):
                await tool.execute({"prompt": "x"}, ctx)
