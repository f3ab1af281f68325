"""Model-callable tools: web search and image generation.

A ToolSpec pairs the JSON-schema definition sent to the model with an async
executor. Executors receive the parsed arguments and a ToolContext holding
the request's collaborators, and return a JSON-serializable result.

External calls:
- Web search: Firecrawl search API, top 3 results with markdown bodies
- Image generation: OpenAI images API, gpt-image-1 at 1024x1024, stored to
  blob storage and linked to the assistant message as an attachment
"""

import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import httpx
from sqlalchemy.orm import Session

from onechat.db.models import AttachmentType, MessageRole, MessageStatus
from onechat.logging import get_logger
from onechat.schemas.thread import AttachmentOut, MessageIn
from onechat.services.llm.types import ToolDefinition
from onechat.services.redact import safe_kv
from onechat.services.thread_cache import ThreadCache
from onechat.services.threads import create_attachment_and_link_to_message, upsert_message
from onechat.storage import StorageClientBase, StorageError, build_generated_image_path

logger = get_logger(__name__)

FIRECRAWL_SEARCH_URL = "https://api.firecrawl.dev/v1/search"
WEB_SEARCH_LIMIT = 3

OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"
IMAGE_MODEL = "gpt-image-1"
IMAGE_SIZE = "1024x1024"

TOOL_TIMEOUT_S = 60.0
IMAGE_TIMEOUT_S = 180.0


class ToolError(Exception):
    """A tool failed. The message is safe to show to the model and the user."""


@dataclass
class ToolContext:
    """Collaborators available to a tool executor for one request."""

    client: httpx.AsyncClient
    db: Session | None = None
    cache: ThreadCache | None = None
    storage: StorageClientBase | None = None
    thread_id: str | None = None
    message_id: str | None = None
    firecrawl_api_key: str | None = None


ToolExecutor = Callable[[dict[str, Any], ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]
    execute: ToolExecutor

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.parameters
        )


# =============================================================================
# Web search
# =============================================================================


async def search_web(client: httpx.AsyncClient, api_key: str | None, query: str) -> list[dict]:
    """Top results for a query, each with url, title, description and markdown.

    Raises:
        ToolError: "Failed to crawl: ..." when the search API call fails.
    """
    if not api_key:
        raise ToolError("Failed to crawl: web search is not configured")

    try:
        response = await client.post(
            FIRECRAWL_SEARCH_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "query": query,
                "limit": WEB_SEARCH_LIMIT,
                "scrapeOptions": {"formats": ["markdown"]},
            },
            timeout=TOOL_TIMEOUT_S,
        )
    except httpx.HTTPError as e:
        raise ToolError(f"Failed to crawl: {type(e).__name__}") from e

    try:
        data = response.json()
    except ValueError:
        data = {}

    if not response.is_success or not data.get("success", False):
        error = data.get("error") or f"HTTP {response.status_code}"
        raise ToolError(f"Failed to crawl: {error}")

    results = [
        {
            "url": item.get("url"),
            "title": item.get("title"),
            "description": item.get("description"),
            "markdown": item.get("markdown"),
        }
        for item in data.get("data") or []
    ]
    logger.info("tool.web_search.completed", result_count=len(results), query_chars=len(query))
    return results


def build_web_search_tool() -> ToolSpec:
    async def execute(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        results = await search_web(ctx.client, ctx.firecrawl_api_key, str(args.get("query", "")))
        return {"results": results}

    return ToolSpec(
        name="webSearch",
        description="Search the web for up-to-date information",
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The query to search for"},
            },
            "required": ["query"],
        },
        execute=execute,
    )


# =============================================================================
# Image generation
# =============================================================================


async def generate_image(client: httpx.AsyncClient, api_key: str, prompt: str) -> bytes:
    """PNG bytes for a prompt.

    Raises:
        ToolError: When the images API fails or returns no image.
    """
    try:
        response = await client.post(
            OPENAI_IMAGES_URL,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            json={"model": IMAGE_MODEL, "prompt": prompt, "size": IMAGE_SIZE, "n": 1},
            timeout=IMAGE_TIMEOUT_S,
        )
    except httpx.HTTPError as e:
        raise ToolError(f"Failed to generate image: {type(e).__name__}") from e

    if not response.is_success:
        logger.warning(
            "tool.image_generation.failed",
            **safe_kv(status_code=response.status_code, prompt_chars=len(prompt)),
        )
        raise ToolError(f"Failed to generate image: {response.status_code}")

    items = response.json().get("data") or []
    encoded = items[0].get("b64_json") if items else None
    if not encoded:
        raise ToolError("Failed to generate image: empty response")
    return base64.b64decode(encoded)


async def generate_image_and_create_attachment(
    client: httpx.AsyncClient,
    db: Session,
    cache: ThreadCache,
    storage: StorageClientBase,
    *,
    user_id: str,
    thread_id: str,
    message_id: str,
    prompt: str,
    api_key: str,
    model: str | None = None,
) -> AttachmentOut:
    """Generate an image, store it and attach it to the assistant message.

    The assistant message is written first (empty content, status done) so
    the attachment link has a row to point at.

    Raises:
        ToolError: When generation or the storage upload fails.
    """
    image = await generate_image(client, api_key, prompt)

    path = build_generated_image_path(user_id, message_id)
    try:
        storage.put_object(path, image, content_type="image/png")
    except StorageError as e:
        raise ToolError(f"Failed to store generated image: {e.message}") from e

    attachment_id = str(uuid4())
    upsert_message(
        db,
        cache,
        thread_id=thread_id,
        message=MessageIn(id=message_id, role=MessageRole.assistant.value, content="", parts=[]),
        model=model,
        status=MessageStatus.done.value,
        attachment_ids=[attachment_id],
    )

    attachment = create_attachment_and_link_to_message(
        db,
        attachment_id=attachment_id,
        user_id=user_id,
        message_id=message_id,
        file_key=path,
        file_name=f"generated-image-{message_id}.png",
        file_size=len(image),
        mime_type="image/png",
        attachment_type=AttachmentType.generated_image.value,
        attachment_url=storage.public_url(path),
    )
    cache.invalidate_thread(thread_id)

    logger.info(
        "tool.image_generation.completed",
        thread_id=thread_id,
        message_id=message_id,
        image_bytes=len(image),
    )
    return attachment


def build_image_generation_tool(user_id: str, openai_key: str | None) -> ToolSpec:
    """generateImage tool bound to a user and an OpenAI key."""

    async def execute(args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        if not openai_key:
            raise ToolError("OpenAI API key is required for image generation")
        if ctx.db is None or ctx.cache is None or ctx.storage is None:
            raise ToolError("Image generation is not available in this context")
        if not ctx.thread_id or not ctx.message_id:
            raise ToolError("Image generation needs a thread and message")

        attachment = await generate_image_and_create_attachment(
            ctx.client,
            ctx.db,
            ctx.cache,
            ctx.storage,
            user_id=user_id,
            thread_id=ctx.thread_id,
            message_id=ctx.message_id,
            prompt=str(args.get("prompt", "")),
            api_key=openai_key,
        )
        return {
            "attachment_id": attachment.id,
            "url": attachment.attachment_url,
            "content_type": attachment.mime_type,
        }

    return ToolSpec(
        name="generateImage",
        description="Generate an image from a text description",
        parameters={
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "A detailed description of the image to generate",
                },
            },
            "required": ["prompt"],
        },
        execute=execute,
    )
