"""Provider-agnostic prompt rendering for LLM requests.

prompt.py produces a list of Turn objects; each adapter handles conversion
to its provider format.

System prompt selection:
- image generation model → IMAGE_GENERATION_PROMPT (no date, no model name)
- tool-mode web search → base prompt plus the webSearch instruction
- otherwise → base prompt

Prompt structure:
- System turn always first
- Stored messages in order; system and data messages are skipped
- Total prompt size must not exceed max_chars
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from onechat.services.llm.types import Turn

BASE_SYSTEM_PROMPT = """You are OneChat, an AI assistant powered by the {model} model. Your role is to assist and engage in conversation while being helpful, respectful, and engaging.
- If you are specifically asked about the model you are using, you may mention that you use the {model} model. If you are not asked specifically about the model you are using, you do not need to mention it.
- The current date and time including timezone is {date_time}.
- Always use LaTeX for mathematical expressions:
    - Inline math must be wrapped in escaped parentheses: \\( content \\)
    - Do not use single dollar signs for inline math
    - Display math must be wrapped in double dollar signs: $$ content $$
- Ensure code is properly formatted using Prettier with a print width of 80 characters.
- Present code in Markdown code blocks with the correct language extension indicated."""

IMAGE_GENERATION_PROMPT = (
    "You are OneChat, an AI assistant powered by image generation capabilities. Your role is "
    "to assist and engage in conversation while being helpful, respectful, and engaging. You "
    "can generate images based on user prompts. Do not include image URLs in your response as "
    "the generated image will be automatically displayed in the UI."
)

WEB_SEARCH_SUFFIX = (
    "\n- You can use the webSearch tool to search the web for up-to-date information. "
    "Answer based on the sources provided when using web search."
)

MAX_PROMPT_CHARS = 400_000


class PromptTooLargeError(Exception):
    """Raised when rendered prompt exceeds size limit."""

    def __init__(self, actual_size: int, max_size: int):
        self.actual_size = actual_size
        self.max_size = max_size
        super().__init__(f"Prompt size {actual_size} exceeds max {max_size}")


def format_date_time(now: datetime | None = None) -> str:
    """US-English long date with 12-hour time in UTC.

    Example: "Saturday, October 17, 2026 at 02:05 PM UTC"
    """
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return f"{now:%A, %B} {now.day}, {now.year} at {now:%I:%M %p} UTC"


def get_system_prompt(
    model: str,
    *,
    search_mode: str = "off",
    is_image_generation: bool = False,
    now: datetime | None = None,
) -> str:
    if is_image_generation:
        return IMAGE_GENERATION_PROMPT

    prompt = BASE_SYSTEM_PROMPT.format(model=model, date_time=format_date_time(now))
    if search_mode == "tool":
        prompt += WEB_SEARCH_SUFFIX
    return prompt


def message_text(message: dict[str, Any]) -> str:
    """Text of a stored message: its text parts, else its content."""
    parts = message.get("parts") or []
    texts = [
        part.get("text", "")
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    if texts:
        return "".join(texts)
    return message.get("content") or ""


def _attachment_lines(message: dict[str, Any]) -> str:
    lines = [
        f"[Attached {a.get('mime_type', 'file')}: {a.get('file_name')} {a.get('attachment_url')}]"
        for a in message.get("attachments") or []
    ]
    return "\n".join(lines)


def render_prompt(system_prompt: str, history: Sequence[dict[str, Any]]) -> list[Turn]:
    """Build the turn list for a chat request.

    Args:
        system_prompt: The system instructions.
        history: Stored messages as dicts, oldest first. The last user
            message is the current query.

    Returns:
        List of Turn objects, system turn first.
    """
    turns: list[Turn] = [Turn(role="system", content=system_prompt)]

    for message in history:
        role = message.get("role")
        if role not in ("user", "assistant"):
            continue
        text = message_text(message)
        attachments = _attachment_lines(message)
        if attachments:
            text = f"{text}\n\n{attachments}" if text else attachments
        if not text and role == "assistant":
            continue
        turns.append(Turn(role=role, content=text))

    return turns


def validate_prompt_size(turns: list[Turn], max_chars: int = MAX_PROMPT_CHARS) -> None:
    """Validate that total prompt size is within limits.

    Raises:
        PromptTooLargeError: If total chars exceed limit.
    """
    total = sum(len(t.content) for t in turns)
    if total > max_chars:
        raise PromptTooLargeError(total, max_chars)
