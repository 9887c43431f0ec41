from __future__ import annotations

from typing import Any, Iterable

from .errors import err_invalid_request
from .models import ChatChoice, ChatCompletionResponse, ChoiceMessage, Usage

DEFAULT_PROMPT = "Hello"


def _message_text(content: Any) -> str:
    """Flatten OpenAI message content (plain string or list of parts)."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text") or ""))
        return "\n".join(p for p in parts if p)
    return str(content)


def extract_prompt(messages: Iterable[Any]) -> str:
    """Return the text of the last ``user`` message.

    Falls back to ``DEFAULT_PROMPT`` when the conversation carries no user
    turn at all; a user turn with no text is rejected.
    """
    last_user = None
    for msg in messages:
        role = msg.get("role") if isinstance(msg, dict) else getattr(msg, "role", None)
        if role == "user":
            last_user = msg
    if last_user is None:
        return DEFAULT_PROMPT
    content = (
        last_user.get("content")
        if isinstance(last_user, dict)
        else getattr(last_user, "content", None)
    )
    text = _message_text(content)
    if not text.strip():
        raise err_invalid_request("Last user message has no text content")
    return text


def build_completion(
    completion_id: str, created: int, model: str, prompt: str, text: str
) -> dict[str, Any]:
    """Build a non-streaming ``chat.completion`` body.

    Usage counts are characters, not tokens.
    """
    prompt_chars = len(prompt)
    completion_chars = len(text)
    response = ChatCompletionResponse(
        id=completion_id,
        created=created,
        model=model,
        choices=[
            ChatChoice(
                index=0,
                message=ChoiceMessage(role="assistant", content=text),
                finish_reason="stop",
            )
        ],
        usage=Usage(
            prompt_tokens=prompt_chars,
            completion_tokens=completion_chars,
            total_tokens=prompt_chars + completion_chars,
        ),
    )
    return response.model_dump()
