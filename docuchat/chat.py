"""Message construction and the pure message toggles used by the service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from docuchat.errors import MessageNotFoundError
from docuchat.llm_provider import LlmTextResult
from docuchat.schema_models import Document, Message, now_ms

REPLY_EXCERPT_LENGTH = 100
TRANSCRIPT_SEPARATOR = "\n---\n"
TRANSCRIPT_MIME = "text/plain"


def find_message(messages: Iterable[Message], message_id: str) -> Message:
    for message in messages:
        if message.id == message_id:
            return message
    raise MessageNotFoundError(message_id)


def build_user_message(text: str, reply_to: Message | None = None, timestamp: int | None = None) -> Message:
    return Message(
        role="user",
        text=text,
        timestamp=timestamp if timestamp is not None else now_ms(),
        reply_to_id=reply_to.id if reply_to else None,
        reply_to_text=reply_to.text[:REPLY_EXCERPT_LENGTH] if reply_to else None,
    )


def build_reply_message(result: LlmTextResult, timestamp: int | None = None) -> Message:
    """Turn a model result into the assistant message that answers the user.

    Failures become an assistant message flagged ``is_error`` so the
    conversation shows what went wrong; nothing is retried.
    """

    stamp = timestamp if timestamp is not None else now_ms()
    if result.ok:
        return Message(role="assistant", text=(result.raw_response or "").strip(), timestamp=stamp)
    return Message(
        role="assistant",
        text=f"Error: {result.error_message()}",
        timestamp=stamp,
        is_error=True,
    )


def toggle_pin(message: Message) -> Message:
    return message.model_copy(update={"pinned": not message.pinned})


def toggle_favorite(message: Message) -> Message:
    return message.model_copy(update={"favorited": not message.favorited})


def toggle_reaction(message: Message, emoji: str) -> Message:
    reactions = dict(message.reactions)
    user_reactions = list(message.user_reactions)

    if emoji in user_reactions:
        user_reactions = [value for value in user_reactions if value != emoji]
        remaining = reactions.get(emoji, 0) - 1
        if remaining > 0:
            reactions[emoji] = remaining
        else:
            reactions.pop(emoji, None)
    else:
        reactions[emoji] = reactions.get(emoji, 0) + 1
        user_reactions.append(emoji)

    return message.model_copy(update={"reactions": reactions, "user_reactions": user_reactions})


def pinned_messages(messages: Iterable[Message]) -> list[Message]:
    return [message for message in messages if message.pinned]


def _format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def render_transcript(messages: Iterable[Message]) -> str:
    blocks = [
        f"[{'User' if message.role == 'user' else 'AI'}] {_format_timestamp(message.timestamp)}:\n{message.text}\n"
        for message in messages
    ]
    return TRANSCRIPT_SEPARATOR.join(blocks)


def transcript_document(messages: Iterable[Message], saved_at_ms: int | None = None) -> Document:
    messages = list(messages)
    if not messages:
        raise ValueError("There are no messages to save.")
    stamp = saved_at_ms if saved_at_ms is not None else now_ms()
    content = render_transcript(messages)
    date_label = datetime.fromtimestamp(stamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    return Document(
        name=f"Chat history {date_label}.txt",
        content=content,
        source_type=TRANSCRIPT_MIME,
        size_bytes=len(content.encode("utf-8")),
    )
