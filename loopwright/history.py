"""Compact replay of past turns for re-injection into new prompts."""

import json
from typing import Any, Iterable

from loopwright.llm import Message

# Narrative fields of a structured reply that are not needed to recall what was committed to.
VERBOSE_THOUGHT_FIELDS = ("reasoning", "speak", "text", "plan")


def _compress_reply(content: str) -> str:
    """Strip verbose thought fields from a structured reply; pass anything else through."""
    try:
        reply: Any = json.loads(content)
    except (TypeError, ValueError, RecursionError):
        return content
    if not isinstance(reply, dict):
        return content
    thoughts = reply.get("thoughts")
    if isinstance(thoughts, dict):
        reply = {
            **reply,
            "thoughts": {k: v for k, v in thoughts.items() if k not in VERBOSE_THOUGHT_FIELDS},
        }
    return json.dumps(reply, indent=2)


def compress_history(history: Iterable[Message]) -> list[Message]:
    """Return a new history without user turns and with compacted assistant replies.

    System messages and unstructured assistant messages pass through unchanged.
    The input is never mutated and compressing twice gives the same result.
    """
    compressed: list[Message] = []
    for message in history:
        if message.role == "user":
            continue
        if message.role == "assistant":
            content = _compress_reply(message.content)
            if content != message.content:
                message = Message(role="assistant", content=content)
        compressed.append(message)
    return compressed
