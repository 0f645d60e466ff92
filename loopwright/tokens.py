"""Deterministic token-cost estimation for prompt budgeting."""

import math
from typing import Iterable

from loopwright.llm import Message

# Role/framing tokens added for every message, per model.
MODEL_MESSAGE_OVERHEAD: dict[str, int] = {
    "gpt-3.5-turbo": 4,
    "gpt-4": 3,
    "gpt-4-32k": 3,
}
DEFAULT_MESSAGE_OVERHEAD = 4

# Reply priming tokens added once per request.
BASE_OVERHEAD = 3

CHARS_PER_TOKEN = 4


class TokenEstimator:
    """Estimate the token cost of a message list.

    The estimate is a pure function of message content: every message costs a
    fixed overhead plus one token per started block of ``CHARS_PER_TOKEN``
    characters, and each request costs ``BASE_OVERHEAD``. Appending a message
    never lowers the estimate.
    """

    def __init__(
        self,
        model: str = "",
        message_overhead: int | None = None,
        base_overhead: int = BASE_OVERHEAD,
    ):
        self.model = model
        if message_overhead is None:
            message_overhead = MODEL_MESSAGE_OVERHEAD.get(model, DEFAULT_MESSAGE_OVERHEAD)
        self.message_overhead = max(0, int(message_overhead))
        self.base_overhead = max(0, int(base_overhead))

    @staticmethod
    def count_text(text: str | None) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def estimate(self, messages: Iterable[Message]) -> int:
        total = self.base_overhead
        for message in messages:
            total += self.message_overhead + self.count_text(message.content)
        return total
