"""Defensive parsing of free-text model replies into structured commands."""

import json
from typing import Any

from loopwright.instructions import InstructionLoader
from loopwright.llm import LLMProvider, Message
from loopwright.logging import get_logger
from loopwright.tokens import TokenEstimator

log = get_logger(__name__)

# Models sometimes append an echo of a command result after their reply.
RESULT_MARKER = "Result: {"

RESPONSE_FORMAT: dict[str, Any] = {
    "thoughts": {
        "text": "What do you want to say to the user?",
        "reasoning": "Why do you want to say this?",
        "progress": "A detailed list of everything you have done so far",
        "plan": "A short bulleted list that conveys a long-term plan",
        "speak": "thoughts summary to say to user",
    },
    "command": {
        "name": "next command in your plan",
        "args": {"arg_name": "value"},
    },
}


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def strip_result_echo(text: str) -> str:
    """Cut a trailing ``Result: {`` echo that follows the reply's first object."""
    first_brace = text.find("{")
    if first_brace < 0:
        return text
    cut = text.find(RESULT_MARKER, first_brace + 1)
    if cut < 0:
        return text
    return text[:cut]


class JsonExtractor:
    """Ask the chat model to rewrite an unparseable reply as reply-schema JSON."""

    def __init__(
        self,
        provider: LLMProvider,
        instructions: InstructionLoader | None = None,
        estimator: TokenEstimator | None = None,
        reply_tokens: int = 1000,
    ):
        self.provider = provider
        self.instructions = instructions or InstructionLoader()
        self.estimator = estimator or TokenEstimator(provider.model)
        self.reply_tokens = reply_tokens

    async def extract(self, raw: str) -> str:
        messages = [
            Message(
                role="system",
                content=self.instructions.render(
                    "json_extraction.md",
                    response_format=json.dumps(RESPONSE_FORMAT, indent=4),
                ),
            ),
            Message(role="user", content=raw),
        ]
        token_count = self.estimator.estimate(messages)
        max_tokens = min(self.reply_tokens, max(self.provider.token_limit - token_count, 0))
        if max_tokens == 0:
            log.warning("Skipping JSON extraction, reply does not fit", token_count=token_count)
            return ""
        response = await self.provider.complete(messages, temperature=0.0, max_tokens=max_tokens)
        return response.content


class ResponseRecoverer:
    """Recover a ``{thoughts, command}`` object from raw model output.

    Strategies, in order: parse the untouched text, cut a trailing result echo,
    parse, slice from the first ``{`` to the last ``}``, collapse newlines,
    append one missing closing brace. ``recover_async`` can finally ask an
    extractor model to rewrite the reply. Output that still cannot be parsed
    is returned as the original string.
    """

    def __init__(self, extractor: JsonExtractor | None = None):
        self.extractor = extractor

    def parse(self, raw: str) -> dict[str, Any] | None:
        """Run the structural repair chain; ``None`` when nothing parses."""
        text = raw or ""
        parsed = _load_object(text)
        if parsed is not None:
            return parsed

        text = strip_result_echo(text)
        if "{" not in text or "}" not in text:
            return None

        parsed = _load_object(text)
        if parsed is not None:
            log.debug("Reply recovered", strategy="result_echo_cut")
            return parsed

        text = text[text.find("{"): text.rfind("}") + 1]
        parsed = _load_object(text)
        if parsed is not None:
            log.debug("Reply recovered", strategy="brace_slice")
            return parsed

        text = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        parsed = _load_object(text)
        if parsed is not None:
            log.debug("Reply recovered", strategy="collapse_newlines")
            return parsed

        parsed = _load_object(text + "}")
        if parsed is not None:
            log.debug("Reply recovered", strategy="close_brace")
            return parsed
        return None

    def recover(self, raw: str) -> dict[str, Any] | str:
        parsed = self.parse(raw)
        return raw if parsed is None else parsed

    async def recover_async(self, raw: str) -> dict[str, Any] | str:
        """Like ``recover`` but retries once through the extractor model.

        Transport errors raised by the extractor propagate to the caller.
        """
        parsed = self.parse(raw)
        if parsed is not None:
            return parsed
        if self.extractor is None:
            return raw

        log.info("Falling back to model-based JSON extraction", chars=len(raw or ""))
        extracted = await self.extractor.extract(raw)
        parsed = self.parse(extracted)
        if parsed is None:
            log.info("Reply left unstructured")
            return raw
        return parsed
