import json

import pytest

from loopwright.exceptions import TransportError
from loopwright.llm import LLMProvider, LLMResponse, Message
from loopwright.recovery import JsonExtractor, ResponseRecoverer, strip_result_echo


class ExtractorProvider(LLMProvider):
    def __init__(self, content: str = "", error: Exception | None = None):
        self.model = "gpt-3.5-turbo"
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def complete(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content)


REPLY = {
    "thoughts": {
        "text": "I will search",
        "reasoning": "Need data",
        "plan": ["- search", "- summarize"],
        "progress": "nothing yet",
        "speak": "Searching",
    },
    "command": {"name": "web_search", "args": {"query": "python"}},
}


def test_valid_reply_round_trips():
    assert ResponseRecoverer().recover(json.dumps(REPLY)) == REPLY


def test_valid_reply_containing_result_marker_round_trips():
    reply = {"thoughts": {"text": "Result: {fake}"}, "command": {"name": "do_nothing", "args": {}}}

    assert ResponseRecoverer().recover(json.dumps(reply)) == reply


def test_trailing_result_echo_is_removed():
    raw = (
        'Result: {"thoughts":{"plan":"go"},"command":{"name":"do_nothing","args":{}}}'
        'Result: {"extra":"junk"}'
    )

    recovered = ResponseRecoverer().recover(raw)

    assert recovered == {"thoughts": {"plan": "go"}, "command": {"name": "do_nothing", "args": {}}}


def test_strip_result_echo_keeps_text_without_second_marker():
    assert strip_result_echo('{"a": 1}') == '{"a": 1}'
    assert strip_result_echo("no json here") == "no json here"
    assert strip_result_echo('{"a": 1} Result: {"b": 2}') == '{"a": 1} '


def test_reply_wrapped_in_prose_is_sliced():
    raw = f"Sure, here is my answer:\n{json.dumps(REPLY)}\nLet me know if that helps."

    assert ResponseRecoverer().recover(raw) == REPLY


def test_raw_newline_inside_string_is_collapsed():
    raw = '{"thoughts": {"text": "line one\nline two"}, "command": {"name": "do_nothing", "args": {}}}'

    recovered = ResponseRecoverer().recover(raw)

    assert recovered["thoughts"]["text"] == "line one line two"


def test_single_missing_closing_brace_is_appended():
    raw = '{"thoughts": {"plan": ["- a"]}, "command": {"name": "do_nothing", "args": {}}'

    recovered = ResponseRecoverer().recover(raw)

    assert recovered["command"]["name"] == "do_nothing"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "just some prose",
        '{"a":1',
        "}{",
        "[1, 2, 3]",
        '{"unterminated": "str',
        "[" * 100000 + "]" * 100000 + "{}",
        '{"a": ' * 100000 + "1" + "}" * 100000,
    ],
)
def test_malformed_input_never_raises(raw):
    recovered = ResponseRecoverer().recover(raw)

    assert recovered == raw or isinstance(recovered, dict)


def test_non_object_json_is_not_structured():
    assert ResponseRecoverer().recover("[1, 2, 3]") == "[1, 2, 3]"


@pytest.mark.asyncio
async def test_extractor_output_is_parsed():
    provider = ExtractorProvider(content=json.dumps(REPLY))
    recoverer = ResponseRecoverer(JsonExtractor(provider))

    recovered = await recoverer.recover_async("I think I should search for python next.")

    assert recovered == REPLY
    call = provider.calls[0]
    assert call["temperature"] == 0.0
    assert call["messages"][0].role == "system"
    assert "convert_to_json" in call["messages"][0].content
    assert call["messages"][1].content == "I think I should search for python next."


@pytest.mark.asyncio
async def test_unparseable_extractor_output_returns_original_text():
    provider = ExtractorProvider(content="still not json")
    recoverer = ResponseRecoverer(JsonExtractor(provider))

    recovered = await recoverer.recover_async("prose only")

    assert recovered == "prose only"


@pytest.mark.asyncio
async def test_extractor_is_skipped_when_structure_recovered():
    provider = ExtractorProvider(content="unused")
    recoverer = ResponseRecoverer(JsonExtractor(provider))

    recovered = await recoverer.recover_async(json.dumps(REPLY))

    assert recovered == REPLY
    assert provider.calls == []


@pytest.mark.asyncio
async def test_extractor_transport_failure_propagates():
    provider = ExtractorProvider(error=TransportError("boom", status_code=500))
    recoverer = ResponseRecoverer(JsonExtractor(provider))

    with pytest.raises(TransportError):
        await recoverer.recover_async("prose only")
