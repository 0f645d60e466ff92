import pytest

from loopwright.exceptions import RateLimitError, TransportError
from loopwright.llm import is_rate_limited
from loopwright.retry import retry_async


class _Recorder:
    def __init__(self, outcomes: list):
        self.outcomes = list(outcomes)
        self.attempts = 0
        self.sleeps: list[float] = []

    async def operation(self):
        self.attempts += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


@pytest.mark.asyncio
async def test_retryable_errors_wait_fixed_delay():
    recorder = _Recorder([RateLimitError("slow down", 429), RateLimitError("slow down", 429), "ok"])

    result = await retry_async(
        recorder.operation,
        max_attempts=3,
        delay_seconds=20.0,
        retry_if=is_rate_limited,
        sleep=recorder.sleep,
    )

    assert result == "ok"
    assert recorder.attempts == 3
    assert recorder.sleeps == [20.0, 20.0]


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately():
    recorder = _Recorder([TransportError("bad request", 400), "unused"])

    with pytest.raises(TransportError):
        await retry_async(
            recorder.operation,
            max_attempts=3,
            delay_seconds=1.0,
            retry_if=is_rate_limited,
            sleep=recorder.sleep,
        )

    assert recorder.attempts == 1
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_last_error_is_raised_when_attempts_run_out():
    recorder = _Recorder([RateLimitError("first", 429), RateLimitError("second", 429)])

    with pytest.raises(RateLimitError, match="second"):
        await retry_async(
            recorder.operation,
            max_attempts=2,
            delay_seconds=0.5,
            retry_if=is_rate_limited,
            sleep=recorder.sleep,
        )

    assert recorder.sleeps == [0.5]
