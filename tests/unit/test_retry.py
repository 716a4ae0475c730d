"""
Unit tests for the retry executor in paddock.services.racing.retry.
"""

import pytest

from paddock.exceptions import (
    DecodingError,
    HttpError,
    NetworkError,
    UnauthorizedError,
    ValidationError,
)
from paddock.services.racing.retry import backoff_delay, is_terminal, with_retry


class ScriptedOperation:
    """Raises the scripted errors in order, then returns value."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        operation = ScriptedOperation([])
        sleep = RecordingSleep()
        assert await with_retry(operation, sleep=sleep) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [1, 2])
    async def test_transient_failures_then_success(self, failures):
        operation = ScriptedOperation([HttpError(500)] * failures)
        result = await with_retry(operation, max_attempts=3, sleep=RecordingSleep())
        assert result == "ok"
        assert operation.calls == failures + 1

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_last_error(self):
        last = NetworkError("connection reset")
        operation = ScriptedOperation([HttpError(500), HttpError(502), last])
        with pytest.raises(NetworkError) as exc_info:
            await with_retry(operation, max_attempts=3, sleep=RecordingSleep())
        assert exc_info.value is last
        assert operation.calls == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [UnauthorizedError(), DecodingError("bad body"), ValidationError("missing key")],
    )
    async def test_terminal_error_is_not_retried(self, error):
        operation = ScriptedOperation([error])
        sleep = RecordingSleep()
        with pytest.raises(type(error)):
            await with_retry(operation, max_attempts=3, sleep=sleep)
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unknown_errors_are_retried(self):
        operation = ScriptedOperation([RuntimeError("flaky")])
        assert await with_retry(operation, sleep=RecordingSleep()) == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_backoff_grows_exponentially(self):
        operation = ScriptedOperation([HttpError(500), HttpError(500)])
        sleep = RecordingSleep()
        await with_retry(operation, max_attempts=3, base_delay=2.0, sleep=sleep)

        first, second = sleep.delays
        assert 1.0 <= first < 3.0
        assert 2.0 <= second < 6.0


class TestBackoff:
    """Tests for backoff_delay and is_terminal."""

    def test_jitter_bounds(self):
        for attempt in (1, 2, 3):
            for _ in range(50):
                delay = backoff_delay(attempt, 1.0)
                base = 2 ** (attempt - 1)
                assert base * 0.5 <= delay < base * 1.5

    def test_classification(self):
        assert is_terminal(UnauthorizedError())
        assert is_terminal(DecodingError("x"))
        assert is_terminal(ValidationError("x"))
        assert not is_terminal(HttpError(503))
        assert not is_terminal(NetworkError("timeout"))
        assert not is_terminal(RuntimeError("x"))
