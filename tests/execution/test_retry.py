"""Tests for backoff strategies and the retry context."""

import pytest

from relay.core.errors import RemoteEngineError, TransientError
from relay.execution.retry import ExponentialBackoff, RetryContext


class TestExponentialBackoff:
    def test_delays_double(self):
        strategy = ExponentialBackoff(max_retries=3, base_delay=2.0)
        assert [strategy.next_delay(n) for n in range(4)] == [2.0, 4.0, 8.0, 16.0]

    def test_delay_capped(self):
        strategy = ExponentialBackoff(base_delay=10.0, max_delay=25.0)
        assert strategy.next_delay(5) == 25.0

    def test_jitter_stays_in_range(self):
        strategy = ExponentialBackoff(base_delay=4.0, jitter=True, jitter_range=0.25)
        for _ in range(20):
            assert 3.0 <= strategy.next_delay(0) <= 5.0

    def test_should_retry(self):
        strategy = ExponentialBackoff(max_retries=2)
        assert strategy.should_retry(0, TransientError("t")) is True
        assert strategy.should_retry(2, TransientError("t")) is False
        assert strategy.should_retry(0, RemoteEngineError("r")) is False
        assert strategy.should_retry(1) is True


class TestRetryContext:
    def test_succeeds_after_transient_failures(self):
        calls = iter([TransientError("a"), TransientError("b"), "ok"])
        delays = []
        seen = []

        def func():
            value = next(calls)
            if isinstance(value, Exception):
                raise value
            return value

        ctx = RetryContext(
            ExponentialBackoff(max_retries=3, base_delay=1.0),
            on_retry=lambda attempt, error, delay: seen.append((attempt, str(error))),
            sleep=delays.append,
        )
        assert ctx.run(func) == "ok"
        assert ctx.attempts == 3
        assert delays == [1.0, 2.0]
        assert seen == [(1, "a"), (2, "b")]

    def test_reraises_when_exhausted(self):
        delays = []

        def func():
            raise TransientError("down")

        ctx = RetryContext(ExponentialBackoff(max_retries=2), sleep=delays.append)
        with pytest.raises(TransientError):
            ctx.run(func)
        assert ctx.attempts == 3
        assert len(ctx.errors) == 3
        assert len(delays) == 2

    def test_non_retryable_raised_immediately(self):
        def func():
            raise RemoteEngineError("rejected")

        ctx = RetryContext(ExponentialBackoff(), sleep=lambda s: None)
        with pytest.raises(RemoteEngineError):
            ctx.run(func)
        assert ctx.attempts == 1
