"""Tests for relay.core.errors."""

import pytest

from relay.core.errors import (
    ContentStoreError,
    DeploymentNotFoundError,
    EngineUnavailableError,
    ErrorCategory,
    NotCancellableError,
    NotFoundError,
    RelayError,
    RemoteEngineError,
    TransientError,
    ValidationError,
    is_retryable,
)


class TestRelayError:
    def test_defaults(self):
        error = RelayError("boom")
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False
        assert str(error) == "boom"

    def test_cause_is_chained(self):
        root = ValueError("bad")
        error = RelayError("wrapped", cause=root)
        assert error.__cause__ is root
        assert error.to_dict()["cause"] == "bad"

    def test_with_context(self):
        error = RelayError("x").with_context(run_id="r-1", attempt=2)
        assert error.context.run_id == "r-1"
        assert error.context.metadata == {"attempt": 2}
        assert error.to_dict()["context"] == {"run_id": "r-1", "attempt": 2}


class TestSubclasses:
    def test_transient_is_retryable(self):
        assert TransientError("t").retryable is True
        assert EngineUnavailableError("down").category is ErrorCategory.ENGINE

    def test_remote_engine_status(self):
        error = RemoteEngineError("rejected", status_code=422, body="nope")
        assert error.retryable is False
        assert error.context.http_status == 422

    def test_deployment_not_found_message(self):
        error = DeploymentNotFoundError("summarize/default")
        assert str(error) == "deployment not found: summarize/default"
        assert error.deployment_name == "summarize/default"

    def test_content_store_status(self):
        assert ContentStoreError("gone", status_code=404).status_code == 404

    def test_not_found_message(self):
        assert str(NotFoundError("run", "abc")) == "run not found: abc"

    def test_not_cancellable_message(self):
        error = NotCancellableError("run", "abc", "success")
        assert str(error) == "cannot cancel run abc in status success"
        assert error.category is ErrorCategory.CONFLICT

    def test_validation_fields(self):
        data = ValidationError("bad", field="concurrency", value=99).to_dict()
        assert data["field"] == "concurrency"
        assert data["value"] == "99"


class TestIsRetryable:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (TransientError("t"), True),
            (RemoteEngineError("r"), False),
            (RemoteEngineError("r", retryable=True), True),
            (ConnectionError(), True),
            (TimeoutError(), True),
            (ValueError(), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable(error) is expected
