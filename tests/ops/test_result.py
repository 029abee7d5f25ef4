"""Tests for the operation result envelope and error mapping."""

import pytest

from relay.core.errors import (
    AuthError,
    ConfigError,
    ConflictError,
    ContentStoreError,
    DuplicateSubmissionError,
    EngineUnavailableError,
    NotCancellableError,
    NotFoundError,
    RemoteEngineError,
    ValidationError,
)
from relay.execution.models import InvalidTransitionError, RunStatus
from relay.ops.result import OperationResult, PagedResult, error_code, fail_from


class TestOperationResult:
    def test_ok(self):
        result = OperationResult.ok({"a": 1}, warnings=["w"])
        assert result.success is True
        assert result.to_dict() == {"success": True, "data": {"a": 1}, "warnings": ["w"]}

    def test_fail(self):
        result = OperationResult.fail("NOT_FOUND", "missing", details={"run_id": "x"})
        assert result.success is False
        assert result.to_dict()["error"] == {
            "code": "NOT_FOUND",
            "message": "missing",
            "retryable": False,
            "details": {"run_id": "x"},
        }


class TestPagedResult:
    def test_has_more(self):
        assert PagedResult.from_items([1, 2], total=5, limit=2, offset=0).has_more is True
        assert PagedResult.from_items([5], total=5, limit=2, offset=4).has_more is False

    def test_to_dict(self):
        data = PagedResult.from_items([1], total=1, limit=10).to_dict()
        assert data["total"] == 1
        assert data["has_more"] is False


class TestErrorCode:
    @pytest.mark.parametrize(
        "exc,code",
        [
            (NotFoundError("run", "x"), "NOT_FOUND"),
            (ValidationError("bad"), "VALIDATION_FAILED"),
            (InvalidTransitionError(RunStatus.SUCCESS, RunStatus.RUNNING), "VALIDATION_FAILED"),
            (NotCancellableError("run", "x", "success"), "NOT_CANCELLABLE"),
            (ConflictError("c"), "CONFLICT"),
            (DuplicateSubmissionError("k", "job-1"), "CONFLICT"),
            (AuthError("no"), "UNAUTHORIZED"),
            (ConfigError("c"), "UNAVAILABLE"),
            (EngineUnavailableError("down"), "UNAVAILABLE"),
            (RemoteEngineError("rejected"), "UNAVAILABLE"),
            (ContentStoreError("gone"), "UNAVAILABLE"),
            (RuntimeError("oops"), "INTERNAL"),
        ],
    )
    def test_mapping(self, exc, code):
        assert error_code(exc) == code


class TestFailFrom:
    def test_domain_error_keeps_message_and_details(self):
        result = fail_from(ValidationError("bad limit", field="limit"), "list_runs")
        assert result.error.code == "VALIDATION_FAILED"
        assert result.error.message == "bad limit"
        assert result.error.details == {"field": "limit"}

    def test_not_cancellable_reports_status(self):
        result = fail_from(NotCancellableError("run", "x", "success"), "cancel_run")
        assert result.error.details["status"] == "success"

    def test_unexpected_error_is_internal(self):
        result = fail_from(RuntimeError("boom"), "get_run")
        assert result.error.code == "INTERNAL"
        assert result.error.message == "get_run failed: boom"

    def test_result_cls(self):
        result = fail_from(NotFoundError("batch", "b"), "list_batches", result_cls=PagedResult)
        assert isinstance(result, PagedResult)
