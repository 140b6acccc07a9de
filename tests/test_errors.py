"""Tests for error classification."""

import httpx
import pytest

from app.errors import (
    InvalidArgument,
    NotFound,
    TransactionRejected,
    TransientNetworkFailure,
    Unauthorized,
    UnsupportedNetwork,
    classify_error,
    from_revert,
)
from tests.conftest import ALICE


def status_error(status_code, body=None, text=None):
    request = httpx.Request("POST", "http://node.test/contracts/0x/call")
    if body is not None:
        response = httpx.Response(status_code, json=body, request=request)
    else:
        response = httpx.Response(status_code, text=text or "", request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


class TestFromRevert:
    def test_not_found_keeps_batch_id(self):
        error = from_revert("Batch does not exist", {"batchId": 9})

        assert isinstance(error, NotFound)
        assert error.batch_id == 9
        assert "9" in error.message

    def test_unauthorized_names_required_account(self):
        error = from_revert("Only current owner can perform this action", {"requiredAddress": ALICE})

        assert isinstance(error, Unauthorized)
        assert ALICE in error.user_message

    @pytest.mark.parametrize("reason", ["Invalid new owner address", "New owner must be different from current owner"])
    def test_owner_checks_are_invalid_arguments(self, reason):
        assert isinstance(from_revert(reason), InvalidArgument)

    def test_unknown_reason(self):
        error = from_revert(None)

        assert isinstance(error, InvalidArgument)
        assert "Unknown reason" in error.message


class TestClassifyError:
    def test_taxonomy_errors_pass_through(self):
        original = NotFound(batch_id=1)

        assert classify_error(original) is original

    def test_timeout_is_retryable(self):
        error = classify_error(httpx.ReadTimeout("slow"))

        assert isinstance(error, TransientNetworkFailure)
        assert error.retryable is True

    def test_connection_error_is_transient(self):
        assert isinstance(classify_error(httpx.ConnectError("refused")), TransientNetworkFailure)

    def test_call_exception_maps_through_revert(self):
        body = {"error": {"code": "CALL_EXCEPTION", "message": "reverted", "reason": "Batch does not exist", "data": {"batchId": 4}}}

        error = classify_error(status_error(400, body))

        assert isinstance(error, NotFound)
        assert error.batch_id == 4

    def test_not_deployed_is_unsupported_network(self):
        body = {"error": {"code": "NOT_DEPLOYED", "message": "No contract found"}}

        assert isinstance(classify_error(status_error(400, body)), UnsupportedNetwork)

    def test_unauthenticated_detail_body(self):
        body = {"detail": {"error": {"code": "UNAUTHENTICATED", "message": "Missing signer token"}}}

        error = classify_error(status_error(401, body))

        assert isinstance(error, Unauthorized)
        assert error.message == "Missing signer token"

    def test_user_rejection(self):
        body = {"error": {"code": "USER_REJECTED", "message": "denied"}}

        assert isinstance(classify_error(status_error(400, body)), TransactionRejected)

    def test_validation_failure_is_invalid_argument(self):
        body = {"detail": [{"loc": ["body", "method"], "msg": "Field required"}]}

        assert isinstance(classify_error(status_error(422, body)), InvalidArgument)

    def test_server_error_is_transient(self):
        assert isinstance(classify_error(status_error(502, text="bad gateway")), TransientNetworkFailure)

    def test_anything_else_is_transient(self):
        error = classify_error(RuntimeError("boom"))

        assert isinstance(error, TransientNetworkFailure)
        assert error.message == "Unexpected error"


class TestErrorBodies:
    def test_to_dict(self):
        error = TransientNetworkFailure("Network connection error")

        assert error.to_dict() == {
            "error": "TransientNetworkFailure",
            "detail": "Network connection error. Please check your connection and try again.",
            "retryable": True,
        }

    def test_unsupported_network_suggests_switching(self):
        assert "switch to a supported network" in UnsupportedNetwork("Unsupported network").user_message
