# app/errors.py
"""
Error taxonomy shared by the ledger, the chain node, the client access layer
and the gateway. Every failure a caller sees is one of these kinds.
"""
import logging
import httpx

logger = logging.getLogger(__name__)

# ================= REVERT REASONS =================
# Emitted by the ledger contract and matched by the client.
REASON_NOT_FOUND = "Batch does not exist"
REASON_NOT_OWNER = "Only current owner can perform this action"
REASON_ZERO_OWNER = "Invalid new owner address"
REASON_SAME_OWNER = "New owner must be different from current owner"


class BatchTrackerError(Exception):
    kind = "BatchTrackerError"
    retryable = False

    def __init__(self, message: str, *, reason: str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or message

    @property
    def user_message(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.user_message, "retryable": self.retryable}


class NotFound(BatchTrackerError):
    kind = "NotFound"

    def __init__(self, message: str = REASON_NOT_FOUND, *, batch_id: int | None = None, reason: str | None = None):
        if batch_id is not None and message == REASON_NOT_FOUND:
            message = f"Batch {batch_id} does not exist"
        super().__init__(message, reason=reason or REASON_NOT_FOUND)
        self.batch_id = batch_id


class Unauthorized(BatchTrackerError):
    kind = "Unauthorized"

    def __init__(self, message: str = REASON_NOT_OWNER, *, required_address: str | None = None, reason: str | None = None):
        super().__init__(message, reason=reason or message)
        self.required_address = required_address

    @property
    def user_message(self) -> str:
        if self.required_address:
            return f"{self.message}. Switch to the current owner account {self.required_address} and try again."
        return self.message


class InvalidArgument(BatchTrackerError):
    kind = "InvalidArgument"


class UnsupportedNetwork(BatchTrackerError):
    kind = "UnsupportedNetwork"

    @property
    def user_message(self) -> str:
        return f"{self.message}. Please switch to a supported network."


class TransientNetworkFailure(BatchTrackerError):
    kind = "TransientNetworkFailure"
    retryable = True

    @property
    def user_message(self) -> str:
        return f"{self.message}. Please check your connection and try again."


class TransactionRejected(BatchTrackerError):
    kind = "TransactionRejected"

    def __init__(self, message: str = "Transaction was rejected by user", **kwargs):
        super().__init__(message, **kwargs)


class OffChainStorageFailure(BatchTrackerError):
    kind = "OffChainStorageFailure"
    retryable = True


# ================= CLASSIFICATION =================

def _error_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict):
        if isinstance(body.get("error"), dict):
            return body["error"]
        if isinstance(body.get("detail"), dict) and isinstance(body["detail"].get("error"), dict):
            return body["detail"]["error"]
    return {}


def from_revert(reason: str | None, data: dict | None = None) -> BatchTrackerError:
    """Maps a contract revert reason back to its taxonomy kind."""
    data = data or {}
    reason = reason or ""
    if REASON_NOT_FOUND in reason:
        return NotFound(batch_id=data.get("batchId"))
    if REASON_NOT_OWNER in reason:
        return Unauthorized(required_address=data.get("requiredAddress"))
    if REASON_ZERO_OWNER in reason or REASON_SAME_OWNER in reason:
        return InvalidArgument(reason)
    return InvalidArgument(f"Contract execution failed: {reason or 'Unknown reason'}", reason=reason)


def classify_error(exc: Exception) -> BatchTrackerError:
    """Turns any low-level failure into a taxonomy error."""
    if isinstance(exc, BatchTrackerError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return TransientNetworkFailure("Request to the blockchain node timed out")

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        error = _error_body(response)
        code = error.get("code")
        message = error.get("message") or response.text
        if code == "CALL_EXCEPTION":
            return from_revert(error.get("reason"), error.get("data"))
        if code == "NOT_DEPLOYED":
            return UnsupportedNetwork(message)
        if code == "UNAUTHENTICATED":
            return Unauthorized(message)
        if code in ("INVALID_ARGUMENT", "UNKNOWN_METHOD"):
            return InvalidArgument(message)
        if code == "NOT_FOUND":
            return NotFound(message)
        if code == "USER_REJECTED":
            return TransactionRejected()
        if response.status_code == 422:
            return InvalidArgument("Request rejected by the blockchain node as malformed")
        if response.status_code >= 500:
            return TransientNetworkFailure(f"Blockchain node error ({response.status_code})")
        logger.error("[CLIENT] Unclassified node response %s: %s", response.status_code, response.text)
        return TransientNetworkFailure(f"Unexpected response from blockchain node ({response.status_code})")

    if isinstance(exc, httpx.TransportError):
        return TransientNetworkFailure("Network connection error")

    logger.error("[CLIENT] Unclassified error: %r", exc)
    return TransientNetworkFailure("Unexpected error")
