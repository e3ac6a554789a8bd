"""Error taxonomy for the proposal pipeline."""
from __future__ import annotations

from typing import Any, Optional


class LockupBatchError(Exception):
    """Base exception for lockup-batch."""

    code = "LOCKUP_BATCH_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(LockupBatchError):
    """A required setting is missing or invalid."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(message, details={"setting": setting})
        self.setting = setting


# ============ Transfer source ============


class SourceUnavailable(LockupBatchError):
    """The external record store could not be reached."""

    code = "SOURCE_UNAVAILABLE"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class SchemaMismatch(LockupBatchError):
    """A record lacks a required field or carries an invalid value."""

    code = "SCHEMA_MISMATCH"

    def __init__(
        self,
        message: str,
        record_id: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message, details={"record_id": record_id, "field": field})
        self.record_id = record_id
        self.field = field


class SourceDrift(LockupBatchError):
    """The source returned different data than the reviewed snapshot."""

    code = "SOURCE_DRIFT"

    def __init__(self, message: str, reviewed: int, current: int):
        super().__init__(message, details={"reviewed": reviewed, "current": current})
        self.reviewed = reviewed
        self.current = current


# ============ Encoding and envelope ============


class EncodingError(LockupBatchError):
    """Arguments do not match the contract interface."""

    code = "ENCODING_ERROR"

    def __init__(self, message: str, function_name: Optional[str] = None):
        super().__init__(message, details={"function": function_name})
        self.function_name = function_name


class EmptyBatch(LockupBatchError):
    """No calls to put into the transaction envelope."""

    code = "EMPTY_BATCH"


class InvalidAddress(LockupBatchError):
    """An account address is not well-formed."""

    code = "INVALID_ADDRESS"

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message, details={"address": address})
        self.address = address


# ============ Signer ============


class SignerError(LockupBatchError):
    """Base class for signing failures."""

    code = "SIGNER_ERROR"

    #: Whether the operator may retry after re-establishing the transport.
    recoverable = False


class DeviceNotConnected(SignerError):
    """The hardware device is not reachable (unplugged, locked, app closed)."""

    code = "DEVICE_NOT_CONNECTED"
    recoverable = True


class UserRejectedOnDevice(SignerError):
    """The operator refused the signature on the device."""

    code = "USER_REJECTED_ON_DEVICE"


class TransportTimeout(SignerError):
    """The device transport did not answer in time."""

    code = "TRANSPORT_TIMEOUT"
    recoverable = True


class SignatureMismatch(SignerError):
    """A signature does not recover to the expected signer address."""

    code = "SIGNATURE_MISMATCH"

    def __init__(self, message: str, expected: str, recovered: Optional[str] = None):
        super().__init__(message, details={"expected": expected, "recovered": recovered})
        self.expected = expected
        self.recovered = recovered


class SignerNotOwner(SignerError):
    """The signing address is not an owner of the multisig account."""

    code = "SIGNER_NOT_OWNER"

    def __init__(self, signer_address: str, safe_address: str):
        super().__init__(
            f"{signer_address} is not an owner of Safe {safe_address}",
            details={"signer": signer_address, "safe": safe_address},
        )
        self.signer_address = signer_address
        self.safe_address = safe_address


# ============ Coordination service ============


class CoordinatorError(LockupBatchError):
    """Base class for coordination service failures."""

    code = "COORDINATOR_ERROR"


class RejectedByCoordinator(CoordinatorError):
    """The service refused the request (stale nonce, malformed, bad signature)."""

    code = "REJECTED_BY_COORDINATOR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reason: Any = None,
    ):
        super().__init__(message, details={"status_code": status_code, "reason": reason})
        self.status_code = status_code
        self.reason = reason


class NetworkError(CoordinatorError):
    """Transient failure talking to the service; safe to retry."""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


# ============ Pipeline ============


class PipelineError(LockupBatchError):
    """A pipeline stage failed; wraps the underlying error."""

    code = "PIPELINE_ERROR"

    def __init__(self, stage: str, cause: BaseException):
        if isinstance(cause, LockupBatchError):
            message = cause.message
        else:
            message = f"{type(cause).__name__}: {cause}"
        super().__init__(
            f"stage '{stage}' failed: {message}",
            code=getattr(cause, "code", self.code),
            details={"stage": stage},
        )
        self.stage = stage
        self.cause = cause
