"""Tagged error types for the receipt pipeline.

Every boundary (upload, retrieve, delete, process, commit) fails as a
whole with exactly one of these. Callers branch on ``kind`` rather than
on the message; the API layer maps ``reason`` and ``status_code`` onto
the response envelope.
"""

from __future__ import annotations

from typing import Optional

from receipt_ledger.models.enums import ErrorKind


class ReceiptError(Exception):
    """Base class for all pipeline failures."""

    kind: ErrorKind = ErrorKind.PROCESSING
    status_code: int = 500
    reason: str = "receipt-error"

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.kind in (ErrorKind.PARSE, ErrorKind.PROCESSING, ErrorKind.UNAVAILABLE)

    def to_envelope(self) -> dict[str, str]:
        return {"status": "error", "reason": self.reason, "message": self.message}


class ConfigError(ReceiptError):
    """Missing external credentials or configuration. Fatal, never retried."""

    kind = ErrorKind.CONFIG
    status_code = 500
    reason = "not-configured"


class ValidationError(ReceiptError):
    """Bad MIME type, oversize upload or missing required field."""

    kind = ErrorKind.VALIDATION
    status_code = 400
    reason = "invalid-file"


class NotFoundError(ReceiptError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    reason = "file-not-found"


class ParseError(ReceiptError):
    """Model output did not contain a parsable JSON object."""

    kind = ErrorKind.PARSE
    status_code = 502
    reason = "parse-failed"


class ProcessingError(ReceiptError):
    """Remote call failed (network, model error, timeout or ledger rejection)."""

    kind = ErrorKind.PROCESSING
    status_code = 502
    reason = "processing-failed"


class CommitError(ReceiptError):
    """One or more expenses cannot be committed (e.g. no account assigned)."""

    kind = ErrorKind.COMMIT
    status_code = 400
    reason = "commit-rejected"


class ServiceUnavailableError(ReceiptError):
    """The server is not bootstrapped (or the readiness check could not run)."""

    kind = ErrorKind.UNAVAILABLE
    status_code = 503
    reason = "not-bootstrapped"


__all__ = [
    "ReceiptError",
    "ConfigError",
    "ValidationError",
    "NotFoundError",
    "ParseError",
    "ProcessingError",
    "CommitError",
    "ServiceUnavailableError",
]
