"""Error taxonomy for the sync pipeline.

Every error carries a stable `code` string; run summaries report codes, never
raw tracebacks.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class RegistrySyncError(RuntimeError):
    code = "registry_sync_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = dict(details or {})


class AcquisitionError(RegistrySyncError):
    """Raised by the remote acquisition session."""

    SESSION_INIT_FAILED = "session_init_failed"
    NOT_FOUND = "not_found"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    CRAWL_ERROR = "crawl_error"

    code = CRAWL_ERROR


class ExtractionErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AUTHORIZATION = "authorization"
    CONTENT_REJECTED = "content_rejected"
    MALFORMED_REQUEST = "malformed_request"
    RETRY_EXHAUSTED = "retry_exhausted"
    SERVICE_ERROR = "service_error"

    @property
    def retryable(self) -> bool:
        return self in (
            ExtractionErrorKind.RATE_LIMITED,
            ExtractionErrorKind.SERVICE_UNAVAILABLE,
        )


class ExtractionError(RegistrySyncError):
    """Raised by the extraction client after classification.

    Use `is_retry_exhaustion` (not the message) to tell "service kept failing"
    apart from "request was rejected".
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ExtractionErrorKind,
        identifier: str | None = None,
        status_code: int | None = None,
        is_retry_exhaustion: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=kind.value, details=details)
        self.kind = kind
        self.identifier = identifier
        self.status_code = status_code
        self.is_retry_exhaustion = is_retry_exhaustion


class ParseError(RegistrySyncError):
    code = "malformed_response"

    def __init__(self, message: str, *, label: str | None = None) -> None:
        super().__init__(message, details={"label": label} if label else None)
        self.label = label


class UnsupportedContentError(RegistrySyncError):
    code = "unsupported_type"


class ContentExtractionError(RegistrySyncError):
    code = "conversion_error"


class MergeError(RegistrySyncError):
    code = "no_valid_metadata"
