from __future__ import annotations

import enum


class FailureKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    REMOTE_ERROR = "remote_error"
    EMPTY_RESPONSE = "empty_response"
    MALFORMED_RESPONSE = "malformed_response"
    PATH_RESOLUTION = "path_resolution"
    STORE_FAILURE = "store_failure"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    UNSUPPORTED_DOCUMENT = "unsupported_document"


class FilingError(RuntimeError):
    kind: FailureKind = FailureKind.REMOTE_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail
