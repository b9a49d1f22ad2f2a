"""Pipeline error type shared by fetchers, builders and workers."""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    VALIDATION = "validation"
    PERMANENT_AUTH = "permanent_auth"
    QUOTA_EXHAUSTED = "quota_exhausted"


RETRYABLE_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.RATE_LIMITED, ErrorKind.NETWORK_ERROR})


class PipelineError(Exception):
    """A failure in an import step, tagged with the kind that decides retry policy."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def classify_status(status_code: int) -> ErrorKind:
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in {401, 403}:
        return ErrorKind.PERMANENT_AUTH
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.NETWORK_ERROR
