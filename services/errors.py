"""Error taxonomy of the synchronization engine."""

from __future__ import annotations

from typing import Optional


RATE_LIMITED = "rate_limited"
NOT_FOUND = "not_found"
INVALID_REQUEST = "invalid_request"
TRANSIENT = "transient"

RETRYABLE_KINDS = frozenset({RATE_LIMITED, TRANSIENT})


class SyncEngineError(Exception):
    """Base class for every error raised by the sync engine."""


class OAuthConfigError(SyncEngineError):
    """OAuth client id/secret are not configured."""


class AuthExchangeError(SyncEngineError):
    """The authorization code was rejected; the consent flow must restart."""


class ReauthRequiredError(SyncEngineError):
    """No usable credential: tokens are missing or the refresh token was rejected."""


class TaskNotFoundError(SyncEngineError, LookupError):
    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class ProviderError(SyncEngineError):
    """A Calendar/Tasks API call failed.

    ``kind`` is one of ``rate_limited``, ``not_found``, ``invalid_request`` or
    ``transient``; only the first and last are worth retrying.
    """

    def __init__(self, kind: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        base = super().__str__()
        if self.status:
            return f"[{self.kind} {self.status}] {base}"
        return f"[{self.kind}] {base}"


def classify_status(status: Optional[int], reason: Optional[str] = None) -> str:
    """Map an HTTP status (and Google error reason) onto a ``ProviderError`` kind."""

    code = int(status or 0)
    if code == 429:
        return RATE_LIMITED
    if code == 403 and reason in {"rateLimitExceeded", "userRateLimitExceeded"}:
        return RATE_LIMITED
    if code in (404, 410):
        return NOT_FOUND
    if code == 408 or code >= 500 or code == 0:
        return TRANSIENT
    return INVALID_REQUEST


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, ReauthRequiredError):
        return "reauth_required"
    return "internal"


def is_retryable(exc: BaseException) -> bool:
    """Whether a later manual retry can plausibly succeed."""

    if isinstance(exc, ProviderError):
        return exc.retryable
    # credentials and storage hiccups heal once the user reconnects or the store recovers
    return True


__all__ = [
    "RATE_LIMITED",
    "NOT_FOUND",
    "INVALID_REQUEST",
    "TRANSIENT",
    "RETRYABLE_KINDS",
    "SyncEngineError",
    "OAuthConfigError",
    "AuthExchangeError",
    "ReauthRequiredError",
    "TaskNotFoundError",
    "ProviderError",
    "classify_status",
    "error_kind",
    "is_retryable",
]
