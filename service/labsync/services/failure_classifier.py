"""Failure classification for background processor statistics and logs."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from labsync.services.retry import error_status, is_quota_error, is_transient_error


class FailureClass(str, Enum):
    QUOTA = "quota"
    OVERLOAD = "overload"
    AUTH = "auth"
    OTHER = "other"


_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "incorrect api key",
    "authentication",
)


@dataclass(slots=True)
class FailureClassification:
    failure_class: FailureClass
    status: Optional[int]
    matched_pattern: Optional[str] = None


def classify_failure(error: BaseException) -> FailureClassification:
    """Bucket an item-level failure. Does not influence retry scheduling."""
    status = error_status(error)

    if is_quota_error(error):
        return FailureClassification(FailureClass.QUOTA, status)

    if is_transient_error(error):
        return FailureClassification(FailureClass.OVERLOAD, status)

    if status in (401, 403):
        return FailureClassification(FailureClass.AUTH, status)

    haystack = str(error).lower()
    for pattern in _AUTH_PATTERNS:
        if pattern in haystack:
            return FailureClassification(FailureClass.AUTH, status, pattern)

    return FailureClassification(FailureClass.OTHER, status)
