#!/usr/bin/env python3

from typing import Optional


class RelayError(Exception):
    """Base class for errors surfaced to the end user"""

    kind = "upstream_failure"
    status_code = 500
    retryable = False
    default_message = "AI service error"

    def __init__(self, message: Optional[str] = None, upstream_status: Optional[int] = None):
        self.message = message or self.default_message
        self.upstream_status = upstream_status
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message}


class BadRequest(RelayError):
    """Missing or malformed input, rejected before any network call"""

    kind = "bad_request"
    status_code = 400
    default_message = "Invalid request"


class RateLimited(RelayError):
    """Upstream 429; retry after a short delay"""

    kind = "rate_limited"
    status_code = 429
    retryable = True
    default_message = "Rate limit exceeded. Please try again in a moment."


class QuotaExhausted(RelayError):
    """Upstream 402; needs credits added before retrying"""

    kind = "quota_exhausted"
    status_code = 402
    default_message = "AI credits exhausted. Please add credits to continue."


class UpstreamFailure(RelayError):
    """Any other upstream or network failure, always reported as 500"""


class ParseRecoverable(Exception):
    """A stream line ended mid-JSON; it is re-buffered until more bytes arrive"""


def error_for_status(status: int, message: Optional[str] = None) -> RelayError:
    """Map an HTTP status to the matching relay error"""
    if status == 429:
        return RateLimited(message, upstream_status=status)
    if status == 402:
        return QuotaExhausted(message, upstream_status=status)
    if status == 400:
        return BadRequest(message, upstream_status=status)
    return UpstreamFailure(message, upstream_status=status)
