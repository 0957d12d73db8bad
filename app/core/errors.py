"""Domain errors raised by the usage pipeline.

Routers translate these into HTTP responses. Two expected outcomes are not
errors at all: a conflicting raw insert is just counted as skipped, and a
model without a price resolves to cost 0 with `priced=False`.
"""
from __future__ import annotations


class UsageWatchError(Exception):
    """Base class for usageWatch domain errors."""


class PayloadFormatError(UsageWatchError):
    """Upstream usage payload has an unrecognizable top-level shape."""


class UpstreamFetchError(UsageWatchError):
    def __init__(self, status_code: int, status_text: str = ""):
        super().__init__(f"Failed to fetch usage ({status_code} {status_text})".strip())
        self.status_code = status_code
        self.status_text = status_text


class RollupQueryFailure(UsageWatchError):
    """A rollup-path read failed; callers fall back to the raw path."""


class TransactionFailure(UsageWatchError):
    """The sync transaction was rolled back; nothing was committed."""


class Unauthorized(UsageWatchError):
    pass


class ValidationError(UsageWatchError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def detail(self) -> dict:
        return {"field": self.field, "message": self.message}
