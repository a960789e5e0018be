"""
Input errors raised before any outbound Salesforce call.
"""
from typing import Any, Optional


class WebhookInputError(Exception):
    """A malformed or un-matchable payload. Always rendered as HTTP 400."""

    def __init__(self, error: str, detail: Optional[Any] = None):
        super().__init__(error)
        self.error = error
        self.detail = detail


class MissingMatchKeyError(WebhookInputError):
    """None of the match-key fields carries a value."""

    def __init__(self, fields: tuple):
        super().__init__(
            "Missing match key",
            f"One of {', '.join(fields)} is required to match an existing call",
        )
        self.fields = fields
