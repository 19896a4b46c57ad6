from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors raised inside the sync pipeline."""


class AuthError(PipelineError):
    """eBay rejected the refresh-token exchange; the current cycle is skipped."""


class TransportError(PipelineError):
    """Network failure or unexpected HTTP status from an external API."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MappingError(PipelineError):
    """External payload is malformed or missing required fields."""


class InvoiceBuildError(PipelineError):
    """An invoice payload could not be assembled for an order."""

    def __init__(self, order_id: int, reason: str):
        super().__init__(f"Cannot build invoice for order {order_id}: {reason}")
        self.order_id = order_id
        self.reason = reason

