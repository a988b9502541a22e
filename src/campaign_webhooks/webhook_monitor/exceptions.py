"""
Webhook monitor exceptions
"""
from typing import Optional


class WebhookMonitorError(Exception):
    """Base exception for webhook monitoring errors"""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigurationError(WebhookMonitorError):
    """Malformed or missing event parameters or target scope"""

    pass


class FeedError(WebhookMonitorError):
    """Campaign metrics or scope lookup unavailable"""

    pass


class DeliveryError(WebhookMonitorError):
    """Webhook delivery failed (network, timeout or non-2xx response)"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, details, original_error)


class FatalError(WebhookMonitorError):
    """Store unavailable; the current check cycle must abort"""

    pass
