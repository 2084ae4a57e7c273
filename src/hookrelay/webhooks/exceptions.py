"""Webhook registration and delivery exceptions."""

from typing import Optional


class WebhookError(Exception):
    """Base exception for webhook operations."""

    pass


class InvalidUrlError(WebhookError, ValueError):
    """Target URL is not an absolute http(s) URL.

    Raised at registration time; such a subscription is never stored.
    """

    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        self.reason = reason
        message = f"Invalid webhook URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidEventPatternError(WebhookError, ValueError):
    """Event pattern cannot be compiled."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid event pattern {pattern!r}: {reason}")


class NotFoundOrForbiddenError(WebhookError):
    """Webhook id is unknown or belongs to another owner.

    Both cases share one error so callers cannot probe for ids they do not own.
    """

    def __init__(self, webhook_id: str):
        self.webhook_id = webhook_id
        super().__init__("Webhook not found or access denied")


class DeliveryError(WebhookError):
    """A single delivery attempt failed. Always retryable."""

    def __init__(self, message: str, http_status: Optional[int] = None):
        self.http_status = http_status
        super().__init__(message)


class DeliveryTimeoutError(DeliveryError):
    """Attempt did not complete within the subscription's attempt timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request timeout after {timeout_seconds}s")


class DeliveryHttpError(DeliveryError):
    """Target answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        message = f"HTTP {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message, http_status=status_code)


class DeliveryNetworkError(DeliveryError):
    """Connection-level failure (DNS, refused, reset, protocol error)."""

    pass


class RetriesExhaustedError(WebhookError):
    """Delivery failed on every attempt allowed by the subscription."""

    def __init__(self, job_id: str, attempts: int, last_error: Optional[str] = None):
        self.job_id = job_id
        self.attempts = attempts
        self.last_error = last_error
        message = f"Delivery {job_id} exhausted after {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
