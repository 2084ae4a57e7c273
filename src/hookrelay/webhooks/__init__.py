"""Webhooks module for outbound webhook dispatch.

Provides an event-driven webhooks framework with:
- Owner-scoped subscription registry with wildcard event patterns
- Deadline-ordered delivery queue with a single worker
- Signed deliveries with exponential-backoff retries
"""

from .router import router
from .models import (
    DeliveryOutcome,
    Subscription,
    WebhookEvent,
    WebhookEventType,
    WebhookStats,
)
from .dispatcher import WebhookDispatcher
from .registry import WebhookRegistry
from .security import sign_payload, verify_signature
from .service import WebhookService

__all__ = [
    "router",
    "DeliveryOutcome",
    "Subscription",
    "WebhookEvent",
    "WebhookEventType",
    "WebhookStats",
    "WebhookDispatcher",
    "WebhookRegistry",
    "WebhookService",
    "sign_payload",
    "verify_signature",
]
