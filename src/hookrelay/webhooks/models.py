"""Webhook data models and event types.

Defines Pydantic schemas for subscriptions, events, delivery jobs and
outcomes, plus the request/response models used by the HTTP API.
"""

from enum import Enum
from typing import Optional, Any, List
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
import uuid


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class WebhookEventType(str, Enum):
    """Catalog of event types the platform emits."""

    # Project events
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    PROJECT_DELETED = "project.deleted"
    PROJECT_DEPLOYED = "project.deployed"
    PROJECT_FAILED = "project.failed"

    # User events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"

    # Service events
    SERVICE_CREATED = "service.created"
    SERVICE_UPDATED = "service.updated"

    # File events
    FILE_UPLOADED = "file.uploaded"
    FILE_DELETED = "file.deleted"

    # Billing events
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CANCELED = "subscription.canceled"

    # Webhook / system events
    WEBHOOK_TEST = "webhook.test"
    SYSTEM_MAINTENANCE = "system.maintenance"
    SYSTEM_ERROR = "system.error"


class Subscription(BaseModel):
    """A registered (owner, URL, event-pattern set) webhook target."""

    id: str = Field(default_factory=new_id)
    owner_id: str
    url: str = Field(..., description="Absolute http(s) endpoint, stored as given")
    events: List[str] = Field(default_factory=lambda: ["*"])
    secret: Optional[str] = Field(None, description="Shared secret for HMAC signature")
    active: bool = True

    # Delivery policy
    max_attempts: int = Field(3, ge=1)
    attempt_timeout: float = Field(30.0, gt=0, description="Seconds per attempt")

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_triggered_at: Optional[datetime] = None

    # Stats
    success_count: int = 0
    failure_count: int = 0


class WebhookEvent(BaseModel):
    """One occurrence of a domain event. Only lives inside a delivery job."""

    id: str = Field(default_factory=new_id)
    event_type: str
    payload: Any = None
    emitted_at: datetime = Field(default_factory=utcnow)


class DeliveryJob(BaseModel):
    """A pending or in-progress delivery of one event to one subscription."""

    job_id: str = Field(default_factory=new_id)
    subscription_id: str
    event: WebhookEvent
    enqueued_at: datetime = Field(default_factory=utcnow)
    attempt: int = 0  # attempts made so far
    next_attempt_at: datetime = Field(default_factory=utcnow)


class DeliveryOutcome(BaseModel):
    """Result of a single delivery attempt."""

    job_id: str
    subscription_id: str
    event_type: str
    success: bool
    http_status: Optional[int] = None
    error: Optional[str] = None
    attempt_number: int
    completed_at: datetime = Field(default_factory=utcnow)


class FailureNotice(BaseModel):
    """Handed to the failure notifier once a delivery is terminally failed."""

    subscription: Subscription
    event_type: str
    error: str
    attempts: int


class WebhookStats(BaseModel):
    """Per-subscription delivery counters."""

    id: str
    url: str
    events: List[str]
    active: bool
    created_at: datetime
    updated_at: datetime
    last_triggered_at: Optional[datetime] = None
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0


# ============================================================================
# API schemas
# ============================================================================

class WebhookCreateRequest(BaseModel):
    """Request to register a new webhook."""

    url: str
    events: Optional[List[str]] = None
    secret: Optional[str] = None
    active: bool = True
    max_attempts: Optional[int] = Field(None, ge=1)
    attempt_timeout: Optional[float] = Field(None, gt=0)


class WebhookUpdateRequest(BaseModel):
    """Partial update. Ownership and counters are not updatable."""

    model_config = ConfigDict(extra="forbid")

    url: Optional[str] = None
    events: Optional[List[str]] = None
    secret: Optional[str] = None
    active: Optional[bool] = None
    max_attempts: Optional[int] = Field(None, ge=1)
    attempt_timeout: Optional[float] = Field(None, gt=0)


class WebhookView(BaseModel):
    """Subscription as shown to its owner, secret redacted."""

    id: str
    url: str
    events: List[str]
    active: bool
    max_attempts: int
    attempt_timeout: float
    has_secret: bool
    created_at: datetime
    updated_at: datetime
    last_triggered_at: Optional[datetime] = None
    success_count: int
    failure_count: int

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "WebhookView":
        data = subscription.model_dump(exclude={"owner_id", "secret"})
        return cls(**data, has_secret=bool(subscription.secret))


class WebhookCreatedResponse(WebhookView):
    """Returned once, on creation. The only view that carries the secret."""

    secret: Optional[str] = None
    message: str = "Webhook registered successfully"

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "WebhookCreatedResponse":
        data = subscription.model_dump(exclude={"owner_id"})
        return cls(**data, has_secret=bool(subscription.secret))


class WebhookListResponse(BaseModel):
    webhooks: List[WebhookView]
    total: int


class TriggerRequest(BaseModel):
    """Manually emit an event to all matching subscriptions."""

    event: str
    data: Any = None
    subscription_ids: Optional[List[str]] = None


class TriggerResponse(BaseModel):
    event: str
    enqueued: int


class ReplayRequest(BaseModel):
    event: str
    data: Any = None
