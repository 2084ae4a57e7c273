"""Webhook subscription registry.

Stores and manages webhook subscriptions in memory. Every record belongs to
one owner and all mutating calls are owner-scoped. The registry is also the
single writer of delivery counters, so counter updates and owner edits are
serialized under one lock.
"""

import logging
import secrets
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import HttpUrl, TypeAdapter, ValidationError

from .exceptions import InvalidUrlError, NotFoundOrForbiddenError
from .matcher import PatternSet, compile_patterns
from .models import Subscription, WebhookUpdateRequest, utcnow

logger = logging.getLogger(__name__)

_http_url = TypeAdapter(HttpUrl)


def validate_target_url(url: Any) -> str:
    """Ensure ``url`` is an absolute http(s) URL.

    Returns:
        The URL unchanged. Normalization is not applied so the envelope
        echoes exactly what the owner registered.

    Raises:
        InvalidUrlError: If the URL is malformed, relative, or not http(s).
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError(str(url), "URL must be a non-empty string")
    try:
        _http_url.validate_python(url)
    except ValidationError as e:
        raise InvalidUrlError(url, e.errors()[0].get("msg")) from e
    return url


def generate_secret() -> str:
    """Generate a new signing secret (64 hex chars)."""
    return secrets.token_hex(32)


class WebhookRegistry:
    """In-memory registry for webhook subscriptions.

    Example:
        registry = WebhookRegistry()
        sub = registry.create("owner-1", "https://example.com/hook", ["project.*"])

        # Active subscriptions across all owners for an event
        targets = registry.select_subscriptions("project.created")
    """

    def __init__(
        self,
        default_max_attempts: int = 3,
        default_attempt_timeout: float = 30.0,
    ):
        """Initialize empty registry.

        Args:
            default_max_attempts: Attempt budget for subscriptions that don't set one.
            default_attempt_timeout: Per-attempt timeout in seconds.
        """
        self.default_max_attempts = default_max_attempts
        self.default_attempt_timeout = default_attempt_timeout
        self._webhooks: Dict[str, Subscription] = {}
        self._patterns: Dict[str, PatternSet] = {}
        self._lock = threading.RLock()

    def create(
        self,
        owner_id: str,
        url: str,
        events: Optional[Iterable[str]] = None,
        secret: Optional[str] = None,
        active: bool = True,
        max_attempts: Optional[int] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Subscription:
        """Register a new webhook subscription.

        Args:
            owner_id: Owner of the subscription. Immutable afterwards.
            url: Absolute http(s) target URL.
            events: Event patterns; defaults to ``["*"]``.
            secret: Signing secret; one is generated when omitted.
            active: Whether the subscription receives events.
            max_attempts: Delivery attempt budget per event.
            attempt_timeout: Seconds before an attempt is aborted.

        Returns:
            Snapshot of the stored subscription.

        Raises:
            InvalidUrlError: If ``url`` is not an absolute http(s) URL.
            InvalidEventPatternError: If a pattern is malformed.
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        validate_target_url(url)
        if isinstance(events, str):
            events = [events]
        patterns = compile_patterns(tuple(events) if events is not None else ("*",))

        subscription = Subscription(
            owner_id=owner_id,
            url=url,
            events=patterns.raw,
            secret=secret or generate_secret(),
            active=active,
            max_attempts=(
                self.default_max_attempts if max_attempts is None else max_attempts
            ),
            attempt_timeout=(
                self.default_attempt_timeout if attempt_timeout is None else attempt_timeout
            ),
        )

        with self._lock:
            self._webhooks[subscription.id] = subscription
            self._patterns[subscription.id] = patterns

        logger.info(
            f"Registered webhook {subscription.id} for owner {owner_id}: "
            f"{url} events={subscription.events}"
        )
        return subscription.model_copy(deep=True)

    def update(self, webhook_id: str, owner_id: str, **changes: Any) -> Subscription:
        """Update an owned subscription.

        Args:
            webhook_id: The subscription to update.
            owner_id: Must match the subscription's owner.
            **changes: Any of url, events, secret, active, max_attempts,
                attempt_timeout.

        Returns:
            Snapshot of the updated subscription.

        Raises:
            NotFoundOrForbiddenError: Unknown id or owner mismatch.
            InvalidUrlError: If a new URL is invalid.
            InvalidEventPatternError: If new patterns are malformed.
            ValueError: For fields that cannot be updated (owner_id, counters)
                or an attempt to clear the secret.
        """
        with self._lock:
            # ownership is checked before any validation
            current = self._get_owned(webhook_id, owner_id)

            request = WebhookUpdateRequest(**changes)
            updates = {
                key: value
                for key, value in request.model_dump(exclude_unset=True).items()
                if value is not None or key == "secret"
            }
            if "secret" in updates and not updates["secret"]:
                # deliveries are always signed; a secret can be replaced, never cleared
                raise ValueError("secret cannot be cleared")
            patterns = None
            if "url" in updates:
                validate_target_url(updates["url"])
            if "events" in updates:
                patterns = compile_patterns(tuple(updates["events"]))
                updates["events"] = patterns.raw

            data = current.model_dump()
            data.update(updates)
            data["updated_at"] = utcnow()
            updated = Subscription(**data)
            self._webhooks[webhook_id] = updated
            if patterns is not None:
                self._patterns[webhook_id] = patterns

        logger.info(f"Updated webhook {webhook_id} ({', '.join(sorted(updates)) or 'no changes'})")
        return updated.model_copy(deep=True)

    def delete(self, webhook_id: str, owner_id: str) -> bool:
        """Remove an owned subscription.

        Jobs already queued for it are dropped when the worker reaches them.

        Raises:
            NotFoundOrForbiddenError: Unknown id or owner mismatch.
        """
        with self._lock:
            self._get_owned(webhook_id, owner_id)
            del self._webhooks[webhook_id]
            self._patterns.pop(webhook_id, None)
        logger.info(f"Deleted webhook {webhook_id}")
        return True

    def get(self, webhook_id: str) -> Optional[Subscription]:
        """Get a subscription by ID regardless of owner (internal use)."""
        with self._lock:
            subscription = self._webhooks.get(webhook_id)
            return subscription.model_copy(deep=True) if subscription else None

    def get_owned(self, webhook_id: str, owner_id: str) -> Subscription:
        """Get a subscription by ID, enforcing ownership.

        Raises:
            NotFoundOrForbiddenError: Unknown id or owner mismatch.
        """
        with self._lock:
            return self._get_owned(webhook_id, owner_id).model_copy(deep=True)

    def list_by_owner(self, owner_id: str) -> List[Subscription]:
        """All subscriptions of an owner, in creation order."""
        with self._lock:
            return [
                sub.model_copy(deep=True)
                for sub in self._webhooks.values()
                if sub.owner_id == owner_id
            ]

    def select_subscriptions(self, event_type: str) -> List[Subscription]:
        """Active subscriptions, across all owners, whose patterns match.

        Args:
            event_type: The event type to filter by.

        Returns:
            Matching subscriptions in creation order.
        """
        with self._lock:
            return [
                sub.model_copy(deep=True)
                for sub_id, sub in self._webhooks.items()
                if sub.active and self._patterns[sub_id].matches(event_type)
            ]

    def record_outcome(
        self, webhook_id: str, success: bool, at: Optional[datetime] = None
    ) -> Optional[Subscription]:
        """Bump delivery counters for a subscription.

        Returns:
            The updated snapshot, or None if the subscription was deleted.
        """
        with self._lock:
            subscription = self._webhooks.get(webhook_id)
            if subscription is None:
                return None
            if success:
                subscription.success_count += 1
                subscription.last_triggered_at = at or utcnow()
            else:
                subscription.failure_count += 1
            return subscription.model_copy(deep=True)

    def clear(self) -> int:
        """Remove all subscriptions.

        Returns:
            Number of subscriptions removed.
        """
        with self._lock:
            count = len(self._webhooks)
            self._webhooks.clear()
            self._patterns.clear()
        logger.info(f"Cleared {count} webhook registrations")
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._webhooks)

    def _get_owned(self, webhook_id: str, owner_id: str) -> Subscription:
        subscription = self._webhooks.get(webhook_id)
        if subscription is None or subscription.owner_id != owner_id:
            raise NotFoundOrForbiddenError(webhook_id)
        return subscription
