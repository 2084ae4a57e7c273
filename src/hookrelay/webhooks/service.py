"""Webhook service: the public surface of the dispatch engine.

Owns one registry, dispatcher, retry controller and delivery queue, and
exposes owner-scoped management calls plus ``trigger`` for producers.
"""

import json
import logging
from typing import Any, Iterable, List, Optional

import httpx

from ..core.settings import DispatchSettings
from .dispatcher import WebhookDispatcher
from .models import (
    DeliveryJob,
    DeliveryOutcome,
    Subscription,
    WebhookEvent,
    WebhookEventType,
    WebhookStats,
)
from .queue import DeliveryQueue
from .registry import WebhookRegistry
from .retry import FailureNotifier, RetryController, RetryPolicy

logger = logging.getLogger(__name__)

TEST_EVENT_MESSAGE = "This is a test webhook from HookRelay"


def snapshot_payload(payload: Any) -> Any:
    """Return a detached JSON copy of ``payload``.

    Every attempt for an event sends the data as it was when the event was
    emitted, whatever the caller does with its object afterwards.

    Raises:
        ValueError: If ``payload`` is not JSON-serializable.
    """
    try:
        return json.loads(json.dumps(payload, ensure_ascii=False))
    except (TypeError, ValueError) as e:
        raise ValueError(f"payload is not JSON-serializable: {e}") from e


class WebhookService:
    """Event-driven webhook dispatch.

    Example:
        service = WebhookService()
        sub = service.create_webhook("owner-1", "https://example.com/hook", ["project.*"])
        await service.trigger("project.created", {"name": "demo"})
        await service.join()
        service.get_stats(sub.id, "owner-1").success_count
    """

    def __init__(
        self,
        settings: Optional[DispatchSettings] = None,
        registry: Optional[WebhookRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
        notifier: Optional[FailureNotifier] = None,
    ):
        """Initialize service.

        Args:
            settings: Dispatch settings; defaults are used when omitted.
            registry: Subscription registry; a new empty one when omitted.
            client: HTTP client for deliveries (injected in tests).
            notifier: Awaited once per terminally failed delivery.
        """
        self.settings = settings or DispatchSettings()
        self.registry = registry or WebhookRegistry(
            default_max_attempts=self.settings.default_max_attempts,
            default_attempt_timeout=self.settings.default_attempt_timeout_seconds,
        )
        self.dispatcher = WebhookDispatcher(
            self.registry,
            client=client,
            user_agent=self.settings.user_agent,
            history_size=self.settings.delivery_history_size,
        )
        self.queue = DeliveryQueue(self._process_job)
        self.retry = RetryController(
            self.queue.put,
            policy=RetryPolicy(
                base_delay_seconds=self.settings.backoff_base_seconds,
                max_delay_seconds=self.settings.max_backoff_seconds,
            ),
            notifier=notifier,
        )

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def create_webhook(
        self,
        owner_id: str,
        url: str,
        events: Optional[Iterable[str]] = None,
        secret: Optional[str] = None,
        active: bool = True,
        max_attempts: Optional[int] = None,
        attempt_timeout: Optional[float] = None,
    ) -> Subscription:
        """Register a webhook. See ``WebhookRegistry.create``."""
        return self.registry.create(
            owner_id,
            url,
            events=events,
            secret=secret,
            active=active,
            max_attempts=max_attempts,
            attempt_timeout=attempt_timeout,
        )

    def update_webhook(self, webhook_id: str, owner_id: str, **changes: Any) -> Subscription:
        return self.registry.update(webhook_id, owner_id, **changes)

    def delete_webhook(self, webhook_id: str, owner_id: str) -> bool:
        deleted = self.registry.delete(webhook_id, owner_id)
        self.dispatcher.forget(webhook_id)
        return deleted

    def get_webhook(self, webhook_id: str, owner_id: str) -> Subscription:
        return self.registry.get_owned(webhook_id, owner_id)

    def list_webhooks(self, owner_id: str) -> List[Subscription]:
        return self.registry.list_by_owner(owner_id)

    def get_stats(self, webhook_id: str, owner_id: str) -> WebhookStats:
        """Delivery counters and success rate (percent) for an owned webhook."""
        sub = self.registry.get_owned(webhook_id, owner_id)
        attempts = sub.success_count + sub.failure_count
        success_rate = (sub.success_count / attempts) * 100 if attempts else 0.0
        return WebhookStats(
            id=sub.id,
            url=sub.url,
            events=sub.events,
            active=sub.active,
            created_at=sub.created_at,
            updated_at=sub.updated_at,
            last_triggered_at=sub.last_triggered_at,
            success_count=sub.success_count,
            failure_count=sub.failure_count,
            success_rate=success_rate,
        )

    def recent_deliveries(
        self, webhook_id: str, owner_id: str, limit: int = 50
    ) -> List[DeliveryOutcome]:
        self.registry.get_owned(webhook_id, owner_id)
        return self.dispatcher.get_recent_deliveries(webhook_id, limit=limit)

    @staticmethod
    def supported_event_types() -> List[str]:
        return [e.value for e in WebhookEventType]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def trigger(
        self,
        event_type: str,
        payload: Any = None,
        subscription_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """Enqueue one delivery per matching active subscription.

        Returns as soon as the jobs are queued; delivery problems never
        surface here.

        Args:
            event_type: The event that occurred.
            payload: JSON-serializable event data.
            subscription_ids: Restrict delivery to these subscriptions.

        Returns:
            Number of jobs enqueued.

        Raises:
            ValueError: If ``event_type`` is empty or ``payload`` is not
                JSON-serializable.
        """
        if not isinstance(event_type, str) or not event_type.strip():
            raise ValueError("event_type must be a non-empty string")
        payload = snapshot_payload(payload)

        targets = self.registry.select_subscriptions(event_type)
        if subscription_ids is not None:
            wanted = set(subscription_ids)
            targets = [sub for sub in targets if sub.id in wanted]

        if not targets:
            logger.debug(f"No webhooks registered for event: {event_type}")
            return 0

        event = WebhookEvent(event_type=event_type, payload=payload)
        for sub in targets:
            self.queue.put(DeliveryJob(subscription_id=sub.id, event=event))

        logger.info(f"Queued {len(targets)} delivery job(s) for {event_type}")
        return len(targets)

    async def test_webhook(self, webhook_id: str, owner_id: str) -> DeliveryOutcome:
        """Send a single ``webhook.test`` ping to one webhook.

        Bypasses event matching and is not retried.
        """
        sub = self.registry.get_owned(webhook_id, owner_id)
        event = WebhookEvent(
            event_type=WebhookEventType.WEBHOOK_TEST.value,
            payload={
                "type": "test",
                "message": TEST_EVENT_MESSAGE,
            },
        )
        job = DeliveryJob(subscription_id=sub.id, event=event)
        return await self.dispatcher.deliver(job, sub)

    async def replay_webhook(
        self, webhook_id: str, owner_id: str, event_type: str, payload: Any = None
    ) -> DeliveryOutcome:
        """Re-deliver an event to one webhook with a fresh attempt budget.

        The first attempt runs immediately and its outcome is returned; if it
        fails, the remaining attempts are scheduled on the queue.
        """
        if not isinstance(event_type, str) or not event_type.strip():
            raise ValueError("event_type must be a non-empty string")
        sub = self.registry.get_owned(webhook_id, owner_id)
        job = DeliveryJob(
            subscription_id=sub.id,
            event=WebhookEvent(event_type=event_type, payload=snapshot_payload(payload)),
        )
        outcome = await self.dispatcher.deliver(job, sub)
        if not outcome.success:
            await self._handle_failure(job, sub, outcome)
        return outcome

    async def _process_job(self, job: DeliveryJob) -> None:
        sub = self.registry.get(job.subscription_id)
        if sub is None:
            logger.info(
                f"Dropping job {job.job_id}: webhook {job.subscription_id} no longer exists"
            )
            return

        outcome = await self.dispatcher.deliver(job, sub)
        if not outcome.success:
            await self._handle_failure(job, sub, outcome)

    async def _handle_failure(
        self, job: DeliveryJob, sub: Subscription, outcome: DeliveryOutcome
    ) -> None:
        # counters moved during the attempt; hand over the current record
        current = self.registry.get(sub.id) or sub
        await self.retry.handle_failure(job, current, outcome)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def pending_jobs(self) -> int:
        return len(self.queue)

    async def join(self) -> None:
        """Wait until every queued delivery, including retries, has finished."""
        await self.queue.join()

    async def close(self) -> None:
        """Stop the worker and release the HTTP client."""
        await self.queue.close()
        await self.dispatcher.close()
