"""Outbound webhook delivery.

Builds the signed envelope for one delivery job, POSTs it to the
subscription's URL and turns the result into a ``DeliveryOutcome``.
Retry scheduling lives in ``retry``; ordering lives in ``queue``.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import httpx

from .exceptions import (
    DeliveryError,
    DeliveryHttpError,
    DeliveryNetworkError,
    DeliveryTimeoutError,
)
from .models import DeliveryJob, DeliveryOutcome, Subscription, WebhookEvent, new_id, utcnow
from .registry import WebhookRegistry
from .security import generate_webhook_headers, serialize_envelope

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "HookRelay-Webhook/1.0"


def isoformat_utc(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def build_envelope(event: WebhookEvent, subscription: Subscription) -> Dict[str, Any]:
    """Canonical request body for one delivery attempt.

    Each attempt gets a fresh envelope id; the timestamp is the emission time
    of the event, so it is stable across retries.
    """
    return {
        "id": new_id(),
        "event": event.event_type,
        "data": event.payload,
        "timestamp": isoformat_utc(event.emitted_at),
        "webhook": {
            "id": subscription.id,
            "url": subscription.url,
        },
    }


class WebhookDispatcher:
    """Executes single delivery attempts.

    Features:
    - Async HTTP delivery, aborted exactly at the subscription's attempt timeout
    - HMAC-SHA256 signed envelopes
    - Counter updates through the registry
    - Bounded log of recent outcomes

    Example:
        dispatcher = WebhookDispatcher(registry)
        outcome = await dispatcher.deliver(job, subscription)
    """

    def __init__(
        self,
        registry: WebhookRegistry,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        history_size: int = 1000,
    ):
        """Initialize dispatcher.

        Args:
            registry: Registry whose counters are updated per attempt.
            client: HTTP client to use; one is created (and owned) when omitted.
            user_agent: User-Agent header for outbound requests.
            history_size: Number of recent outcomes kept in memory.
        """
        self._registry = registry
        self._client = client
        self._owns_client = client is None
        self.user_agent = user_agent
        self._deliveries: Deque[DeliveryOutcome] = deque(maxlen=history_size)
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def forget(self, subscription_id: str) -> None:
        """Drop per-subscription state after a subscription is deleted."""
        lock = self._locks.get(subscription_id)
        if lock is not None and not lock.locked():
            del self._locks[subscription_id]

    async def deliver(self, job: DeliveryJob, subscription: Subscription) -> DeliveryOutcome:
        """Make one delivery attempt for ``job``.

        Increments ``job.attempt`` and the subscription's success or failure
        counter. Never raises for delivery problems; they are reported in the
        returned outcome.

        Args:
            job: The job to deliver.
            subscription: Current snapshot of the target subscription.

        Returns:
            Outcome of this attempt.
        """
        lock = self._locks.setdefault(subscription.id, asyncio.Lock())
        async with lock:
            job.attempt += 1
            http_status: Optional[int] = None
            error: Optional[str] = None

            try:
                http_status = await self._send_webhook(job.event, subscription)
            except DeliveryError as e:
                http_status = e.http_status
                error = str(e)
            except Exception as e:
                logger.error(
                    f"Unexpected error delivering {job.job_id} to {subscription.id}: {e}",
                    exc_info=True,
                )
                error = f"Unexpected error: {e}"

            success = error is None
            completed_at = utcnow()
            self._registry.record_outcome(subscription.id, success, completed_at)

            outcome = DeliveryOutcome(
                job_id=job.job_id,
                subscription_id=subscription.id,
                event_type=job.event.event_type,
                success=success,
                http_status=http_status,
                error=error,
                attempt_number=job.attempt,
                completed_at=completed_at,
            )
            self._deliveries.append(outcome)

        if success:
            logger.info(
                f"Webhook {subscription.id} delivered {job.event.event_type} "
                f"(attempt {job.attempt}, HTTP {http_status})"
            )
        else:
            logger.warning(
                f"Webhook {subscription.id} failed for {job.event.event_type} "
                f"(attempt {job.attempt}/{subscription.max_attempts}): {error}"
            )
        return outcome

    async def _send_webhook(self, event: WebhookEvent, subscription: Subscription) -> int:
        """Send HTTP POST to the webhook endpoint.

        Returns:
            The 2xx status code.

        Raises:
            DeliveryTimeoutError: The attempt timeout elapsed.
            DeliveryNetworkError: Connection-level failure.
            DeliveryHttpError: Non-2xx response.
        """
        envelope = build_envelope(event, subscription)
        body = serialize_envelope(envelope)
        headers = generate_webhook_headers(envelope, body, subscription.secret, self.user_agent)
        timeout = subscription.attempt_timeout

        try:
            response = await asyncio.wait_for(
                self.client.post(subscription.url, content=body, headers=headers, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise DeliveryTimeoutError(timeout) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryNetworkError(f"Request error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DeliveryHttpError(response.status_code, response.text[:200])
        return response.status_code

    def get_recent_deliveries(
        self, subscription_id: Optional[str] = None, limit: int = 100
    ) -> List[DeliveryOutcome]:
        """Get recent delivery outcomes, newest first.

        Args:
            subscription_id: Only outcomes for this subscription.
            limit: Maximum number of records to return.
        """
        outcomes = [
            o for o in reversed(self._deliveries)
            if subscription_id is None or o.subscription_id == subscription_id
        ]
        return outcomes[:limit]
