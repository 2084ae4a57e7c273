"""Retry / backoff controller.

After a failed attempt ``n`` (1-based) a job is rescheduled
``base * 2**n`` seconds later, as long as the subscription's attempt budget
allows another try. Once the budget is spent the job is finalized and the
failure notifier is told exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from .exceptions import RetriesExhaustedError
from .models import DeliveryJob, DeliveryOutcome, FailureNotice, Subscription, utcnow

logger = logging.getLogger(__name__)

FailureNotifier = Callable[[FailureNotice], Awaitable[None]]


async def log_failure_notice(notice: FailureNotice) -> None:
    """Default notifier: log the terminal failure."""
    logger.error(
        f"Webhook failure notification for {notice.subscription.id}: "
        f"url={notice.subscription.url} event={notice.event_type} "
        f"attempts={notice.attempts} error={notice.error}"
    )


@dataclass
class RetryPolicy:
    """Exponential backoff schedule."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 3600.0

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt``.

        With the default base this is 2s, 4s, 8s, ... for attempts 1, 2, 3.
        """
        return min(self.base_delay_seconds * (2 ** attempt), self.max_delay_seconds)


class RetryController:
    """Decides what happens to a job after a failed attempt."""

    def __init__(
        self,
        reschedule: Callable[[DeliveryJob], None],
        policy: Optional[RetryPolicy] = None,
        notifier: Optional[FailureNotifier] = None,
    ):
        """Initialize controller.

        Args:
            reschedule: Puts a job back on the delivery queue.
            policy: Backoff schedule.
            notifier: Awaited once per terminally failed job.
        """
        self._reschedule = reschedule
        self.policy = policy or RetryPolicy()
        self._notifier = notifier or log_failure_notice
        self.exhausted_count = 0

    async def handle_failure(
        self,
        job: DeliveryJob,
        subscription: Subscription,
        outcome: DeliveryOutcome,
    ) -> bool:
        """Reschedule or finalize a job after a failed attempt.

        Returns:
            True if the job was rescheduled, False if it is terminally failed.
        """
        if job.attempt < subscription.max_attempts:
            delay = self.policy.delay_for(job.attempt)
            job.next_attempt_at = utcnow() + timedelta(seconds=delay)
            self._reschedule(job)
            logger.info(
                f"Webhook {subscription.id} retrying {job.event.event_type} in {delay}s "
                f"(attempt {job.attempt + 1}/{subscription.max_attempts})"
            )
            return True

        await self._finalize(job, subscription, outcome)
        return False

    async def _finalize(
        self,
        job: DeliveryJob,
        subscription: Subscription,
        outcome: DeliveryOutcome,
    ) -> None:
        exhausted = RetriesExhaustedError(job.job_id, job.attempt, outcome.error)
        self.exhausted_count += 1
        logger.error(f"Webhook {subscription.id}: {exhausted}")

        notice = FailureNotice(
            subscription=subscription,
            event_type=job.event.event_type,
            error=outcome.error or str(exhausted),
            attempts=job.attempt,
        )
        try:
            await self._notifier(notice)
        except Exception as e:
            logger.error(f"Failure notifier raised for webhook {subscription.id}: {e}", exc_info=True)
