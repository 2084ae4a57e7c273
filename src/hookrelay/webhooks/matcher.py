"""Event pattern matching.

Subscriptions list the event types they want as patterns:

- ``*`` on its own receives every event;
- ``project.created`` matches exactly that event type;
- ``project.*`` is a glob: ``*`` stands for any character sequence and the
  pattern is anchored at both ends. No other metacharacters exist.

Patterns are compiled once, when a subscription is registered, so a malformed
pattern is rejected up front instead of failing at dispatch time.
"""

import re
from functools import lru_cache
from typing import Iterable, Optional, Tuple

from .exceptions import InvalidEventPatternError
from .models import Subscription

CATCH_ALL = "*"

_ALLOWED = re.compile(r"[A-Za-z0-9_.:*\-]+")


class EventPattern:
    """A single compiled subscription pattern."""

    __slots__ = ("raw", "_regex")

    def __init__(self, raw: str):
        if not isinstance(raw, str) or not raw:
            raise InvalidEventPatternError(str(raw), "pattern must be a non-empty string")
        if not _ALLOWED.fullmatch(raw):
            raise InvalidEventPatternError(
                raw, "only letters, digits, '_', '-', '.', ':' and '*' are allowed"
            )
        self.raw = raw
        self._regex: Optional[re.Pattern] = None
        if "*" in raw and raw != CATCH_ALL:
            body = ".*".join(re.escape(part) for part in raw.split("*"))
            self._regex = re.compile(body)

    def matches(self, event_type: str) -> bool:
        if self.raw == CATCH_ALL:
            return True
        if self._regex is None:
            return self.raw == event_type
        return self._regex.fullmatch(event_type) is not None

    def __repr__(self) -> str:
        return f"EventPattern({self.raw!r})"


class PatternSet:
    """Ordered, de-duplicated set of compiled patterns."""

    def __init__(self, patterns: Iterable[str]):
        seen = []
        for raw in patterns:
            if raw not in seen:
                seen.append(raw)
        if not seen:
            raise InvalidEventPatternError("", "at least one event pattern is required")
        self._patterns: Tuple[EventPattern, ...] = tuple(EventPattern(p) for p in seen)
        self.catch_all = CATCH_ALL in seen

    @property
    def raw(self) -> list:
        return [p.raw for p in self._patterns]

    def matches(self, event_type: str) -> bool:
        if self.catch_all:
            return True
        return any(p.matches(event_type) for p in self._patterns)


@lru_cache(maxsize=1024)
def compile_patterns(patterns: Tuple[str, ...]) -> PatternSet:
    """Compile (and cache) a pattern tuple.

    Raises:
        InvalidEventPatternError: If any pattern is malformed or the set is empty.
    """
    return PatternSet(patterns)


def matches(subscription: Subscription, event_type: str) -> bool:
    """Check whether a subscription's patterns select ``event_type``.

    Activity is not considered here; see ``WebhookRegistry.select_subscriptions``.
    """
    return compile_patterns(tuple(subscription.events)).matches(event_type)
