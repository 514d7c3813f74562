"""
In-process publish/subscribe for subscription state changes.

Handlers are isolated from each other: a handler that raises is logged and
skipped, the remaining handlers still run, and the publisher never sees the
exception. There is no persistence and no delivery across restarts.
"""

from __future__ import annotations

import logging
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Union

from .errors import HandlerFailure

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class SubscriptionEvent(str, Enum):
    INITIALIZED = "initialized"
    NO_SUBSCRIPTION = "noSubscription"
    TRIAL_EXPIRING_SOON = "trialExpiringSoon"
    TRIAL_EXPIRED = "trialExpired"
    SUBSCRIPTION_EXPIRING_SOON = "subscriptionExpiringSoon"
    SUBSCRIPTION_EXPIRED = "subscriptionExpired"
    USAGE_LIMIT_WARNING = "usageLimitWarning"
    RESTRICTIONS_CHECKED = "restrictionsChecked"
    ACCESS_DENIED = "accessDenied"
    SUBSCRIPTION_UPDATED = "subscriptionUpdated"
    SUBSCRIPTION_CHECKED = "subscriptionChecked"
    SUBSCRIPTION_CHECK_FAILED = "subscriptionCheckFailed"
    ERROR = "error"


def _event_name(event: Union[str, SubscriptionEvent]) -> str:
    if isinstance(event, SubscriptionEvent):
        return event.value
    name = str(event).strip()
    if not name:
        raise ValueError("event name is required")
    return name


class EventNotifier:
    """Observer lists keyed by event name, with unsubscribe handles."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: Union[str, SubscriptionEvent], handler: Handler) -> Callable[[], None]:
        """Register handler; returns a callable that removes it (idempotent)."""
        if not callable(handler):
            raise TypeError("handler must be callable")
        name = _event_name(event)
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name)
                if handlers and handler in handlers:
                    handlers.remove(handler)
                    if not handlers:
                        del self._handlers[name]

        return unsubscribe

    def publish(self, event: Union[str, SubscriptionEvent], payload: Any = None) -> int:
        """Invoke every handler for event. Returns how many handlers failed."""
        name = _event_name(event)
        with self._lock:
            handlers = list(self._handlers.get(name, ()))

        failures = 0
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                failures += 1
                failure = HandlerFailure(name, exc)
                logger.error(
                    "Subscription event handler failed",
                    exc_info=exc,
                    extra={"event": name, "error": str(failure), "error_code": failure.error_code},
                )
        return failures

    def handler_count(self, event: Union[str, SubscriptionEvent]) -> int:
        with self._lock:
            return len(self._handlers.get(_event_name(event), ()))

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
