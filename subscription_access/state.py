from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Optional

from .errors import MalformedSubscriptionPayload
from .events import EventNotifier, SubscriptionEvent
from .models import Subscription
from .schemas import parse_subscription

logger = logging.getLogger(__name__)

StatusCheck = Callable[[Optional[Subscription]], None]


class SubscriptionStateHolder:
    """Most recently applied subscription snapshot for one session.

    Snapshots are immutable and swapped as a whole under a lock, so get()
    returns either the previous or the new snapshot, never a partial merge.
    """

    def __init__(self, notifier: Optional[EventNotifier] = None, status_check: Optional[StatusCheck] = None) -> None:
        self._lock = RLock()
        self._subscription: Optional[Subscription] = None
        self._initialized = False
        self.notifier = notifier or EventNotifier()
        self.status_check = status_check

    @property
    def initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def get(self) -> Optional[Subscription]:
        with self._lock:
            return self._subscription

    def initialize(self, payload: Any) -> Optional[Subscription]:
        """Set state from an authentication response; malformed payloads mean no subscription."""
        subscription = self._swap(payload, source="initialize")
        if subscription is not None:
            self.notifier.publish(SubscriptionEvent.INITIALIZED, {"subscription": subscription})
        self._run_status_check(subscription)
        return subscription

    def update(self, payload: Any) -> Optional[Subscription]:
        """Replace state with a freshly fetched record."""
        subscription = self._swap(payload, source="update")
        self._run_status_check(subscription)
        return subscription

    def clear(self) -> None:
        with self._lock:
            self._subscription = None
            self._initialized = False

    def _swap(self, payload: Any, *, source: str) -> Optional[Subscription]:
        error: Optional[MalformedSubscriptionPayload] = None
        subscription: Optional[Subscription] = None
        if payload is not None:
            try:
                subscription = parse_subscription(payload)
            except MalformedSubscriptionPayload as exc:
                error = exc
                logger.warning(
                    "Malformed subscription payload; treating tenant as unsubscribed",
                    extra={"source": source, "error": exc.detail, "error_code": exc.error_code},
                )

        with self._lock:
            self._subscription = subscription
            self._initialized = True

        if error is not None:
            self.notifier.publish(SubscriptionEvent.ERROR, error)
        return subscription

    def _run_status_check(self, subscription: Optional[Subscription]) -> None:
        if self.status_check is None:
            return
        try:
            self.status_check(subscription)
        except Exception as exc:
            logger.exception("Subscription status check failed")
            self.notifier.publish(SubscriptionEvent.ERROR, exc)
