"""
Periodic refresh of the session's subscription from the backend.

GET {api_base_url}/users/my-subscription returns {"success": bool, "data": {...}}.
A successful fetch is applied with update(); a failed fetch keeps the last
known good snapshot so a transient network error never locks the tenant out.
A 401 stops periodic refresh until restarted.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .access import SubscriptionAccessControl
from .errors import SubscriptionRefreshError
from .events import SubscriptionEvent

logger = logging.getLogger(__name__)

SUBSCRIPTION_ENDPOINT = "/users/my-subscription"


class SubscriptionRefresher:
    """Fetches the authoritative subscription and applies it to one session."""

    def __init__(
        self,
        access: SubscriptionAccessControl,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.access = access
        self.settings = access.settings
        self._client = client
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._timer = timer
        self._in_flight = 0
        self._last_started: Optional[float] = None
        self.stopped = False

    @property
    def in_flight(self) -> bool:
        """True while any fetch, forced or not, is still running."""
        return self._in_flight > 0

    async def fetch(self) -> Optional[Dict[str, Any]]:
        """Fetch the raw payload. Raises SubscriptionRefreshError."""
        url = f"{self.settings.api_base_url}{SUBSCRIPTION_ENDPOINT}"
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(url, headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise SubscriptionRefreshError(
                f"subscription fetch returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SubscriptionRefreshError(f"subscription fetch failed: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise SubscriptionRefreshError(message or "subscription fetch unsuccessful")
        return body.get("data")

    async def refresh(self, force: bool = False) -> bool:
        """Fetch and apply once. Returns True if a new snapshot was applied."""
        if self.in_flight and not force:
            logger.debug("Subscription refresh already in progress")
            return False

        now = self._timer()
        if (
            not force
            and self._last_started is not None
            and now - self._last_started < self.settings.min_refresh_interval_seconds
        ):
            logger.debug("Skipping subscription refresh; last check was too recent")
            return False

        self._in_flight += 1
        self._last_started = now
        try:
            payload = await self.fetch()
        except SubscriptionRefreshError as exc:
            logger.warning(
                "Subscription refresh failed; keeping last known snapshot",
                extra={"tenant_id": self.access.tenant_id, "error": exc.detail, "status_code": exc.status_code},
            )
            self.access.notifier.publish(SubscriptionEvent.SUBSCRIPTION_CHECK_FAILED, {"error": exc})
            if exc.status_code == 401:
                logger.info("Authentication rejected; stopping periodic subscription refresh")
                self.stop()
            return False
        finally:
            self._in_flight -= 1

        subscription = self.access.update(payload)
        self.access.notifier.publish(SubscriptionEvent.SUBSCRIPTION_CHECKED, {"subscription": subscription})
        return True

    def stop(self) -> None:
        self.stopped = True

    async def run_periodic(self, interval_seconds: Optional[int] = None) -> None:
        """Refresh every interval until stop() is called or the task is cancelled."""
        interval = interval_seconds or self.settings.refresh_interval_seconds
        self.stopped = False
        while not self.stopped:
            await self.refresh(force=True)
            if self.stopped:
                break
            await asyncio.sleep(interval)
