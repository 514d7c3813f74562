"""
Subscription access error hierarchy.

Provides:
- SubscriptionAccessError: base for all subscription gate failures
- MalformedSubscriptionPayload: payload does not match the subscription shape
- AccessDenied: the gate denied an action (terminal, never retried)
- HandlerFailure: an event subscriber raised (isolated, logged)
- SubscriptionRefreshError: fetching the authoritative record failed
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import AccessDecision


class SubscriptionAccessError(Exception):
    """Base exception for subscription access failures."""

    error_code = "SUBSCRIPTION_ACCESS_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class MalformedSubscriptionPayload(SubscriptionAccessError):
    """Raised when a subscription payload cannot be parsed."""

    error_code = "MALFORMED_SUBSCRIPTION_PAYLOAD"

    def __init__(self, detail: str, cause: Optional[Exception] = None):
        self.detail = detail
        self.cause = cause
        super().__init__(f"Malformed subscription payload: {detail}")


class AccessDenied(SubscriptionAccessError):
    """
    Raised when the gate denies an action.

    Carries the human-readable reason and the decision that produced it.
    The pending action must be aborted; repeating it will not change the outcome.
    """

    def __init__(self, decision: "AccessDecision", *, path: str = "", verb: str = ""):
        self.decision = decision
        self.reason = decision.reason or "access denied"
        self.error_code = decision.error_code or "ACCESS_DENIED"
        self.path = path
        self.verb = verb
        super().__init__(f"Subscription restriction: {self.reason}")

    def to_dict(self) -> dict:
        d: dict = {
            "error": self.error_code,
            "message": f"Access denied: {self.reason}",
            "reason": self.reason,
        }
        if self.decision.remaining is not None:
            d["remaining"] = dict(self.decision.remaining)
        return d


class HandlerFailure(SubscriptionAccessError):
    """Wraps an exception raised by an event handler."""

    error_code = "EVENT_HANDLER_FAILED"

    def __init__(self, event: str, cause: Exception):
        self.event = event
        self.cause = cause
        super().__init__(f"Handler for {event} failed: {cause}")


class SubscriptionRefreshError(SubscriptionAccessError):
    """Raised when the authoritative subscription record cannot be fetched."""

    error_code = "SUBSCRIPTION_REFRESH_FAILED"

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.status_code is not None:
            d["status_code"] = self.status_code
        return d
