"""
Pydantic schemas for the subscription payload returned by the backend.

The backend speaks camelCase (GET /users/my-subscription, auth responses and
push updates). parse_subscription() validates a raw payload and converts it
into the immutable Subscription snapshot used by the evaluator.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import MalformedSubscriptionPayload
from .models import (
    BEDS,
    BRANCHES,
    ModuleGrant,
    Restrictions,
    Subscription,
    SubscriptionStatus,
    Usage,
)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ModulePayload(_Payload):
    """A module entry; permissions maps submodule -> {create, read, update, delete}."""

    module_name: str = Field(..., alias="moduleName", min_length=1)
    enabled: bool = Field(True, description="Whether the plan enables the module")
    permissions: Optional[Dict[str, Dict[str, bool]]] = Field(None, description="Per-submodule permission flags")


class FeaturePayload(_Payload):
    name: str = Field(..., min_length=1)
    enabled: bool = True


class RestrictionsPayload(_Payload):
    max_beds: Optional[int] = Field(None, alias="maxBeds", ge=0)
    max_branches: Optional[int] = Field(None, alias="maxBranches", ge=0)
    modules: List[Union[str, ModulePayload]] = Field(default_factory=list)
    features: List[Union[str, FeaturePayload]] = Field(default_factory=list)


class UsagePayload(_Payload):
    beds_used: int = Field(0, alias="bedsUsed", ge=0)
    branches_used: int = Field(0, alias="branchesUsed", ge=0)

    @field_validator("beds_used", "branches_used", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class SubscriptionPayload(_Payload):
    """Wire shape of a tenant subscription."""

    status: SubscriptionStatus
    plan_id: Optional[Union[str, Dict[str, Any]]] = Field(None, alias="planId")
    plan_name: Optional[str] = Field(None, alias="planName")
    is_trial_active: bool = Field(False, alias="isTrialActive")
    trial_end_date: Optional[datetime] = Field(None, alias="trialEndDate")
    end_date: Optional[datetime] = Field(None, alias="endDate")
    restrictions: RestrictionsPayload = Field(default_factory=RestrictionsPayload)
    usage: UsagePayload = Field(default_factory=UsagePayload)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("trial_end_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _trial_requires_end_date(self) -> "SubscriptionPayload":
        if self.status is SubscriptionStatus.TRIAL and self.trial_end_date is None:
            raise ValueError("trial subscriptions require trialEndDate")
        return self

    def _plan_identity(self) -> tuple:
        plan = self.plan_id
        if isinstance(plan, dict):
            plan_id = plan.get("_id") or plan.get("id")
            plan_name = self.plan_name or plan.get("planName")
            return (str(plan_id) if plan_id is not None else None, plan_name)
        return (plan, self.plan_name)

    def to_subscription(self) -> Subscription:
        modules: Dict[str, ModuleGrant] = {}
        for entry in self.restrictions.modules:
            if isinstance(entry, str):
                grant = ModuleGrant(name=entry)
            else:
                permissions = None
                if entry.permissions is not None:
                    permissions = {
                        submodule: frozenset(kind for kind, granted in flags.items() if granted)
                        for submodule, flags in entry.permissions.items()
                    }
                grant = ModuleGrant(name=entry.module_name, enabled=entry.enabled, permissions=permissions)
            modules[grant.name] = grant

        features = set()
        for entry in self.restrictions.features:
            if isinstance(entry, str):
                features.add(entry.strip())
            elif entry.enabled:
                features.add(entry.name.strip())

        limits: Dict[str, int] = {}
        if self.restrictions.max_beds is not None:
            limits[BEDS] = self.restrictions.max_beds
        if self.restrictions.max_branches is not None:
            limits[BRANCHES] = self.restrictions.max_branches

        plan_id, plan_name = self._plan_identity()
        return Subscription(
            status=self.status,
            plan_id=plan_id,
            plan_name=plan_name,
            is_trial_active=self.is_trial_active,
            trial_end_date=self.trial_end_date,
            end_date=self.end_date,
            restrictions=Restrictions(limits=limits, modules=modules, features=frozenset(f for f in features if f)),
            usage=Usage(counts={BEDS: self.usage.beds_used, BRANCHES: self.usage.branches_used}),
        )


def parse_subscription(payload: Any) -> Subscription:
    """Validate a raw payload. Raises MalformedSubscriptionPayload on any shape error."""
    if isinstance(payload, Subscription):
        return payload
    if not isinstance(payload, dict):
        raise MalformedSubscriptionPayload(f"expected an object, got {type(payload).__name__}")
    try:
        return SubscriptionPayload.model_validate(payload).to_subscription()
    except ValidationError as exc:
        raise MalformedSubscriptionPayload(f"{exc.error_count()} validation error(s)", cause=exc) from exc
    except ValueError as exc:
        raise MalformedSubscriptionPayload(str(exc), cause=exc) from exc
