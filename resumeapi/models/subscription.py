"""
resumeapi/models/subscription.py

Subscription state as stored on the user account, and the normalized view of
one provider-reported subscription that the reconciliation engine consumes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator


# Metadata keys written on checkout sessions and subscriptions
METADATA_USER_ID = "userId"
METADATA_PLAN = "plan"


class Plan(str, Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})
KNOWN_STATUSES = frozenset(s.value for s in SubscriptionStatus)
PLAN_ORDER = {Plan.FREE.value: 0, Plan.PROFESSIONAL.value: 1, Plan.PREMIUM.value: 2}


class SubscriptionRecord(BaseModel):
    """Billing state embedded in a user account."""
    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    plan: Plan = Plan.FREE
    subscription_status: Optional[SubscriptionStatus] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    current_period_end: Optional[datetime] = None

    @field_validator("current_period_end", mode="before")
    @classmethod
    def _period_end_is_datetime(cls, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if not isinstance(value, datetime):
            raise ValueError("current_period_end must be a datetime")
        if value.tzinfo is None:
            # SQLite hands back naive values; everything is stored in UTC
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status in ACTIVE_STATUSES


class SubscriptionEvent(BaseModel):
    """
    Normalized provider subscription object.

    `current_period_end` is kept as the raw provider value (epoch seconds);
    the engine decides whether it is usable.
    """
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Any = None
    customer_id: Optional[str] = None
    created: Optional[int] = None
    metadata: Dict[str, str] = {}

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get(METADATA_USER_ID) or None

    @property
    def plan(self) -> Optional[str]:
        return self.metadata.get(METADATA_PLAN) or None
