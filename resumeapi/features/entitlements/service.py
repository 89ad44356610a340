"""
resumeapi/features/entitlements/service.py

Plan gate for paid features.

Tiers are ordered free < professional < premium. A paid feature needs a plan
at or above the tier and a subscription that is active, trialing, or past
due (renewal failed but the grace period is still running).
"""

import logging
from typing import Callable, Optional

from fastapi import Depends

from resumeapi.core.auth import get_current_user_id
from resumeapi.core.errors import PaymentRequiredError, UnauthorizedError
from resumeapi.features.users.service import get_subscription_record
from resumeapi.models.subscription import (
    ACTIVE_STATUSES,
    PLAN_ORDER,
    Plan,
    SubscriptionRecord,
    SubscriptionStatus,
)


logger = logging.getLogger("resumeapi")

ENTITLED_STATUSES = ACTIVE_STATUSES | {SubscriptionStatus.PAST_DUE.value}


def has_plan_access(record: Optional[SubscriptionRecord], needed: str) -> bool:
    if needed == Plan.FREE.value:
        return True
    if record is None:
        return False
    if PLAN_ORDER.get(record.plan, 0) < PLAN_ORDER.get(needed, 0):
        return False
    return record.subscription_status in ENTITLED_STATUSES


def requires_plan(needed: str = Plan.FREE.value) -> Callable:
    """
    FastAPI dependency factory.

    Usage:
        @router.post("/export", dependencies=[Depends(requires_plan("premium"))])

    Raises:
        PaymentRequiredError (402): Plan too low or subscription not in good standing
    """
    if needed not in PLAN_ORDER:
        raise ValueError(f"Unknown plan tier: {needed}")

    def _check(user_id: str = Depends(get_current_user_id)) -> SubscriptionRecord:
        record = get_subscription_record(user_id)
        if record is None:
            raise UnauthorizedError("User not found")

        if not has_plan_access(record, needed):
            logger.info(
                "[entitlements] plan required",
                extra={"user_id": user_id, "needed": needed, "plan": record.plan, "status": record.subscription_status},
            )
            raise PaymentRequiredError(
                f"Upgrade to {needed} plan required for this feature. Your current plan: {record.plan}"
            )
        return record

    return _check
