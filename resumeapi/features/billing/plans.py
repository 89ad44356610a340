"""
Plan resolution for provider subscriptions.

Pure functions: no database, no provider calls.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from resumeapi.models.subscription import Plan


PAID_PLANS = (Plan.PROFESSIONAL.value, Plan.PREMIUM.value)


def resolve_plan(metadata_plan: Optional[str], price_id: Optional[str], price_map: Dict[str, str]) -> str:
    """
    Decide which paid tier a subscription grants.

    Order: explicit metadata plan, configured price id, price id naming
    convention, then premium.
    """
    if metadata_plan in PAID_PLANS:
        return metadata_plan

    if price_id:
        mapped = price_map.get(price_id)
        if mapped in PAID_PLANS:
            return mapped

        lowered = price_id.lower()
        if Plan.PROFESSIONAL.value in lowered:
            return Plan.PROFESSIONAL.value
        if Plan.PREMIUM.value in lowered:
            return Plan.PREMIUM.value

    # Unrecognized paid price
    return Plan.PREMIUM.value


def parse_period_end(value: Any) -> Optional[datetime]:
    """Epoch seconds -> aware UTC datetime, or None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        return datetime.fromtimestamp(value, timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
