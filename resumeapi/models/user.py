from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from resumeapi.models.subscription import SubscriptionRecord


class User(BaseModel):
    """An account as the billing core sees it: identity plus subscription state."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: datetime
    email: Optional[str] = None
    status: str = "active"
    subscription: SubscriptionRecord = SubscriptionRecord()

    @property
    def plan(self) -> str:
        return self.subscription.plan
