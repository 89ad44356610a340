"""
User account service.

Owns the app_users rows, including the embedded subscription record that the
billing core reads and writes:
- get_or_create_user(user_id, email)
- get_subscription_record(user_id)
- save_subscription_record(user_id, updates)
- lookups by Stripe customer / subscription id
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from resumeapi.core.database import get_db_session, users as app_users
from resumeapi.core.errors import NotFoundError
from resumeapi.models.subscription import SubscriptionRecord
from resumeapi.models.user import User


SUBSCRIPTION_FIELDS = tuple(SubscriptionRecord.model_fields.keys())


def _record_from_row(row) -> SubscriptionRecord:
    return SubscriptionRecord.model_validate({field: getattr(row, field) for field in SUBSCRIPTION_FIELDS})


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return User(
            user_id=row.user_id,
            created_at=row.created_at,
            email=row.email,
            status=row.status,
            subscription=_record_from_row(row),
        )


def get_or_create_user(user_id: str, email: Optional[str] = None) -> User:
    """Account row for an authenticated caller; a newer email from the token replaces the stored one."""
    existing = get_user(user_id)
    if existing:
        if email and existing.email != email:
            with get_db_session() as session:
                session.execute(
                    update(app_users).where(app_users.c.user_id == user_id).values(email=email)
                )
            return existing.model_copy(update={"email": email})
        return existing

    now = datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    email=email,
                    status="active",
                    plan="free",
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Another request created the row first
        return get_user(user_id)
    return User(user_id=user_id, created_at=now, email=email, status="active")


def get_subscription_record(user_id: str) -> Optional[SubscriptionRecord]:
    user = get_user(user_id)
    return user.subscription if user else None


def save_subscription_record(user_id: str, updates: Dict[str, Any]) -> SubscriptionRecord:
    """
    Write the given subscription fields and return the stored record.

    Only the columns named in `updates` are written; a concurrent writer's
    other columns survive. The merged record is validated first, so a bad
    field never reaches the table.

    Raises:
        NotFoundError: Unknown user
        pydantic.ValidationError: A field failed validation
    """
    unknown = set(updates) - set(SUBSCRIPTION_FIELDS)
    if unknown:
        raise ValueError(f"Not subscription fields: {sorted(unknown)}")

    current = get_subscription_record(user_id)
    if current is None:
        raise NotFoundError(f"User {user_id} not found")

    validated = SubscriptionRecord.model_validate({**current.model_dump(), **updates}).model_dump()
    with get_db_session() as session:
        session.execute(
            update(app_users)
            .where(app_users.c.user_id == user_id)
            .values(**{field: validated[field] for field in updates}, updated_at=datetime.now(timezone.utc))
        )
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        return _record_from_row(row)


def find_user_id_by_customer(customer_id: Optional[str]) -> Optional[str]:
    if not customer_id:
        return None
    with get_db_session() as session:
        row = session.execute(
            select(app_users.c.user_id).where(app_users.c.stripe_customer_id == customer_id)
        ).first()
        return row[0] if row else None


def find_user_id_by_subscription(subscription_id: Optional[str]) -> Optional[str]:
    if not subscription_id:
        return None
    with get_db_session() as session:
        row = session.execute(
            select(app_users.c.user_id).where(app_users.c.stripe_subscription_id == subscription_id)
        ).first()
        return row[0] if row else None


def clear_all_customer_ids() -> int:
    """Forget every stored Stripe customer id (after a provider account swap)."""
    with get_db_session() as session:
        result = session.execute(
            update(app_users)
            .where(app_users.c.stripe_customer_id.is_not(None))
            .values(stripe_customer_id=None, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount or 0
