"""
Billing provider protocol.

Defines the interface the billing core needs from a payment provider
(Stripe today). Implementations are constructed explicitly with their
credentials and handed to the service layer, so tests can pass a fake.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass

from resumeapi.models.subscription import SubscriptionEvent


@dataclass(frozen=True)
class PriceInfo:
    """The parts of a provider price the checkout builder validates."""
    price_id: str
    type: Optional[str]  # "recurring" | "one_time"
    recurring: bool
    active: bool = True
    unit_amount: Optional[int] = None
    interval: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Every lookup by id raises ProviderNotFoundError when the provider does
    not know the id, so callers can self-heal stale references.
    """

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionEvent:
        """Fetch one subscription, normalized."""
        ...

    def list_customer_subscriptions(self, customer_id: str, limit: int = 10) -> List[SubscriptionEvent]:
        """List a customer's subscriptions in any status, newest first."""
        ...

    def retrieve_price(self, price_id: str) -> PriceInfo:
        ...

    def retrieve_customer(self, customer_id: str) -> str:
        """
        Confirm a customer exists.

        Returns:
            The customer id

        Raises:
            ProviderNotFoundError: Unknown or deleted customer
        """
        ...

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        """
        Create a subscription-mode checkout session.

        `metadata` is attached to the session and to the subscription it
        creates.
        """
        ...

    def change_subscription_price(
        self,
        subscription_id: str,
        price_id: str,
        metadata: Dict[str, str],
    ) -> SubscriptionEvent:
        """Swap the subscription's first item to `price_id`, prorating."""
        ...

    def cancel_subscription(self, subscription_id: str) -> SubscriptionEvent:
        ...

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook signature over the raw body and parse the event.

        Raises:
            BillingWebhookError: Missing/invalid signature, missing secret or bad payload
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class ProviderNotFoundError(BillingProviderError):
    """The provider has no object with the requested id."""
    pass


class ProviderAuthError(BillingProviderError):
    """The provider rejected our credentials."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook verification/parsing errors."""
    pass
