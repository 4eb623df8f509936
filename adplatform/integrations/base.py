"""Contracts for the outbound services the reconciliation core depends on.

Services only see these interfaces; concrete adapters (Stripe, Google Ads or
an in-memory double in tests) are picked by the API dependency layer.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class CheckoutLineItem:
    name: str
    unit_amount_cents: int
    quantity: int = 1


@dataclass
class CheckoutRequest:
    user_id: int
    campaign_ids: List[int]
    line_items: List[CheckoutLineItem]
    currency: str
    success_url: str
    cancel_url: str
    customer_email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class CheckoutSession:
    id: str
    url: Optional[str]


class CheckoutGateway(ABC):
    @abstractmethod
    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """Open a hosted checkout session. Raises ExternalServiceError on failure."""
        pass


class WebhookVerifier(ABC):
    @abstractmethod
    def verify(self, payload: bytes, signature: Optional[str]) -> None:
        """Raise SignatureError unless ``signature`` authenticates ``payload``."""
        pass


class AdAccountGateway(ABC):
    service_name = "google_ads"

    @abstractmethod
    def send_link_invitation(self, customer_id: str) -> str:
        """Invite ``customer_id`` under the manager account; returns the link handle."""
        pass

    @abstractmethod
    def fetch_link_status(self, resource_name: str) -> str:
        """Raw external status of a link: ACTIVE, PENDING, CANCELLED, TERMINATED, ..."""
        pass
