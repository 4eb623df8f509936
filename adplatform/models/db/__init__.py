from .users import User
from .client_accounts import ClientAccount
from .campaigns import CampaignRequest
from .payments import Payment
from .webhook_events import WebhookEvent
from .enums import CampaignStatus, PaymentStatus, LinkStatus, UserRole, WebhookEventStatus

__all__ = [
    "User",
    "ClientAccount",
    "CampaignRequest",
    "Payment",
    "WebhookEvent",
    "CampaignStatus",
    "PaymentStatus",
    "LinkStatus",
    "UserRole",
    "WebhookEventStatus",
]
