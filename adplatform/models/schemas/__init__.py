from .base import ResponseBase, Page, PageMeta
from .users import UserCreate, UserCreated, UserRead, UserUpdate
from .client_accounts import ClientAccountRead, LinkRequest
from .campaigns import BudgetConfig, CampaignCreate, CampaignLaunch, CampaignRead, CampaignUpdate
from .payments import BillingStats, CheckoutCreate, CheckoutSessionRead, InvoiceRead, PaymentRead
from .webhooks import (
    CheckoutSessionCompleted,
    InvoiceFinalized,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    UnknownEvent,
    decode_event,
)

__all__ = [
    # Base
    "ResponseBase",
    "Page",
    "PageMeta",

    # Users & accounts
    "UserCreate",
    "UserCreated",
    "UserRead",
    "UserUpdate",
    "ClientAccountRead",
    "LinkRequest",

    # Campaigns
    "BudgetConfig",
    "CampaignCreate",
    "CampaignLaunch",
    "CampaignRead",
    "CampaignUpdate",

    # Billing
    "BillingStats",
    "CheckoutCreate",
    "CheckoutSessionRead",
    "InvoiceRead",
    "PaymentRead",

    # Webhooks
    "CheckoutSessionCompleted",
    "InvoiceFinalized",
    "PaymentIntentFailed",
    "PaymentIntentSucceeded",
    "UnknownEvent",
    "decode_event",
]
