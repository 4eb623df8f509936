"""Central Enum definitions for core domain states.

Shared by DB models, schemas and business logic so that status strings are
never spelled out by hand.
"""
from __future__ import annotations
import enum


class UserRole(str, enum.Enum):
    CLIENT = "CLIENT"
    ACCOUNT_MANAGER = "ACCOUNT_MANAGER"
    ADMIN = "ADMIN"


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    ENDED = "ENDED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class LinkStatus(str, enum.Enum):
    PENDING = "PENDING"
    LINKED = "LINKED"
    REFUSED = "REFUSED"


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


# Campaigns that still occupy an ad slot (count as "active" in billing stats)
ACTIVE_CAMPAIGN_STATUSES = frozenset({CampaignStatus.QUEUED, CampaignStatus.RUNNING, CampaignStatus.PAUSED})
DELETABLE_CAMPAIGN_STATUSES = frozenset({CampaignStatus.DRAFT, CampaignStatus.ENDED, CampaignStatus.CANCELLED})

__all__ = [
    "UserRole",
    "CampaignStatus",
    "PaymentStatus",
    "LinkStatus",
    "WebhookEventStatus",
    "ACTIVE_CAMPAIGN_STATUSES",
    "DELETABLE_CAMPAIGN_STATUSES",
]
