"""Opening a checkout session for one or more DRAFT campaigns.

Payment rows are staged before the processor call and committed together
with the session id, so a processor failure leaves no orphan PENDING rows.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from adplatform.config import BILLING_SETTINGS, STRIPE_SETTINGS
from adplatform.integrations.base import CheckoutGateway, CheckoutLineItem, CheckoutRequest
from adplatform.models.db.campaigns import CampaignRequest
from adplatform.models.db.enums import CampaignStatus
from adplatform.models.db.users import User
from adplatform.services.audit import AuditTrail
from adplatform.services.payment_ledger import PaymentLedger
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
)

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    session_id: str
    url: Optional[str]
    payment_ids: List[int]
    total_cents: int


class CheckoutService:
    def __init__(
        self,
        repo: Repository,
        gateway: CheckoutGateway,
        ledger: Optional[PaymentLedger] = None,
        audit: Optional[AuditTrail] = None,
        *,
        billing: Mapping[str, object] = BILLING_SETTINGS,
    ):
        self.repo = repo
        self.gateway = gateway
        self.ledger = ledger or PaymentLedger(repo)
        self.audit = audit or AuditTrail()
        self.billing = billing

    def _load_campaigns(self, user: User, campaign_ids: Sequence[int]) -> List[CampaignRequest]:
        account = self.repo.get_client_account_for_user(user.id)
        if account is None:
            raise NotFoundError("Client account not found", details={"user_id": user.id})
        campaigns = []
        for cid in campaign_ids:
            campaign = self.repo.get(CampaignRequest, cid)
            if campaign is None:
                raise NotFoundError(f"Campaign {cid} not found", details={"campaign_id": cid})
            if campaign.client_account_id != account.id:
                raise AuthorizationError("Access denied to this campaign", details={"campaign_id": cid})
            # Only drafts are billable; a second payment for a launched campaign is refused
            if campaign.status != CampaignStatus.DRAFT:
                raise InvalidStateError(
                    "Only DRAFT campaigns can be paid for",
                    details={"campaign_id": cid, "status": campaign.status.value},
                )
            if self.ledger.has_paid_payment(cid):
                raise ConflictError("Campaign is already paid", details={"campaign_id": cid})
            campaigns.append(campaign)
        return campaigns

    def open_session(
        self,
        user: User,
        campaign_ids: Sequence[int],
        *,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutResult:
        campaigns = self._load_campaigns(user, campaign_ids)
        payments = self.ledger.create_for_checkout(user.id, [c.id for c in campaigns])
        unit = payments[0]
        currency = str(self.billing["currency"])

        line_items = [CheckoutLineItem(name=f"Video campaign: {c.clip_title}", unit_amount_cents=unit.amount_cents) for c in campaigns]
        vat_total = sum(p.vat_cents for p in payments)
        if vat_total:
            line_items.append(CheckoutLineItem(name=f"VAT ({float(unit.vat_rate) * 100:g}%)", unit_amount_cents=vat_total))

        request = CheckoutRequest(
            user_id=user.id,
            campaign_ids=[c.id for c in campaigns],
            line_items=line_items,
            currency=currency,
            success_url=success_url or str(STRIPE_SETTINGS["success_url"]),
            cancel_url=cancel_url or str(STRIPE_SETTINGS["cancel_url"]),
            customer_email=user.email,
        )
        try:
            session = self.gateway.create_checkout_session(request)
        except AppError:
            self.repo.rollback()
            raise
        except Exception as e:
            self.repo.rollback()
            logger.error("Checkout gateway failed", user_id=user.id, error=str(e), exc_info=True)
            raise ExternalServiceError("stripe", "Failed to create checkout session", original_error=e) from e

        self.ledger.attach_session(payments, session.id)
        self.repo.commit()
        result = CheckoutResult(
            session_id=session.id,
            url=session.url,
            payment_ids=[p.id for p in payments],
            total_cents=sum(p.total_cents for p in payments),
        )
        logger.info(
            "Checkout session opened",
            user_id=user.id,
            session_id=session.id,
            campaign_ids=request.campaign_ids,
            total_cents=result.total_cents,
        )
        self.audit.emit(
            "checkout_opened",
            {"session_id": session.id, "campaign_ids": request.campaign_ids, "total_cents": result.total_cents},
            user_id=user.id,
        )
        return result


__all__ = ["CheckoutService", "CheckoutResult"]
