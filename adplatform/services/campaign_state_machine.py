"""Campaign lifecycle.

DRAFT -> QUEUED -> RUNNING -> PAUSED, with QUEUED/RUNNING/PAUSED -> ENDED and
any non-terminal state -> CANCELLED for administrators. QUEUED -> RUNNING is
driven by provisioning, not by the client.

Every status change goes through ``transition()``, a compare-and-set on the
status the caller observed. Both routes to QUEUED (the client's ``launch``
and the checkout webhook's ``queue_paid``) use it, so when they race exactly
one write lands and the other sees the row already QUEUED and returns as a
no-op. The QUEUED write also carries an EXISTS over the campaign's PAID
payments, so a refund landing between the payment check and the write makes
the write miss instead of queueing an unpaid campaign.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from sqlalchemy import func, or_

from adplatform.config import CAMPAIGN_SETTINGS
from adplatform.models.db.campaigns import CampaignRequest
from adplatform.models.db.client_accounts import ClientAccount
from adplatform.models.db.enums import ACTIVE_CAMPAIGN_STATUSES, CampaignStatus, DELETABLE_CAMPAIGN_STATUSES
from adplatform.models.db.payments import Payment
from adplatform.services.audit import AuditTrail
from adplatform.services.payment_ledger import PaymentLedger
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.errors import (
    AppError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PaymentRequiredError,
    ValidationError,
)
from adplatform.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)

VIDEO_URL_PATTERN = re.compile(r"^(https?://)?(www\.)?(youtube\.com/(watch\?v=|embed/|v/)|youtu\.be/)[\w-]+")

# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: Mapping[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.QUEUED: frozenset({CampaignStatus.DRAFT}),
    CampaignStatus.RUNNING: frozenset({CampaignStatus.QUEUED}),
    CampaignStatus.PAUSED: frozenset({CampaignStatus.RUNNING}),
    CampaignStatus.ENDED: frozenset({CampaignStatus.QUEUED, CampaignStatus.RUNNING, CampaignStatus.PAUSED}),
    CampaignStatus.CANCELLED: frozenset({
        CampaignStatus.DRAFT,
        CampaignStatus.QUEUED,
        CampaignStatus.RUNNING,
        CampaignStatus.PAUSED,
    }),
}

MAX_TRANSITION_ATTEMPTS = 3

EDITABLE_FIELDS = ("clip_url", "clip_title", "artists_list", "countries", "targeting_config", "budget_config")


def validate_video_url(url: str) -> str:
    url = (url or "").strip()
    if not VIDEO_URL_PATTERN.match(url):
        raise ValidationError("Invalid YouTube URL", details={"field": "clip_url"})
    return url


def validate_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Campaign title is required", details={"field": "clip_title"})
    return title


def validate_budget(budget: Mapping[str, Any]) -> Dict[str, float]:
    try:
        daily = float(budget["daily_budget_eur"])
        total = float(budget["total_budget_eur"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Budget must define daily_budget_eur and total_budget_eur", details={"field": "budget_config"}) from e
    if daily <= 0:
        raise ValidationError("Daily budget must be positive", details={"field": "budget_config.daily_budget_eur"})
    if total < daily:
        raise ValidationError(
            "Total budget must be at least the daily budget",
            details={"field": "budget_config.total_budget_eur"},
        )
    return {"daily_budget_eur": daily, "total_budget_eur": total}


class CampaignStateMachine:
    def __init__(
        self,
        repo: Repository,
        audit: Optional[AuditTrail] = None,
        ledger: Optional[PaymentLedger] = None,
        *,
        settings: Mapping[str, int] = CAMPAIGN_SETTINGS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.audit = audit or AuditTrail()
        self.ledger = ledger or PaymentLedger(repo, clock=clock)
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------ reads
    def get(self, campaign_id: int) -> CampaignRequest:
        campaign = self.repo.get(CampaignRequest, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found", details={"campaign_id": campaign_id})
        return campaign

    def list_for_account(
        self,
        client_account_id: int,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[CampaignStatus] = None,
        search: Optional[str] = None,
    ) -> tuple[list[CampaignRequest], int]:
        limit = min(limit or int(self.settings["default_page_size"]), int(self.settings["max_page_size"]))
        page = max(page, 1)
        q = self.repo.query(CampaignRequest).filter(CampaignRequest.client_account_id == client_account_id)
        if status is not None:
            q = q.filter(CampaignRequest.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            q = q.filter(or_(
                func.lower(CampaignRequest.clip_title).like(pattern),
                func.lower(CampaignRequest.artists_list).like(pattern),
            ))
        total = q.count()
        items = (
            q.order_by(CampaignRequest.created_at.desc(), CampaignRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    # --------------------------------------------------------------- creation
    def create(self, client_account_id: int, draft: Mapping[str, Any], actor: Optional[int] = None) -> CampaignRequest:
        account = self.repo.get(ClientAccount, client_account_id)
        if account is None:
            raise ConflictError(
                "Client account not found. Please connect your Google Ads account first.",
                details={"client_account_id": client_account_id},
            )
        campaign = CampaignRequest(
            client_account_id=client_account_id,
            clip_url=validate_video_url(draft.get("clip_url", "")),
            clip_title=validate_title(draft.get("clip_title")),
            artists_list=draft.get("artists_list") or "",
            countries=list(draft.get("countries") or []),
            targeting_config=dict(draft.get("targeting_config") or {}),
            budget_config=validate_budget(draft.get("budget_config") or {}),
            duration_days=int(self.settings["duration_days"]),
            status=CampaignStatus.DRAFT,
        )

        # Claim a slot first: the counter UPDATE is the transaction's first write
        ceiling = int(self.settings["max_campaigns_per_account"])
        claimed = self.repo.update_where(
            ClientAccount,
            ClientAccount.id == client_account_id,
            ClientAccount.campaign_count < ceiling,
            campaign_count=ClientAccount.campaign_count + 1,
        )
        if claimed != 1:
            self.repo.rollback()
            logger.info("Campaign ceiling reached", client_account_id=client_account_id, limit=ceiling)
            raise ConflictError(f"Maximum {ceiling} campaigns allowed per account", details={"limit": ceiling})
        self.repo.add(campaign)
        self.repo.commit()
        logger.info("Campaign created", campaign_id=campaign.id, client_account_id=client_account_id)
        self.audit.emit(
            "campaign_created",
            {"resource": "campaign", "resource_id": campaign.id, "clip_title": campaign.clip_title},
            user_id=actor,
        )
        return campaign

    def update(self, campaign_id: int, patch: Mapping[str, Any], actor: Optional[int] = None) -> CampaignRequest:
        campaign = self.get(campaign_id)
        if campaign.status != CampaignStatus.DRAFT:
            raise InvalidStateError(
                "Can only update campaigns in DRAFT status",
                details={"campaign_id": campaign_id, "status": campaign.status.value},
            )
        values: Dict[str, Any] = {}
        for field in EDITABLE_FIELDS:
            if field not in patch or patch[field] is None:
                continue
            value = patch[field]
            if field == "clip_url":
                value = validate_video_url(value)
            elif field == "clip_title":
                value = validate_title(value)
            elif field == "budget_config":
                value = validate_budget(value)
            values[field] = value
        if not values:
            return campaign

        applied = self.repo.compare_and_set(
            CampaignRequest, campaign_id, CampaignStatus.DRAFT, updated_at=self.clock(), **values
        )
        if not applied:
            self.repo.rollback()
            latest = self.get(campaign_id)
            raise InvalidStateError(
                "Can only update campaigns in DRAFT status",
                details={"campaign_id": campaign_id, "status": latest.status.value},
            )
        self.repo.commit()
        logger.info("Campaign updated", campaign_id=campaign_id, fields=sorted(values))
        return self.get(campaign_id)

    # ------------------------------------------------------------ transitions
    def transition(
        self,
        campaign_id: int,
        from_statuses: Iterable[CampaignStatus],
        to_status: CampaignStatus,
        actor: Optional[int | str] = None,
        *,
        guard: Optional[Callable[[], Any]] = None,
        guard_error: Optional[Callable[[], AppError]] = None,
        **values: Any,
    ) -> bool:
        """Move a campaign to ``to_status`` if it currently sits in ``from_statuses``.

        Returns True when this call performed the write. A campaign already in
        ``to_status`` is left untouched (False). Any other state raises
        ``InvalidStateError``; a vanished row raises ``NotFoundError``.

        ``guard`` builds an extra SQL condition evaluated by the write itself.
        When the status is unchanged but the write did not apply, the guard
        failed and ``guard_error()`` is raised.

        When a concurrent writer moves the row between our read and our write,
        the row is re-read and the move retried as long as the new status is
        still a legal source.
        """
        allowed = frozenset(from_statuses)
        current = self.get(campaign_id).status
        for _ in range(MAX_TRANSITION_ATTEMPTS):
            if current == to_status:
                return False
            if current not in allowed:
                raise self._illegal(campaign_id, current, to_status)

            criteria = (guard(),) if guard is not None else ()
            applied = self.repo.compare_and_set(
                CampaignRequest, campaign_id, current, *criteria, status=to_status, updated_at=self.clock(), **values
            )
            if applied:
                break
            self.repo.rollback()
            latest = self.get(campaign_id).status
            if guard is not None and latest == current:
                logger.warning(
                    "Campaign precondition failed at write time",
                    campaign_id=campaign_id,
                    status=current.value,
                    to_status=to_status.value,
                )
                if guard_error is not None:
                    raise guard_error()
                raise InvalidStateError(
                    f"Campaign can no longer move to {to_status.value}",
                    details={"campaign_id": campaign_id, "status": current.value},
                )
            logger.info(
                "Campaign changed concurrently",
                campaign_id=campaign_id,
                observed_status=current.value,
                latest_status=latest.value,
                to_status=to_status.value,
            )
            current = latest
        else:
            raise InvalidStateError(
                "Campaign is changing too quickly, try again",
                details={"campaign_id": campaign_id, "target": to_status.value},
            )

        self.repo.commit()
        logger.info(
            "Campaign status changed",
            campaign_id=campaign_id,
            old_status=current.value,
            new_status=to_status.value,
            actor=actor,
        )
        self.audit.status_changed("campaign", campaign_id, current, to_status, actor)
        return True

    def launch(self, campaign_id: int, requested_start: Optional[datetime] = None, actor: Optional[int] = None) -> CampaignRequest:
        campaign = self.get(campaign_id)
        values: Dict[str, Any] = {}
        if campaign.status == CampaignStatus.DRAFT:
            if not self.ledger.has_paid_payment(campaign_id):
                raise self._payment_required(campaign_id)
            values = self._schedule(campaign, requested_start)
        self.transition(
            campaign_id,
            ALLOWED_TRANSITIONS[CampaignStatus.QUEUED],
            CampaignStatus.QUEUED,
            actor,
            guard=self._paid_guard(campaign_id),
            guard_error=lambda: self._payment_required(campaign_id),
            **values,
        )
        return self.get(campaign_id)

    def queue_paid(self, campaign_id: int, actor: str = "webhook") -> bool:
        """Queue a paid DRAFT campaign on behalf of the payment processor.

        Anything past DRAFT is left as is. Returns True if this call queued it.
        """
        campaign = self.get(campaign_id)
        if campaign.status != CampaignStatus.DRAFT:
            logger.info(
                "Paid campaign already past DRAFT",
                campaign_id=campaign_id,
                status=campaign.status.value,
            )
            return False
        if not self.ledger.has_paid_payment(campaign_id):
            logger.warning("Refusing to queue campaign without PAID payment", campaign_id=campaign_id)
            return False
        try:
            return self.transition(
                campaign_id,
                ALLOWED_TRANSITIONS[CampaignStatus.QUEUED],
                CampaignStatus.QUEUED,
                actor,
                guard=self._paid_guard(campaign_id),
                guard_error=lambda: self._payment_required(campaign_id),
                **self._schedule(campaign, None),
            )
        except PaymentRequiredError:
            logger.warning("Payment refunded before campaign could be queued", campaign_id=campaign_id)
            return False
        except InvalidStateError:
            # Lost a race to a transition other than QUEUED (e.g. an admin cancel)
            logger.info("Paid campaign moved on concurrently", campaign_id=campaign_id)
            return False

    def mark_running(self, campaign_id: int, actor: Optional[int | str] = None) -> CampaignRequest:
        self.transition(
            campaign_id,
            ALLOWED_TRANSITIONS[CampaignStatus.RUNNING],
            CampaignStatus.RUNNING,
            actor,
            actual_started_at=self.clock(),
        )
        return self.get(campaign_id)

    def pause(self, campaign_id: int, actor: Optional[int] = None) -> CampaignRequest:
        self.transition(campaign_id, ALLOWED_TRANSITIONS[CampaignStatus.PAUSED], CampaignStatus.PAUSED, actor)
        return self.get(campaign_id)

    def end(self, campaign_id: int, actor: Optional[int] = None) -> CampaignRequest:
        self.transition(
            campaign_id,
            ALLOWED_TRANSITIONS[CampaignStatus.ENDED],
            CampaignStatus.ENDED,
            actor,
            actual_ended_at=self.clock(),
        )
        return self.get(campaign_id)

    def cancel(self, campaign_id: int, actor: Optional[int | str] = None) -> CampaignRequest:
        self.transition(
            campaign_id,
            ALLOWED_TRANSITIONS[CampaignStatus.CANCELLED],
            CampaignStatus.CANCELLED,
            actor,
            actual_ended_at=self.clock(),
        )
        return self.get(campaign_id)

    def delete(self, campaign_id: int, actor: Optional[int] = None) -> None:
        campaign = self.get(campaign_id)
        status = campaign.status
        if status not in DELETABLE_CAMPAIGN_STATUSES:
            raise InvalidStateError(
                "Can only delete campaigns in DRAFT, ENDED, or CANCELLED status",
                details={"campaign_id": campaign_id, "status": status.value},
            )
        # Detach ledger rows first; payments outlive the campaign they paid for
        self.repo.update_where(Payment, Payment.campaign_id == campaign_id, campaign_id=None)
        deleted = self.repo.delete_where(
            CampaignRequest,
            CampaignRequest.id == campaign_id,
            CampaignRequest.status == status,
        )
        if deleted != 1:
            self.repo.rollback()
            latest = self.get(campaign_id)
            raise InvalidStateError(
                "Campaign changed state before it could be deleted",
                details={"campaign_id": campaign_id, "status": latest.status.value},
            )
        self.repo.update_where(
            ClientAccount,
            ClientAccount.id == campaign.client_account_id,
            ClientAccount.campaign_count > 0,
            campaign_count=ClientAccount.campaign_count - 1,
        )
        self.repo.commit()
        logger.info("Campaign deleted", campaign_id=campaign_id, status=status.value)
        self.audit.emit(
            "campaign_deleted",
            {"resource": "campaign", "resource_id": campaign_id, "old_status": status.value, "actor": actor},
            user_id=actor,
        )

    # ---------------------------------------------------------------- refunds
    def refund_payment(
        self,
        payment_id: int,
        reason: Optional[str] = None,
        actor: Optional[int | str] = None,
    ) -> Tuple[Payment, bool]:
        """Refund a PAID payment and cancel the live campaign it leaves unpaid.

        Returns the refunded payment and whether a campaign was cancelled.
        """
        payment = self.ledger.refund(payment_id, reason)
        campaign_id = payment.campaign_id
        if campaign_id is None or self.ledger.has_paid_payment(campaign_id):
            return payment, False
        campaign = self.repo.get(CampaignRequest, campaign_id)
        if campaign is None or campaign.status not in ACTIVE_CAMPAIGN_STATUSES:
            return payment, False
        try:
            self.cancel(campaign_id, actor=actor)
        except InvalidStateError:
            logger.info("Refunded campaign moved on concurrently", campaign_id=campaign_id)
            return payment, False
        logger.info("Unpaid campaign cancelled after refund", campaign_id=campaign_id, payment_id=payment_id)
        return payment, True

    # ---------------------------------------------------------------- helpers
    def _paid_guard(self, campaign_id: int) -> Callable[[], Any]:
        def guard():
            self.ledger.lock_paid_payments(campaign_id)
            return self.ledger.paid_payment_clause(campaign_id)
        return guard

    @staticmethod
    def _payment_required(campaign_id: int) -> PaymentRequiredError:
        return PaymentRequiredError(
            "Campaign payment required before launch",
            details={"campaign_id": campaign_id},
        )

    def _schedule(self, campaign: CampaignRequest, requested_start: Optional[datetime]) -> Dict[str, Any]:
        starts_at = ensure_aware(requested_start) or self.clock()
        return {
            "starts_at": starts_at,
            "ends_at": starts_at + timedelta(days=int(campaign.duration_days)),
        }

    @staticmethod
    def _illegal(campaign_id: int, current: CampaignStatus, target: CampaignStatus) -> InvalidStateError:
        return InvalidStateError(
            f"Cannot move campaign from {current.value} to {target.value}",
            details={"campaign_id": campaign_id, "status": current.value, "target": target.value},
        )


__all__ = [
    "CampaignStateMachine",
    "ALLOWED_TRANSITIONS",
    "VIDEO_URL_PATTERN",
    "validate_video_url",
    "validate_title",
    "validate_budget",
]
