"""Ad-account link status.

``request_link`` opens an invitation from the manager account to the client's
Google Ads customer id; ``reconcile`` re-derives ``link_status`` from what the
ad platform reports for that invitation. The external side is the source of
truth, so reconciling is an overwrite, never an increment, and an outage on
the external side leaves the persisted status alone.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import or_

from adplatform.integrations.base import AdAccountGateway
from adplatform.models.db.client_accounts import ClientAccount
from adplatform.models.db.enums import LinkStatus
from adplatform.services.audit import AuditTrail
from adplatform.services.repository import Repository
from adplatform.utils import get_logger
from adplatform.utils.circuit_breaker import GLOBAL_CIRCUIT_BREAKER, CircuitBreaker
from adplatform.utils.errors import AppError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
from adplatform.utils.time import utc_now

logger = get_logger(__name__)

CUSTOMER_ID_PATTERN = re.compile(r"^\d{10}$")

EXTERNAL_STATUS_MAP = {
    "ACTIVE": LinkStatus.LINKED,
    "CANCELLED": LinkStatus.REFUSED,
    "CANCELED": LinkStatus.REFUSED,
    "TERMINATED": LinkStatus.REFUSED,
    # Owner declined the invitation or later revoked an accepted link
    "REFUSED": LinkStatus.REFUSED,
    "INACTIVE": LinkStatus.REFUSED,
}


def normalize_customer_id(raw: str) -> str:
    cleaned = (raw or "").strip().replace("-", "")
    if not CUSTOMER_ID_PATTERN.match(cleaned):
        raise ValidationError("Invalid Google Ads customer ID format", details={"field": "customer_id"})
    return cleaned


def map_external_status(external: Optional[str]) -> LinkStatus:
    return EXTERNAL_STATUS_MAP.get((external or "").upper(), LinkStatus.PENDING)


class LinkStatusReconciler:
    def __init__(
        self,
        repo: Repository,
        gateway: AdAccountGateway,
        audit: Optional[AuditTrail] = None,
        *,
        breaker: CircuitBreaker = GLOBAL_CIRCUIT_BREAKER,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.gateway = gateway
        self.audit = audit or AuditTrail()
        self.breaker = breaker
        self.clock = clock

    def get_account(self, user_id: int) -> ClientAccount:
        account = self.repo.get_client_account_for_user(user_id)
        if account is None:
            raise NotFoundError("Client account not found", details={"user_id": user_id})
        return account

    def request_link(self, user_id: int, external_customer_id: str) -> ClientAccount:
        customer_id = normalize_customer_id(external_customer_id)
        account = self.get_account(user_id)

        clash = (
            self.repo.query(ClientAccount)
            .filter(
                ClientAccount.google_customer_id == customer_id,
                or_(
                    ClientAccount.link_status == LinkStatus.LINKED,
                    ClientAccount.user_id == user_id,
                ),
            )
            .all()
        )
        for other in clash:
            if other.user_id != user_id:
                raise ConflictError(
                    "This Google Ads account is already linked to another user",
                    details={"customer_id": customer_id},
                )
            if other.link_status in (LinkStatus.PENDING, LinkStatus.LINKED):
                raise ConflictError(
                    "This Google Ads account is already linked to your account",
                    details={"customer_id": customer_id, "link_status": other.link_status.value},
                )

        service = self.gateway.service_name
        allow, reason = self.breaker.allow_call(service)
        if not allow:
            raise ExternalServiceError(service, f"Google Ads temporarily unavailable ({reason})")
        try:
            resource_name = self.gateway.send_link_invitation(customer_id)
        except AppError:
            self.breaker.record_failure(service)
            raise
        except Exception as e:
            self.breaker.record_failure(service)
            logger.error("Failed to send Google Ads link request", user_id=user_id, customer_id=customer_id, error=str(e))
            raise ExternalServiceError(service, "Failed to send Google Ads link request", original_error=e) from e
        self.breaker.record_success(service)
        if not resource_name:
            raise ExternalServiceError(service, "Failed to create customer client link")

        old_status = account.link_status
        now = self.clock()
        self.repo.update_where(
            ClientAccount,
            ClientAccount.id == account.id,
            google_customer_id=customer_id,
            resource_name=resource_name,
            link_status=LinkStatus.PENDING,
            link_requested_at=now,
            linked_at=None,
        )
        self.repo.commit()
        logger.info(
            "Customer client link request created",
            user_id=user_id,
            customer_id=customer_id,
            resource_name=resource_name,
        )
        self.audit.status_changed(
            "client_account", account.id, old_status, LinkStatus.PENDING, user_id, customer_id=customer_id
        )
        return self.get_account(user_id)

    def reconcile(self, user_id: int) -> LinkStatus:
        """Pull the external link status and persist it if it changed."""
        account = self.get_account(user_id)
        persisted = account.link_status
        if not account.resource_name:
            return persisted

        service = self.gateway.service_name
        allow, reason = self.breaker.allow_call(service)
        if not allow:
            logger.warning("Link status check skipped due to circuit breaker", user_id=user_id, reason=reason)
            return persisted
        try:
            external = self.gateway.fetch_link_status(account.resource_name)
        except Exception as e:  # noqa: BLE001
            self.breaker.record_failure(service)
            logger.warning(
                "Failed to check link status from Google Ads API",
                user_id=user_id,
                resource_name=account.resource_name,
                error=str(e),
            )
            return persisted
        self.breaker.record_success(service)

        new_status = map_external_status(external)
        now = self.clock()
        if new_status == persisted:
            self.repo.update_where(
                ClientAccount,
                ClientAccount.id == account.id,
                ClientAccount.resource_name == account.resource_name,
                last_sync_at=now,
            )
            self.repo.commit()
            return persisted

        # Overwrite only the status we read, and only for the invitation we asked about
        changed = self.repo.update_where(
            ClientAccount,
            ClientAccount.id == account.id,
            ClientAccount.link_status == persisted,
            ClientAccount.resource_name == account.resource_name,
            link_status=new_status,
            linked_at=now if new_status == LinkStatus.LINKED else None,
            last_sync_at=now,
        )
        self.repo.commit()
        if not changed:
            latest = self.get_account(user_id)
            logger.info("Link status changed concurrently", user_id=user_id, link_status=latest.link_status.value)
            return latest.link_status

        logger.info(
            "Link status updated",
            user_id=user_id,
            old_status=persisted.value,
            new_status=new_status.value,
            external_status=external,
        )
        self.audit.status_changed("client_account", account.id, persisted, new_status, "link_sync")
        return new_status

    def pending_user_ids(self) -> List[int]:
        rows = (
            self.repo.query(ClientAccount.user_id)
            .filter(ClientAccount.link_status == LinkStatus.PENDING, ClientAccount.resource_name.isnot(None))
            .order_by(ClientAccount.user_id)
            .all()
        )
        return [r[0] for r in rows]

    def linked_user_ids(self) -> List[int]:
        rows = (
            self.repo.query(ClientAccount.user_id)
            .filter(ClientAccount.link_status == LinkStatus.LINKED, ClientAccount.resource_name.isnot(None))
            .order_by(ClientAccount.user_id)
            .all()
        )
        return [r[0] for r in rows]


__all__ = ["LinkStatusReconciler", "normalize_customer_id", "map_external_status", "EXTERNAL_STATUS_MAP"]
