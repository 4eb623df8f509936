"""
Dependencies for authentication, database sessions and service wiring.

Each request gets one SQLAlchemy session wrapped in one ``Repository``; every
service built for that request shares it. External gateways are process-wide
singletons so tests can swap them through ``app.dependency_overrides``.
"""
from functools import lru_cache
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from adplatform.database import SessionLocal
from adplatform.integrations.base import AdAccountGateway, CheckoutGateway, WebhookVerifier
from adplatform.integrations.google_ads import SimulatedGoogleAdsGateway
from adplatform.integrations.stripe_gateway import StripeCheckoutGateway, StripeWebhookVerifier
from adplatform.models.db import CampaignRequest, ClientAccount, User
from adplatform.models.db.enums import UserRole
from adplatform.services.audit import AuditTrail
from adplatform.services.campaign_state_machine import CampaignStateMachine
from adplatform.services.checkout import CheckoutService
from adplatform.services.link_status_reconciler import LinkStatusReconciler
from adplatform.services.payment_ledger import PaymentLedger
from adplatform.services.repository import Repository
from adplatform.services.webhook_reconciler import WebhookReconciler
from adplatform.utils import get_logger
from adplatform.utils.errors import AuthenticationError, AuthorizationError, NotFoundError
from adplatform.utils.observability import REQUEST_ID_HEADER

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER, "unknown")


def get_repository(db: Session = Depends(get_db)) -> Repository:
    return Repository(db)


def get_audit(request_id: str = Depends(get_request_id)) -> AuditTrail:
    return AuditTrail(request_id=request_id)


# --------------------------------------------------------------- gateways
@lru_cache
def get_checkout_gateway() -> CheckoutGateway:
    return StripeCheckoutGateway()


@lru_cache
def get_webhook_verifier() -> WebhookVerifier:
    return StripeWebhookVerifier()


@lru_cache
def get_ad_account_gateway() -> AdAccountGateway:
    return SimulatedGoogleAdsGateway()


# ---------------------------------------------------------------- services
def get_payment_ledger(repo: Repository = Depends(get_repository)) -> PaymentLedger:
    return PaymentLedger(repo)


def get_campaign_machine(
    repo: Repository = Depends(get_repository),
    audit: AuditTrail = Depends(get_audit),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> CampaignStateMachine:
    return CampaignStateMachine(repo, audit, ledger)


def get_checkout_service(
    repo: Repository = Depends(get_repository),
    gateway: CheckoutGateway = Depends(get_checkout_gateway),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    audit: AuditTrail = Depends(get_audit),
) -> CheckoutService:
    return CheckoutService(repo, gateway, ledger, audit)


def get_webhook_reconciler(
    repo: Repository = Depends(get_repository),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
    audit: AuditTrail = Depends(get_audit),
) -> WebhookReconciler:
    return WebhookReconciler(repo, verifier, ledger, machine, audit)


def get_link_reconciler(
    repo: Repository = Depends(get_repository),
    gateway: AdAccountGateway = Depends(get_ad_account_gateway),
    audit: AuditTrail = Depends(get_audit),
) -> LinkStatusReconciler:
    return LinkStatusReconciler(repo, gateway, audit)


# ---------------------------------------------------------------- identity
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    repo: Repository = Depends(get_repository),
) -> User:
    """
    Resolve the caller from a ``Bearer <api key>`` header.

    Raises:
        AuthenticationError: missing, unknown or inactive API key
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    api_key = credentials.credentials
    user = repo.get_user_by_api_key(api_key)
    if user is None or not user.is_active:
        logger.warning(
            "Authentication failed: invalid or inactive API key",
            api_key_prefix=api_key[:6] + "..." if len(api_key) > 6 else api_key,
        )
        raise AuthenticationError("Invalid or inactive API key")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    repo: Repository = Depends(get_repository),
) -> Optional[User]:
    if credentials is None:
        return None
    return get_current_user(credentials, repo)


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        logger.warning("Access denied: admin required", user_id=current_user.id, user_role=current_user.role.value)
        raise AuthorizationError("Admin access required")
    return current_user


def require_client(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.CLIENT:
        logger.warning("Access denied: client role required", user_id=current_user.id, user_role=current_user.role.value)
        raise AuthorizationError("Client access required")
    return current_user


def get_client_account(
    current_user: User = Depends(require_client),
    repo: Repository = Depends(get_repository),
) -> ClientAccount:
    account = repo.get_client_account_for_user(current_user.id)
    if account is None:
        raise NotFoundError("Client account not found", details={"user_id": current_user.id})
    return account


def get_owned_campaign(
    campaign_id: int,
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRequest:
    """Fetch a campaign and check it belongs to the caller's client account."""
    campaign = machine.get(campaign_id)
    if campaign.client_account_id != account.id:
        logger.warning(
            "Client access denied for campaign",
            campaign_id=campaign_id,
            client_account_id=account.id,
        )
        raise AuthorizationError("Access denied to this campaign", details={"campaign_id": campaign_id})
    return campaign
