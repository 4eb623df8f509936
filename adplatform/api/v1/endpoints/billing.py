"""
Billing endpoints: checkout, payment history, invoices and refunds.
"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from adplatform.api.deps import (
    get_campaign_machine,
    get_checkout_service,
    get_current_user,
    get_payment_ledger,
    get_request_id,
    require_admin,
    require_client,
)
from adplatform.models.db import Payment, User
from adplatform.models.db.enums import PaymentStatus, UserRole
from adplatform.models.schemas.base import Page, PageMeta
from adplatform.models.schemas.payments import BillingStats, CheckoutCreate, CheckoutSessionRead, InvoiceRead, PaymentRead
from adplatform.services.campaign_state_machine import CampaignStateMachine
from adplatform.services.checkout import CheckoutService
from adplatform.services.payment_ledger import PaymentLedger
from adplatform.utils import get_logger, log_business_event, log_performance
from adplatform.utils.errors import AppError, AuthorizationError

router = APIRouter()
logger = get_logger(__name__)


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def _visible_payment(payment_id: int, user: User, ledger: PaymentLedger) -> Payment:
    payment = ledger.get(payment_id)
    if user.role != UserRole.ADMIN and payment.user_id != user.id:
        logger.warning("Payment access denied", payment_id=payment_id, user_id=user.id)
        raise AuthorizationError("Access denied to this payment", details={"payment_id": payment_id})
    return payment


@router.post(
    "/checkout",
    response_model=CheckoutSessionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Open checkout session",
    description="Create one PENDING payment per DRAFT campaign and a hosted checkout session covering them",
)
def create_checkout(
    checkout_data: CheckoutCreate,
    user: User = Depends(require_client),
    service: CheckoutService = Depends(get_checkout_service),
    request_id: str = Depends(get_request_id),
) -> CheckoutSessionRead:
    start_time = time.time()
    logger.info("Checkout requested", user_id=user.id, campaign_ids=checkout_data.campaign_ids, request_id=request_id)
    try:
        result = service.open_session(
            user,
            checkout_data.campaign_ids,
            success_url=checkout_data.success_url,
            cancel_url=checkout_data.cancel_url,
        )
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error("Checkout failed with unexpected error", user_id=user.id, error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error during checkout")

    log_performance(
        "create_checkout",
        (time.time() - start_time) * 1000,
        {"user_id": user.id, "campaign_count": len(result.payment_ids)},
    )
    return CheckoutSessionRead(
        session_id=result.session_id,
        url=result.url,
        payment_ids=result.payment_ids,
        total_cents=result.total_cents,
    )


@router.get("/payments", response_model=Page[PaymentRead], summary="Payment history")
def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> Page[PaymentRead]:
    items, total = ledger.list_for_user(user.id, page=page, limit=limit, status=status_filter)
    return Page[PaymentRead](
        items=[PaymentRead.model_validate(p) for p in items],
        pagination=PageMeta.build(page, limit, total),
    )


@router.get("/payments/{payment_id}", response_model=PaymentRead, summary="Get payment")
def get_payment(
    payment_id: int,
    user: User = Depends(get_current_user),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> PaymentRead:
    return PaymentRead.model_validate(_visible_payment(payment_id, user, ledger))


@router.get("/payments/{payment_id}/invoice", response_model=InvoiceRead, summary="Invoice for a paid payment")
def get_invoice(
    payment_id: int,
    user: User = Depends(get_current_user),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> InvoiceRead:
    _visible_payment(payment_id, user, ledger)
    return InvoiceRead(**ledger.get_invoice(payment_id))


@router.get("/stats", response_model=BillingStats, summary="Billing statistics")
def billing_stats(
    user: User = Depends(get_current_user),
    ledger: PaymentLedger = Depends(get_payment_ledger),
) -> BillingStats:
    return BillingStats(**ledger.stats_for_user(user.id))


@router.post("/payments/{payment_id}/refund", response_model=PaymentRead, summary="Refund payment (admin)")
def refund_payment(
    payment_id: int,
    refund_data: Optional[RefundRequest] = None,
    admin: User = Depends(require_admin),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
    request_id: str = Depends(get_request_id),
) -> PaymentRead:
    """Record a refund; a live campaign left without any PAID payment is cancelled."""
    reason = refund_data.reason if refund_data else None
    payment, cancelled = machine.refund_payment(payment_id, reason, actor=admin.id)
    campaign_id = payment.campaign_id

    log_business_event(
        event_type="payment_refunded",
        details={
            "payment_id": payment.id,
            "campaign_id": campaign_id,
            "total_cents": payment.total_cents,
            "reason": reason,
            "campaign_cancelled": cancelled,
        },
        user_id=admin.id,
        request_id=request_id,
    )
    return PaymentRead.model_validate(ledger.get(payment_id))
