"""
Inbound payment-processor webhooks.
"""
import time

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from adplatform.api.deps import get_request_id, get_webhook_reconciler
from adplatform.models.schemas.base import ResponseBase
from adplatform.services.webhook_reconciler import WebhookReconciler
from adplatform.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/stripe",
    response_model=ResponseBase,
    summary="Stripe webhook",
    description="Verify, journal and apply a Stripe event. Redeliveries of a processed event are acknowledged without effect.",
)
async def stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    start_time = time.time()
    payload = await request.body()
    outcome = await run_in_threadpool(reconciler.handle, payload, request.headers.get("Stripe-Signature"))

    log_performance(
        "stripe_webhook",
        (time.time() - start_time) * 1000,
        {"event_id": outcome.event_id, "event_type": outcome.event_type, "outcome": outcome.status, "request_id": request_id},
    )
    return ResponseBase(
        message=f"Event {outcome.status}",
        data={"event_id": outcome.event_id, "event_type": outcome.event_type, "status": outcome.status, **outcome.details},
    )
