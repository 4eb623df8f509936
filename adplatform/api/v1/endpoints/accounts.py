"""
Client account endpoints: ad-account link requests and status sync.
"""
from fastapi import APIRouter, Depends, Request, status

from adplatform.api.deps import get_link_reconciler, get_request_id, require_client
from adplatform.config import LINK_SYNC_SETTINGS
from adplatform.models.db import User
from adplatform.models.schemas.client_accounts import ClientAccountRead, LinkRequest
from adplatform.services.link_status_reconciler import LinkStatusReconciler
from adplatform.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.get("/me", response_model=ClientAccountRead, summary="Current client account")
def read_account(
    user: User = Depends(require_client),
    reconciler: LinkStatusReconciler = Depends(get_link_reconciler),
) -> ClientAccountRead:
    return ClientAccountRead.model_validate(reconciler.get_account(user.id))


@router.post(
    "/link",
    response_model=ClientAccountRead,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request ad-account link",
    description="Send a manager link invitation to the given Google Ads customer id. The account stays PENDING until the owner accepts.",
)
def request_link(
    link_data: LinkRequest,
    request: Request,
    user: User = Depends(require_client),
    reconciler: LinkStatusReconciler = Depends(get_link_reconciler),
    request_id: str = Depends(get_request_id),
) -> ClientAccountRead:
    account = reconciler.request_link(user.id, link_data.customer_id)

    worker = getattr(request.app.state, "link_sync_worker", None)
    if worker is not None:
        worker.schedule(user.id, delay_seconds=float(LINK_SYNC_SETTINGS["initial_delay_seconds"]))
        logger.info("Link sync scheduled", user_id=user.id, request_id=request_id)
    return ClientAccountRead.model_validate(account)


@router.post("/link/sync", response_model=ClientAccountRead, summary="Refresh link status now")
def sync_link(
    user: User = Depends(require_client),
    reconciler: LinkStatusReconciler = Depends(get_link_reconciler),
) -> ClientAccountRead:
    reconciler.reconcile(user.id)
    return ClientAccountRead.model_validate(reconciler.get_account(user.id))
