"""
Campaign lifecycle endpoints.

Clients manage their own campaigns (create, edit while DRAFT, launch, pause,
end, delete); admins drive the operational transitions (start, cancel).
"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from adplatform.api.deps import (
    get_campaign_machine,
    get_client_account,
    get_owned_campaign,
    get_request_id,
    require_admin,
)
from adplatform.models.db import CampaignRequest, ClientAccount, User
from adplatform.models.db.enums import CampaignStatus
from adplatform.models.schemas.base import Page, PageMeta, ResponseBase
from adplatform.models.schemas.campaigns import CampaignCreate, CampaignLaunch, CampaignRead, CampaignUpdate
from adplatform.services.campaign_state_machine import CampaignStateMachine
from adplatform.utils import get_logger, log_performance
from adplatform.utils.errors import AppError

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/",
    response_model=CampaignRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create campaign",
    description="Create a DRAFT campaign for the caller's client account",
)
def create_campaign(
    campaign_data: CampaignCreate,
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
    request_id: str = Depends(get_request_id),
) -> CampaignRead:
    start_time = time.time()
    logger.info(
        "Campaign creation started",
        client_account_id=account.id,
        clip_title=campaign_data.clip_title,
        country_count=len(campaign_data.countries),
        request_id=request_id,
    )
    try:
        campaign = machine.create(account.id, campaign_data.model_dump(), actor=account.user_id)
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error("Campaign creation failed with unexpected error", error=str(e), request_id=request_id, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error during campaign creation")

    log_performance("create_campaign", (time.time() - start_time) * 1000, {"campaign_id": campaign.id})
    return CampaignRead.model_validate(campaign)


@router.get("/", response_model=Page[CampaignRead], summary="List campaigns")
def list_campaigns(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[CampaignStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100, description="Match on clip title or artists"),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> Page[CampaignRead]:
    items, total = machine.list_for_account(account.id, page=page, limit=limit, status=status_filter, search=search)
    return Page[CampaignRead](
        items=[CampaignRead.model_validate(c) for c in items],
        pagination=PageMeta.build(page, limit, total),
    )


@router.get("/{campaign_id}", response_model=CampaignRead, summary="Get campaign")
def get_campaign(campaign: CampaignRequest = Depends(get_owned_campaign)) -> CampaignRead:
    return CampaignRead.model_validate(campaign)


@router.patch("/{campaign_id}", response_model=CampaignRead, summary="Update DRAFT campaign")
def update_campaign(
    update_data: CampaignUpdate,
    campaign: CampaignRequest = Depends(get_owned_campaign),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRead:
    updated = machine.update(campaign.id, update_data.model_dump(exclude_unset=True), actor=account.user_id)
    return CampaignRead.model_validate(updated)


@router.delete("/{campaign_id}", response_model=ResponseBase, summary="Delete campaign")
def delete_campaign(
    campaign: CampaignRequest = Depends(get_owned_campaign),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
    request_id: str = Depends(get_request_id),
) -> ResponseBase:
    campaign_id = campaign.id
    machine.delete(campaign_id, actor=account.user_id)
    logger.info("Campaign deleted via API", campaign_id=campaign_id, request_id=request_id)
    return ResponseBase(message=f"Campaign {campaign_id} deleted", data={"campaign_id": campaign_id})


@router.post("/{campaign_id}/launch", response_model=CampaignRead, summary="Launch paid campaign")
def launch_campaign(
    launch_data: Optional[CampaignLaunch] = None,
    campaign: CampaignRequest = Depends(get_owned_campaign),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
    request_id: str = Depends(get_request_id),
) -> CampaignRead:
    """Queue a paid DRAFT campaign; repeating the call on a QUEUED campaign is a no-op."""
    start_time = time.time()
    requested_start = launch_data.starts_at if launch_data else None
    launched = machine.launch(campaign.id, requested_start, actor=account.user_id)
    log_performance("launch_campaign", (time.time() - start_time) * 1000, {"campaign_id": campaign.id, "request_id": request_id})
    return CampaignRead.model_validate(launched)


@router.post("/{campaign_id}/pause", response_model=CampaignRead, summary="Pause campaign")
def pause_campaign(
    campaign: CampaignRequest = Depends(get_owned_campaign),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRead:
    return CampaignRead.model_validate(machine.pause(campaign.id, actor=account.user_id))


@router.post("/{campaign_id}/end", response_model=CampaignRead, summary="End campaign")
def end_campaign(
    campaign: CampaignRequest = Depends(get_owned_campaign),
    account: ClientAccount = Depends(get_client_account),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRead:
    return CampaignRead.model_validate(machine.end(campaign.id, actor=account.user_id))


@router.post("/{campaign_id}/start", response_model=CampaignRead, summary="Mark campaign running (admin)")
def start_campaign(
    campaign_id: int,
    admin: User = Depends(require_admin),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRead:
    return CampaignRead.model_validate(machine.mark_running(campaign_id, actor=admin.id))


@router.post("/{campaign_id}/cancel", response_model=CampaignRead, summary="Cancel campaign (admin)")
def cancel_campaign(
    campaign_id: int,
    admin: User = Depends(require_admin),
    machine: CampaignStateMachine = Depends(get_campaign_machine),
) -> CampaignRead:
    return CampaignRead.model_validate(machine.cancel(campaign_id, actor=admin.id))
