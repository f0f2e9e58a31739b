"""Manual sync triggers and sync status."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from adsync.dependencies import get_sync_service
from adsync.schemas.ads import SyncRequest, SyncResultResponse, SyncStatusResponse
from adsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=SyncResultResponse)
async def trigger_sync(body: SyncRequest, sync: SyncService = Depends(get_sync_service)):
    """Run one sync job now and return its result."""
    logger.info("Manual sync requested: type=%s account=%s", body.type, body.account_id)

    if body.type == "accounts":
        result = await sync.sync_all_accounts()
    elif body.type == "campaigns":
        result = await sync.sync_all_campaigns()
    elif body.type == "structure":
        result = await sync.sync_all_ad_structure()
    elif body.type == "insights":
        result = await sync.sync_all_accounts_insights(days=body.days)
    else:
        if not body.account_id:
            raise HTTPException(status_code=400, detail="account_id is required for account sync")
        result = await sync.sync_account(body.account_id)

    if result.skipped:
        raise HTTPException(status_code=409, detail="A sync is already in progress")
    return SyncResultResponse(**result.to_dict())


@router.get("", response_model=SyncStatusResponse)
async def sync_status(sync: SyncService = Depends(get_sync_service)):
    return sync.status()
