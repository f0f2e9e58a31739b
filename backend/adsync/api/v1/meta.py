"""Dashboard reads: accounts, campaigns and daily insights."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from adsync.dependencies import get_dashboard
from adsync.schemas.ads import InsightsListResponse, ListResponse
from adsync.services.dashboard import INSIGHT_LEVELS, DashboardReader

router = APIRouter()


@router.get("/accounts/{account_id}")
async def get_account(account_id: str, dashboard: DashboardReader = Depends(get_dashboard)):
    result = await dashboard.get_account(account_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Ad account not found")
    return result


@router.get("/campaigns", response_model=ListResponse)
async def list_campaigns(
    account_id: str,
    status: str | None = None,
    objective: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    dashboard: DashboardReader = Depends(get_dashboard),
):
    return await dashboard.get_campaigns(account_id, status=status, objective=objective, limit=limit)


@router.get("/insights", response_model=InsightsListResponse)
async def list_insights(
    account_id: str,
    level: str = "campaign",
    entity_id: str | None = None,
    date_start: date | None = None,
    date_end: date | None = None,
    limit: int = Query(1000, ge=1, le=5000),
    offset: int = Query(0, ge=0),
    dashboard: DashboardReader = Depends(get_dashboard),
):
    if level not in INSIGHT_LEVELS:
        raise HTTPException(status_code=400, detail=f"level must be one of: {', '.join(INSIGHT_LEVELS)}")
    if date_start and date_end and date_start > date_end:
        raise HTTPException(status_code=400, detail="date_start must not be after date_end")
    return await dashboard.get_insights(
        account_id,
        level=level,
        since=date_start,
        until=date_end,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
