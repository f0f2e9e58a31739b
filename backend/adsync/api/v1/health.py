from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from adsync.dependencies import get_services
from adsync.services.container import ServiceContainer

router = APIRouter()


@router.get("")
async def health(detailed: bool = False, services: ServiceContainer = Depends(get_services)):
    """Per-service health; 503 when any dependency is unhealthy."""
    report = await services.health.check(detailed=detailed)
    report["timestamp"] = datetime.now(timezone.utc).isoformat()
    report["app"] = services.settings.app_name
    status_code = 503 if report["status"] == "unhealthy" else 200
    return JSONResponse(report, status_code=status_code)
