from fastapi import HTTPException, Request, status

from adsync.services.container import ServiceContainer
from adsync.services.dashboard import DashboardReader
from adsync.services.sync_service import SyncService


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_sync_service(request: Request) -> SyncService:
    return get_services(request).sync


def get_dashboard(request: Request) -> DashboardReader:
    return get_services(request).dashboard
