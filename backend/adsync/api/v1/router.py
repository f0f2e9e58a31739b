from fastapi import APIRouter
from adsync.api.v1 import health, meta, sync, webhooks

api_router = APIRouter()

api_router.include_router(sync.router, prefix="/sync", tags=["Sync"])
api_router.include_router(meta.router, prefix="/meta", tags=["Meta Ads"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
