import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from adsync.config import get_settings, validate_settings
from adsync.core.errors import GraphAPIError
from adsync.core.logging import setup_logging
from adsync.api.v1.router import api_router
from adsync.services.container import build_services
from adsync.services.request_guard import RequestGuardMiddleware
from adsync.services.scheduler import IntervalScheduler

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing required config or an unreachable database aborts startup
    setup_logging(settings.log_level, settings.log_json)
    for warning in validate_settings(settings):
        logger.warning("Configuration: %s", warning)

    services = await build_services(settings)
    await services.store.init_schema()
    app.state.services = services
    logger.info("Services ready (cache backend: %s)", "redis" if services.cache.connected else "memory")

    if settings.enable_scheduled_sync:
        services.sync.start(IntervalScheduler())
    else:
        logger.info("Scheduled sync disabled (ENABLE_SCHEDULED_SYNC=false)")

    yield

    await services.close()
    app.state.services = None

    from adsync.database import engine
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Meta Ads data sync, cache and dashboard API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
)


@app.exception_handler(GraphAPIError)
async def graph_api_error_handler(request: Request, exc: GraphAPIError):
    logger.warning("Graph API error on %s %s: %r", request.method, request.url.path, exc)
    status_code = 429 if exc.is_rate_limited else 502
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": exc.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Middleware added last runs first: CORS answers preflights before the guard sees them
app.add_middleware(RequestGuardMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def liveness():
    return {"status": "healthy", "app": settings.app_name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("adsync.main:app", host="0.0.0.0", port=settings.port)
