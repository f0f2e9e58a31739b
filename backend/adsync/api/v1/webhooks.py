"""Meta webhook endpoint: subscription handshake and change notifications."""

import json
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from adsync.core.logging import log_security_event
from adsync.dependencies import get_services
from adsync.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/meta")
async def verify_subscription(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    services: ServiceContainer = Depends(get_services),
):
    challenge = services.webhook_validator.validate_challenge(hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        log_security_event(
            "Webhook verification failed", "high",
            mode=hub_mode, token="present" if hub_verify_token else "missing",
        )
        return JSONResponse({"detail": "Verification failed"}, status_code=403)
    logger.info("Webhook subscription verified")
    return PlainTextResponse(challenge)


@router.post("/meta")
async def receive_webhook(request: Request, services: ServiceContainer = Depends(get_services)):
    body = await request.body()
    signature = request.headers.get("x-hub-signature-256")

    if not signature:
        log_security_event("Webhook missing signature", "high", body_length=len(body))
        return JSONResponse({"detail": "Missing signature"}, status_code=400)

    if not services.webhook_validator.validate_signature(body, signature):
        log_security_event("Webhook signature validation failed", "critical", body_length=len(body))
        return JSONResponse({"detail": "Invalid signature"}, status_code=403)

    try:
        payload = json.loads(body)
    except ValueError:
        logger.error("Failed to parse webhook payload (%d bytes)", len(body))
        return JSONResponse({"detail": "Invalid JSON payload"}, status_code=400)
    if not isinstance(payload, dict):
        return JSONResponse({"detail": "Invalid JSON payload"}, status_code=400)

    summary = await services.webhooks.process(payload)
    return {"received": True, **summary}
