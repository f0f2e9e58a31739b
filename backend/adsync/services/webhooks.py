"""Meta webhook verification and change processing."""

import hashlib
import hmac
import logging

from adsync.services.cache import CacheManager, account_key, campaigns_key
from adsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

ACCOUNT_REFRESH_FIELDS = {"account_status", "amount_spent", "balance", "spend_cap"}
REFRESHABLE_OBJECTS = {"campaign", "adset", "ad"}


class WebhookValidator:
    def __init__(self, app_secret: str, verify_token: str):
        self.app_secret = app_secret
        self.verify_token = verify_token

    def validate_signature(self, payload: bytes, signature: str | None) -> bool:
        """Check ``X-Hub-Signature-256: sha256=<hex hmac>`` in constant time."""
        if not signature or not self.app_secret or not signature.startswith("sha256="):
            return False
        expected = hmac.new(self.app_secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature[len("sha256="):], expected)

    def validate_challenge(self, mode: str | None, token: str | None, challenge: str | None) -> str | None:
        """Subscription handshake: return the challenge to echo back, or None to refuse."""
        if mode != "subscribe" or not challenge or not self.verify_token:
            return None
        if not hmac.compare_digest((token or "").encode(), self.verify_token.encode()):
            return None
        return challenge


class WebhookProcessor:
    """Turns webhook change notifications into cache invalidations and targeted refreshes.

    All writes go through the sync service; a failing change is logged and
    skipped so the remaining changes are still applied.
    """

    def __init__(self, sync: SyncService, cache: CacheManager):
        self.sync = sync
        self.cache = cache

    async def process(self, payload: dict) -> dict:
        object_type = payload.get("object", "")
        summary = {"entries": 0, "changes": 0, "errors": 0}
        for entry in payload.get("entry") or []:
            summary["entries"] += 1
            object_id = str(entry.get("id", ""))
            for change in entry.get("changes") or []:
                summary["changes"] += 1
                try:
                    await self._process_change(object_type, object_id, change)
                except Exception as e:
                    summary["errors"] += 1
                    logger.error(
                        "Failed to process webhook change %s/%s field=%s: %s",
                        object_type, object_id, change.get("field"), e,
                    )
        logger.info(
            "Webhook processed: object=%s entries=%d changes=%d errors=%d",
            object_type, summary["entries"], summary["changes"], summary["errors"],
        )
        return summary

    async def _process_change(self, object_type: str, object_id: str, change: dict) -> None:
        field = change.get("field")
        value = change.get("value") or {}

        if object_type == "ad_account":
            await self.cache.delete(account_key(object_id))
            await self.cache.delete(campaigns_key(object_id))
            if field in ACCOUNT_REFRESH_FIELDS:
                await self._refresh("ad_account", object_id)
            return

        if object_type in REFRESHABLE_OBJECTS:
            entity_id = str(value.get("id") or object_id) if isinstance(value, dict) else object_id
            await self._refresh(object_type, entity_id)
            return

        if object_type == "page":
            logger.info("Page change %s on %s ignored", field, object_id)
            return

        logger.warning("Unhandled webhook object type: %s (%s)", object_type, object_id)

    async def _refresh(self, entity_type: str, entity_id: str) -> None:
        result = await self.sync.refresh_entity(entity_type, entity_id)
        if not result.success:
            raise RuntimeError("; ".join(result.error_details) or f"refresh of {entity_type} {entity_id} failed")
