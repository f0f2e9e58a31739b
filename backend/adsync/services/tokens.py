"""System user token management: lazy refresh, encrypted persistence, session-token fallback."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
from cryptography.fernet import Fernet, InvalidToken

from adsync.services.store import AdStore

logger = logging.getLogger(__name__)

TOKEN_TYPE = "system_user"
REQUIRED_SCOPES = [
    "ads_management",
    "ads_read",
    "business_management",
    "pages_read_engagement",
    "pages_show_list",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SystemTokenManager:
    """Hands out the bearer token for Graph API calls.

    Prefers a long-lived system user token, refreshed lazily once its cached
    expiry is reached. If the system user is not configured or a refresh
    fails, falls back to the session access token; returns None when there
    is nothing to fall back to.
    """

    def __init__(
        self,
        app_id: str = "",
        app_secret: str = "",
        system_user_id: str = "",
        base_url: str = "https://graph.facebook.com/v23.0",
        session_token: str = "",
        store: AdStore | None = None,
        encryption_key: str = "",
        ttl_hours: int = 24,
        clock: Callable[[], datetime] = _utcnow,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.system_user_id = system_user_id
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._transport = transport
        self._fernet = Fernet(encryption_key.encode()) if encryption_key else None
        self._token: str | None = None
        self._expires_at: datetime | None = None
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def system_user_configured(self) -> bool:
        return bool(self.system_user_id and self.app_id and self.app_secret)

    # -- Token encryption helpers ------------------------------------------

    def encrypt_token(self, token: str) -> str:
        if not self._fernet:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY not configured")
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt_token(self, encrypted: str) -> str:
        if not self._fernet:
            raise RuntimeError("TOKEN_ENCRYPTION_KEY not configured")
        return self._fernet.decrypt(encrypted.encode()).decode()

    # -- Token lookup ------------------------------------------------------

    def _is_valid(self) -> bool:
        return bool(self._token and self._expires_at and self._clock() < self._expires_at)

    async def get_token(self) -> str | None:
        async with self._lock:
            if self._is_valid():
                return self._token

            if self.system_user_configured:
                if not self._loaded:
                    self._loaded = True
                    await self._load_persisted()
                    if self._is_valid():
                        return self._token
                try:
                    await self.refresh()
                    return self._token
                except (httpx.HTTPError, KeyError, ValueError) as e:
                    logger.warning("System user token refresh failed, using session token: %s", e)

            return self.session_token or None

    async def refresh(self) -> str:
        """Request a fresh system user token from the Graph API."""
        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
            resp = await client.post(
                f"{self.base_url}/{self.system_user_id}/access_tokens",
                data={
                    "business_app": self.app_id,
                    "scope": ",".join(REQUIRED_SCOPES),
                    "access_token": f"{self.app_id}|{self.app_secret}",
                },
            )
            resp.raise_for_status()
            data = resp.json()

        self._token = data["access_token"]
        self._expires_at = self._clock() + self.ttl
        logger.info("System user token refreshed, valid until %s", self._expires_at.isoformat())
        await self._persist()
        return self._token

    async def _persist(self) -> None:
        if not (self._fernet and self.store):
            return
        try:
            await self.store.save_system_token(
                TOKEN_TYPE,
                self.encrypt_token(self._token),
                self._expires_at,
                scope=",".join(REQUIRED_SCOPES),
                system_user_id=self.system_user_id,
            )
        except Exception as e:
            logger.error("Failed to persist system user token: %s", e)

    async def _load_persisted(self) -> None:
        if not (self._fernet and self.store):
            return
        try:
            record = await self.store.load_system_token(TOKEN_TYPE)
        except Exception as e:
            logger.error("Failed to load persisted system user token: %s", e)
            return
        if record is None or record.expires_at is None:
            return
        expires_at = record.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        try:
            self._token = self.decrypt_token(record.access_token)
        except InvalidToken:
            logger.warning("Stored system user token could not be decrypted, ignoring it")
            return
        self._expires_at = expires_at
