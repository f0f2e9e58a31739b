"""Inbound request hygiene: IP lists, User-Agent screening, origin/CSRF, rate limiting.

Checks run in that order and the first failure short-circuits the request
before any route code executes.
"""

import logging
import re
import time
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from adsync.config import Settings
from adsync.core.logging import log_security_event
from adsync.services.rate_limiter import RateLimiter
from adsync.services.store import ApiLogEntry

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
ALLOWED_BOTS = re.compile(r"googlebot|bingbot|slackbot|facebookexternalhit|twitterbot|linkedinbot", re.I)
SUSPICIOUS_AGENTS = re.compile(r"bot|crawl|spider|scraper|harvest|python|curl|wget", re.I)
CSRF_TOKEN_RE = re.compile(r"^[a-zA-Z0-9+/]+=*$")
CSRF_MIN_LENGTH = 32
# Signature-checked webhooks and monitoring probes bypass the guard
GUARD_EXEMPT_PREFIXES = ("/api/v1/webhooks/", "/api/v1/health")


@dataclass
class GuardConfig:
    rate_limit_max: int = 100
    rate_limit_window_minutes: int = 15
    enable_csrf: bool = True
    enable_user_agent_validation: bool = True
    enable_ip_allowlist: bool = False
    blocked_ips: list[str] = field(default_factory=list)
    allowed_ips: list[str] = field(default_factory=list)
    allowed_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GuardConfig":
        return cls(
            rate_limit_max=settings.effective_rate_limit_max,
            rate_limit_window_minutes=settings.rate_limit_window_minutes,
            enable_csrf=settings.enable_csrf,
            enable_user_agent_validation=settings.enable_user_agent_validation,
            enable_ip_allowlist=settings.enable_ip_allowlist,
            blocked_ips=settings.blocked_ip_list,
            allowed_ips=settings.allowed_ip_list,
            allowed_origins=settings.allowed_origin_list,
        )


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    for header in ("x-real-ip", "x-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return get_remote_address(request) or "127.0.0.1"


class RequestGuard:
    def __init__(self, limiter: RateLimiter, config: GuardConfig | None = None):
        self.limiter = limiter
        self.config = config or GuardConfig()

    def validate_ip(self, ip: str) -> bool:
        if ip in self.config.blocked_ips:
            return False
        if self.config.enable_ip_allowlist and self.config.allowed_ips:
            return ip in self.config.allowed_ips
        return True

    def validate_user_agent(self, user_agent: str | None) -> bool:
        if not self.config.enable_user_agent_validation:
            return True
        if not user_agent:
            return False
        if ALLOWED_BOTS.search(user_agent):
            return True
        return not SUSPICIOUS_AGENTS.search(user_agent)

    def validate_csrf(self, request: Request) -> bool:
        if not self.config.enable_csrf or request.method in SAFE_METHODS:
            return True

        origin = request.headers.get("origin") or request.headers.get("referer")
        if not origin:
            return False
        origin = origin.rstrip("/")
        if not any(origin == allowed or origin.startswith(allowed + "/") for allowed in self.config.allowed_origins):
            return False

        if request.url.path.startswith("/api/"):
            token = request.headers.get("x-csrf-token") or request.headers.get("csrf-token", "")
            if len(token) < CSRF_MIN_LENGTH or not CSRF_TOKEN_RE.match(token):
                return False
        return True

    async def check(self, request: Request) -> tuple[Response | None, dict[str, str]]:
        """Run the pipeline. Returns ``(rejection, headers)``; rejection is None when allowed."""
        ip = get_client_ip(request)
        path = request.url.path
        user_agent = request.headers.get("user-agent")

        if not self.validate_ip(ip):
            log_security_event("Blocked IP address", "high", ip=ip, path=path)
            return JSONResponse({"detail": "Access denied"}, status_code=403), {}

        if not self.validate_user_agent(user_agent):
            log_security_event("Suspicious user agent", "medium", ip=ip, path=path, user_agent=user_agent)
            return JSONResponse({"detail": "Invalid request"}, status_code=400), {}

        if not self.validate_csrf(request):
            log_security_event("CSRF validation failed", "high", ip=ip, path=path, method=request.method)
            return JSONResponse({"detail": "CSRF validation failed"}, status_code=403), {}

        decision = await self.limiter.check_rate_limit(
            f"{ip}:{path}", self.config.rate_limit_max, self.config.rate_limit_window_minutes
        )
        headers = decision.headers()
        if not decision.allowed:
            log_security_event("Rate limit exceeded", "medium", ip=ip, path=path, count=decision.count)
            return (
                JSONResponse(
                    {"detail": "Too many requests", "retry_after": decision.retry_after},
                    status_code=429,
                    headers=headers,
                ),
                headers,
            )
        return None, headers


class RequestGuardMiddleware(BaseHTTPMiddleware):
    """Applies the guard to ``/api/`` routes and records each call in ``api_logs``."""

    async def dispatch(self, request: Request, call_next) -> Response:
        services = getattr(request.app.state, "services", None)
        path = request.url.path
        if services is None or not path.startswith("/api/") or path.startswith(GUARD_EXEMPT_PREFIXES):
            return await call_next(request)

        started = time.monotonic()
        try:
            rejection, headers = await services.guard.check(request)
        except Exception as e:
            logger.error("Request guard failed on %s %s: %s", request.method, path, e, exc_info=True)
            return JSONResponse({"detail": "Internal server error"}, status_code=500)

        if rejection is not None:
            response = rejection
        else:
            response = await call_next(request)
            response.headers.update(headers)

        await self._log_call(services.store, request, response, started)
        return response

    @staticmethod
    async def _log_call(store, request: Request, response: Response, started: float) -> None:
        entry = ApiLogEntry(
            endpoint=request.url.path[:500],
            method=request.method,
            status_code=response.status_code,
            response_time_ms=int((time.monotonic() - started) * 1000),
            request_size_bytes=int(request.headers.get("content-length") or 0),
            response_size_bytes=int(response.headers.get("content-length") or 0),
            ip_address=get_client_ip(request)[:45],
            user_agent=request.headers.get("user-agent"),
        )
        try:
            await store.log_api_call(entry)
        except Exception as e:
            logger.warning("Failed to write api log for %s: %s", entry.endpoint, e)
