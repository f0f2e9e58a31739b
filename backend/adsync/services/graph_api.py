"""Meta Graph API client: retries, pagination, batch requests, account/ads endpoints."""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable

import httpx

from adsync.core.errors import GraphAPIError
from adsync.services.normalizers import (
    ACCOUNT_FIELDS,
    AD_FIELDS,
    ADSET_FIELDS,
    CAMPAIGN_FIELDS,
    INSIGHT_FIELDS,
    with_act_prefix,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://graph.facebook.com/v23.0"

# Facebook pagination URLs may return a different API version (e.g. v25.0)
# which can cause 403 errors if the app isn't approved for that version.
_VERSION_RE = re.compile(r"graph\.facebook\.com/(v[\d.]+)/")

TokenProvider = Callable[[], Awaitable[str | None]]


def _pin_api_version(url: str | None, version: str | None) -> str | None:
    """Rewrite a Facebook pagination URL to use our pinned API version."""
    if not url or not version:
        return url
    return _VERSION_RE.sub(f"graph.facebook.com/{version}/", url)


def _serialize_params(params: dict | None) -> dict:
    """Drop None values, comma-join lists, JSON-encode dicts (time_range etc.)."""
    out = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            out[key] = ",".join(str(v) for v in value)
        elif isinstance(value, dict):
            out[key] = json.dumps(value)
        elif isinstance(value, bool):
            out[key] = "true" if value else "false"
        else:
            out[key] = value
    return out


def _error_from_response(resp: httpx.Response) -> GraphAPIError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return GraphAPIError(
            error.get("message") or f"HTTP {resp.status_code}",
            resp.status_code,
            code=error.get("code"),
            details=error,
        )
    return GraphAPIError(f"HTTP {resp.status_code}: {resp.text[:200]}", resp.status_code)


class GraphAPIClient:
    """Async client for the Graph Marketing API.

    A bearer token is resolved per call from ``token_provider``. Failed calls
    are retried ``max_retries`` times with exponential backoff
    (``min(base_delay * 2**attempt, max_delay)``); 4xx responses other than
    408 and 429 are raised immediately.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        match = re.search(r"/(v[\d.]+)$", self.base_url)
        self.api_version = match.group(1) if match else None
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    # -- Core request --------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        data: dict | None = None,
        token: str | None = None,
    ) -> Any:
        access_token = token or await self.token_provider()
        if not access_token:
            raise GraphAPIError("No access token available", 401)

        url = self._url(path)
        headers = {"Authorization": f"Bearer {access_token}"}
        query = _serialize_params(params)
        form = _serialize_params(data) if data is not None else None

        last_error: GraphAPIError | None = None
        for attempt in range(self.max_retries + 1):
            if attempt:
                delay = self.backoff_delay(attempt - 1)
                logger.info(
                    "Retrying %s %s in %.1fs (attempt %d/%d): %s",
                    method, path, delay, attempt + 1, self.max_retries + 1, last_error,
                )
                await self._sleep(delay)
            try:
                resp = await self._client.request(method, url, params=query or None, data=form, headers=headers)
            except httpx.TimeoutException:
                last_error = GraphAPIError(f"Request timed out: {method} {path}", 0)
                continue
            except httpx.TransportError as e:
                last_error = GraphAPIError(f"Network error: {e}", 0)
                continue

            if resp.is_success:
                if "json" in resp.headers.get("content-type", ""):
                    return resp.json()
                return resp.text

            last_error = _error_from_response(resp)
            if not last_error.is_retryable:
                logger.warning("Graph API %s %s failed: %r", method, path, last_error)
                raise last_error

        logger.error("Graph API %s %s failed after %d attempts: %r", method, path, self.max_retries + 1, last_error)
        raise last_error

    async def get(self, path: str, params: dict | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: dict | None = None, params: dict | None = None) -> Any:
        return await self.request("POST", path, params=params, data=data or {})

    async def put(self, path: str, data: dict | None = None) -> Any:
        return await self.request("PUT", path, data=data or {})

    async def delete(self, path: str, params: dict | None = None) -> Any:
        return await self.request("DELETE", path, params=params)

    async def paginate(self, path: str, params: dict | None = None, max_pages: int | None = None) -> list[dict]:
        """Follow ``paging.next`` cursors and return every ``data`` item."""
        items: list[dict] = []
        url: str | None = path
        page_params = params
        pages = 0
        while url:
            data = await self.get(url, params=page_params)
            items.extend(data.get("data", []))
            pages += 1
            if max_pages and pages >= max_pages:
                break
            url = _pin_api_version(data.get("paging", {}).get("next"), self.api_version)
            page_params = None  # the next URL already carries the cursor and params
        return items

    # -- Ad accounts ---------------------------------------------------------

    async def get_ad_accounts(self, fields: list[str] | None = None) -> list[dict]:
        return await self.paginate("me/adaccounts", {"fields": fields or ACCOUNT_FIELDS, "limit": 100})

    async def get_ad_account(self, account_id: str, fields: list[str] | None = None) -> dict:
        return await self.get(with_act_prefix(account_id), {"fields": fields or ACCOUNT_FIELDS})

    async def get_object(self, object_id: str, fields: list[str]) -> dict:
        return await self.get(str(object_id), {"fields": fields})

    # -- Campaign structure --------------------------------------------------

    async def get_campaigns(self, account_id: str, fields: list[str] | None = None, limit: int = 100) -> list[dict]:
        return await self.paginate(
            f"{with_act_prefix(account_id)}/campaigns",
            {"fields": fields or CAMPAIGN_FIELDS, "limit": limit},
        )

    async def get_adsets(
        self,
        account_id: str,
        campaign_id: str | None = None,
        fields: list[str] | None = None,
        limit: int = 100,
    ) -> list[dict]:
        parent = campaign_id or with_act_prefix(account_id)
        return await self.paginate(f"{parent}/adsets", {"fields": fields or ADSET_FIELDS, "limit": limit})

    async def get_ads(
        self,
        account_id: str,
        adset_id: str | None = None,
        fields: list[str] | None = None,
        limit: int = 100,
    ) -> list[dict]:
        parent = adset_id or with_act_prefix(account_id)
        return await self.paginate(f"{parent}/ads", {"fields": fields or AD_FIELDS, "limit": limit})

    # -- Insights ------------------------------------------------------------

    async def get_account_insights(
        self,
        account_id: str,
        since: str,
        until: str,
        level: str = "campaign",
        fields: list[str] | None = None,
        breakdowns: list[str] | None = None,
        action_breakdowns: list[str] | None = None,
        limit: int = 1000,
        time_increment: int | str = 1,
    ) -> list[dict]:
        return await self.get_entity_insights(
            with_act_prefix(account_id), since, until,
            level=level, fields=fields, breakdowns=breakdowns,
            action_breakdowns=action_breakdowns, limit=limit, time_increment=time_increment,
        )

    async def get_entity_insights(
        self,
        entity_id: str,
        since: str,
        until: str,
        level: str | None = None,
        fields: list[str] | None = None,
        breakdowns: list[str] | None = None,
        action_breakdowns: list[str] | None = None,
        limit: int = 1000,
        time_increment: int | str = 1,
    ) -> list[dict]:
        params = {
            "fields": fields or INSIGHT_FIELDS,
            "time_range": {"since": since, "until": until},
            "time_increment": time_increment,
            "level": level,
            "breakdowns": breakdowns,
            "action_breakdowns": action_breakdowns,
            "limit": limit,
        }
        return await self.paginate(f"{entity_id}/insights", params)

    # -- Batch & health ------------------------------------------------------

    async def batch(self, requests: list[dict]) -> list[Any]:
        """Fold up to 50 calls into one. Each request: ``{method, relative_url, body?}``.

        Returns one item per request: the decoded body, or a GraphAPIError for
        items that failed.
        """
        envelope = []
        for req in requests:
            item = {"method": req.get("method", "GET"), "relative_url": req["relative_url"]}
            if req.get("body"):
                body = req["body"]
                item["body"] = body if isinstance(body, str) else "&".join(f"{k}={v}" for k, v in body.items())
            envelope.append(item)

        responses = await self.post("", data={"batch": json.dumps(envelope), "include_headers": "false"})
        results: list[Any] = []
        for item in responses or []:
            if item is None:
                results.append(GraphAPIError("Batch item timed out", 0))
                continue
            try:
                body = json.loads(item.get("body") or "null")
            except ValueError:
                body = item.get("body")
            status = item.get("code", 200)
            if status >= 400:
                error = (body or {}).get("error", {}) if isinstance(body, dict) else {}
                results.append(GraphAPIError(error.get("message", f"HTTP {status}"), status, error.get("code"), error))
            else:
                results.append(body)
        return results

    async def check_health(self) -> dict:
        """Cheap probe against /me to see whether the API is reachable and not throttling us."""
        try:
            data = await self.get("me", {"fields": "id"})
            return {"status": "healthy", "id": data.get("id")}
        except GraphAPIError as e:
            if e.is_rate_limited:
                return {"status": "rate_limited", "error": e.message}
            return {"status": "error", "error": e.message, "code": e.status}
