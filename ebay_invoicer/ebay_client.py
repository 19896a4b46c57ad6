from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from ebay_invoicer.errors import AuthError, TransportError
from ebay_invoicer.logging_config import get_logger

logger = get_logger(__name__)

EBAY_API_BASE = "https://api.ebay.com"


def _basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("utf-8")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EbayToken:
    access_token: str | None = None
    expires_at: datetime | None = None


class AccessTokenManager:
    """
    Owns the eBay OAuth credentials and the cached user access token.

    A token is stale when it is missing or ``now >= expires_at``.
    """

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        scopes: list[str],
        api_base: str = EBAY_API_BASE,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.scopes = scopes
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

        self.token = EbayToken()
        self._lock = asyncio.Lock()

    def is_stale(self) -> bool:
        if not self.token.access_token or self.token.expires_at is None:
            return True
        return self.clock() >= self.token.expires_at

    async def ensure_valid_token(self) -> str:
        async with self._lock:
            if self.is_stale():
                refreshed = await self.refresh()
                if not refreshed:
                    raise AuthError("eBay access token could not be refreshed")
            return self.token.access_token

    async def refresh(self) -> bool:
        """
        Exchange the refresh token for a new access token.

        Returns False on any non-200 answer. Network failures raise TransportError:
        the caller cannot tell whether the exchange happened.
        """
        url = f"{self.api_base}/identity/v1/oauth2/token"
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": _basic_auth_header(self.client_id, self.client_secret),
        }
        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
            "scope": " ".join(self.scopes),
        }

        now = self.clock()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(url, headers=headers, data=data)
        except httpx.HTTPError as e:
            logger.error("Error when trying to obtain access token from refresh token: %r", e)
            raise TransportError(f"eBay token refresh failed: {e!r}") from e

        if r.status_code != 200:
            logger.warning("Could not obtain access token from refresh token: HTTP %s", r.status_code)
            return False

        payload = r.json()
        expires_in = int(payload.get("expires_in", 7200))
        self.token = EbayToken(
            access_token=payload["access_token"],
            expires_at=now + timedelta(seconds=expires_in),
        )
        logger.info("Successfully obtained access token from refresh token (expires in %ss)", expires_in)
        return True


@dataclass
class EbayClient:
    tokens: AccessTokenManager
    api_base: str = EBAY_API_BASE
    page_size: int = 50
    timeout: float = 60
    transport: httpx.AsyncBaseTransport | None = None

    async def _headers(self) -> dict[str, str]:
        token = await self.tokens.ensure_valid_token()
        return {"Authorization": f"Bearer {token}"}

    # ---------- Fulfillment API (orders) ----------

    async def get_orders_created_since(self, created_after: datetime) -> list[dict[str, Any]]:
        """
        All orders created at or after ``created_after``, following limit/offset paging.
        """
        url = f"{self.api_base.rstrip('/')}/sell/fulfillment/v1/order"
        since = created_after.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")

        orders: list[dict[str, Any]] = []
        offset = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                params = {
                    "filter": f"creationdate:[{since}..]",
                    "limit": str(self.page_size),
                    "offset": str(offset),
                }
                try:
                    r = await client.get(url, headers=await self._headers(), params=params)
                except httpx.HTTPError as e:
                    raise TransportError(f"eBay getOrders failed: {e!r}") from e
                if r.status_code != 200:
                    raise TransportError(
                        f"eBay getOrders failed: HTTP {r.status_code}: {r.text}", status_code=r.status_code
                    )

                data = r.json()
                page = data.get("orders") or []
                orders.extend(page)

                total = int(data.get("total") or 0)
                offset += len(page)
                if not page or offset >= total:
                    return orders
