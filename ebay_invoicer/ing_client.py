from __future__ import annotations

from typing import Any

import httpx

from ebay_invoicer.errors import TransportError
from ebay_invoicer.logging_config import get_logger

logger = get_logger(__name__)

ING_API_BASE = "https://ksiegowosc.ing.pl/v2/api/public"


class IngClient:
    """
    ING Ksiegowosc public API: invoice creation and PDF download.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = ING_API_BASE,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key or not str(api_key).strip():
            raise RuntimeError("ING API key is missing. Set ING_API_KEY in .env.")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "ApiUserCompanyRoleKey": self.api_key,
            "Content-Type": "application/json",
        }

    async def create_invoice(self, payload: dict[str, Any]) -> int:
        url = f"{self.base_url}/create-invoice"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"ING create-invoice failed: {e!r}") from e

        if r.status_code != 200:
            raise TransportError(f"ING create-invoice failed: HTTP {r.status_code}: {r.text}", status_code=r.status_code)

        data = r.json()
        invoice_id = data.get("id")
        if not invoice_id:
            raise TransportError(f"ING create-invoice response missing id: {data}")

        logger.info("Successfully created invoice %s in ING Ksiegowosc", invoice_id)
        return int(invoice_id)

    async def download_invoice(self, invoice_id: int) -> bytes | None:
        """
        PDF bytes of an invoice, or None when it cannot be downloaded.
        """
        url = f"{self.base_url}/download-invoice/{invoice_id}/pdf"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("Error during downloading invoice %s: %r", invoice_id, e)
            return None

        if r.status_code != 200:
            logger.warning("Could not download invoice %s from ING Ksiegowosc: HTTP %s", invoice_id, r.status_code)
            return None

        logger.info("Successfully downloaded invoice %s from ING Ksiegowosc", invoice_id)
        return r.content
