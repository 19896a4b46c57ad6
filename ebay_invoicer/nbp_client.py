from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

import httpx

from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.models import Currency

logger = get_logger(__name__)

NBP_API_BASE = "https://api.nbp.pl/api"
HOME_CURRENCY = Currency.PLN


@dataclass(frozen=True)
class ExchangeRate:
    code: Currency
    rate: float
    quoted_date: date


class CurrencyRateResolver:
    """
    Average exchange rates from NBP table A.

    NBP publishes the rate for a given day only on the next business day, so the
    search starts the day before ``as_of`` and walks backwards over weekends and
    holidays, for at most ``max_lookback_days`` days.
    """

    def __init__(
        self,
        *,
        base_url: str = NBP_API_BASE,
        max_lookback_days: int = 10,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_lookback_days = max_lookback_days
        self.timeout = timeout
        self.transport = transport

    def _rate_url(self, currency: Currency, day: date) -> str:
        return f"{self.base_url}/exchangerates/rates/a/{currency.value}/{day.isoformat()}/"

    async def resolve_rate(self, currency: Currency | str, as_of: date | datetime) -> ExchangeRate | None:
        currency = Currency(currency)
        if isinstance(as_of, datetime):
            as_of = as_of.date()
        day = as_of - timedelta(days=1)

        if currency == HOME_CURRENCY:
            return ExchangeRate(code=currency, rate=1.0, quoted_date=day)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for _ in range(self.max_lookback_days):
                try:
                    r = await client.get(self._rate_url(currency, day), params={"format": "json"})
                except httpx.HTTPError as e:
                    logger.error("Error during fetching %s exchange rate for %s: %r", currency.value, day, e)
                    return None

                if r.status_code == 404:
                    day -= timedelta(days=1)
                    continue

                if r.status_code != 200:
                    logger.error(
                        "NBP returned HTTP %s for %s exchange rate on %s", r.status_code, currency.value, day
                    )
                    return None

                try:
                    mid = float(r.json()["rates"][0]["mid"])
                except (KeyError, IndexError, TypeError, ValueError) as e:
                    logger.error("Malformed NBP answer for %s on %s: %r", currency.value, day, e)
                    return None

                logger.info("Resolved %s exchange rate %s quoted on %s", currency.value, mid, day)
                return ExchangeRate(code=currency, rate=mid, quoted_date=day)

        logger.warning(
            "No %s exchange rate published within %d days before %s",
            currency.value,
            self.max_lookback_days,
            as_of,
        )
        return None
