from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone as dt_timezone, tzinfo
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ebay_invoicer.errors import InvoiceBuildError
from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.models import CountryCode, Currency, Order, OrderItem
from ebay_invoicer.nbp_client import CurrencyRateResolver
from ebay_invoicer.repositories import Repository

logger = get_logger(__name__)

DASH = "-"
UNIT = "szt."
TAX_STAKE = "NP"
PAYMENT_METHOD = "OTHER"
SHIPPING_KEY = "SHIPPING"

# Service dates are calendar days in the accounting office's zone.
INVOICE_TIMEZONE = ZoneInfo("Europe/Warsaw")

# "12MUG-US" -> family "MUG"; first run of 2+ capitals ending on a word boundary
PRODUCT_FAMILY_RE = re.compile(r"\d*([A-Z]{2,})\b")
PLATFORM_SUFFIX_RE = re.compile(r"-[A-Z]{2}$")


def load_position_names() -> dict[str, str]:
    path = Path(__file__).parent / "data" / "position_types.json"
    return json.loads(path.read_text(encoding="utf-8"))


POSITION_NAMES = load_position_names()


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CurrencyDTO(_Payload):
    code: Currency
    rate: float


class PaymentDTO(_Payload):
    method: str
    deadline_date: date
    paid_amount: float


class BuyerDTO(_Payload):
    email: str
    full_name: str
    address_street: str | None
    city: str | None
    post_code: str | None
    country_code: CountryCode | None
    tax_number: str
    tax_country_code: CountryCode | None


class PositionDTO(_Payload):
    name: str
    code: str
    quantity: int
    unit: str
    net: float
    gross: float
    tax_stake: str


class InvoicePayload(_Payload):
    issue_place: str
    issue_date: date
    service_date: date
    description: str
    currency: CurrencyDTO
    payment: PaymentDTO
    buyer: BuyerDTO
    positions: list[PositionDTO]

    def to_request(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def position_name_for_sku(sku: str, names: dict[str, str] = POSITION_NAMES) -> str | None:
    match = PRODUCT_FAMILY_RE.search(sku)
    if not match:
        return None
    return names.get(match.group(1))


def sku_without_platform(sku: str) -> str:
    return PLATFORM_SUFFIX_RE.sub("", sku)


def local_date(moment: datetime, tz: tzinfo = INVOICE_TIMEZONE) -> date:
    # naive values come back from backends without timezone support and are UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment.astimezone(tz).date()


class InvoiceBuilder:
    def __init__(
        self,
        *,
        repository: Repository,
        rates: CurrencyRateResolver,
        issue_place: str,
        description: str,
        buyer_email: str = DASH,
        position_names: dict[str, str] | None = None,
        today: Callable[[], date] = date.today,
        timezone: tzinfo = INVOICE_TIMEZONE,
    ):
        self.repository = repository
        self.rates = rates
        self.issue_place = issue_place
        self.description = description
        self.buyer_email = buyer_email
        self.position_names = position_names if position_names is not None else POSITION_NAMES
        self.today = today
        self.timezone = timezone

    async def build(self, order: Order) -> InvoicePayload:
        """
        Assemble the ING payload for a paid order, or raise InvoiceBuildError naming
        the missing piece.
        """
        if order.payment_date is None:
            raise InvoiceBuildError(order.id, "order has no payment date")
        service_date = local_date(order.payment_date, self.timezone)

        rate = await self.rates.resolve_rate(order.currency, service_date)
        if rate is None:
            raise InvoiceBuildError(order.id, f"no {Currency(order.currency).value} exchange rate")
        currency = CurrencyDTO(code=rate.code, rate=rate.rate)

        payment = PaymentDTO(method=PAYMENT_METHOD, deadline_date=service_date, paid_amount=order.total_price)

        customer = self.repository.find_customer_by_id(order.customer_id)
        if customer is None:
            raise InvoiceBuildError(order.id, f"customer {order.customer_id} not found")
        buyer = BuyerDTO(
            email=self.buyer_email,
            full_name=customer.full_name,
            address_street=customer.address_street,
            city=customer.city,
            post_code=customer.postal_code,
            country_code=customer.country_code,
            tax_number=DASH,
            tax_country_code=customer.country_code,
        )

        positions = self._positions(self.repository.find_order_items_by_order_id(order.id), order.total_delivery)
        if not positions:
            raise InvoiceBuildError(order.id, "no order item with a recognised SKU")

        return InvoicePayload(
            issue_place=self.issue_place,
            issue_date=self.today(),
            service_date=service_date,
            description=self.description,
            currency=currency,
            payment=payment,
            buyer=buyer,
            positions=positions,
        )

    def _positions(self, items: list[OrderItem], shipping_price: float) -> list[PositionDTO]:
        positions: list[PositionDTO] = []
        # items without a SKU have no product code to map to a tax position
        for item in items:
            if not item.sku:
                continue
            name = position_name_for_sku(item.sku, self.position_names)
            if name is None:
                logger.info("Skipping item %s: unknown product family in SKU %s", item.platform_item_id, item.sku)
                continue
            positions.append(
                PositionDTO(
                    name=name,
                    code=sku_without_platform(item.sku),
                    quantity=item.quantity,
                    unit=UNIT,
                    net=item.total_price,
                    gross=item.total_price,
                    tax_stake=TAX_STAKE,
                )
            )

        if positions:
            positions.append(
                PositionDTO(
                    name=self.position_names.get(SHIPPING_KEY, "Shipping"),
                    code=DASH,
                    quantity=1,
                    unit=UNIT,
                    net=shipping_price,
                    gross=shipping_price,
                    tax_stake=TAX_STAKE,
                )
            )
        return positions
