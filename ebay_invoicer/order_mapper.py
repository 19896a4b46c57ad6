"""
Projection of eBay Fulfillment API payloads onto the local ledger entities.

Everything here is pure: no database access and no network. Invalid or incomplete
payloads raise MappingError so the caller can skip the single order.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ebay_invoicer.errors import MappingError
from ebay_invoicer.models import CURRENCY_PLATFORM_MAP, CountryCode, Currency, Customer, Order, OrderItem, Platform

PAID_STATUS = "PAID"

# Countries whose addresses put the state next to the postal code ("NY 10001").
STATE_PREFIXED_POSTAL_COUNTRIES = {CountryCode.US}


def parse_ebay_datetime(value: str | None) -> datetime | None:
    """
    eBay timestamps look like ``2024-05-01T12:34:56.000Z``. Returns None when the
    value is missing or unparseable.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def first_payment_date(order: dict[str, Any]) -> str | None:
    summary = order.get("paymentSummary") or {}
    payments = summary.get("payments") if isinstance(summary, dict) else None
    if not payments or not isinstance(payments, list) or not isinstance(payments[0], dict):
        return None
    return payments[0].get("paymentDate")


def is_paid(order: dict[str, Any]) -> bool:
    return order.get("orderPaymentStatus") == PAID_STATUS


def buyer_username_of(order: dict[str, Any]) -> str | None:
    buyer = order.get("buyer")
    if buyer is None:
        return None
    if not isinstance(buyer, dict):
        raise MappingError(f"Order {order.get('orderId')} has a malformed buyer")
    return buyer.get("username")


def ship_to_of(order: dict[str, Any]) -> dict[str, Any]:
    try:
        ship_to = order["fulfillmentStartInstructions"][0]["shippingStep"]["shipTo"]
    except (KeyError, IndexError, TypeError) as e:
        raise MappingError(f"Order {order.get('orderId')} has no shipping address") from e
    if not isinstance(ship_to, dict):
        raise MappingError(f"Order {order.get('orderId')} has no shipping address")
    return ship_to


def _country(code: str | None) -> CountryCode | None:
    if not code:
        return None
    try:
        return CountryCode(code)
    except ValueError as e:
        raise MappingError(f"Unsupported country code {code!r}") from e


def map_customer(ship_to: dict[str, Any], username: str | None) -> Customer:
    if not isinstance(ship_to, dict):
        raise MappingError("Shipping address is not an object")
    full_name = ship_to.get("fullName")
    if not isinstance(full_name, str) or not full_name.strip():
        raise MappingError("Shipping address has no fullName")
    full_name = full_name.strip()

    address = ship_to.get("contactAddress") or {}
    if not isinstance(address, dict):
        raise MappingError("Shipping address has a malformed contactAddress")
    country_code = _country(address.get("countryCode"))

    street = address.get("addressLine1")
    if street and address.get("addressLine2"):
        street = f"{street} {address['addressLine2']}"

    state = address.get("stateOrProvince")
    postal_code = address.get("postalCode")
    city = address.get("city")

    if state:
        if country_code in STATE_PREFIXED_POSTAL_COUNTRIES:
            postal_code = f"{state} {postal_code}" if postal_code else state
        else:
            city = f"{city}, {state}" if city else state

    return Customer(
        username=username,
        full_name=full_name,
        address_street=street,
        city=city,
        postal_code=postal_code,
        country_code=country_code,
    )


def map_order_items(line_items: list[dict[str, Any]]) -> list[OrderItem]:
    if not isinstance(line_items, list):
        raise MappingError("lineItems is not a list")
    items: list[OrderItem] = []
    for line in line_items:
        if not isinstance(line, dict):
            raise MappingError(f"Malformed line item {line!r}")
        try:
            platform = Platform(line["listingMarketplaceId"])
            items.append(
                OrderItem(
                    platform=platform,
                    platform_item_id=str(line["legacyItemId"]),
                    sku=line.get("sku") or None,
                    quantity=int(line["quantity"]),
                    total_price=float(line["lineItemCost"]["value"]),
                )
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MappingError(f"Malformed line item {line.get('lineItemId')}: {e!r}") from e
    return items


def map_order(order: dict[str, Any]) -> Order:
    order_id = order.get("orderId")
    if not order_id:
        raise MappingError("Order payload has no orderId")

    try:
        pricing = order["pricingSummary"]
        currency = Currency(pricing["total"]["currency"])
        total_price = float(pricing["total"]["value"])
        total_delivery = float((pricing.get("deliveryCost") or {}).get("value") or 0)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise MappingError(f"Order {order_id} has malformed pricingSummary: {e!r}") from e

    platform = CURRENCY_PLATFORM_MAP.get(currency)
    if platform is None:
        raise MappingError(f"Order {order_id}: no platform mapped for currency {currency.value}")

    order_date = parse_ebay_datetime(order.get("creationDate"))
    if order_date is None:
        raise MappingError(f"Order {order_id} has no valid creationDate")

    paid = is_paid(order)
    raw_payment_date = first_payment_date(order)
    if paid and raw_payment_date is None:
        raise MappingError(f"Order {order_id} is PAID but carries no payment record")

    payment_date = parse_ebay_datetime(raw_payment_date)
    if paid and payment_date is None:
        raise MappingError(f"Order {order_id} has unparseable paymentDate {raw_payment_date!r}")

    return Order(
        platform=platform,
        platform_order_id=str(order_id),
        order_date=order_date,
        payment_date=payment_date,
        paid=paid,
        total_price=total_price,
        total_delivery=total_delivery,
        currency=currency,
    )
