"""Shared fixtures: in-memory database, repository and eBay payload factory."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ebay_invoicer.db import Base
from ebay_invoicer.models import CountryCode, Currency, Customer, Order, OrderItem, Platform
from ebay_invoicer.repositories import Repository


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> Repository:
    return Repository(session_factory)


@pytest.fixture
def make_ebay_order():
    """Factory for Fulfillment API order payloads."""

    def _make(
        order_id: str = "12-34567-89012",
        *,
        status: str = "PAID",
        currency: str = "USD",
        total: str = "31.98",
        delivery: str = "5.00",
        payment_date: str | None = "2024-05-02T10:15:00.000Z",
        creation_date: str = "2024-05-02T09:00:00.000Z",
        line_items: list[dict[str, Any]] | None = None,
        country_code: str = "US",
        state: str | None = "NY",
    ) -> dict[str, Any]:
        payments = [{"paymentDate": payment_date, "paymentStatus": "PAID"}] if payment_date else []
        address = {
            "addressLine1": "5th Avenue 1",
            "addressLine2": "Apt 2",
            "city": "New York",
            "postalCode": "10001",
            "countryCode": country_code,
        }
        if state:
            address["stateOrProvince"] = state

        if line_items is None:
            line_items = [
                {
                    "lineItemId": "1",
                    "legacyItemId": "110011",
                    "sku": "12MUG-US",
                    "quantity": 2,
                    "lineItemCost": {"value": "26.98", "currency": currency},
                    "listingMarketplaceId": "EBAY_US",
                }
            ]

        return {
            "orderId": order_id,
            "creationDate": creation_date,
            "orderPaymentStatus": status,
            "buyer": {
                "username": "buyer_one",
                "buyerRegistrationAddress": {"fullName": "Jane Doe"},
            },
            "pricingSummary": {
                "total": {"value": total, "currency": currency},
                "deliveryCost": {"value": delivery, "currency": currency},
            },
            "paymentSummary": {"payments": payments},
            "fulfillmentStartInstructions": [
                {"shippingStep": {"shipTo": {"fullName": "Jane Doe", "contactAddress": address}}}
            ],
            "lineItems": line_items,
        }

    return _make


@pytest.fixture
def stored_paid_order(repository):
    """A paid USD order with one SKU item and one SKU-less item, already in the store."""

    def _store(skus: list[str | None] | None = None, *, invoice_id: int | None = None) -> Order:
        customer_id = repository.insert_customer(
            Customer(
                username="buyer_one",
                full_name="Jane Doe",
                address_street="5th Avenue 1",
                city="New York",
                postal_code="NY 10001",
                country_code=CountryCode.US,
            )
        )
        order = Order(
            platform=Platform.EBAY_US,
            platform_order_id=f"order-{customer_id}",
            order_date=datetime(2024, 5, 2, 9, 0, tzinfo=timezone.utc),
            payment_date=datetime(2024, 5, 6, 10, 15, tzinfo=timezone.utc),
            paid=True,
            total_price=31.98,
            total_delivery=5.0,
            currency=Currency.USD,
            customer_id=customer_id,
            invoice_id=invoice_id,
        )
        order_id = repository.insert_order(order)
        items = [
            OrderItem(
                platform=Platform.EBAY_US,
                platform_item_id=f"item-{n}",
                sku=sku,
                quantity=1,
                total_price=13.49,
                order_id=order_id,
            )
            for n, sku in enumerate(skus if skus is not None else ["12MUG-US", None])
        ]
        repository.insert_order_items(items)
        return order

    return _store
