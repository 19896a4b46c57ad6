"""Tests for order reconciliation against the local store."""

import logging
from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import OperationalError

from ebay_invoicer.ebay_client import AccessTokenManager, EbayClient
from ebay_invoicer.models import Customer, Order, OrderItem, Platform
from ebay_invoicer.order_sync import OrderSyncScheduler

NOW = datetime(2024, 5, 3, 12, 0, tzinfo=timezone.utc)


class FakeEbay:
    """Serves the token endpoint and whatever ``orders`` currently holds."""

    def __init__(self, orders=None, *, token_status: int = 200, orders_status: int = 200):
        self.orders = orders or []
        self.token_status = token_status
        self.orders_status = orders_status
        self.order_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/oauth2/token"):
            if self.token_status != 200:
                return httpx.Response(self.token_status)
            return httpx.Response(200, json={"access_token": "abc", "expires_in": 7200})
        self.order_requests += 1
        if self.orders_status != 200:
            return httpx.Response(self.orders_status)
        return httpx.Response(200, json={"total": len(self.orders), "orders": self.orders})


def _scheduler(fake: FakeEbay, repository) -> OrderSyncScheduler:
    transport = httpx.MockTransport(fake)
    tokens = AccessTokenManager(
        client_id="c", client_secret="s", refresh_token="r", scopes=["x"], transport=transport, clock=lambda: NOW
    )
    client = EbayClient(tokens=tokens, transport=transport)
    return OrderSyncScheduler(client=client, repository=repository, clock=lambda: NOW)


def _count(session_factory, model) -> int:
    with session_factory() as db:
        return db.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_new_paid_order_is_stored_with_customer_and_items(make_ebay_order, repository, session_factory):
    payload = make_ebay_order(
        line_items=[
            {
                "legacyItemId": "1",
                "sku": "12MUG-US",
                "quantity": 1,
                "lineItemCost": {"value": "20.00"},
                "listingMarketplaceId": "EBAY_US",
            },
            {
                "legacyItemId": "2",
                "quantity": 1,
                "lineItemCost": {"value": "6.98"},
                "listingMarketplaceId": "EBAY_US",
            },
        ]
    )

    report = await _scheduler(FakeEbay([payload]), repository).run_cycle()

    assert report.created == 1
    order = repository.find_order_by_external_id("12-34567-89012")
    assert order.platform == Platform.EBAY_US
    assert order.paid is True
    assert order.invoice_id is None

    customer = repository.find_customer_by_id(order.customer_id)
    assert customer.full_name == "Jane Doe"
    assert customer.postal_code == "NY 10001"
    assert customer.address_street == "5th Avenue 1 Apt 2"

    items = repository.find_order_items_by_order_id(order.id)
    assert [i.sku for i in items] == ["12MUG-US", None]
    assert _count(session_factory, Customer) == 1


@pytest.mark.asyncio
async def test_repolling_never_duplicates_orders(make_ebay_order, repository, session_factory):
    fake = FakeEbay([make_ebay_order("A"), make_ebay_order("B", status="PENDING", payment_date=None)])
    scheduler = _scheduler(fake, repository)

    await scheduler.run_cycle()
    second = await scheduler.run_cycle()

    assert second.created == 0
    assert second.skipped == 2
    assert _count(session_factory, Order) == 2
    assert _count(session_factory, OrderItem) == 2


@pytest.mark.asyncio
async def test_unpaid_order_becomes_paid_exactly_once(make_ebay_order, repository):
    fake = FakeEbay([make_ebay_order("A", status="PENDING", payment_date=None)])
    scheduler = _scheduler(fake, repository)
    await scheduler.run_cycle()
    assert repository.find_order_by_external_id("A").paid is False

    fake.orders = [make_ebay_order("A", status="PAID", payment_date="2024-05-03T08:00:00.000Z")]
    first = await scheduler.run_cycle()
    second = await scheduler.run_cycle()

    assert first.marked_paid == 1
    assert second.marked_paid == 0
    assert second.skipped == 1
    order = repository.find_order_by_external_id("A")
    assert order.paid is True
    assert order.payment_date.replace(tzinfo=None) == datetime(2024, 5, 3, 8, 0)


@pytest.mark.asyncio
async def test_paid_order_payment_date_is_not_rewritten(make_ebay_order, repository):
    fake = FakeEbay([make_ebay_order("A", payment_date="2024-05-02T10:15:00.000Z")])
    scheduler = _scheduler(fake, repository)
    await scheduler.run_cycle()

    fake.orders = [make_ebay_order("A", payment_date="2024-05-03T23:59:00.000Z")]
    report = await scheduler.run_cycle()

    assert report.marked_paid == 0
    order = repository.find_order_by_external_id("A")
    assert order.payment_date.replace(tzinfo=None) == datetime(2024, 5, 2, 10, 15)


@pytest.mark.asyncio
async def test_paid_transition_without_payment_record_uses_creation_date(make_ebay_order, repository, caplog):
    fake = FakeEbay([make_ebay_order("A", status="PENDING", payment_date=None)])
    scheduler = _scheduler(fake, repository)
    await scheduler.run_cycle()

    fake.orders = [make_ebay_order("A", status="PAID", payment_date=None, creation_date="2024-05-01T07:30:00.000Z")]
    with caplog.at_level(logging.WARNING, logger="ebay_invoicer.order_sync"):
        report = await scheduler.run_cycle()

    assert any("Data integrity: order A" in r.getMessage() for r in caplog.records)
    assert report.marked_paid == 1
    order = repository.find_order_by_external_id("A")
    assert order.paid is True
    assert order.payment_date.replace(tzinfo=None) == datetime(2024, 5, 1, 7, 30)


@pytest.mark.asyncio
async def test_bad_order_is_skipped_and_batch_continues(make_ebay_order, repository):
    broken = make_ebay_order("BROKEN", currency="JPY")
    fake = FakeEbay([broken, make_ebay_order("GOOD")])

    report = await _scheduler(fake, repository).run_cycle()

    assert report.failed == 1
    assert report.created == 1
    assert repository.find_order_by_external_id("BROKEN") is None
    assert repository.find_order_by_external_id("GOOD") is not None


@pytest.mark.asyncio
async def test_token_failure_aborts_cycle(make_ebay_order, repository):
    fake = FakeEbay([make_ebay_order()], token_status=401)

    report = await _scheduler(fake, repository).run_cycle()

    assert report.aborted is True
    assert fake.order_requests == 0
    assert repository.find_order_by_external_id("12-34567-89012") is None


@pytest.mark.asyncio
async def test_order_listing_failure_aborts_cycle(repository):
    fake = FakeEbay(orders_status=503)

    report = await _scheduler(fake, repository).run_cycle()

    assert report.aborted is True
    assert report.fetched == 0


def _without_ship_to(payload):
    payload["fulfillmentStartInstructions"][0]["shippingStep"]["shipTo"] = None
    return payload


def _with_null_line_item(payload):
    payload["lineItems"].append(None)
    return payload


def _with_string_buyer(payload):
    payload["buyer"] = "buyer_one"
    return payload


@pytest.mark.asyncio
@pytest.mark.parametrize("corrupt", [_without_ship_to, _with_null_line_item, _with_string_buyer])
async def test_malformed_payload_does_not_stop_the_batch(make_ebay_order, repository, session_factory, corrupt):
    fake = FakeEbay([corrupt(make_ebay_order("BAD")), make_ebay_order("GOOD")])

    report = await _scheduler(fake, repository).run_cycle()

    assert report.failed == 1
    assert report.created == 1
    assert repository.find_order_by_external_id("BAD") is None
    assert repository.find_order_by_external_id("GOOD") is not None
    assert _count(session_factory, Customer) == 1


@pytest.mark.asyncio
async def test_failed_item_insert_leaves_nothing_and_is_retried(make_ebay_order, repository, session_factory):
    def fail_insert(mapper, connection, target):
        raise OperationalError("INSERT INTO order_items", {}, Exception("disk I/O error"))

    fake = FakeEbay([make_ebay_order("A")])
    scheduler = _scheduler(fake, repository)

    event.listen(OrderItem, "before_insert", fail_insert)
    try:
        first = await scheduler.run_cycle()
    finally:
        event.remove(OrderItem, "before_insert", fail_insert)

    assert first.failed == 1
    assert repository.find_order_by_external_id("A") is None
    assert _count(session_factory, Customer) == 0
    assert _count(session_factory, OrderItem) == 0

    second = await scheduler.run_cycle()

    assert second.created == 1
    order = repository.find_order_by_external_id("A")
    assert len(repository.find_order_items_by_order_id(order.id)) == 1
    assert _count(session_factory, Customer) == 1
