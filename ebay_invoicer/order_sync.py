from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError

from ebay_invoicer.ebay_client import EbayClient, utcnow
from ebay_invoicer.errors import AuthError, MappingError, TransportError
from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.order_mapper import (
    buyer_username_of,
    first_payment_date,
    is_paid,
    map_customer,
    map_order,
    map_order_items,
    parse_ebay_datetime,
    ship_to_of,
)
from ebay_invoicer.repositories import Repository

logger = get_logger(__name__)

# Errors that only invalidate the order being processed.
RECORD_ERRORS = (MappingError, AttributeError, KeyError, IndexError, TypeError, ValueError, SQLAlchemyError)


@dataclass
class OrderSyncReport:
    fetched: int = 0
    created: int = 0
    marked_paid: int = 0
    skipped: int = 0
    failed: int = 0
    aborted: bool = False


class OrderSyncScheduler:
    def __init__(
        self,
        *,
        client: EbayClient,
        repository: Repository,
        lookback_days: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.repository = repository
        self.lookback_days = lookback_days
        self.clock = clock

    async def run_cycle(self) -> OrderSyncReport:
        logger.info("Fetching eBay orders...")
        report = OrderSyncReport()

        try:
            await self.client.tokens.ensure_valid_token()
        except (AuthError, TransportError) as e:
            logger.warning("Could not fetch eBay orders because access token was not refreshed: %s", e)
            report.aborted = True
            return report

        created_after = self.clock() - timedelta(days=self.lookback_days)
        try:
            orders = await self.client.get_orders_created_since(created_after)
        except (AuthError, TransportError) as e:
            logger.error("Error when trying to fetch eBay orders: %s", e)
            report.aborted = True
            return report

        report.fetched = len(orders)
        logger.info("Successfully fetched eBay orders. Total amount: %d", len(orders))

        for order in orders:
            try:
                self._reconcile(order, report)
            except RECORD_ERRORS as e:
                report.failed += 1
                order_ref = order.get("orderId") if isinstance(order, dict) else order
                logger.error("Skipping eBay order %s: %s", order_ref, e)

        logger.info(
            "eBay order sync done: created=%d marked_paid=%d skipped=%d failed=%d",
            report.created,
            report.marked_paid,
            report.skipped,
            report.failed,
        )
        return report

    def _reconcile(self, order: dict[str, Any], report: OrderSyncReport) -> None:
        platform_order_id = str(order["orderId"])
        existing = self.repository.find_order_by_external_id(platform_order_id)

        if existing is None:
            self._add_order(order)
            report.created += 1
            return

        if is_paid(order) and not existing.paid:
            payment_date = self._payment_date_for_transition(order)
            if self.repository.mark_order_paid(platform_order_id, payment_date):
                report.marked_paid += 1
                logger.info("Successfully set order %s as paid", platform_order_id)
                return

        report.skipped += 1
        logger.info("Skipping order %s because it already exists in database", platform_order_id)

    def _payment_date_for_transition(self, order: dict[str, Any]) -> datetime:
        raw = first_payment_date(order)
        payment_date = parse_ebay_datetime(raw)
        if payment_date is not None:
            return payment_date

        fallback = parse_ebay_datetime(order.get("creationDate")) or self.clock()
        logger.warning(
            "Data integrity: order %s is PAID but payment date %r is missing or invalid; using %s",
            order.get("orderId"),
            raw,
            fallback.isoformat(),
        )
        return fallback

    def _add_order(self, order: dict[str, Any]) -> None:
        customer = map_customer(ship_to_of(order), buyer_username_of(order))
        order_items = map_order_items(order.get("lineItems") or [])
        order_row = map_order(order)

        self.repository.insert_new_order(customer, order_row, order_items)
        logger.info(
            "Successfully added order %s for customer %s with %d order items: %s",
            order_row.platform_order_id,
            customer.id,
            len(order_items),
            ", ".join(f"SKU: {item.sku or 'N/A'}" for item in order_items),
        )
