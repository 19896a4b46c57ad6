from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ebay_invoicer.errors import InvoiceBuildError, TransportError
from ebay_invoicer.ing_client import IngClient
from ebay_invoicer.invoice_builder import InvoiceBuilder
from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.models import INVOICE_SKIPPED
from ebay_invoicer.repositories import Repository

logger = get_logger(__name__)


class InvoiceSyncScheduler:
    """
    Turns paid orders without an invoice into ING invoices.

    ``run_cycle`` returns the ids created in this run; the caller hands a non-empty
    batch to the NotificationDispatcher.
    """

    def __init__(self, *, repository: Repository, builder: InvoiceBuilder, ing: IngClient):
        self.repository = repository
        self.builder = builder
        self.ing = ing

    async def run_cycle(self) -> list[int]:
        orders = self.repository.find_paid_orders_missing_invoice()
        if not orders:
            return []

        logger.info("Fetched %d paid orders without invoice from the database", len(orders))

        invoice_ids: list[int] = []
        for n, order in enumerate(orders, start=1):
            try:
                payload = await self.builder.build(order)
            except InvoiceBuildError as e:
                logger.warning("%s; marking invoice as skipped", e)
                self.repository.record_invoice_id(order.id, INVOICE_SKIPPED)
                continue

            logger.info("Prepared %d of %d invoice payloads", n, len(orders))
            try:
                invoice_id = await self.ing.create_invoice(payload.to_request())
            except TransportError as e:
                # left NULL so the next tick retries the submission
                logger.error("Could not create invoice for order %s: %s", order.id, e)
                continue

            try:
                self.repository.record_invoice_id(order.id, invoice_id)
            except SQLAlchemyError:
                logger.exception("Invoice %s created but could not be saved for order %s", invoice_id, order.id)
                continue

            invoice_ids.append(invoice_id)
            logger.info("Saved invoice %s for order %s", invoice_id, order.id)

        return invoice_ids
