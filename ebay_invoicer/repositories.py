from __future__ import annotations

from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ebay_invoicer.models import Customer, Order, OrderItem


class Repository:
    """
    Persistence store for customers, orders and order items.

    Every method runs in its own short session and commits before returning,
    so each pipeline step is durable on its own.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    # ---------- Orders ----------

    def find_order_by_external_id(self, platform_order_id: str) -> Order | None:
        with self._session_factory() as db:
            return db.scalar(select(Order).where(Order.platform_order_id == platform_order_id))

    def mark_order_paid(self, platform_order_id: str, payment_date: datetime) -> bool:
        """
        Transition an unpaid order to paid. Returns False when no unpaid row matched,
        which makes repeated calls harmless.
        """
        with self._session_factory() as db:
            result = db.execute(
                update(Order)
                .where(Order.platform_order_id == platform_order_id, Order.paid.is_(False))
                .values(paid=True, payment_date=payment_date)
            )
            db.commit()
            return result.rowcount > 0

    def insert_order(self, order: Order) -> int:
        with self._session_factory() as db:
            db.add(order)
            db.commit()
            return order.id

    def insert_new_order(self, customer: Customer, order: Order, items: list[OrderItem]) -> int:
        """
        Store a freshly fetched order together with its customer and items in one
        transaction. Nothing is kept if any insert fails, so the next poll sees the
        order as new again.
        """
        with self._session_factory() as db:
            with db.begin():
                db.add(customer)
                db.flush()
                order.customer_id = customer.id
                db.add(order)
                db.flush()
                for item in items:
                    item.order_id = order.id
                db.add_all(items)
            return order.id

    def find_paid_orders_missing_invoice(self) -> list[Order]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Order).where(Order.paid.is_(True), Order.invoice_id.is_(None)).order_by(Order.id)
            ).scalars().all()
            return list(rows)

    def record_invoice_id(self, order_id: int, invoice_id: int) -> bool:
        """
        Store the ING invoice id (or the skipped sentinel) once; later calls are ignored.
        """
        with self._session_factory() as db:
            result = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.invoice_id.is_(None))
                .values(invoice_id=invoice_id)
            )
            db.commit()
            return result.rowcount > 0

    # ---------- Customers ----------

    def insert_customer(self, customer: Customer) -> int:
        with self._session_factory() as db:
            db.add(customer)
            db.commit()
            return customer.id

    def find_customer_by_id(self, customer_id: int) -> Customer | None:
        with self._session_factory() as db:
            return db.get(Customer, customer_id)

    def find_customer_by_invoice_id(self, invoice_id: int) -> Customer | None:
        with self._session_factory() as db:
            return db.scalar(
                select(Customer)
                .join(Order, Order.customer_id == Customer.id)
                .where(Order.invoice_id == invoice_id)
            )

    # ---------- Order items ----------

    def insert_order_items(self, items: list[OrderItem]) -> None:
        with self._session_factory() as db:
            db.add_all(items)
            db.commit()

    def find_order_items_by_order_id(self, order_id: int) -> list[OrderItem]:
        with self._session_factory() as db:
            rows = db.execute(
                select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
            ).scalars().all()
            return list(rows)
