from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from ebay_invoicer.ebay_client import utcnow
from ebay_invoicer.invoice_sync import InvoiceSyncScheduler
from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.notifications import NotificationDispatcher

logger = get_logger(__name__)


@dataclass
class PeriodicJob:
    """
    Runs ``func`` once immediately and then every ``interval`` seconds.

    A failing run is logged and the timer keeps going; the next tick is the retry.
    """

    name: str
    interval: float
    func: Callable[[], Awaitable[Any]]

    runs: int = 0
    last_run_at: datetime | None = None
    last_result: Any = None
    last_error: str | None = None
    _task: asyncio.Task | None = field(default=None, repr=False)

    async def run_once(self) -> Any:
        self.runs += 1
        self.last_run_at = utcnow()
        try:
            self.last_result = await self.func()
            self.last_error = None
        except Exception as e:
            self.last_error = repr(e)
            logger.exception("Job %s failed", self.name)
        return self.last_result

    async def run_forever(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name=self.name)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval": self.interval,
            "runs": self.runs,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_result": str(self.last_result) if self.last_result is not None else None,
            "last_error": self.last_error,
        }


def invoice_then_notify(
    invoices: InvoiceSyncScheduler, dispatcher: NotificationDispatcher
) -> Callable[[], Awaitable[list[int]]]:
    """
    One invoice cycle followed by a single notification for the whole batch.
    """

    async def _run() -> list[int]:
        invoice_ids = await invoices.run_cycle()
        if invoice_ids:
            await dispatcher.dispatch(invoice_ids)
        return invoice_ids

    return _run
