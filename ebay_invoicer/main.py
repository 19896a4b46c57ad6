from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ebay_invoicer.config import Settings, settings
from ebay_invoicer.db import Base, SessionLocal, engine
from ebay_invoicer.ebay_client import AccessTokenManager, EbayClient
from ebay_invoicer.ing_client import IngClient
from ebay_invoicer.invoice_builder import InvoiceBuilder
from ebay_invoicer.invoice_sync import InvoiceSyncScheduler
from ebay_invoicer.logging_config import get_logger, setup_logging
from ebay_invoicer.nbp_client import CurrencyRateResolver
from ebay_invoicer.notifications import NotificationDispatcher, SmtpMailer
from ebay_invoicer.order_sync import OrderSyncScheduler
from ebay_invoicer.repositories import Repository
from ebay_invoicer.scheduling import PeriodicJob, invoice_then_notify

logger = get_logger(__name__)

app = FastAPI(title="eBay -> ING Ksiegowosc invoicer")


@dataclass
class Pipeline:
    order_job: PeriodicJob
    invoice_job: PeriodicJob

    @property
    def jobs(self) -> list[PeriodicJob]:
        return [self.order_job, self.invoice_job]


def build_pipeline(cfg: Settings, session_factory: Callable[[], Session]) -> Pipeline:
    repository = Repository(session_factory)

    tokens = AccessTokenManager(
        client_id=cfg.ebay_client_id,
        client_secret=cfg.ebay_client_secret,
        refresh_token=cfg.ebay_refresh_token,
        scopes=cfg.ebay_scopes,
        api_base=cfg.ebay_api_base,
        timeout=cfg.http_timeout_seconds,
    )
    ebay_client = EbayClient(
        tokens=tokens,
        api_base=cfg.ebay_api_base,
        page_size=cfg.order_page_size,
        timeout=cfg.http_timeout_seconds,
    )
    order_sync = OrderSyncScheduler(client=ebay_client, repository=repository, lookback_days=cfg.order_lookback_days)

    ing = IngClient(cfg.ing_api_key, base_url=cfg.ing_api_base, timeout=cfg.http_timeout_seconds)
    rates = CurrencyRateResolver(
        base_url=cfg.nbp_base_url,
        max_lookback_days=cfg.max_rate_lookback_days,
        timeout=cfg.http_timeout_seconds,
    )
    builder = InvoiceBuilder(
        repository=repository,
        rates=rates,
        issue_place=cfg.invoice_issue_place,
        description=cfg.invoice_description,
        buyer_email=cfg.invoice_buyer_email,
        timezone=ZoneInfo(cfg.invoice_timezone),
    )
    invoice_sync = InvoiceSyncScheduler(repository=repository, builder=builder, ing=ing)

    mailer = SmtpMailer(
        host=cfg.smtp_host,
        port=cfg.smtp_port,
        username=cfg.smtp_username,
        password=cfg.smtp_password,
        use_tls=cfg.smtp_use_tls,
        timeout=cfg.http_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        ing=ing,
        repository=repository,
        mailer=mailer,
        mailbox=cfg.mailbox,
        locale=cfg.notification_locale,
    )

    return Pipeline(
        order_job=PeriodicJob("order-sync", cfg.order_sync_interval_seconds, order_sync.run_cycle),
        invoice_job=PeriodicJob(
            "invoice-sync", cfg.invoice_sync_interval_seconds, invoice_then_notify(invoice_sync, dispatcher)
        ),
    )


pipeline: Pipeline | None = None


async def _wait_for_db_and_init(max_attempts: int = 30) -> None:
    last_err: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            Base.metadata.create_all(bind=engine)
            return
        except OperationalError as e:
            last_err = e
            logger.warning("Database not ready (attempt %d/%d)", attempt, max_attempts)
            await asyncio.sleep(min(1.5 * attempt, 10))
    raise RuntimeError(f"Database not ready after {max_attempts} attempts: {last_err}")


@app.on_event("startup")
async def startup_event():
    global pipeline
    setup_logging(settings.log_level)
    settings.validate_required()
    await _wait_for_db_and_init()

    pipeline = build_pipeline(settings, SessionLocal)
    for job in pipeline.jobs:
        job.start()
    logger.info("Started %s", ", ".join(job.name for job in pipeline.jobs))


@app.on_event("shutdown")
async def shutdown_event():
    if pipeline is None:
        return
    for job in pipeline.jobs:
        await job.stop()


@app.get("/health")
def health():
    jobs = [job.status() for job in pipeline.jobs] if pipeline else []
    return {"ok": True, "jobs": jobs}
