from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from babel import Locale

from ebay_invoicer.errors import TransportError
from ebay_invoicer.ing_client import IngClient
from ebay_invoicer.logging_config import get_logger
from ebay_invoicer.models import Customer
from ebay_invoicer.repositories import Repository

logger = get_logger(__name__)

SUBJECT = "Invoice"


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class Mailer(Protocol):
    async def send(self, to: str, subject: str, body: str, attachments: list[Attachment]) -> None: ...


class SmtpMailer:
    def __init__(self, *, host: str, port: int, username: str, password: str, use_tls: bool = True, timeout: float = 60):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, to: str, subject: str, body: str, attachments: list[Attachment]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.username
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        for a in attachments:
            maintype, _, subtype = a.content_type.partition("/")
            msg.add_attachment(a.content, maintype=maintype, subtype=subtype, filename=a.filename)
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, to: str, subject: str, body: str, attachments: list[Attachment]) -> None:
        msg = self._build_message(to, subject, body, attachments)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"Sending e-mail to {to} failed: {e!r}") from e
        logger.info("Email sent to %s with %d attachments", to, len(attachments))


def country_name(code: str | None, locale: str = "pl") -> str:
    if not code:
        return ""
    return Locale.parse(locale).territories.get(str(code), "")


def format_customer(customer: Customer, locale: str = "pl") -> str:
    country = customer.country_code.value if customer.country_code else None
    lines = [
        customer.full_name,
        customer.address_street or "",
        f"{customer.postal_code or ''} {customer.city or ''}".strip(),
        country_name(country, locale),
    ]
    return "\n".join(lines).strip()


class NotificationDispatcher:
    """
    Mails a batch of freshly created invoices, as PDFs, to the shop mailbox.
    """

    def __init__(self, *, ing: IngClient, repository: Repository, mailer: Mailer, mailbox: str, locale: str = "pl"):
        self.ing = ing
        self.repository = repository
        self.mailer = mailer
        self.mailbox = mailbox
        self.locale = locale

    async def dispatch(self, invoice_ids: list[int]) -> bool:
        """
        Returns True when a message was sent.
        """
        logger.info("Sending e-mail for %d invoices", len(invoice_ids))
        attachments = await self._collect_invoices(invoice_ids)
        if not attachments:
            logger.warning("No invoices downloaded, aborting email sending.")
            return False

        customers = self._collect_customers(invoice_ids)
        body = "\n\n".join(format_customer(c, self.locale) for c in customers)
        await self.mailer.send(self.mailbox, SUBJECT, body, attachments)
        return True

    async def _collect_invoices(self, invoice_ids: list[int]) -> list[Attachment]:
        attachments: list[Attachment] = []
        for invoice_id in invoice_ids:
            pdf = await self.ing.download_invoice(invoice_id)
            if pdf is None:
                logger.warning("Cannot download invoice PDF for ID %s", invoice_id)
                continue
            attachments.append(Attachment(filename=f"invoice_{invoice_id}.pdf", content=pdf))
        return attachments

    def _collect_customers(self, invoice_ids: list[int]) -> list[Customer]:
        customers: dict[int, Customer] = {}
        for invoice_id in invoice_ids:
            customer = self.repository.find_customer_by_invoice_id(invoice_id)
            if customer is None:
                logger.warning("Could not fetch customer details for invoice ID %s", invoice_id)
                continue
            customers.setdefault(customer.id, customer)
        return list(customers.values())
