from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ebay_invoicer.db import Base


class Platform(str, enum.Enum):
    """eBay marketplace ids as reported in listingMarketplaceId."""

    EBAY_AT = "EBAY_AT"
    EBAY_AU = "EBAY_AU"
    EBAY_BE = "EBAY_BE"
    EBAY_CA = "EBAY_CA"
    EBAY_CH = "EBAY_CH"
    EBAY_CN = "EBAY_CN"
    EBAY_CZ = "EBAY_CZ"
    EBAY_DE = "EBAY_DE"
    EBAY_DK = "EBAY_DK"
    EBAY_ES = "EBAY_ES"
    EBAY_FI = "EBAY_FI"
    EBAY_FR = "EBAY_FR"
    EBAY_GB = "EBAY_GB"
    EBAY_GR = "EBAY_GR"
    EBAY_HK = "EBAY_HK"
    EBAY_HU = "EBAY_HU"
    EBAY_IE = "EBAY_IE"
    EBAY_IN = "EBAY_IN"
    EBAY_IT = "EBAY_IT"
    EBAY_JP = "EBAY_JP"
    EBAY_MY = "EBAY_MY"
    EBAY_NL = "EBAY_NL"
    EBAY_NO = "EBAY_NO"
    EBAY_PH = "EBAY_PH"
    EBAY_PL = "EBAY_PL"
    EBAY_PR = "EBAY_PR"
    EBAY_PT = "EBAY_PT"
    EBAY_RU = "EBAY_RU"
    EBAY_SE = "EBAY_SE"
    EBAY_SG = "EBAY_SG"
    EBAY_TH = "EBAY_TH"
    EBAY_TW = "EBAY_TW"
    EBAY_US = "EBAY_US"
    EBAY_VN = "EBAY_VN"
    EBAY_ZA = "EBAY_ZA"
    EBAY_MOTORS_US = "EBAY_MOTORS_US"


class Currency(str, enum.Enum):
    USD = "USD"
    GBP = "GBP"
    EUR = "EUR"
    PLN = "PLN"
    CAD = "CAD"
    AUD = "AUD"
    CHF = "CHF"


class CountryCode(str, enum.Enum):
    AT = "AT"
    AU = "AU"
    BE = "BE"
    CA = "CA"
    CH = "CH"
    CZ = "CZ"
    DE = "DE"
    DK = "DK"
    ES = "ES"
    FI = "FI"
    FR = "FR"
    GB = "GB"
    IE = "IE"
    IT = "IT"
    NL = "NL"
    NO = "NO"
    PL = "PL"
    PT = "PT"
    SE = "SE"
    US = "US"


# Settlement currency decides the accounting jurisdiction of an order,
# independently of the marketplace the buyer used.
CURRENCY_PLATFORM_MAP: dict[Currency, Platform] = {
    Currency.USD: Platform.EBAY_US,
    Currency.GBP: Platform.EBAY_GB,
    Currency.EUR: Platform.EBAY_DE,
    Currency.PLN: Platform.EBAY_PL,
    Currency.CAD: Platform.EBAY_CA,
    Currency.AUD: Platform.EBAY_AU,
    Currency.CHF: Platform.EBAY_CH,
}

# Sentinel stored in Order.invoice_id when invoice generation was attempted and skipped.
INVOICE_SKIPPED = 0


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, native_enum=False, length=16, validate_strings=True)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    address_street: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country_code: Mapped[CountryCode | None] = mapped_column(_enum(CountryCode, "country_code"), nullable=True)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (UniqueConstraint("platform", "platform_order_id", name="uq_orders_platform_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[Platform] = mapped_column(_enum(Platform, "platform"), nullable=False)
    platform_order_id: Mapped[str] = mapped_column(String(250), nullable=False, index=True)

    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    total_delivery: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[Currency] = mapped_column(_enum(Currency, "currency"), nullable=False)

    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)

    # NULL: not attempted, 0: skipped (INVOICE_SKIPPED), >0: ING invoice id
    invoice_id: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[Platform] = mapped_column(_enum(Platform, "platform"), nullable=False)
    platform_item_id: Mapped[str] = mapped_column(String(250), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(250), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[float] = mapped_column(Float, nullable=False)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
