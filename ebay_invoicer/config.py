from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment variables are loaded from .env (docker compose) and from the process environment.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App (optional)
    app_host: str = Field(default="0.0.0.0")
    app_port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(default="postgresql+psycopg://app:app@db:5432/app")

    # eBay
    ebay_client_id: str = Field(default="")
    ebay_client_secret: str = Field(default="")
    ebay_refresh_token: str = Field(default="")
    ebay_scopes: list[str] = Field(
        default_factory=lambda: ["https://api.ebay.com/oauth/api_scope/sell.fulfillment.readonly"]
    )
    ebay_api_base: str = Field(default="https://api.ebay.com")
    order_lookback_days: int = Field(default=3)
    order_page_size: int = Field(default=50)

    # ING Ksiegowosc
    ing_api_key: str = Field(default="")
    ing_api_base: str = Field(default="https://ksiegowosc.ing.pl/v2/api/public")
    invoice_issue_place: str = Field(default="Warszawa")
    invoice_description: str = Field(default="Sprzedaz w serwisie eBay")
    invoice_buyer_email: str = Field(default="-")
    invoice_timezone: str = Field(default="Europe/Warsaw")

    # NBP exchange rates
    nbp_base_url: str = Field(default="https://api.nbp.pl/api")
    max_rate_lookback_days: int = Field(default=10)

    # Mail
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_username: str = Field(default="")
    smtp_password: str = Field(default="")
    smtp_use_tls: bool = Field(default=True)
    notification_mailbox: str = Field(default="")
    notification_locale: str = Field(default="pl")

    # Scheduling
    order_sync_interval_seconds: float = Field(default=300)
    invoice_sync_interval_seconds: float = Field(default=300)
    http_timeout_seconds: float = Field(default=60)

    def validate_required(self) -> None:
        missing: list[str] = []

        # eBay
        if not self.ebay_client_id.strip():
            missing.append("EBAY_CLIENT_ID")
        if not self.ebay_client_secret.strip():
            missing.append("EBAY_CLIENT_SECRET")
        if not self.ebay_refresh_token.strip():
            missing.append("EBAY_REFRESH_TOKEN")
        if not self.ebay_scopes:
            missing.append("EBAY_SCOPES")

        # ING
        if not self.ing_api_key.strip():
            missing.append("ING_API_KEY")

        # Mail
        if not self.smtp_username.strip():
            missing.append("SMTP_USERNAME")
        if not self.smtp_password.strip():
            missing.append("SMTP_PASSWORD")

        if missing:
            raise RuntimeError(
                "Missing required environment variables: "
                + ", ".join(missing)
                + ". Check your .env file is present and loaded by docker compose."
            )

    @property
    def mailbox(self) -> str:
        return self.notification_mailbox or self.smtp_username


settings = Settings()
