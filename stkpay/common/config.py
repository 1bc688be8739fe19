"""Central environment-driven settings for the STK push service.

The process loads this once at startup. Gateway credentials are optional so a
missing value is reported (see `missing_gateway_settings`) instead of crashing
the process (see `.env.example`).
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


DARAJA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "stkpay"
    environment: str = "development"
    log_level: str = "INFO"

    mpesa_consumer_key: str | None = None
    mpesa_consumer_secret: str | None = None
    mpesa_shortcode: str | None = None
    mpesa_passkey: str | None = None
    mpesa_callback_url: str | None = None
    public_base_url: str | None = None
    mpesa_environment: Literal["sandbox", "production"] = "production"
    mpesa_base_url: str | None = None

    country_code: str = "254"
    account_ref_max_length: int = 12
    transaction_type: str = "CustomerPayBillOnline"
    transaction_desc: str = "Payment for goods/services"
    token_timeout_seconds: float = 10.0
    push_timeout_seconds: float = 30.0

    cors_origins: list[str] = ["http://localhost:3000"]
    # Unset keeps settled transactions for the life of the process.
    settled_retention_seconds: int | None = None
    purge_interval_seconds: float = 60.0

    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def gateway_base_url(self) -> str:
        return self.mpesa_base_url or DARAJA_BASE_URLS[self.mpesa_environment]

    @property
    def callback_url(self) -> str | None:
        """Explicit callback URL, else the public host's callback route."""

        if self.mpesa_callback_url:
            return self.mpesa_callback_url
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/api/mpesa/callback"
        return None

    def gateway_config_presence(self) -> dict[str, bool]:
        """Report which gateway settings are present without exposing values."""

        return {
            "hasConsumerKey": bool(self.mpesa_consumer_key),
            "hasConsumerSecret": bool(self.mpesa_consumer_secret),
            "hasShortcode": bool(self.mpesa_shortcode),
            "hasPasskey": bool(self.mpesa_passkey),
            "hasCallbackUrl": bool(self.callback_url),
        }

    def missing_gateway_settings(self) -> list[str]:
        values = {
            "MPESA_CONSUMER_KEY": self.mpesa_consumer_key,
            "MPESA_CONSUMER_SECRET": self.mpesa_consumer_secret,
            "MPESA_SHORTCODE": self.mpesa_shortcode,
            "MPESA_PASSKEY": self.mpesa_passkey,
            "MPESA_CALLBACK_URL": self.callback_url,
        }
        return [name for name, value in values.items() if not value]


settings = Settings()
