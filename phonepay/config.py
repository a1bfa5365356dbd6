"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("phonepay.config")


class Settings(BaseSettings):
    # Public address the carrier uses to reach our webhooks. Empty means
    # "derive from the incoming request's Host header".
    public_base_url: str = ""

    # Ledger / CRM database
    database_url: str = "sqlite:///./phonepay.db"

    # Card gateway (Cardknox / Sola)
    gateway_url: str = "https://x1.cardknox.com/gatewayjson"
    gateway_api_key: str = ""
    gateway_timeout: float = 20.0
    software_name: str = "Shelf Sorcerer POS"
    software_version: str = "1.0.0"

    # Store
    store_name: str = "the bookstore"
    store_forward_number: str = ""

    # IVR
    max_payment_retries: int = 1
    say_voice: str = "man"
    say_language: str = "en-US"

    # Admin auth
    admin_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"xkey_...", "changeme"}

        if self.max_payment_retries < 0:
            raise ValueError("MAX_PAYMENT_RETRIES must be zero or positive.")

        if self.public_base_url and not self.public_base_url.startswith(
            ("http://", "https://")
        ):
            raise ValueError(
                "PUBLIC_BASE_URL must be an absolute http(s) URL, "
                f"got {self.public_base_url!r}."
            )

        # Without a gateway key every charge ends as a gateway error
        if not self.gateway_api_key or self.gateway_api_key in _placeholders:
            warnings.append(
                "GATEWAY_API_KEY not set. Phone payments will fail and "
                "callers will be offered a representative."
            )

        if not self.store_forward_number:
            warnings.append(
                "STORE_FORWARD_NUMBER not set. Escalations cannot reach a "
                "representative and will end the call after an apology."
            )

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        return warnings


settings = Settings()
