from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..crypto.key_utils import load_ed25519_private_key

ENV_PREFIX = "PAYLINK_"

DEFAULT_CLIENT_WALLET_ADDRESS = "https://ilp.interledger-test.dev/marketplace"
DEFAULT_MERCHANT_WALLET_ADDRESS = "https://ilp.interledger-test.dev/merchant"


class Settings(BaseModel):
    api_host: str = "0.0.0.0"
    api_port: int = 3002
    api_debug: bool = False
    api_cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    app_name: str = "PayLink"
    app_version: str = "1.0.0"
    app_url: str = "http://localhost:3002"

    client_wallet_address: str = DEFAULT_CLIENT_WALLET_ADDRESS
    merchant_wallet_address: str = DEFAULT_MERCHANT_WALLET_ADDRESS
    key_id: Optional[str] = None
    private_key_pem: Optional[str] = None

    request_timeout_seconds: float = Field(30.0, gt=0)
    poll_interval_seconds: float = Field(2.0, ge=0)
    poll_max_attempts: int = Field(10, ge=1)
    pending_payment_ttl_seconds: float = Field(86400.0, gt=0)
    pending_payment_sweep_seconds: float = Field(300.0, gt=0)

    @field_validator("private_key_pem")
    @classmethod
    def validate_private_key_pem(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            load_ed25519_private_key(v)
        except ValueError as e:
            raise ValueError(f"Invalid Open Payments private key: {e}") from e
        return v

    @property
    def signing_configured(self) -> bool:
        return bool(self.private_key_pem and self.key_id)

    def callback_url(self, payment_id: str) -> str:
        """Where the buyer's wallet redirects after the consent screen."""
        return f"{self.app_url.rstrip('/')}/api/marketplace/callback/{payment_id}"


def _env(name: str) -> Optional[str]:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    return value if value not in (None, "") else None


def _read_private_key_pem() -> Optional[str]:
    pem = _env("PRIVATE_KEY_PEM")
    if pem is not None:
        return pem
    key_path = _env("PRIVATE_KEY_PATH")
    if key_path is not None:
        return Path(key_path).read_text()
    return None


def get_settings() -> Settings:
    """Build settings from `PAYLINK_*` environment variables.

    Unset variables fall back to the model defaults.
    """
    values: dict[str, object] = {}

    for field, name in (
        ("api_host", "API_HOST"),
        ("app_name", "APP_NAME"),
        ("app_version", "APP_VERSION"),
        ("app_url", "APP_URL"),
        ("client_wallet_address", "CLIENT_WALLET_ADDRESS"),
        ("merchant_wallet_address", "MERCHANT_WALLET_ADDRESS"),
        ("key_id", "KEY_ID"),
        ("api_port", "API_PORT"),
        ("request_timeout_seconds", "REQUEST_TIMEOUT_SECONDS"),
        ("poll_interval_seconds", "POLL_INTERVAL_SECONDS"),
        ("poll_max_attempts", "POLL_MAX_ATTEMPTS"),
        ("pending_payment_ttl_seconds", "PENDING_PAYMENT_TTL_SECONDS"),
        ("pending_payment_sweep_seconds", "PENDING_PAYMENT_SWEEP_SECONDS"),
    ):
        raw = _env(name)
        if raw is not None:
            values[field] = raw

    api_debug_str = _env("API_DEBUG")
    if api_debug_str is not None:
        values["api_debug"] = api_debug_str.lower() == "true"

    api_cors_origins_str = _env("API_CORS_ORIGINS")
    if api_cors_origins_str is not None:
        values["api_cors_origins"] = [
            origin.strip() for origin in api_cors_origins_str.split(",") if origin.strip()
        ]

    private_key_pem = _read_private_key_pem()
    if private_key_pem is not None:
        values["private_key_pem"] = private_key_pem

    return Settings(**values)
