# payment_bridge/config.py
"""
Settings for the payment bridge backend and the POS client.

Everything environment-specific lives here:
- gateway credentials and endpoints (test vs production)
- callback / deep-link URLs
- receipt identity block and VAT rate
- retry and printer timings

Values are read from the environment (or a local .env file).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Gateway credentials (replace with the merchant's real values)
    GATEWAY_CLIENT_ID: str = "YOUR_CLIENT_ID"
    GATEWAY_STORE_KEY: str = "YOUR_STORE_KEY"

    # Gateway endpoints; which one is used depends on GATEWAY_TEST_MODE only
    GATEWAY_TEST_URL: str = "https://testpayment.cmi.com.tr/fim/est3Dgate"
    GATEWAY_PROD_URL: str = "https://payment.cmi.com.tr/fim/est3Dgate"
    GATEWAY_TEST_MODE: bool = True

    GATEWAY_CURRENCY: str = "949"  # Turkish Lira (ISO 4217 numeric)
    GATEWAY_LANG: str = "tr"
    GATEWAY_STORE_TYPE: str = "3d_pay"

    # Ordered list of callback form fields fed to the signer when verifying a
    # callback. Empty means the scheme is not configured and no callback verifies.
    GATEWAY_CALLBACK_HASH_FIELDS: List[str] = []

    # Serve the local mock gateway page instead of the real gateway
    GATEWAY_SANDBOX: bool = False

    # Where this backend is reachable from the device and from the gateway
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # App-specific URI scheme used to hand control back to the POS app
    APP_SCHEME: str = "cmipaymentapp"

    # "mint_new": every attempt gets a fresh order id.
    # "reuse": a failed attempt may be retried under the caller's order id.
    RETRY_ORDER_ID_POLICY: Literal["mint_new", "reuse"] = "mint_new"

    # Receipt
    VAT_RATE: Decimal = Decimal("0.18")
    CURRENCY_LABEL: str = "TL"
    STORE_NAME: str = "CMI PAYMENT DEMO"
    STORE_ADDRESS: str = ""
    STORE_PHONE: str = ""
    STORE_TAX_ID: str = ""
    PAYMENT_METHOD_LABEL: str = "CMI Credit Card"

    # POS client
    BACKEND_BASE_URL: str = "http://localhost:8000"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    HTTP_MAX_ATTEMPTS: int = 3
    HTTP_BACKOFF_SECONDS: float = 0.5

    # Printer
    SIMULATED_PRINT_DELAY_SECONDS: float = 1.0

    SERVICE_VERSION: str = "2.0.0"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def gateway_url(self) -> str:
        return self.GATEWAY_TEST_URL if self.GATEWAY_TEST_MODE else self.GATEWAY_PROD_URL

    @property
    def ok_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/payment/callback/success"

    @property
    def fail_url(self) -> str:
        return f"{self.PUBLIC_BASE_URL.rstrip('/')}/payment/callback/fail"


# Global settings instance
settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
