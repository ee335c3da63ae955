"""
Paytm Bridge Configuration Module

Loads environment variables for the payment mediator.
Variable names follow the Paytm merchant integration (PAYTM_MID, PAYTM_MERCHANT_KEY, ...).
"""
from dataclasses import dataclass
from typing import List, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class GatewayConfig:
    """
    Gateway and lifecycle parameters handed to services at construction.

    Services never read the global settings object; they receive this.
    """
    merchant_id: str
    merchant_key: str
    website: str
    channel_id: str
    industry_type_id: str
    callback_url: str
    gateway_url: str
    status_url: str
    currency: str = "INR"
    authenticity_policy: Literal["permissive", "strict"] = "permissive"
    inquiry_timeout_seconds: float = 5.0
    order_id_max_attempts: int = 3
    stale_pending_minutes: int = 15


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Security Notes:
    - PAYTM_MERCHANT_KEY is the shared secret for checksum signing
    - AUTHENTICITY_POLICY=permissive lets unsigned staging callbacks through,
      flagged on the record; use strict in production
    """

    # Paytm Merchant Configuration
    paytm_mid: str = "Mobish80382601607975"
    paytm_website: str = "DEFAULT"
    paytm_channel_id: str = "WEB"
    paytm_industry_type_id: str = "Retail109"
    paytm_merchant_key: str = ""
    paytm_callback_url: str = "http://localhost:5000/api/paytm/callback"
    paytm_url: str = "https://securegw-stage.paytm.in/order/process"
    paytm_status_url: str = "https://securegw-stage.paytm.in/order/status"

    # Lifecycle
    currency: str = "INR"
    authenticity_policy: Literal["permissive", "strict"] = "permissive"
    inquiry_timeout_seconds: float = 5.0
    order_id_max_attempts: int = 3

    # Reconciliation sweep
    reconciliation_sweep_enabled: bool = False
    sweep_interval_minutes: int = 5
    stale_pending_minutes: int = 15

    # Runtime
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: List[str] = ["*"]

    # Database
    database_path: str = "./paytm_bridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 5000

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @property
    def expose_error_details(self) -> bool:
        """Internal failure details never cross the boundary in production."""
        return self.environment != "production"

    def gateway_config(self) -> GatewayConfig:
        """Build the explicit configuration struct passed into services."""
        return GatewayConfig(
            merchant_id=self.paytm_mid,
            merchant_key=self.paytm_merchant_key,
            website=self.paytm_website,
            channel_id=self.paytm_channel_id,
            industry_type_id=self.paytm_industry_type_id,
            callback_url=self.paytm_callback_url,
            gateway_url=self.paytm_url,
            status_url=self.paytm_status_url,
            currency=self.currency,
            authenticity_policy=self.authenticity_policy,
            inquiry_timeout_seconds=self.inquiry_timeout_seconds,
            order_id_max_attempts=self.order_id_max_attempts,
            stale_pending_minutes=self.stale_pending_minutes,
        )


# Global settings instance
settings = Settings()
