"""
STK Pay Configuration Module

Loads environment variables for the Daraja gateway, the amount policy and the
HTTP surface. Read once at startup; treated as constants for the process lifetime.
"""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Gateway variables use the conventional Daraja deployment names
    (DARAJA_CONSUMER_KEY, BUSINESS_SHORTCODE, PASSKEY, ...).
    """

    # Daraja Gateway
    daraja_base_url: str = "https://api.safaricom.co.ke"
    daraja_consumer_key: Optional[str] = None
    daraja_consumer_secret: Optional[str] = None
    business_shortcode: Optional[str] = None
    passkey: Optional[str] = None
    callback_url: Optional[str] = None
    till_number: Optional[str] = None  # PartyB; falls back to the shortcode
    transaction_type: Literal["CustomerBuyGoodsOnline", "CustomerPayBillOnline"] = "CustomerBuyGoodsOnline"
    account_reference: str = "PeronTipsFlier"
    transaction_desc: str = "Payment for Peron Tips flier"
    gateway_timezone: str = "Africa/Nairobi"
    phone_country_code: str = "254"

    # Timeouts (seconds)
    auth_timeout_seconds: float = 10.0
    stk_timeout_seconds: float = 15.0

    # Token cache
    token_ttl_seconds: int = 3600  # used when the gateway omits expires_in
    token_expiry_margin_seconds: int = 60

    # Amount policy
    amount_mode: Literal["bounded", "fixed"] = "bounded"
    max_amount: float = Field(default=30, gt=0)
    fixed_amount: float = Field(default=30, gt=0)

    # Ledger
    success_validity_hours: float = 12

    # Pending status poller
    pending_query_enabled: bool = False
    pending_query_interval_seconds: int = 30
    pending_query_after_seconds: int = 60

    # Server
    allowed_origins: str = (
        "https://perontips-fliers.vercel.app,"
        "https://www.perontips.co.ke,"
        "https://perontips.co.ke"
    )
    demo_mode: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    host: str = "0.0.0.0"
    port: int = 5000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("phone_country_code")
    @classmethod
    def validate_country_code(cls, v: str) -> str:
        v = v.strip().lstrip("+")
        if not v.isdigit():
            raise ValueError("phone_country_code must contain digits only")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def has_gateway_credentials(self) -> bool:
        return bool(self.daraja_consumer_key and self.daraja_consumer_secret)

    def missing_gateway_settings(self) -> List[str]:
        """Names of the gateway variables that are not set."""
        required = {
            "DARAJA_CONSUMER_KEY": self.daraja_consumer_key,
            "DARAJA_CONSUMER_SECRET": self.daraja_consumer_secret,
            "BUSINESS_SHORTCODE": self.business_shortcode,
            "PASSKEY": self.passkey,
            "CALLBACK_URL": self.callback_url,
            "TILL_NUMBER": self.till_number,
        }
        return [name for name, value in required.items() if not value]


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance for the running process."""
    return Settings()
