"""
IAP Ledger Configuration Module

Loads environment variables for backend configuration.
"""
from pydantic_settings import BaseSettings
from typing import List, Literal


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - billing_provider selects the store adapter at startup (legacy helper or modern client)
    - The signing secret is shared by the demo store and the receipt verifier
    - Demo mode exposes the store control endpoints for driving pending/failure scenarios
    """

    # Billing Provider
    billing_provider: Literal["legacy", "modern"] = "modern"
    inapp_skus: List[str] = [
        "com.example.item.100",
        "com.example.item.10000",
        "android.test.purchased",
    ]

    # Demo Configuration
    demo_mode: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    store_callback_delay_seconds: float = 0.05

    # Receipt signing (HMAC-SHA256 for demo)
    store_signing_secret: str = "store_secret_key_demo_only_change_me"

    # Database
    database_path: str = "./iap_ledger.db"

    # Background reconciliation
    reconcile_interval_minutes: float = 5
    reconcile_on_startup: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
