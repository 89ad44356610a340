import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Dict, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Auth (token issuance lives in the account service; we only verify)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID_PROFESSIONAL: Optional[str] = None
    STRIPE_PRICE_ID_PREMIUM: Optional[str] = None

    # Billing behaviour
    BILLING_SYNC_LIST_LIMIT: int = 10

    # App URLs
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def get_price_plan_map(settings_obj: Optional[Settings] = None) -> Dict[str, str]:
    """Configured Stripe price id -> plan tier. Unset prices are left out."""
    cfg = settings_obj or settings
    price_map = {}
    if cfg.STRIPE_PRICE_ID_PROFESSIONAL:
        price_map[cfg.STRIPE_PRICE_ID_PROFESSIONAL] = "professional"
    if cfg.STRIPE_PRICE_ID_PREMIUM:
        price_map[cfg.STRIPE_PRICE_ID_PREMIUM] = "premium"
    return price_map


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("resumeapi")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not get_price_plan_map(cfg):
        # Plan resolution degrades to price-id heuristics without these
        log.warning("No STRIPE_PRICE_ID_* configured; plan resolution will use price id heuristics")

    return True
