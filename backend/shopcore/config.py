import os
import tempfile
from decimal import Decimal
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///./dev.db"
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # reservations
    RESERVATION_TTL_SECONDS: int = 900
    SWEEP_INTERVAL_SECONDS: int = 300
    SWEEPER_ENABLED: bool = True
    CONFIRMED_RESERVATION_RETENTION_DAYS: int = 30
    LOCK_DIR: str = os.path.join(tempfile.gettempdir(), "shopcore_locks")
    LOCK_TIMEOUT_SECONDS: float = 10

    # stock
    LOW_STOCK_THRESHOLD: int = 5
    STOCK_HISTORY_DAYS: int = 30

    # orders
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal("1000")
    SHIPPING_FEES: Dict[str, Decimal] = {
        "standard": Decimal("100"),
        "express": Decimal("150"),
    }
    REFUND_WINDOW_DAYS: int = 7


settings = Settings()
