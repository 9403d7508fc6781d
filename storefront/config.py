from __future__ import annotations
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "storefront")

    # Pricing policy, whole currency units
    FREE_SHIPPING_THRESHOLD: int = 999
    SHIPPING_FEE: int = 50
    TAX_RATE: float = 0.18

    LOG_LEVEL: str = "INFO"


settings = Settings()
