# unhash/core/config.py
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Unhash"
    UNHASH_PUBLIC_URI: AnyHttpUrl = "http://localhost:3000"
    UNHASH_HOST: str = "0.0.0.0"
    UNHASH_PORT: int = 3000

    # Object storage root; shard directories and the temp area live below it
    UNHASH_DATA_DIR: Path = Path("data")

    # Pricing: storage rate in USD, converted to settlement units
    UNHASH_USD_PER_GB_MONTH: Decimal = Decimal("0.05")
    UNHASH_CURRENCY_USD_RATE: Decimal = Decimal("1")  # USD per settlement currency unit
    UNHASH_UNITS_PER_CURRENCY: int = 1_000_000  # e.g. USDC has 6 decimals
    UNHASH_OBJECT_OVERHEAD_BYTES: int = 1024
    UNHASH_DEFAULT_QUOTE_SIZE: int = 1_000_000_000  # worst case when size is unknown

    # Payment channel addressing
    UNHASH_PAYMENT_PLUGIN: str = "x402"
    UNHASH_PAYMENT_CREDENTIALS: Dict[str, str] = {}  # JSON, e.g. {"secret": "...", "account": "..."}

    # Optional HTTP surface
    UNHASH_ROOT_UPLOAD_ENABLED: bool = True
    UNHASH_EXPOSE_BALANCE: bool = True

    # x402 payment gate
    X402_ENABLED: bool = False
    X402_NETWORK: str = "base-sepolia"
    X402_PAY_TO_ADDRESS: Optional[str] = None
    X402_FACILITATOR_URL: str = "https://x402.org/facilitator"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env
        frozen = True

    @property
    def upload_url(self) -> str:
        return str(self.UNHASH_PUBLIC_URI).rstrip("/") + "/upload"

@lru_cache() # Settings are built once per process
def get_settings() -> Settings:
    return Settings()
