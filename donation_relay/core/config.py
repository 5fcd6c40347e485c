import os
from typing import Optional

from pydantic import BaseModel, Field

# every setting can be overridden through an environment variable with this prefix
ENV_PREFIX = "DONATION_RELAY_"

# ------------------------
# Defaults
# ------------------------
DATABASE_URL = "sqlite:///./relayer.db"
WALLET_DATABASE_URL = "sqlite:///./wallet.db"

MIN_BATCH_SIZE = 2
MAX_QUEUE_AGE_MS = 5 * 60 * 1000  # 5 minutes

INTER_ITEM_DELAY = 2.0  # seconds
DELAY_JITTER = 1.0  # seconds, added on top of the base delay
RELAY_TIMEOUT = 60.0  # seconds per relay call

RELAYER_FEE_RATE = 0.005  # 0.5%
RELAYER_FEE_MIN = 1_000_000  # 0.001 SOL in lamports
RELAYER_FEE_MAX = 100_000_000  # 0.1 SOL in lamports

MIN_RELAYER_BALANCE = 10_000_000  # 0.01 SOL
TX_FEE_ESTIMATE = 5_000  # lamports per signature

SCHEDULER_INTERVAL = 30.0  # seconds, 0 disables the background worker


class Settings(BaseModel):
    database_url: str = DATABASE_URL
    wallet_database_url: str = WALLET_DATABASE_URL

    # the relay gateway holds the relayer signing key, no url means no relayer
    relay_url: Optional[str] = None
    api_key: Optional[str] = None

    min_batch_size: int = Field(MIN_BATCH_SIZE, ge=1)
    max_queue_age_ms: int = Field(MAX_QUEUE_AGE_MS, ge=0)

    inter_item_delay: float = Field(INTER_ITEM_DELAY, ge=0)
    delay_jitter: float = Field(DELAY_JITTER, ge=0)
    relay_timeout: float = Field(RELAY_TIMEOUT, gt=0)

    fee_rate: float = Field(RELAYER_FEE_RATE, ge=0, lt=1)
    fee_min: int = Field(RELAYER_FEE_MIN, ge=0)
    fee_max: Optional[int] = Field(RELAYER_FEE_MAX, ge=0)

    min_relayer_balance: int = Field(MIN_RELAYER_BALANCE, ge=0)
    tx_fee_estimate: int = Field(TX_FEE_ESTIMATE, ge=0)

    scheduler_interval: float = Field(SCHEDULER_INTERVAL, ge=0)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from ``DONATION_RELAY_*`` variables, falling back to the defaults."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        # pydantic coerces the raw strings into the declared field types
        return cls(**values)
