from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()
_PROJECT_ROOT = _BACKEND_DIR.parent.resolve()
_DEFAULT_DB_PATH = (_PROJECT_ROOT / "data" / "weather_edge.db").resolve()
_SQLITE_ASYNC_PREFIX = "sqlite+aiosqlite:///"
_SQLITE_SYNC_PREFIX = "sqlite:///"


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = f"{_SQLITE_ASYNC_PREFIX}{_DEFAULT_DB_PATH}"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    LOG_FILE: Optional[str] = None

    # Forecast provider (Open-Meteo)
    OPEN_METEO_FORECAST_URL: str = "https://api.open-meteo.com/v1/forecast"
    OPEN_METEO_ENSEMBLE_URL: str = "https://ensemble-api.open-meteo.com/v1/ensemble"
    OPEN_METEO_ARCHIVE_URL: str = "https://archive-api.open-meteo.com/v1/archive"
    FORECAST_TIMEOUT_SECONDS: float = 15.0
    FORECAST_MAX_ATTEMPTS: int = 3

    # Edge & sizing
    MIN_EDGE: float = 0.05  # |edge| below this is NO_TRADE
    DEFAULT_SIGMA_TEMP: float = 2.0  # Forecast std dev (C) for the normal model
    DEFAULT_BASE_SIZE_USD: float = 100.0
    DEFAULT_FEE_BPS: float = 0.0
    DEFAULT_SLIPPAGE_BPS: float = 0.0

    # Trading safety (live trading requires explicit opt-in)
    TRADING_DRY_RUN: bool = True
    AUTO_TRADE_ENABLED: bool = False
    MAX_POSITION_USD: float = 50.0  # Single order cap
    MAX_TOTAL_EXPOSURE_USD: float = 500.0  # Sum of active live orders
    EXECUTION_MIN_EDGE: float = 0.01  # Hard floor enforced by the executor

    # Auto-trader gates
    AUTO_TRADE_MIN_EDGE: float = 0.05
    AUTO_TRADE_MIN_CONVICTION: float = 45.0
    AUTO_TRADE_REQUIRE_MODELS_AGREE: bool = True

    # Venue calls and reconciliation
    VENUE_TIMEOUT_SECONDS: float = 20.0
    BATCH_MAX_CONCURRENCY: int = 1  # 1 = sequential batch sweeps
    ORDER_POLL_INTERVAL_SECONDS: int = 60
    PENDING_ORDER_GRACE_SECONDS: int = 300  # Live pending rows older than this are flagged

    # Polymarket venue
    TRADING_VENUE: str = "polymarket"
    CLOB_API_URL: str = "https://clob.polymarket.com"
    GAMMA_API_URL: str = "https://gamma-api.polymarket.com"
    CHAIN_ID: int = 137  # Polygon mainnet
    POLYMARKET_PRIVATE_KEY: Optional[str] = None
    POLYMARKET_FUNDER_ADDRESS: Optional[str] = None
    POLYMARKET_SIGNATURE_TYPE: Optional[int] = None  # 1 = email/magic proxy, 2 = browser proxy
    POLYMARKET_API_KEY: Optional[str] = None
    POLYMARKET_API_SECRET: Optional[str] = None
    POLYMARKET_API_PASSPHRASE: Optional[str] = None

    @field_validator(
        "OPEN_METEO_FORECAST_URL",
        "OPEN_METEO_ENSEMBLE_URL",
        "OPEN_METEO_ARCHIVE_URL",
        "CLOB_API_URL",
        "GAMMA_API_URL",
        mode="before",
    )
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        """Trim accidental quotes/whitespace from URL env vars."""
        if value is None:
            return value
        text = str(value).strip().strip('"').strip("'")
        return text.rstrip("/")

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: object) -> object:
        """Use the async SQLite driver and anchor relative paths at the project root."""
        if value is None:
            return value

        text = str(value).strip().strip('"').strip("'")
        if not text:
            return text

        for prefix in (_SQLITE_ASYNC_PREFIX, _SQLITE_SYNC_PREFIX):
            if not text.startswith(prefix):
                continue
            path_part = text[len(prefix) :]
            if not path_part:
                return text
            if path_part in {":memory:", "/:memory:"}:
                return f"{_SQLITE_ASYNC_PREFIX}:memory:"
            absolute = Path(path_part).resolve() if path_part.startswith("/") else (_PROJECT_ROOT / path_part).resolve()
            return f"{_SQLITE_ASYNC_PREFIX}{absolute}"

        return text

    class Config:
        # Load project-root .env first, then backend/.env as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"


settings = Settings()
