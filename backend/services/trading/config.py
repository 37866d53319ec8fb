"""Per-request trading configuration.

``load_trading_config()`` re-reads the environment on every call so the
executor and auto-trader never depend on process-wide mutable state; the
admin update path is a pure function returning a new config.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from config import Settings


class LiveModeConfirmationRequired(ValueError):
    """Turning dry-run off needs an explicit confirmation."""


@dataclass(frozen=True)
class TradingConfig:
    dry_run: bool = True
    auto_trade_enabled: bool = False
    max_position_usd: float = 50.0
    max_total_exposure_usd: float = 500.0
    execution_min_edge: float = 0.01
    auto_min_edge: float = 0.05
    auto_min_conviction: float = 45.0
    auto_require_models_agree: bool = True
    venue: str = "polymarket"
    venue_timeout_seconds: float = 20.0
    batch_max_concurrency: int = 1
    poll_interval_seconds: int = 60
    pending_grace_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "TradingConfig":
        return cls(
            dry_run=settings.TRADING_DRY_RUN,
            auto_trade_enabled=settings.AUTO_TRADE_ENABLED,
            max_position_usd=settings.MAX_POSITION_USD,
            max_total_exposure_usd=settings.MAX_TOTAL_EXPOSURE_USD,
            execution_min_edge=settings.EXECUTION_MIN_EDGE,
            auto_min_edge=settings.AUTO_TRADE_MIN_EDGE,
            auto_min_conviction=settings.AUTO_TRADE_MIN_CONVICTION,
            auto_require_models_agree=settings.AUTO_TRADE_REQUIRE_MODELS_AGREE,
            venue=settings.TRADING_VENUE,
            venue_timeout_seconds=settings.VENUE_TIMEOUT_SECONDS,
            batch_max_concurrency=max(1, settings.BATCH_MAX_CONCURRENCY),
            poll_interval_seconds=settings.ORDER_POLL_INTERVAL_SECONDS,
            pending_grace_seconds=settings.PENDING_ORDER_GRACE_SECONDS,
        )


def load_trading_config() -> TradingConfig:
    """Fresh snapshot of the trading configuration from env/.env files."""
    return TradingConfig.from_settings(Settings())


@dataclass(frozen=True)
class TradingConfigUpdate:
    dry_run: Optional[bool] = None
    confirm: bool = False
    auto_trade_enabled: Optional[bool] = None
    max_position_usd: Optional[float] = None
    max_total_exposure_usd: Optional[float] = None
    auto_min_edge: Optional[float] = None
    auto_min_conviction: Optional[float] = None
    auto_require_models_agree: Optional[bool] = None


def apply_trading_config_update(current: TradingConfig, update: TradingConfigUpdate) -> TradingConfig:
    """Validate an admin update and return the resulting config (``current`` is untouched)."""
    if update.dry_run is False and current.dry_run and not update.confirm:
        raise LiveModeConfirmationRequired("Switching to LIVE mode requires confirmation")

    for name in ("max_position_usd", "max_total_exposure_usd"):
        value = getattr(update, name)
        if value is not None and value <= 0:
            raise ValueError(f"{name} must be positive")
    if update.auto_min_edge is not None and not (0.0 <= update.auto_min_edge <= 1.0):
        raise ValueError("auto_min_edge must be within [0, 1]")
    if update.auto_min_conviction is not None and not (0.0 <= update.auto_min_conviction <= 100.0):
        raise ValueError("auto_min_conviction must be within [0, 100]")

    changes = {
        name: getattr(update, name)
        for name in (
            "dry_run",
            "auto_trade_enabled",
            "max_position_usd",
            "max_total_exposure_usd",
            "auto_min_edge",
            "auto_min_conviction",
            "auto_require_models_agree",
        )
        if getattr(update, name) is not None
    }
    return replace(current, **changes)
