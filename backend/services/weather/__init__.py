"""Weather forecast, probability and strategy-run package."""

from .probability import model_probability
from .signal_engine import BUY_NO, BUY_YES, NO_TRADE, TradePlan, TradeSignal, build_trade_signal

__all__ = [
    "model_probability",
    "build_trade_signal",
    "TradePlan",
    "TradeSignal",
    "BUY_YES",
    "BUY_NO",
    "NO_TRADE",
]
