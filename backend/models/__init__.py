from .database import Base, StrategyRun, TradeOrder, ACTIVE_ORDER_STATUSES

__all__ = [
    "Base",
    "StrategyRun",
    "TradeOrder",
    "ACTIVE_ORDER_STATUSES",
]
