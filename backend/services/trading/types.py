from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OrderStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    LIVE = "live"
    MATCHED = "matched"
    FILLED = "filled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


# A run may hold at most one order in these states.
ACTIVE_STATUSES = (
    OrderStatus.PENDING.value,
    OrderStatus.SUBMITTED.value,
    OrderStatus.LIVE.value,
    OrderStatus.MATCHED.value,
)
# Resting at the venue; reconciled by the poll sweep.
OPEN_VENUE_STATUSES = (
    OrderStatus.SUBMITTED.value,
    OrderStatus.LIVE.value,
    OrderStatus.MATCHED.value,
)
TERMINAL_STATUSES = (
    OrderStatus.FILLED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.EXPIRED.value,
    OrderStatus.FAILED.value,
)


class Outcome(str, Enum):
    YES = "YES"
    NO = "NO"


class OrderType(str, Enum):
    GTC = "GTC"  # Good Till Cancel
    FOK = "FOK"  # Fill Or Kill
    GTD = "GTD"  # Good Till Date


class VenueError(RuntimeError):
    """Venue rejected or failed an order operation."""


class SkipCode(str, Enum):
    ACTIVE_ORDER_EXISTS = "active_order_exists"
    EXPOSURE_LIMIT = "exposure_limit"
    EDGE_TOO_SMALL = "edge_too_small"
    NO_TRADE_SIGNAL = "no_trade_signal"
    MISSING_TOKEN = "missing_token"
    CONVICTION_TOO_LOW = "conviction_too_low"
    MODELS_DISAGREE = "models_disagree"
    NO_SIZE = "no_size"
    AUTO_TRADE_DISABLED = "auto_trade_disabled"
    INVALID_ORDER = "invalid_order"


@dataclass
class TradeExecutionInput:
    """One sizing decision handed to the executor."""

    run_id: str
    market_id: Optional[str]
    token_id: str
    outcome: Outcome
    price: float
    size_usd: float
    edge: float
    model_prob: Optional[float] = None
    batch_id: Optional[str] = None
    side: str = "BUY"
    order_type: OrderType = OrderType.GTC
    tick_size: str = "0.01"
    neg_risk: bool = False


@dataclass
class PlaceOrderResult:
    external_order_id: str
    status: OrderStatus
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderStatusResult:
    status: OrderStatus
    fill_price: Optional[float] = None
    fill_size: Optional[float] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class BalanceResult:
    balance_usd: float
    address: Optional[str] = None


@dataclass
class OrderSnapshot:
    """Detached copy of a TradeOrder row at the time a result was produced."""

    id: str
    run_id: str
    status: str
    dry_run: bool
    token_id: str
    outcome: str
    price: float
    size: float
    size_usd: float
    external_order_id: Optional[str] = None
    fill_price: Optional[float] = None
    fill_size: Optional[float] = None
    fill_size_usd: Optional[float] = None
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "OrderSnapshot":
        return cls(
            id=row.id,
            run_id=row.run_id,
            status=row.status,
            dry_run=bool(row.dry_run),
            token_id=row.token_id,
            outcome=row.outcome,
            price=row.price,
            size=row.size,
            size_usd=row.size_usd,
            external_order_id=row.external_order_id,
            fill_price=row.fill_price,
            fill_size=row.fill_size,
            fill_size_usd=row.fill_size_usd,
            error_message=row.error_message,
        )


@dataclass
class ExecuteTradeResult:
    """Executor outcome: a placed/simulated order, or a skip with a reason."""

    dry_run: bool
    order: Optional[OrderSnapshot] = None
    skipped: bool = False
    skip_code: Optional[SkipCode] = None
    skip_reason: Optional[str] = None

    @classmethod
    def skip(cls, dry_run: bool, code: SkipCode, reason: str) -> "ExecuteTradeResult":
        return cls(dry_run=dry_run, skipped=True, skip_code=code, skip_reason=reason)


@dataclass
class PollResult:
    dry_run: bool = False
    checked: int = 0
    updated: int = 0
    errors: int = 0
    stale_pending: int = 0


@dataclass
class CancelResult:
    batch_id: str
    dry_run: bool = False
    cancelled: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)
