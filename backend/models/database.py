from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    Float,
    Text,
    JSON,
    ForeignKey,
    Index,
    event,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from pathlib import Path
import logging
import uuid

from config import settings
from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()

# Statuses that still occupy a run's single active-order slot.
ACTIVE_ORDER_STATUSES = ("pending", "submitted", "live", "matched")
_ACTIVE_STATUS_SQL = "status IN ({})".format(", ".join(f"'{s}'" for s in ACTIVE_ORDER_STATUSES))


def new_id() -> str:
    return str(uuid.uuid4())


# ==================== STRATEGY RUNS ====================


class StrategyRun(Base):
    """One evaluated contract: forecast, pricing, computed edge and trade plan.

    Rows sharing a ``batch_id`` were created together for one parent event.
    Post-resolution fields are written once by the backtest evaluator.
    """

    __tablename__ = "strategy_runs"

    id = Column(String, primary_key=True, default=new_id)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Market identity
    market_url = Column(Text, nullable=True)
    market_title = Column(Text, nullable=True)
    event_slug = Column(String, nullable=True, index=True)
    market_id = Column(String, nullable=True, index=True)
    condition_id = Column(String, nullable=True)
    clob_token_id_yes = Column(String, nullable=True)
    clob_token_id_no = Column(String, nullable=True)
    neg_risk = Column(Boolean, default=False, nullable=False)
    batch_id = Column(String, nullable=True, index=True)

    # Resolution rule
    resolution_time = Column(DateTime, nullable=False)
    location_text = Column(String, nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    metric = Column(String, nullable=False, default="temperature_max")
    rule_type = Column(String, nullable=False)  # above_below | range
    threshold_low = Column(Float, nullable=True)
    threshold_high = Column(Float, nullable=True)

    # Pricing and user inputs
    yes_price = Column(Float, nullable=False)
    no_price = Column(Float, nullable=True)
    fee_bps = Column(Float, nullable=False, default=0.0)
    slippage_bps = Column(Float, nullable=False, default=0.0)
    base_size_usd = Column(Float, nullable=False, default=100.0)
    user_confidence = Column(Float, nullable=False, default=50.0)  # 0..100
    sigma_temp = Column(Float, nullable=True)

    # Forecast + computed signal
    forecast_source = Column(String, nullable=True)
    forecast_snapshot = Column(JSON, nullable=True)
    model_prob = Column(Float, nullable=True)
    market_implied_prob = Column(Float, nullable=True)
    edge = Column(Float, nullable=True)
    recommendation = Column(String, nullable=True)  # BUY_YES | BUY_NO | NO_TRADE
    trade_plan = Column(JSON, nullable=True)
    refreshed_at = Column(DateTime, nullable=True)

    # Backtest outcome
    actual_outcome_value = Column(Float, nullable=True)
    resolved_yes = Column(Boolean, nullable=True)
    pnl = Column(Float, nullable=True)
    backtested_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_strategy_runs_created", "created_at"),
        Index("idx_strategy_runs_batch_created", "batch_id", "created_at"),
    )


# ==================== TRADE ORDERS ====================


class TradeOrder(Base):
    """One execution attempt for a strategy run (dry-run or live)."""

    __tablename__ = "trade_orders"

    id = Column(String, primary_key=True, default=new_id)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    platform = Column(String, nullable=False, default="polymarket")
    external_order_id = Column(String, nullable=True, index=True)
    run_id = Column(String, ForeignKey("strategy_runs.id"), nullable=False, index=True)
    batch_id = Column(String, nullable=True, index=True)
    market_id = Column(String, nullable=True)
    token_id = Column(String, nullable=False)

    side = Column(String, nullable=False, default="BUY")
    outcome = Column(String, nullable=False)  # YES | NO
    order_type = Column(String, nullable=False, default="GTC")
    price = Column(Float, nullable=False)
    size = Column(Float, nullable=False)  # shares
    size_usd = Column(Float, nullable=False)

    status = Column(String, nullable=False, default="pending")
    fill_price = Column(Float, nullable=True)
    fill_size = Column(Float, nullable=True)
    fill_size_usd = Column(Float, nullable=True)
    dry_run = Column(Boolean, nullable=False, default=True)

    # Risk snapshot at placement
    edge_at_placement = Column(Float, nullable=True)
    model_prob_at_placement = Column(Float, nullable=True)
    market_price_at_placement = Column(Float, nullable=True)

    submitted_at = Column(DateTime, nullable=True)
    filled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    platform_response = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_trade_orders_status", "status"),
        Index("idx_trade_orders_batch_status", "batch_id", "status"),
        # At most one active order per run, enforced by the store.
        Index(
            "uq_trade_orders_one_active_per_run",
            "run_id",
            unique=True,
            sqlite_where=text(_ACTIVE_STATUS_SQL),
            postgresql_where=text(_ACTIVE_STATUS_SQL),
        ),
    )


# ==================== DATABASE SETUP ====================

# SQLite-specific: improve concurrency (WAL + busy_timeout applied in _set_sqlite_pragma)
_engine_kw: dict = {"echo": False}
if "sqlite" in settings.DATABASE_URL:
    _engine_kw["connect_args"] = {"timeout": 30}

async_engine = create_async_engine(settings.DATABASE_URL, **_engine_kw)


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for concurrent workers (WAL mode, busy timeout)."""
    if "sqlite" not in settings.DATABASE_URL:
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


event.listens_for(async_engine.sync_engine, "connect")(_set_sqlite_pragma)

AsyncSessionLocal = sessionmaker(
    async_engine, class_=AsyncSession, expire_on_commit=False
)


def _ensure_sqlite_directory() -> None:
    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def _run_alembic_upgrade(connection) -> None:
    from alembic import command
    from alembic.config import Config

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(backend_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", str(connection.engine.url))
    alembic_cfg.attributes["connection"] = connection
    command.upgrade(alembic_cfg, "head")


async def init_database():
    """Initialize database and apply Alembic migrations."""
    _ensure_sqlite_directory()
    async with async_engine.begin() as conn:
        await conn.run_sync(_run_alembic_upgrade)
    logger.info("Database ready at %s", make_url(settings.DATABASE_URL).render_as_string(hide_password=True))


async def get_db_session() -> AsyncSession:
    """Get database session"""
    async with AsyncSessionLocal() as session:
        yield session
