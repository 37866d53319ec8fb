"""
Order executor: risk gates, pending-row persistence, dry-run simulation,
live placement and order-status reconciliation.

Lifecycle of a TradeOrder row:

    pending -> filled                       (dry run, simulated fill)
    pending -> submitted | live | matched   (live placement accepted)
    pending -> failed                       (live placement rejected)
    submitted | live | matched -> filled | cancelled | expired  (poll sweep)

At most one row per run is in an active state; the partial unique index
``uq_trade_orders_one_active_per_run`` enforces this inside the store.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.database import AsyncSessionLocal, TradeOrder
from utils.logger import get_logger
from utils.utcnow import utcnow

from .config import TradingConfig, load_trading_config
from .risk import evaluate_execution_risk
from .types import (
    ACTIVE_STATUSES,
    OPEN_VENUE_STATUSES,
    TERMINAL_STATUSES,
    ExecuteTradeResult,
    OrderSnapshot,
    OrderStatus,
    PollResult,
    SkipCode,
    TradeExecutionInput,
)
from .venue import VenueAdapter

logger = get_logger("trading.executor")


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class OrderExecutor:
    """Platform-agnostic executor. The venue adapter is passed per call."""

    def __init__(self, session_factory=AsyncSessionLocal, config: Optional[TradingConfig] = None):
        self._session_factory = session_factory
        self._config = config

    @property
    def session_factory(self):
        return self._session_factory

    def current_config(self) -> TradingConfig:
        """Injected config, else a fresh snapshot of the environment."""
        return self._config or load_trading_config()

    # ==================== QUERIES ====================

    async def has_active_order(self, session, run_id: str) -> bool:
        result = await session.execute(
            select(TradeOrder.id)
            .where(TradeOrder.run_id == run_id, TradeOrder.status.in_(ACTIVE_STATUSES))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def open_exposure_usd(self, session) -> float:
        """Sum of size_usd over active live orders."""
        result = await session.execute(
            select(func.coalesce(func.sum(TradeOrder.size_usd), 0.0)).where(
                TradeOrder.status.in_(ACTIVE_STATUSES),
                TradeOrder.dry_run.is_(False),
            )
        )
        return float(result.scalar_one() or 0.0)

    # ==================== EXECUTION ====================

    async def execute(
        self,
        adapter: VenueAdapter,
        execution_input: TradeExecutionInput,
        *,
        config: Optional[TradingConfig] = None,
    ) -> ExecuteTradeResult:
        """Run the risk gates, then simulate (dry run) or place (live) one order.

        Risk rejections come back as skipped results. A venue failure marks
        the row ``failed`` and re-raises.
        """
        config = config or self.current_config()
        dry_run = config.dry_run
        log = logger.with_context(
            run_id=execution_input.run_id,
            batch_id=execution_input.batch_id,
            dry_run=dry_run,
        )

        if not (0.0 < execution_input.price < 1.0):
            return ExecuteTradeResult.skip(
                dry_run, SkipCode.INVALID_ORDER, f"Invalid order price: {execution_input.price}"
            )
        if execution_input.size_usd <= 0:
            return ExecuteTradeResult.skip(
                dry_run, SkipCode.INVALID_ORDER, f"Invalid order size: ${execution_input.size_usd}"
            )

        async with self._session_factory() as session:
            active_order_exists = await self.has_active_order(session, execution_input.run_id)
            size_usd = min(execution_input.size_usd, config.max_position_usd)
            exposure = 0.0 if dry_run or active_order_exists else await self.open_exposure_usd(session)

            risk = evaluate_execution_risk(
                active_order_exists=active_order_exists,
                size_usd=size_usd,
                edge=execution_input.edge,
                open_exposure_usd=exposure,
                max_total_exposure_usd=config.max_total_exposure_usd,
                min_edge=config.execution_min_edge,
                dry_run=dry_run,
            )
            if not risk.allowed:
                log.info("Skipping execution", reason=risk.reason, code=risk.code.value)
                return ExecuteTradeResult.skip(dry_run, risk.code, risk.reason)

            order = TradeOrder(
                platform=adapter.platform,
                run_id=execution_input.run_id,
                batch_id=execution_input.batch_id,
                market_id=execution_input.market_id,
                token_id=execution_input.token_id,
                side=execution_input.side,
                outcome=execution_input.outcome.value,
                order_type=execution_input.order_type.value,
                price=execution_input.price,
                size=size_usd / execution_input.price,
                size_usd=size_usd,
                status=OrderStatus.PENDING.value,
                dry_run=dry_run,
                edge_at_placement=execution_input.edge,
                model_prob_at_placement=execution_input.model_prob,
                market_price_at_placement=execution_input.price,
            )
            session.add(order)
            try:
                await session.commit()
            except IntegrityError:
                # Lost the race against a concurrent execution for the same run.
                await session.rollback()
                log.info("Skipping execution: active order created concurrently")
                return ExecuteTradeResult.skip(
                    dry_run, SkipCode.ACTIVE_ORDER_EXISTS, "Active order already exists for this run"
                )

            log = log.with_context(order_id=order.id)

            if dry_run:
                now = utcnow()
                order.status = OrderStatus.FILLED.value
                order.fill_price = order.price
                order.fill_size = order.size
                order.fill_size_usd = order.size_usd
                order.submitted_at = now
                order.filled_at = now
                await session.commit()
                log.info("Dry-run order filled", price=order.price, size_usd=order.size_usd)
                return ExecuteTradeResult(dry_run=True, order=OrderSnapshot.from_row(order))

        placed_input = execution_input
        if size_usd != execution_input.size_usd:
            placed_input = replace(execution_input, size_usd=size_usd)
        return await self._place_live(adapter, placed_input, order, config, log)

    async def _place_live(self, adapter, execution_input, order: TradeOrder, config: TradingConfig, log):
        try:
            await asyncio.wait_for(adapter.initialize(), timeout=config.venue_timeout_seconds)
        except Exception as exc:
            # Nothing reached the venue yet, so the row can be failed safely.
            await self._fail_order(order.id, exc, log)
            log.error("Venue initialization failed", error=_describe(exc))
            raise

        try:
            placed = await asyncio.wait_for(
                adapter.place_order(execution_input), timeout=config.venue_timeout_seconds
            )
        except asyncio.TimeoutError:
            # The venue may still have accepted the order; the row stays pending
            # (blocking duplicates) until resolved by hand.
            log.critical(
                "Order placement timed out; outcome unknown, order left pending",
                timeout_seconds=config.venue_timeout_seconds,
                token_id=execution_input.token_id,
            )
            raise
        except Exception as exc:
            await self._fail_order(order.id, exc, log)
            log.error("Order placement failed", error=_describe(exc))
            raise

        try:
            async with self._session_factory() as session:
                row = await session.get(TradeOrder, order.id)
                row.external_order_id = placed.external_order_id
                row.status = placed.status.value
                row.submitted_at = utcnow()
                row.platform_response = placed.raw
                await session.commit()
                snapshot = OrderSnapshot.from_row(row)
        except SQLAlchemyError:
            log.critical(
                "Order placed at venue but local status update failed",
                external_order_id=placed.external_order_id,
                venue_status=placed.status.value,
                platform_response=placed.raw,
            )
            raise

        log.info(
            "Live order placed",
            external_order_id=placed.external_order_id,
            status=placed.status.value,
            price=execution_input.price,
            size_usd=execution_input.size_usd,
        )
        return ExecuteTradeResult(dry_run=False, order=snapshot)

    async def _mark_failed(self, order_id: str, message: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(TradeOrder, order_id)
            row.status = OrderStatus.FAILED.value
            row.error_message = message
            await session.commit()

    async def _fail_order(self, order_id: str, exc: BaseException, log) -> None:
        """Mark the row failed without letting a store error mask the venue error."""
        try:
            await self._mark_failed(order_id, _describe(exc))
        except SQLAlchemyError as db_exc:
            log.critical(
                "Could not mark order failed; row left pending",
                venue_error=_describe(exc),
                db_error=str(db_exc),
            )

    # ==================== RECONCILIATION ====================

    async def poll_open_orders(
        self, adapter: VenueAdapter, *, config: Optional[TradingConfig] = None
    ) -> PollResult:
        """Refresh venue status for every open live order.

        Per-order failures are counted and the sweep continues.
        """
        config = config or self.current_config()
        result = PollResult(dry_run=config.dry_run)

        async with self._session_factory() as session:
            rows = await session.execute(
                select(TradeOrder)
                .where(
                    TradeOrder.status.in_(OPEN_VENUE_STATUSES),
                    TradeOrder.dry_run.is_(False),
                    TradeOrder.external_order_id.is_not(None),
                )
                .order_by(TradeOrder.created_at)
            )
            open_orders = list(rows.scalars().all())
            result.stale_pending = await self._count_stale_pending(session, config)

        if not open_orders:
            return result

        timeout = config.venue_timeout_seconds
        await asyncio.wait_for(adapter.initialize(), timeout=timeout)
        for order in open_orders:
            result.checked += 1
            log = logger.with_context(order_id=order.id, run_id=order.run_id)
            try:
                status = await asyncio.wait_for(
                    adapter.get_order_status(order.external_order_id), timeout=timeout
                )
                async with self._session_factory() as session:
                    row = await session.get(TradeOrder, order.id)
                    self._apply_status(row, status)
                    await session.commit()
                result.updated += 1
                if status.status.value in TERMINAL_STATUSES:
                    log.info("Order closed at venue", status=status.status.value, fill_size=status.fill_size)
            except Exception as exc:
                result.errors += 1
                log.warning(
                    "Order status poll failed",
                    external_order_id=order.external_order_id,
                    error=_describe(exc),
                )

        logger.info(
            "Open orders polled",
            checked=result.checked,
            updated=result.updated,
            errors=result.errors,
            stale_pending=result.stale_pending,
        )
        return result

    @staticmethod
    def _apply_status(row: TradeOrder, status) -> None:
        now = utcnow()
        row.status = status.status.value
        if status.status == OrderStatus.FILLED:
            fill_price = status.fill_price or row.price
            fill_size = status.fill_size or row.size
            row.fill_price = fill_price
            row.fill_size = fill_size
            row.fill_size_usd = fill_price * fill_size
            row.filled_at = now
        elif status.status in (OrderStatus.CANCELLED, OrderStatus.EXPIRED):
            row.cancelled_at = now
            if status.fill_size:
                row.fill_size = status.fill_size
                row.fill_price = status.fill_price or row.price
                row.fill_size_usd = row.fill_price * row.fill_size
        elif status.fill_size:
            row.fill_size = status.fill_size
            row.fill_price = status.fill_price or row.price
            row.fill_size_usd = row.fill_price * row.fill_size

    async def _count_stale_pending(self, session, config: TradingConfig) -> int:
        cutoff = utcnow() - timedelta(seconds=config.pending_grace_seconds)
        rows = await session.execute(
            select(TradeOrder.id, TradeOrder.run_id, TradeOrder.created_at).where(
                TradeOrder.status == OrderStatus.PENDING.value,
                TradeOrder.dry_run.is_(False),
                TradeOrder.external_order_id.is_(None),
                TradeOrder.created_at < cutoff,
            )
        )
        stale = rows.all()
        for order_id, run_id, created_at in stale:
            logger.critical(
                "Live order stuck in pending without venue id; placement outcome unknown",
                order_id=order_id,
                run_id=run_id,
                created_at=created_at,
            )
        return len(stale)
