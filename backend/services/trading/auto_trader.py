"""
Auto-trader: sweeps a batch of strategy runs, applies the signal gates and
hands qualifying runs to the OrderExecutor.

Every run yields exactly one action (executed, skipped or error); one run
failing never aborts the sweep.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import and_, or_, select

from models.database import StrategyRun, TradeOrder
from services.weather.signal_engine import BUY_YES
from utils.logger import get_logger
from utils.utcnow import utcnow

from .config import TradingConfig, load_trading_config
from .executor import OrderExecutor
from .risk import evaluate_signal_gates
from .types import (
    OPEN_VENUE_STATUSES,
    CancelResult,
    ExecuteTradeResult,
    OrderStatus,
    OrderType,
    Outcome,
    PollResult,
    SkipCode,
    TradeExecutionInput,
)
from .venue import DEFAULT_TICK_SIZE, VenueAdapter

logger = get_logger("trading.auto_trader")

ACTION_EXECUTED = "executed"
ACTION_SKIPPED = "skipped"
ACTION_ERROR = "error"


@dataclass
class AutoTradeAction:
    run_id: str
    market_title: Optional[str]
    action: str
    reason: str
    dry_run: bool
    skip_code: Optional[SkipCode] = None
    result: Optional[ExecuteTradeResult] = None


@dataclass
class BatchEvaluation:
    batch_id: str
    dry_run: bool
    auto_trade_enabled: bool
    actions: list[AutoTradeAction] = field(default_factory=list)

    def _count(self, action: str) -> int:
        return sum(1 for a in self.actions if a.action == action)

    @property
    def executed(self) -> int:
        return self._count(ACTION_EXECUTED)

    @property
    def skipped(self) -> int:
        return self._count(ACTION_SKIPPED)

    @property
    def errors(self) -> int:
        return self._count(ACTION_ERROR)


def _chosen_side(run: StrategyRun) -> tuple[Outcome, Optional[str], Optional[float]]:
    if run.recommendation == BUY_YES:
        return Outcome.YES, run.clob_token_id_yes, run.yes_price
    no_price = run.no_price if run.no_price is not None else 1.0 - run.yes_price
    return Outcome.NO, run.clob_token_id_no, no_price


def _plan_size(trade_plan: Optional[dict[str, Any]]) -> float:
    plan = trade_plan or {}
    return float(plan.get("half_kelly_size_usd") or plan.get("suggested_size_usd") or 0.0)


class AutoTrader:
    def __init__(self, executor: OrderExecutor, session_factory=None, config: Optional[TradingConfig] = None):
        self._executor = executor
        self._session_factory = session_factory or executor.session_factory
        self._config = config

    def current_config(self) -> TradingConfig:
        return self._config or load_trading_config()

    async def _load_batch(self, batch_id: str) -> list[StrategyRun]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StrategyRun)
                .where(StrategyRun.batch_id == batch_id)
                .order_by(StrategyRun.created_at, StrategyRun.id)
            )
            return list(result.scalars().all())

    async def evaluate_batch(self, adapter: VenueAdapter, batch_id: str) -> BatchEvaluation:
        """Evaluate every run in the batch, executing the ones that pass all gates."""
        config = self.current_config()
        runs = await self._load_batch(batch_id)
        evaluation = BatchEvaluation(
            batch_id=batch_id,
            dry_run=config.dry_run,
            auto_trade_enabled=config.auto_trade_enabled,
        )
        if not runs:
            logger.info("No runs found for batch", batch_id=batch_id)
            return evaluation

        semaphore = asyncio.Semaphore(max(1, config.batch_max_concurrency))

        async def _bounded(run: StrategyRun) -> AutoTradeAction:
            async with semaphore:
                return await self.evaluate_run(adapter, run, config)

        evaluation.actions = list(await asyncio.gather(*(_bounded(run) for run in runs)))
        logger.info(
            "Batch evaluated",
            batch_id=batch_id,
            dry_run=config.dry_run,
            runs=len(runs),
            executed=evaluation.executed,
            skipped=evaluation.skipped,
            errors=evaluation.errors,
        )
        return evaluation

    async def evaluate_run(
        self, adapter: VenueAdapter, run: StrategyRun, config: TradingConfig
    ) -> AutoTradeAction:
        log = logger.with_context(run_id=run.id, batch_id=run.batch_id)

        def action(kind: str, reason: str, **kwargs: Any) -> AutoTradeAction:
            return AutoTradeAction(
                run_id=run.id,
                market_title=run.market_title,
                action=kind,
                reason=reason,
                dry_run=config.dry_run,
                **kwargs,
            )

        outcome, token_id, price = _chosen_side(run)
        size_usd = _plan_size(run.trade_plan)
        snapshot = run.forecast_snapshot or {}

        gates = evaluate_signal_gates(
            recommendation=run.recommendation,
            token_id=token_id,
            outcome_label=outcome.value,
            edge=run.edge,
            min_edge=config.auto_min_edge,
            conviction=run.user_confidence,
            min_conviction=config.auto_min_conviction,
            models_agree=snapshot.get("models_agree"),
            require_models_agree=config.auto_require_models_agree,
            size_usd=size_usd,
        )
        if not gates.allowed:
            return action(ACTION_SKIPPED, gates.reason, skip_code=gates.code)

        if not config.auto_trade_enabled:
            return action(ACTION_SKIPPED, "Auto-trading disabled", skip_code=SkipCode.AUTO_TRADE_DISABLED)

        try:
            tick_size = (
                await asyncio.wait_for(adapter.get_tick_size(token_id), timeout=config.venue_timeout_seconds)
                or DEFAULT_TICK_SIZE
            )
        except Exception as exc:
            log.warning(
                "Tick size lookup failed; using default",
                token_id=token_id,
                error=str(exc) or exc.__class__.__name__,
            )
            tick_size = DEFAULT_TICK_SIZE

        execution_input = TradeExecutionInput(
            run_id=run.id,
            batch_id=run.batch_id,
            market_id=run.market_id or run.condition_id or run.id,
            token_id=token_id,
            outcome=outcome,
            price=price,
            size_usd=size_usd,
            edge=run.edge or 0.0,
            model_prob=run.model_prob,
            order_type=OrderType.GTC,
            tick_size=tick_size,
            neg_risk=bool(run.neg_risk),
        )

        try:
            result = await self._executor.execute(adapter, execution_input, config=config)
        except Exception as exc:
            log.error("Auto-trade execution failed", error=str(exc))
            return action(ACTION_ERROR, f"Execution error: {exc}")

        if result.skipped:
            return action(
                ACTION_SKIPPED,
                result.skip_reason or "Skipped by executor",
                skip_code=result.skip_code,
                result=result,
            )

        mode = "dry-run" if result.dry_run else "live"
        placed_usd = result.order.size_usd if result.order else size_usd
        return action(
            ACTION_EXECUTED,
            f"{outcome.value} @ {price * 100:.0f}c for ${placed_usd:.2f} ({mode})",
            result=result,
        )

    async def cancel_batch_orders(self, adapter: VenueAdapter, batch_id: str) -> CancelResult:
        """Cancel every active live order in the batch at the venue and locally.

        Pending rows with no venue id (placement timed out or its local update
        failed) have nothing to cancel remotely and are closed locally.
        """
        config = self.current_config()
        timeout = config.venue_timeout_seconds
        result = CancelResult(batch_id=batch_id, dry_run=config.dry_run)

        async with self._session_factory() as session:
            rows = await session.execute(
                select(TradeOrder)
                .where(
                    TradeOrder.batch_id == batch_id,
                    TradeOrder.dry_run.is_(False),
                    or_(
                        TradeOrder.status.in_(OPEN_VENUE_STATUSES),
                        and_(
                            TradeOrder.status == OrderStatus.PENDING.value,
                            TradeOrder.external_order_id.is_(None),
                        ),
                    ),
                )
                .order_by(TradeOrder.created_at)
            )
            orders = list(rows.scalars().all())

        if not orders:
            return result

        if any(order.external_order_id for order in orders):
            await asyncio.wait_for(adapter.initialize(), timeout=timeout)
        for order in orders:
            log = logger.with_context(order_id=order.id, batch_id=batch_id)
            try:
                if order.external_order_id:
                    confirmed = await asyncio.wait_for(
                        adapter.cancel_order(order.external_order_id), timeout=timeout
                    )
                    if not confirmed:
                        result.errors += 1
                        result.error_messages.append(
                            f"{order.id}: venue did not confirm cancel of {order.external_order_id}"
                        )
                        continue
                else:
                    log.warning(
                        "Closing pending order without venue id; check the venue for a stray order",
                        run_id=order.run_id,
                        created_at=order.created_at,
                    )
                await self._mark_cancelled(order.id)
                result.cancelled += 1
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                result.errors += 1
                result.error_messages.append(f"{order.id}: {message}")
                log.warning("Order cancel failed", external_order_id=order.external_order_id, error=message)

        logger.info(
            "Batch orders cancelled",
            batch_id=batch_id,
            cancelled=result.cancelled,
            errors=result.errors,
        )
        return result

    async def _mark_cancelled(self, order_id: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(TradeOrder, order_id)
            row.status = OrderStatus.CANCELLED.value
            row.cancelled_at = utcnow()
            await session.commit()

    async def poll_open_orders(self, adapter: VenueAdapter) -> PollResult:
        return await self._executor.poll_open_orders(adapter, config=self.current_config())
