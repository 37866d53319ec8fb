import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.database import Base, StrategyRun, TradeOrder
from services.trading.config import TradingConfig
from services.trading.executor import OrderExecutor
from services.trading.types import (
    OrderStatus,
    OrderStatusResult,
    Outcome,
    SkipCode,
    TradeExecutionInput,
    VenueError,
)
from utils.utcnow import utcnow

LIVE = TradingConfig(dry_run=False, max_position_usd=50.0, max_total_exposure_usd=500.0)
DRY = TradingConfig(dry_run=True, max_position_usd=50.0, max_total_exposure_usd=500.0)


async def _build_session_factory(tmp_path: Path):
    db_path = tmp_path / "trading_executor.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, session_factory


async def _seed_runs(session_factory, *run_ids: str) -> None:
    async with session_factory() as session:
        for run_id in run_ids:
            session.add(
                StrategyRun(
                    id=run_id,
                    batch_id="batch-1",
                    resolution_time=utcnow() + timedelta(days=1),
                    rule_type="above_below",
                    threshold_low=25.0,
                    yes_price=0.40,
                )
            )
        await session.commit()


async def _seed_order(session_factory, run_id: str, **overrides) -> str:
    values = dict(
        run_id=run_id,
        batch_id="batch-1",
        token_id=f"{run_id}-yes",
        outcome="YES",
        price=0.40,
        size=50.0,
        size_usd=20.0,
        status=OrderStatus.LIVE.value,
        dry_run=False,
    )
    values.update(overrides)
    async with session_factory() as session:
        order = TradeOrder(**values)
        session.add(order)
        await session.commit()
        return order.id


def _input(run_id: str = "run-1", **overrides) -> TradeExecutionInput:
    values = dict(
        run_id=run_id,
        batch_id="batch-1",
        market_id="mkt-1",
        token_id=f"{run_id}-yes",
        outcome=Outcome.YES,
        price=0.40,
        size_usd=20.0,
        edge=0.12,
        model_prob=0.52,
    )
    values.update(overrides)
    return TradeExecutionInput(**values)


async def _orders_for(session_factory, run_id: str) -> list[TradeOrder]:
    async with session_factory() as session:
        rows = await session.execute(
            select(TradeOrder).where(TradeOrder.run_id == run_id).order_by(TradeOrder.created_at)
        )
        return list(rows.scalars().all())


@pytest.mark.asyncio
async def test_dry_run_fills_immediately_without_venue_calls(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=DRY)

        result = await executor.execute(fake_venue, _input())

        assert result.skipped is False
        assert result.dry_run is True
        assert result.order.status == "filled"
        assert result.order.fill_price == pytest.approx(0.40)
        assert result.order.fill_size == pytest.approx(50.0)
        assert result.order.fill_size_usd == pytest.approx(20.0)
        assert fake_venue.placed == []
        assert fake_venue.initialized == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_second_execution_for_same_run_is_skipped(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=LIVE)

        first = await executor.execute(fake_venue, _input())
        second = await executor.execute(fake_venue, _input())

        assert first.skipped is False
        assert first.order.status == "live"
        assert first.order.external_order_id == "ext-1"
        assert second.skipped is True
        assert second.skip_code == SkipCode.ACTIVE_ORDER_EXISTS
        assert second.skip_reason == "Active order already exists for this run"
        assert len(fake_venue.placed) == 1
        assert len(await _orders_for(session_factory, "run-1")) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_store_rejects_second_active_order_for_a_run(tmp_path):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        await _seed_order(session_factory, "run-1", status="live")
        # Terminal rows never block.
        await _seed_order(session_factory, "run-1", status="failed")

        with pytest.raises(IntegrityError):
            await _seed_order(session_factory, "run-1", status="pending")
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_insert_race_becomes_skip(tmp_path, fake_venue, monkeypatch):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        await _seed_order(session_factory, "run-1", status="submitted", external_order_id="ext-0")
        executor = OrderExecutor(session_factory, config=LIVE)

        async def _stale_read(session, run_id):
            return False

        monkeypatch.setattr(executor, "has_active_order", _stale_read)
        result = await executor.execute(fake_venue, _input())

        assert result.skipped is True
        assert result.skip_code == SkipCode.ACTIVE_ORDER_EXISTS
        assert fake_venue.placed == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_live_exposure_limit(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-a", "run-b", "run-c", "run-1")
        await _seed_order(session_factory, "run-a", size_usd=300.0, external_order_id="x-a")
        await _seed_order(session_factory, "run-b", size_usd=170.0, status="submitted", external_order_id="x-b")
        # Dry-run rows never count toward live exposure.
        await _seed_order(session_factory, "run-c", size_usd=1000.0, status="pending", dry_run=True)
        executor = OrderExecutor(session_factory, config=LIVE)

        blocked = await executor.execute(fake_venue, _input(size_usd=50.0))
        assert blocked.skipped is True
        assert blocked.skip_code == SkipCode.EXPOSURE_LIMIT
        assert blocked.skip_reason == "Total exposure would exceed limit: $470.00 + $50.00 > $500.00"
        assert fake_venue.placed == []

        allowed = await executor.execute(fake_venue, _input(size_usd=20.0))
        assert allowed.skipped is False
        assert allowed.order.size_usd == pytest.approx(20.0)
        assert len(fake_venue.placed) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_exposure_limit_ignored_in_dry_run(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-a", "run-1")
        await _seed_order(session_factory, "run-a", size_usd=499.0, external_order_id="x-a")
        executor = OrderExecutor(session_factory, config=DRY)

        result = await executor.execute(fake_venue, _input(size_usd=50.0))
        assert result.skipped is False
        assert result.order.dry_run is True
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_size_is_clamped_to_max_position(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=LIVE)

        result = await executor.execute(fake_venue, _input(size_usd=80.0))

        assert result.order.size_usd == pytest.approx(50.0)
        assert result.order.size == pytest.approx(125.0)
        assert fake_venue.placed[0].size_usd == pytest.approx(50.0)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_edge_below_floor_is_skipped(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=LIVE)

        result = await executor.execute(fake_venue, _input(edge=-0.005))

        assert result.skipped is True
        assert result.skip_code == SkipCode.EDGE_TOO_SMALL
        assert result.skip_reason == "Edge too small: 0.5% < 1.0%"
        assert await _orders_for(session_factory, "run-1") == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_venue_rejection_marks_order_failed_and_propagates(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=LIVE)
        fake_venue.place_error = VenueError("Order rejected: insufficient balance")

        with pytest.raises(VenueError):
            await executor.execute(fake_venue, _input())

        orders = await _orders_for(session_factory, "run-1")
        assert [o.status for o in orders] == ["failed"]
        assert orders[0].error_message == "Order rejected: insufficient balance"

        # A failed order frees the run for another attempt.
        fake_venue.place_error = None
        retry = await executor.execute(fake_venue, _input())
        assert retry.skipped is False
        assert retry.order.status == "live"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_placement_timeout_leaves_order_pending(tmp_path, fake_venue, monkeypatch):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        config = TradingConfig(dry_run=False, venue_timeout_seconds=0.01)
        executor = OrderExecutor(session_factory, config=config)

        async def _hang(order):
            await asyncio.sleep(1)

        monkeypatch.setattr(fake_venue, "place_order", _hang)

        with pytest.raises(asyncio.TimeoutError):
            await executor.execute(fake_venue, _input())

        orders = await _orders_for(session_factory, "run-1")
        assert [o.status for o in orders] == ["pending"]
        assert orders[0].external_order_id is None

        blocked = await executor.execute(fake_venue, _input())
        assert blocked.skip_code == SkipCode.ACTIVE_ORDER_EXISTS
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_invalid_price_is_rejected_before_persistence(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        executor = OrderExecutor(session_factory, config=LIVE)
        result = await executor.execute(fake_venue, _input(price=0.0))
        assert result.skip_code == SkipCode.INVALID_ORDER
        assert await _orders_for(session_factory, "run-1") == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_poll_reconciles_open_live_orders(tmp_path, fake_venue, caplog):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-f", "run-c", "run-e", "run-d", "run-s")
        filled_id = await _seed_order(session_factory, "run-f", external_order_id="x-f", price=0.40, size=50.0)
        cancelled_id = await _seed_order(session_factory, "run-c", external_order_id="x-c", status="submitted")
        error_id = await _seed_order(session_factory, "run-e", external_order_id="x-e")
        await _seed_order(session_factory, "run-d", status="filled", dry_run=True)
        await _seed_order(
            session_factory,
            "run-s",
            status="pending",
            created_at=utcnow() - timedelta(minutes=30),
        )

        fake_venue.statuses = {
            "x-f": OrderStatusResult(status=OrderStatus.FILLED, fill_price=0.41, fill_size=50.0),
            "x-c": OrderStatusResult(status=OrderStatus.CANCELLED),
        }
        fake_venue.status_errors = {"x-e": VenueError("timeout talking to venue")}
        executor = OrderExecutor(session_factory, config=LIVE)

        with caplog.at_level(logging.CRITICAL, logger="trading.executor"):
            result = await executor.poll_open_orders(fake_venue)

        assert result.checked == 3
        assert result.updated == 2
        assert result.errors == 1
        assert result.stale_pending == 1
        assert any("stuck in pending" in r.getMessage() for r in caplog.records)

        async with session_factory() as session:
            filled = await session.get(TradeOrder, filled_id)
            cancelled = await session.get(TradeOrder, cancelled_id)
            errored = await session.get(TradeOrder, error_id)
        assert filled.status == "filled"
        assert filled.fill_price == pytest.approx(0.41)
        assert filled.fill_size_usd == pytest.approx(20.5)
        assert filled.filled_at is not None
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert errored.status == "live"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_poll_without_open_orders_does_not_touch_venue(tmp_path, fake_venue):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        executor = OrderExecutor(session_factory, config=LIVE)
        result = await executor.poll_open_orders(fake_venue)
        assert result.checked == 0
        assert fake_venue.initialized == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_initialize_timeout_marks_order_failed(tmp_path, fake_venue, monkeypatch):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        config = TradingConfig(dry_run=False, venue_timeout_seconds=0.05)
        executor = OrderExecutor(session_factory, config=config)

        async def _hang():
            await asyncio.sleep(3600)

        monkeypatch.setattr(fake_venue, "initialize", _hang)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(executor.execute(fake_venue, _input()), timeout=2)

        orders = await _orders_for(session_factory, "run-1")
        assert [o.status for o in orders] == ["failed"]
        assert orders[0].error_message == "TimeoutError"
        assert fake_venue.placed == []
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_store_error_while_failing_order_keeps_venue_error(tmp_path, fake_venue, monkeypatch, caplog):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        executor = OrderExecutor(session_factory, config=LIVE)
        fake_venue.place_error = VenueError("Order rejected: market closed")

        async def _broken_store(order_id, message):
            raise OperationalError("UPDATE trade_orders", {}, Exception("database is locked"))

        monkeypatch.setattr(executor, "_mark_failed", _broken_store)

        with caplog.at_level(logging.CRITICAL, logger="trading.executor"):
            with pytest.raises(VenueError, match="market closed"):
                await executor.execute(fake_venue, _input())

        assert any("Could not mark order failed" in r.getMessage() for r in caplog.records)
        orders = await _orders_for(session_factory, "run-1")
        assert [o.status for o in orders] == ["pending"]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_poll_counts_hung_status_call_and_continues(tmp_path, fake_venue, monkeypatch):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-h", "run-f")
        hung_id = await _seed_order(session_factory, "run-h", external_order_id="x-h")
        filled_id = await _seed_order(session_factory, "run-f", external_order_id="x-f")
        fake_venue.statuses = {"x-f": OrderStatusResult(status=OrderStatus.FILLED, fill_price=0.40, fill_size=50.0)}
        answer = fake_venue.get_order_status

        async def _status(external_order_id):
            if external_order_id == "x-h":
                await asyncio.sleep(3600)
            return await answer(external_order_id)

        monkeypatch.setattr(fake_venue, "get_order_status", _status)
        executor = OrderExecutor(session_factory, config=TradingConfig(dry_run=False, venue_timeout_seconds=0.05))

        result = await asyncio.wait_for(executor.poll_open_orders(fake_venue), timeout=2)

        assert (result.checked, result.updated, result.errors) == (2, 1, 1)
        async with session_factory() as session:
            assert (await session.get(TradeOrder, hung_id)).status == "live"
            assert (await session.get(TradeOrder, filled_id)).status == "filled"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_poll_gives_up_when_venue_initialize_hangs(tmp_path, fake_venue, monkeypatch):
    engine, session_factory = await _build_session_factory(tmp_path)
    try:
        await _seed_runs(session_factory, "run-1")
        await _seed_order(session_factory, "run-1", external_order_id="x-1")

        async def _hang():
            await asyncio.sleep(3600)

        monkeypatch.setattr(fake_venue, "initialize", _hang)
        executor = OrderExecutor(session_factory, config=TradingConfig(dry_run=False, venue_timeout_seconds=0.05))

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(executor.poll_open_orders(fake_venue), timeout=2)
    finally:
        await engine.dispose()
