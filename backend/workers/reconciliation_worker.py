"""Order reconciliation worker: polls the venue for open live orders on a schedule.

Each cycle is idempotent; a failed cycle is logged and the loop continues.

Run from backend dir:
  python -m workers.reconciliation_worker
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Callable, Optional

_BACKEND = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND not in sys.path:
    sys.path.insert(0, _BACKEND)
if os.getcwd() != _BACKEND:
    os.chdir(_BACKEND)

from config import settings
from models.database import init_database
from services.trading.config import TradingConfig, load_trading_config
from services.trading.executor import OrderExecutor
from services.trading.types import PollResult
from services.trading.venue import VenueAdapter, create_venue_adapter
from utils.logger import get_logger, setup_logging

logger = get_logger("reconciliation_worker")


async def run_reconciliation_cycle(
    executor: OrderExecutor,
    adapter_factory: Callable[[TradingConfig], VenueAdapter] = create_venue_adapter,
    config: Optional[TradingConfig] = None,
) -> Optional[PollResult]:
    """One sweep. Returns None when there is nothing to reconcile (dry run / no credentials)."""
    config = config or load_trading_config()
    if config.dry_run:
        logger.debug("Reconciliation skipped: dry-run mode")
        return None

    adapter = adapter_factory(config)
    if not adapter.is_configured():
        logger.warning("Reconciliation skipped: venue not configured", venue=config.venue)
        return None

    return await executor.poll_open_orders(adapter, config=config)


async def _run_loop(executor: OrderExecutor) -> None:
    logger.info("Reconciliation worker started")

    while True:
        config = load_trading_config()
        try:
            await run_reconciliation_cycle(executor, config=config)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Reconciliation cycle failed", error=str(exc))

        await asyncio.sleep(max(1, config.poll_interval_seconds))


async def main() -> None:
    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
    await init_database()
    logger.info("Database initialized")
    try:
        await _run_loop(OrderExecutor())
    except asyncio.CancelledError:
        logger.info("Reconciliation worker shutting down")


if __name__ == "__main__":
    asyncio.run(main())
