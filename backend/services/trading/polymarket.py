"""
Polymarket CLOB venue adapter.

Order signing and submission go through py-clob-client; read-only market
lookups use the public Gamma and CLOB HTTP endpoints.

IMPORTANT: live orders spend real USDC. The executor only calls
``place_order`` when dry-run is off.

Setup:
1. Set POLYMARKET_PRIVATE_KEY (and POLYMARKET_FUNDER_ADDRESS /
   POLYMARKET_SIGNATURE_TYPE for proxy wallets)
2. Optionally set POLYMARKET_API_KEY / _SECRET / _PASSPHRASE; otherwise API
   credentials are derived from the wallet on initialize()
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import httpx

from config import Settings
from utils.logger import get_logger
from utils.retry import RetryConfig, with_retry

from .types import (
    BalanceResult,
    OrderStatus,
    OrderStatusResult,
    Outcome,
    PlaceOrderResult,
    TradeExecutionInput,
    VenueError,
)
from .venue import DEFAULT_TICK_SIZE, VenueAdapter

logger = get_logger("trading.polymarket")

USDC_DECIMALS = 6

STATUS_MAP = {
    "LIVE": OrderStatus.LIVE,
    "MATCHED": OrderStatus.MATCHED,
    "DELAYED": OrderStatus.SUBMITTED,
    "UNMATCHED": OrderStatus.SUBMITTED,
    "CANCELLED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.EXPIRED,
}

_READ_RETRY = RetryConfig(max_attempts=3, base_delay=0.5)


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_order_status(order: dict[str, Any]) -> OrderStatusResult:
    """Translate a CLOB order payload into an OrderStatusResult.

    A MATCHED order whose matched size covers the original size is filled.
    """
    raw_status = str(order.get("status") or "").upper()
    status = STATUS_MAP.get(raw_status, OrderStatus.SUBMITTED)
    fill_size = _to_float(order.get("size_matched"))
    original_size = _to_float(order.get("original_size"))
    if (
        status == OrderStatus.MATCHED
        and fill_size
        and original_size
        and fill_size >= original_size - 1e-9
    ):
        status = OrderStatus.FILLED
    return OrderStatusResult(
        status=status,
        fill_price=_to_float(order.get("price")) if fill_size else None,
        fill_size=fill_size if fill_size else None,
        raw=order,
    )


class PolymarketVenueAdapter(VenueAdapter):
    platform = "polymarket"

    def __init__(self, settings: Settings, timeout_seconds: float = 20.0):
        self._settings = settings
        self._timeout = timeout_seconds
        self._client = None

    def is_configured(self) -> bool:
        return bool(self._settings.POLYMARKET_PRIVATE_KEY)

    async def initialize(self) -> None:
        if self._client is not None:
            return
        if not self.is_configured():
            raise VenueError("Polymarket private key is not configured")

        from py_clob_client.client import ClobClient
        from py_clob_client.clob_types import ApiCreds

        s = self._settings
        kwargs: dict[str, Any] = {
            "host": s.CLOB_API_URL,
            "key": s.POLYMARKET_PRIVATE_KEY,
            "chain_id": s.CHAIN_ID,
        }
        if s.POLYMARKET_SIGNATURE_TYPE is not None:
            kwargs["signature_type"] = s.POLYMARKET_SIGNATURE_TYPE
        if s.POLYMARKET_FUNDER_ADDRESS:
            kwargs["funder"] = s.POLYMARKET_FUNDER_ADDRESS

        client = ClobClient(**kwargs)
        if s.POLYMARKET_API_KEY and s.POLYMARKET_API_SECRET and s.POLYMARKET_API_PASSPHRASE:
            creds = ApiCreds(
                api_key=s.POLYMARKET_API_KEY,
                api_secret=s.POLYMARKET_API_SECRET,
                api_passphrase=s.POLYMARKET_API_PASSPHRASE,
            )
        else:
            creds = await asyncio.to_thread(client.create_or_derive_api_creds)
        client.set_api_creds(creds)
        self._client = client
        logger.info("Polymarket adapter initialized", host=s.CLOB_API_URL)

    def _require_client(self):
        if self._client is None:
            raise VenueError("Polymarket adapter not initialized. Call initialize() first.")
        return self._client

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, headers={"Accept": "application/json"})

    @with_retry(_READ_RETRY)
    async def get_token_id(self, market_id: str, outcome: Outcome) -> Optional[str]:
        async with self._http() as client:
            response = await client.get(f"{self._settings.GAMMA_API_URL}/markets/{market_id}")
            response.raise_for_status()
            market = response.json()
        token_ids = market.get("clobTokenIds")
        if isinstance(token_ids, str):
            token_ids = json.loads(token_ids)
        if not isinstance(token_ids, list) or len(token_ids) < 2:
            return None
        return str(token_ids[0] if outcome == Outcome.YES else token_ids[1])

    async def get_tick_size(self, token_id: str) -> str:
        try:
            async with self._http() as client:
                response = await client.get(
                    f"{self._settings.CLOB_API_URL}/tick-size", params={"token_id": token_id}
                )
                response.raise_for_status()
                tick = response.json().get("minimum_tick_size")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Tick size lookup failed; using default", token_id=token_id, error=str(exc))
            return DEFAULT_TICK_SIZE
        return str(tick) if tick else DEFAULT_TICK_SIZE

    @with_retry(_READ_RETRY)
    async def get_market_price(self, token_id: str) -> Optional[float]:
        async with self._http() as client:
            response = await client.get(
                f"{self._settings.CLOB_API_URL}/midpoint", params={"token_id": token_id}
            )
            response.raise_for_status()
            return _to_float(response.json().get("mid"))

    async def place_order(self, order: TradeExecutionInput) -> PlaceOrderResult:
        from py_clob_client.clob_types import OrderArgs, PartialCreateOrderOptions
        from py_clob_client.order_builder.constants import BUY, SELL

        client = self._require_client()
        order_args = OrderArgs(
            token_id=order.token_id,
            price=order.price,
            size=round(order.size_usd / order.price, 2),
            side=BUY if order.side == "BUY" else SELL,
        )
        options = PartialCreateOrderOptions(tick_size=order.tick_size, neg_risk=order.neg_risk)

        signed = await asyncio.to_thread(client.create_order, order_args, options)
        response = await asyncio.to_thread(client.post_order, signed, order.order_type.value)

        if not response or not response.get("success", True) or not response.get("orderID"):
            raise VenueError(f"Order rejected: {(response or {}).get('errorMsg') or response}")

        status = STATUS_MAP.get(str(response.get("status") or "").upper(), OrderStatus.SUBMITTED)
        return PlaceOrderResult(external_order_id=response["orderID"], status=status, raw=response)

    @with_retry(_READ_RETRY)
    async def get_order_status(self, external_order_id: str) -> OrderStatusResult:
        client = self._require_client()
        order = await asyncio.to_thread(client.get_order, external_order_id)
        if not order:
            raise VenueError(f"Order not found: {external_order_id}")
        return map_order_status(order)

    async def cancel_order(self, external_order_id: str) -> bool:
        client = self._require_client()
        response = await asyncio.to_thread(client.cancel, external_order_id)
        cancelled = (response or {}).get("canceled") or []
        if external_order_id in cancelled:
            return True
        logger.warning("Cancel not confirmed", external_order_id=external_order_id, response=response)
        return False

    async def get_balance(self) -> BalanceResult:
        from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

        client = self._require_client()
        response = await asyncio.to_thread(
            client.get_balance_allowance,
            BalanceAllowanceParams(asset_type=AssetType.COLLATERAL),
        )
        raw_balance = _to_float((response or {}).get("balance")) or 0.0
        return BalanceResult(
            balance_usd=raw_balance / (10**USDC_DECIMALS),
            address=client.get_address(),
        )
