"""Position-unwind engine shared by every broker adapter.

Exit orders are computed once here; adapters only supply how to place an
order and how to quote a position's last traded price.
"""
from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple

from loguru import logger

from brokerhub.models import BulkItemResult, BulkResult, OrderRequest, OrderResult, Position

CENT = Decimal("0.01")

PlaceFn = Callable[[OrderRequest], Awaitable[OrderResult]]
QuoteFn = Callable[[Position], Awaitable[float]]
# (side, ltp) -> (price, trigger_price)
PricingFn = Callable[[str, float], Tuple[Optional[float], Optional[float]]]


def exit_side(quantity: int) -> str:
    return "SELL" if quantity > 0 else "BUY"


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def round_price(value: float | Decimal) -> float:
    d = value if isinstance(value, Decimal) else _dec(value)
    return float(d.quantize(CENT, rounding=ROUND_HALF_UP))


def limit_exit_price(ltp: float, side: str, offset: float = 0, convention: str = "marketable") -> float:
    """Limit price ``offset`` percent away from LTP.

    ``marketable`` prices a SELL below LTP and a BUY above it so the exit
    crosses the spread; ``passive`` does the opposite.
    """
    if convention not in ("marketable", "passive"):
        raise ValueError(f"Unknown limit offset convention: {convention}")
    pct = _dec(offset) / 100
    below = (side == "SELL") == (convention == "marketable")
    factor = 1 - pct if below else 1 + pct
    return round_price(_dec(ltp) * factor)


def stop_loss_trigger(ltp: float, side: str, sl_percentage: float = 1) -> float:
    if sl_percentage <= 0:
        raise ValueError(f"sl_percentage must be positive, got {sl_percentage}")
    # a SELL stop protects a long, so it sits below LTP; a BUY stop sits above
    pct = _dec(sl_percentage) / 100
    factor = 1 - pct if side == "SELL" else 1 + pct
    return round_price(_dec(ltp) * factor)


def limit_pricing(offset: float = 0, convention: str = "marketable") -> PricingFn:
    def pricing(side: str, ltp: float) -> Tuple[Optional[float], Optional[float]]:
        return limit_exit_price(ltp, side, offset, convention), None
    return pricing


def stop_loss_pricing(sl_percentage: float = 1) -> PricingFn:
    if sl_percentage <= 0:
        raise ValueError(f"sl_percentage must be positive, got {sl_percentage}")

    def pricing(side: str, ltp: float) -> Tuple[Optional[float], Optional[float]]:
        return None, stop_loss_trigger(ltp, side, sl_percentage)
    return pricing


def _item(key: str, outcome: Any) -> BulkItemResult:
    if isinstance(outcome, BaseException):
        return BulkItemResult(key=key, ok=False, error=str(outcome), error_type=type(outcome).__name__)
    return BulkItemResult(key=key, ok=True, result=outcome)


def _aggregate(keys: List[str], outcomes: List[Any], skipped: int = 0) -> BulkResult:
    details = [_item(k, o) for k, o in zip(keys, outcomes)]
    failed = sum(1 for d in details if not d.ok)
    return BulkResult(
        success=failed == 0,
        total=len(details),
        succeeded=len(details) - failed,
        failed=failed,
        skipped=skipped,
        details=details,
    )


async def fan_out(items: Iterable[Any], action: Callable[[Any], Awaitable[Any]], key: Callable[[Any], str] = str) -> BulkResult:
    """Run ``action`` on every item concurrently, collecting each outcome."""
    items = list(items)
    outcomes = await asyncio.gather(*(action(i) for i in items), return_exceptions=True)
    for i, o in zip(items, outcomes):
        if isinstance(o, asyncio.CancelledError):
            raise o
        if isinstance(o, BaseException):
            logger.warning("Bulk item {} failed: {}", key(i), o)
    return _aggregate([key(i) for i in items], list(outcomes))


def exit_request(position: Position, order_type: str, price: float | None = None, trigger_price: float | None = None) -> OrderRequest:
    return OrderRequest(
        symbol=position.symbol,
        security_id=position.security_id,
        exchange=position.exchange,
        transaction_type=exit_side(position.quantity),
        order_type=order_type,
        quantity=abs(position.quantity),
        price=price,
        trigger_price=trigger_price,
        product=position.product,
    )


async def unwind_positions(
    positions: Iterable[Position],
    order_type: str,
    place: PlaceFn,
    quote: QuoteFn | None = None,
    pricing: PricingFn | None = None,
) -> BulkResult:
    """Submit one opposite-side order per non-flat position, all at once."""
    positions = list(positions)
    open_positions = [p for p in positions if p.quantity != 0]

    async def close(position: Position) -> OrderResult:
        price = trigger = None
        if pricing is not None:
            if quote is None:
                raise ValueError("pricing requires a quote callback")
            ltp = await quote(position)
            price, trigger = pricing(exit_side(position.quantity), float(ltp))
        return await place(exit_request(position, order_type, price, trigger))

    result = await fan_out(open_positions, close, key=lambda p: p.label)
    result.skipped = len(positions) - len(open_positions)
    return result
