import asyncio

import pytest

from brokerhub.exceptions import OrderRejectedError
from brokerhub.models import OrderResult, Position
from brokerhub.services import exits


def test_exit_side():
    assert exits.exit_side(10) == "SELL"
    assert exits.exit_side(-3) == "BUY"


@pytest.mark.parametrize("value,expected", [
    (100.005, 100.01),
    (100.004, 100.0),
    (100.015, 100.02),
    (99.995, 100.0),
    (0.125, 0.13),
])
def test_round_price_half_up(value, expected):
    assert exits.round_price(value) == expected


def test_limit_price_passive_sell_above_ltp():
    assert exits.limit_exit_price(100.0, "SELL", 0.5, "passive") == 100.50
    assert exits.limit_exit_price(100.0, "BUY", 0.5, "passive") == 99.50


def test_limit_price_marketable_crosses_spread():
    assert exits.limit_exit_price(100.0, "SELL", 0.5, "marketable") == 99.50
    assert exits.limit_exit_price(100.0, "BUY", 0.5, "marketable") == 100.50


def test_limit_price_zero_offset_is_ltp():
    assert exits.limit_exit_price(1234.56, "SELL", 0) == 1234.56


def test_limit_price_rejects_unknown_convention():
    with pytest.raises(ValueError):
        exits.limit_exit_price(100.0, "SELL", 1, "sideways")


def test_stop_loss_trigger_sides():
    assert exits.stop_loss_trigger(200.0, "SELL", 1) == 198.0
    assert exits.stop_loss_trigger(200.0, "BUY", 1) == 202.0
    assert exits.stop_loss_trigger(333.33, "SELL", 1.5) == 328.33


class Recorder:
    def __init__(self, fail_for=()):
        self.requests = []
        self.fail_for = set(fail_for)

    async def place(self, req):
        self.requests.append(req)
        await asyncio.sleep(0)
        if req.label in self.fail_for:
            raise OrderRejectedError("rejected", broker="test", detail="RMS: margin exceeded")
        return OrderResult(broker="test", order_id=f"OID-{len(self.requests)}")


async def test_unwind_skips_flat_positions():
    rec = Recorder()
    positions = [
        Position(symbol="FLAT", exchange="NSE", quantity=0, product="MIS"),
        Position(symbol="LONG", exchange="NSE", quantity=10, product="MIS"),
    ]

    result = await exits.unwind_positions(positions, "MARKET", rec.place)

    assert len(rec.requests) == 1
    req = rec.requests[0]
    assert (req.symbol, req.transaction_type, req.order_type, req.quantity, req.product) == ("LONG", "SELL", "MARKET", 10, "MIS")
    assert req.price is None and req.trigger_price is None
    assert result.total == 1 and result.skipped == 1 and result.success


async def test_unwind_short_position_buys_back_absolute_quantity():
    rec = Recorder()
    await exits.unwind_positions([Position(symbol="SHORT", quantity=-7)], "MARKET", rec.place)
    assert rec.requests[0].transaction_type == "BUY"
    assert rec.requests[0].quantity == 7


async def test_unwind_limit_uses_quote_and_pricing():
    rec = Recorder()
    quotes = {"A": 100.0, "B": 50.0}

    async def quote(position):
        return quotes[position.symbol]

    positions = [Position(symbol="A", quantity=5), Position(symbol="B", quantity=-2)]
    await exits.unwind_positions(positions, "LIMIT", rec.place, quote=quote, pricing=exits.limit_pricing(0.5, "passive"))

    by_symbol = {r.symbol: r for r in rec.requests}
    assert by_symbol["A"].price == 100.5
    assert by_symbol["B"].price == 49.75


async def test_unwind_stop_loss_sets_trigger_only():
    rec = Recorder()

    async def quote(position):
        return 100.0

    await exits.unwind_positions([Position(symbol="A", quantity=1)], "SL-M", rec.place, quote=quote, pricing=exits.stop_loss_pricing(1))

    req = rec.requests[0]
    assert req.order_type == "SL-M"
    assert req.trigger_price == 99.0
    assert req.price is None


async def test_unwind_collects_failures_without_losing_items():
    rec = Recorder(fail_for={"B"})
    positions = [Position(symbol=s, quantity=1) for s in ("A", "B", "C")]

    result = await exits.unwind_positions(positions, "MARKET", rec.place)

    assert result.total == 3
    assert result.succeeded == 2
    assert result.failed == 1
    assert not result.success
    failed = [d for d in result.details if not d.ok]
    assert failed[0].key == "B"
    assert failed[0].error_type == "OrderRejectedError"
    assert "margin" in failed[0].error


async def test_unwind_quote_failure_is_per_item():
    rec = Recorder()

    async def quote(position):
        if position.symbol == "B":
            raise ConnectionError("quote timeout")
        return 10.0

    positions = [Position(symbol="A", quantity=1), Position(symbol="B", quantity=1)]
    result = await exits.unwind_positions(positions, "LIMIT", rec.place, quote=quote, pricing=exits.limit_pricing(1))

    assert result.succeeded == 1
    assert result.failed == 1
    assert len(rec.requests) == 1


async def test_unwind_runs_concurrently():
    started = []
    gate = asyncio.Event()

    async def place(req):
        started.append(req.symbol)
        if len(started) == 2:
            gate.set()
        await asyncio.wait_for(gate.wait(), timeout=1)
        return OrderResult(broker="test", order_id=req.symbol)

    positions = [Position(symbol="A", quantity=1), Position(symbol="B", quantity=1)]
    result = await exits.unwind_positions(positions, "MARKET", place)
    assert result.succeeded == 2


async def test_fan_out_keys_results():
    async def action(i):
        return OrderResult(broker="test", order_id=i)

    result = await exits.fan_out(["1", "2"], action)
    assert [d.key for d in result.details] == ["1", "2"]
    assert all(d.result.order_id == d.key for d in result.details)


@pytest.mark.parametrize("pct", [0, -1])
def test_stop_loss_percentage_must_be_positive(pct):
    with pytest.raises(ValueError):
        exits.stop_loss_trigger(100.0, "SELL", pct)
    with pytest.raises(ValueError):
        exits.stop_loss_pricing(pct)
