import pytest
from pydantic import ValidationError

from brokerhub.models import OrderRequest


def test_market_order_needs_no_prices():
    req = OrderRequest(symbol="RELIANCE", transaction_type="buy", quantity=1)
    assert req.transaction_type == "BUY"
    assert req.order_type == "MARKET"
    assert req.product == "INTRADAY"
    assert req.validity == "DAY"


@pytest.mark.parametrize("order_type", ["LIMIT", "SL"])
def test_limit_component_requires_price(order_type):
    with pytest.raises(ValidationError):
        OrderRequest(symbol="TCS", transaction_type="SELL", order_type=order_type, quantity=1, trigger_price=10)


@pytest.mark.parametrize("order_type", ["SL", "SL-M", "slm"])
def test_stop_component_requires_trigger(order_type):
    with pytest.raises(ValidationError):
        OrderRequest(symbol="TCS", transaction_type="SELL", order_type=order_type, quantity=1, price=10)


def test_quantity_must_be_positive():
    with pytest.raises(ValidationError):
        OrderRequest(symbol="TCS", transaction_type="SELL", quantity=0)


def test_symbol_or_security_id_required():
    with pytest.raises(ValidationError):
        OrderRequest(transaction_type="SELL", quantity=1)
    req = OrderRequest(security_id=2885, transaction_type="SELL", quantity=1)
    assert req.security_id == "2885"


def test_unknown_order_type_is_accepted_for_later_coercion():
    req = OrderRequest(symbol="TCS", transaction_type="BUY", quantity=1, order_type="bracket")
    assert req.order_type == "BRACKET"
