import asyncio

import pytest
from fastapi.testclient import TestClient

from brokerhub.exceptions import BrokerAPIError, CancelRejectedError, OrderNotFoundError, TransportError
from brokerhub.main import create_app, status_for
from brokerhub.services.brokers.dhan import DhanAdapter
from brokerhub.services.order_provider import OrderProvider


@pytest.fixture
def adapter(settings, fake_http, dhan_instruments):
    adapter = DhanAdapter({"client_id": "1", "access_token": "t"}, settings, http=fake_http)
    adapter.catalog.store.write(dhan_instruments)
    return adapter


@pytest.fixture
def client(settings, adapter):
    provider = OrderProvider(settings)
    provider.add_adapter("dhan", adapter)
    asyncio.run(provider.initialize("dhan"))
    return TestClient(create_app(provider))


def test_status_mapping():
    assert status_for(OrderNotFoundError("x")) == 404
    assert status_for(CancelRejectedError("x")) == 422
    assert status_for(TransportError("x")) == 502


def test_health_and_broker_list(client):
    assert client.get("/healthz").json() == {"status": "ok", "brokers": ["dhan"]}
    assert client.get("/brokers").json() == {"brokers": ["dhan"]}


def test_unregistered_broker_is_404(client):
    resp = client.get("/brokers/zerodha/orders")
    assert resp.status_code == 404
    assert resp.json()["error"] == "BrokerNotRegisteredError"


def test_unauthenticated_adapter_is_401(settings, adapter):
    provider = OrderProvider(settings)
    provider.add_adapter("dhan", adapter)
    client = TestClient(create_app(provider))

    resp = client.get("/brokers/dhan/positions")

    assert resp.status_code == 401
    assert resp.json()["broker"] == "dhan"


def test_place_order(client, fake_http):
    fake_http.routes[("POST", "/orders")] = {"orderId": "321", "orderStatus": "PENDING"}

    resp = client.post("/brokers/dhan/orders", json={
        "symbol": "RELIANCE", "transaction_type": "buy", "order_type": "LIMIT", "quantity": 2, "price": 2950.05,
    })

    assert resp.status_code == 200
    assert resp.json()["order_id"] == "321"
    assert fake_http.calls_to("POST", "/orders")[0]["json"]["securityId"] == "2885"


def test_invalid_order_is_422(client):
    resp = client.post("/brokers/dhan/orders", json={"symbol": "RELIANCE", "transaction_type": "BUY", "order_type": "LIMIT", "quantity": 1})
    assert resp.status_code == 422


def test_rejected_order_surfaces_broker_text(client, fake_http):
    fake_http.routes[("POST", "/orders")] = BrokerAPIError(400, "RMS: insufficient margin", broker="dhan")

    resp = client.post("/brokers/dhan/orders", json={"symbol": "TCS", "transaction_type": "BUY", "quantity": 1})

    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "OrderRejectedError"
    assert body["detail"] == "RMS: insufficient margin"


def test_instrument_lookup(client):
    assert client.get("/brokers/dhan/instruments/TCS").json()["security_id"] == "11536"
    assert client.get("/brokers/dhan/instruments/2885").json()["symbol"] == "RELIANCE"
    resp = client.get("/brokers/dhan/instruments/UNKNOWN")
    assert resp.status_code == 404
    assert resp.json()["error"] == "InstrumentNotFoundError"


def test_exit_positions_limit(client, fake_http):
    fake_http.routes[("GET", "/positions")] = [{"securityId": "11536", "exchange": "NSE", "netQty": 10, "productType": "INTRADAY"}]
    fake_http.routes[("GET", "/quotes/NSE/11536")] = {"lastTradedPrice": 100.0}
    fake_http.routes[("POST", "/orders")] = {"orderId": "1"}

    resp = client.post("/brokers/dhan/positions/exit", json={"mode": "limit", "price_offset": 0.5, "convention": "passive"})

    assert resp.status_code == 200
    assert resp.json()["succeeded"] == 1
    assert fake_http.calls_to("POST", "/orders")[0]["json"]["price"] == 100.5


def test_cancel_all_partial_failure_is_reported_in_body(client, fake_http):
    fake_http.routes[("GET", "/orders")] = [{"orderId": "1", "orderStatus": "PENDING"}]
    fake_http.routes[("DELETE", "/orders/1")] = BrokerAPIError(400, "already traded", broker="dhan")

    resp = client.delete("/brokers/dhan/orders")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["failed"] == 1


def test_quote(client, fake_http):
    fake_http.routes[("GET", "/quotes/NSE/2885")] = {"lastTradedPrice": 2951.0}
    assert client.get("/brokers/dhan/quotes/RELIANCE").json()["ltp"] == 2951.0


@pytest.mark.parametrize("body", [
    {"mode": "stop_loss", "sl_percentage": 0},
    {"mode": "stop_loss", "sl_percentage": -2},
    {"mode": "limit", "price_offset": -0.5},
])
def test_exit_rejects_non_positive_percentages(client, fake_http, body):
    resp = client.post("/brokers/dhan/positions/exit", json=body)
    assert resp.status_code == 422
    assert fake_http.calls == []


def test_quote_without_price_is_502(client, fake_http):
    fake_http.routes[("GET", "/quotes/NSE/2885")] = {"status": "failure"}
    resp = client.get("/brokers/dhan/quotes/RELIANCE")
    assert resp.status_code == 502
    assert resp.json()["error"] == "TransportError"
