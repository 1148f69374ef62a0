"""
Shared fixtures: isolated settings, sample instrument catalogs and a
recording stand-in for BrokerHttpClient.
"""
import threading
from datetime import date
from typing import Any, Callable, Dict, List, Tuple

import pytest

from brokerhub.config import Settings


class FakeHttp:
    """Answers (method, path) pairs from a routing table and records every call.

    A route value may be a payload, an exception instance (raised), or a
    callable receiving the request keyword arguments.
    """

    def __init__(self, routes: Dict[Tuple[str, str], Any] | None = None):
        self.routes: Dict[Tuple[str, str], Any] = dict(routes or {})
        self.calls: List[Tuple[str, str, dict]] = []
        self.headers: Dict[str, str] = {}
        self._lock = threading.Lock()

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def request(self, method: str, path: str, **kw: Any) -> Any:
        with self._lock:
            self.calls.append((method, path, kw))
        key = (method, path)
        if key not in self.routes:
            raise AssertionError(f"unexpected request {method} {path}")
        resp = self.routes[key]
        if isinstance(resp, BaseException):
            raise resp
        if callable(resp):
            resp = resp(**kw)
            if isinstance(resp, BaseException):
                raise resp
        return resp

    def get(self, path: str, **kw: Any) -> Any:
        return self.request("GET", path, **kw)

    def post(self, path: str, **kw: Any) -> Any:
        return self.request("POST", path, **kw)

    def put(self, path: str, **kw: Any) -> Any:
        return self.request("PUT", path, **kw)

    def delete(self, path: str, **kw: Any) -> Any:
        return self.request("DELETE", path, **kw)

    def calls_to(self, method: str, path: str) -> List[dict]:
        return [kw for m, p, kw in self.calls if m == method and p == path]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        CACHE_DIR=str(tmp_path / "cache"),
        INSTRUMENT_CACHE_EXPIRY_HOURS=24,
        LIMIT_OFFSET_CONVENTION="marketable",
    )


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def dhan_instruments() -> List[dict]:
    return [
        {"tradingSymbol": "RELIANCE", "securityId": "2885", "exchange": "NSE", "exchangeToken": 2885, "lotSize": 1},
        {"tradingSymbol": "TCS", "securityId": "11536", "exchange": "NSE", "exchangeToken": 11536, "lotSize": 1},
        {"tradingSymbol": "NIFTY24AUGFUT", "securityId": "35001", "exchange": "NFO", "exchangeToken": 35001, "lotSize": 25},
    ]


@pytest.fixture
def upstox_instruments() -> List[dict]:
    return [
        {"instrument_key": "NSE_EQ|INE002A01018", "trading_symbol": "RELIANCE", "exchange": "NSE", "exchange_token": "2885", "segment": "NSE_EQ", "lot_size": 1},
        {"instrument_key": "NSE_EQ|INE467B01029", "trading_symbol": "TCS", "exchange": "NSE", "exchange_token": "11536", "segment": "NSE_EQ", "lot_size": 1},
    ]


@pytest.fixture
def zerodha_instruments() -> List[dict]:
    return [
        {"instrument_token": 738561, "exchange_token": 2885, "tradingsymbol": "RELIANCE", "name": "RELIANCE INDUSTRIES", "exchange": "NSE", "segment": "NSE", "lot_size": 1, "tick_size": 0.05, "expiry": ""},
        {"instrument_token": 13368834, "exchange_token": 52222, "tradingsymbol": "NIFTY24AUGFUT", "name": "NIFTY", "exchange": "NFO", "segment": "NFO-FUT", "lot_size": 25, "tick_size": 0.05, "expiry": date(2024, 8, 29)},
    ]


def counting(fn: Callable[[], Any]):
    """Wrap a fetch callable so tests can assert how often it ran."""
    def wrapper():
        wrapper.calls += 1
        return fn()
    wrapper.calls = 0
    return wrapper
