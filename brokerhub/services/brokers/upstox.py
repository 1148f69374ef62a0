from __future__ import annotations

import gzip
import json
from typing import Any

from loguru import logger

from brokerhub.config import Settings
from brokerhub.exceptions import (
    CancelRejectedError,
    OrderNotFoundError,
    OrderRejectedError,
    TransportError,
    UnauthenticatedError,
)
from brokerhub.models import OrderModification, OrderRequest, OrderResult, Position
from brokerhub.services.brokers.base import BrokerAdapter
from brokerhub.services.brokers.http import BrokerHttpClient, translate_errors
from brokerhub.services.instruments import Instrument

INSTRUMENTS_URL = "https://assets.upstox.com/market-quote/instruments/exchange/complete.json.gz"


def _data(body: Any) -> Any:
    return body.get("data") if isinstance(body, dict) else None


class UpstoxAdapter(BrokerAdapter):
    name = "upstox"
    cache_file = "upstox_instruments.json.gz"
    cache_compressed = True

    product_map = {
        "INTRADAY": "I",
        "DELIVERY": "D",
        "MARGIN": "I",
        "NORMAL": "D",
        "MIS": "I",
        "CNC": "D",
        "NRML": "D",
        "I": "I",
        "D": "D",
    }
    default_product = "I"
    open_statuses = frozenset({
        "open",
        "pending",
        "validation pending",
        "validation_pending",
        "trigger pending",
        "put order req received",
    })

    def __init__(self, credentials: dict[str, Any], settings: Settings, http: BrokerHttpClient | None = None) -> None:
        super().__init__(credentials, settings)
        base_url = self.credentials.get("base_url") or settings.upstox_base_url
        self.http = http or BrokerHttpClient(base_url, timeout=settings.http_timeout, broker=self.name)

    # -------------------- session --------------------
    def _authenticate(self) -> None:
        token = self.credentials.get("access_token")
        if not token:
            token = self._exchange_code()
        self.credentials["access_token"] = token
        self.http.set_header("Authorization", f"Bearer {token}")

    def _exchange_code(self) -> str:
        required = ("api_key", "api_secret", "redirect_uri", "auth_code")
        missing = [k for k in required if not self.credentials.get(k)]
        if missing:
            raise UnauthenticatedError(f"Upstox credentials missing: {', '.join(missing)}", broker=self.name)
        form = {
            "code": self.credentials["auth_code"],
            "client_id": self.credentials["api_key"],
            "client_secret": self.credentials["api_secret"],
            "redirect_uri": self.credentials["redirect_uri"],
            "grant_type": "authorization_code",
        }
        with translate_errors(self.name, rejected=UnauthenticatedError, what="authorization code"):
            body = self.http.post(
                "/login/authorization/token",
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            ) or {}
        token = body.get("access_token") or (_data(body) or {}).get("access_token")
        if not token:
            raise UnauthenticatedError("Upstox token exchange returned no access token", broker=self.name, detail=str(body))
        logger.info("Upstox access token generated")
        return token

    def _logout(self) -> None:
        with translate_errors(self.name):
            self.http.delete("/logout")

    # -------------------- instruments --------------------
    def _fetch_instruments(self) -> list[dict[str, Any]]:
        blob = self.http.get(INSTRUMENTS_URL, raw=True)
        try:
            return json.loads(gzip.decompress(blob).decode("utf-8"))
        except (OSError, ValueError) as e:
            raise TransportError("Upstox instrument bundle is not valid gzip JSON", broker=self.name, detail=str(e)) from e

    def _parse_instrument(self, record: dict[str, Any]) -> Instrument:
        security_id = record.get("instrument_key") or record.get("instrument_token")
        token = record.get("exchange_token")
        return Instrument(
            broker=self.name,
            symbol=record.get("trading_symbol") or record["tradingsymbol"],
            exchange=record.get("exchange"),
            security_id=str(security_id),
            exchange_token=int(token) if str(token or "").isdigit() else None,
            name=record.get("name"),
            segment=record.get("segment"),
            lot_size=record.get("lot_size"),
            tick_size=record.get("tick_size"),
        )

    # -------------------- orders --------------------
    def build_order_payload(self, req: OrderRequest) -> dict[str, Any]:
        instrument_key, exchange = req.security_id, req.exchange
        if not instrument_key:
            instrument = self.resolve_instrument(req.symbol)
            instrument_key, exchange = instrument.security_id, exchange or instrument.exchange

        order_type = self.map_order_type(req.order_type)
        payload: dict[str, Any] = {
            "instrument_token": instrument_key,
            "exchange": exchange,
            "transaction_type": req.transaction_type,
            "order_type": order_type,
            "quantity": req.quantity,
            "product": self.map_product(req.product),
            "validity": self.map_validity(req.validity),
            "disclosed_quantity": 0,
            "is_amo": False,
        }
        if order_type in ("LIMIT", "SL") and req.price is not None:
            payload["price"] = req.price
        if order_type in ("SL", "SL-M") and req.trigger_price is not None:
            payload["trigger_price"] = req.trigger_price
        if req.tag:
            payload["tag"] = req.tag
        return payload

    def _submit_order(self, payload: dict[str, Any]) -> OrderResult:
        with translate_errors(self.name, rejected=OrderRejectedError, what="order"):
            body = self.http.post("/order/place", json=payload) or {}
        order_id = (_data(body) or {}).get("order_id")
        return OrderResult(broker=self.name, order_id=order_id, status=body.get("status", "success"), message="Order placed successfully", raw=body)

    def _modify_order(self, order_id: str, changes: OrderModification) -> OrderResult:
        body: dict[str, Any] = {"order_id": order_id}
        if changes.quantity is not None:
            body["quantity"] = changes.quantity
        if changes.price is not None:
            body["price"] = changes.price
        if changes.trigger_price is not None:
            body["trigger_price"] = changes.trigger_price
        if changes.order_type:
            body["order_type"] = self.map_order_type(changes.order_type)
        if changes.validity:
            body["validity"] = self.map_validity(changes.validity)
        with translate_errors(self.name, rejected=OrderRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            resp = self.http.put("/order/modify", json=body) or {}
        return OrderResult(broker=self.name, order_id=order_id, status=resp.get("status", "success"), message="Order modified successfully", raw=resp)

    def _cancel_order(self, order_id: str) -> OrderResult:
        with translate_errors(self.name, rejected=CancelRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            resp = self.http.delete("/order/cancel", params={"order_id": order_id}) or {}
        return OrderResult(broker=self.name, order_id=order_id, status=resp.get("status", "success"), message="Order cancelled successfully", raw=resp)

    def _order_id(self, order: dict[str, Any]) -> Any:
        return order.get("order_id")

    def _order_status(self, order: dict[str, Any]) -> str | None:
        return order.get("status")

    # -------------------- books --------------------
    def _list(self, path: str) -> list[dict[str, Any]]:
        with translate_errors(self.name):
            return _data(self.http.get(path)) or []

    def _orders(self) -> list[dict[str, Any]]:
        return self._list("/order/retrieve-all")

    def _positions(self) -> list[dict[str, Any]]:
        return self._list("/portfolio/short-term-positions")

    def _holdings(self) -> list[dict[str, Any]]:
        return self._list("/portfolio/long-term-holdings")

    def _trades(self) -> list[dict[str, Any]]:
        return self._list("/order/trades/get-trades-for-day")

    def _parse_position(self, raw: dict[str, Any]) -> Position:
        return Position(
            symbol=raw.get("trading_symbol") or raw.get("tradingsymbol"),
            security_id=raw.get("instrument_token") or raw.get("instrument_key"),
            exchange=raw.get("exchange"),
            quantity=int(raw.get("quantity") or 0),
            product=raw.get("product") or self.default_product,
            raw=raw,
        )

    # -------------------- quotes --------------------
    def _quote(self, exchange: str | None, security_id: str | None, symbol: str | None) -> float:
        with translate_errors(self.name):
            quotes = _data(self.http.get("/market-quote/ltp", params={"instrument_key": security_id})) or {}
        # responses are keyed "EXCHANGE_SEGMENT:SYMBOL", not by the requested instrument key
        quote = quotes.get(security_id)
        if quote is None:
            quote = next((q for q in quotes.values() if q.get("instrument_token") == security_id), None)
        if quote is None and len(quotes) == 1:
            quote = next(iter(quotes.values()))
        if quote is None or quote.get("last_price") is None:
            raise TransportError(f"No Upstox quote for {security_id}", broker=self.name, detail=str(quotes))
        return float(quote["last_price"])
