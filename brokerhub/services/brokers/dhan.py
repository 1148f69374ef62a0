from __future__ import annotations

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

# Dhan publishes its instrument list one segment at a time
INSTRUMENT_SEGMENTS = ("nse-equity", "bse-equity", "nfo", "cds", "mcx")


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class DhanAdapter(BrokerAdapter):
    name = "dhan"
    cache_file = "dhan_instruments.json"

    product_map = {
        "INTRADAY": "INTRADAY",
        "DELIVERY": "DELIVERY",
        "MARGIN": "MARGIN",
        "NORMAL": "NORMAL",
        "MIS": "INTRADAY",
        "CNC": "DELIVERY",
        "NRML": "NORMAL",
    }
    default_product = "INTRADAY"
    order_type_map = {"MARKET": "MARKET", "LIMIT": "LIMIT", "SL": "SL", "SL-M": "SLM", "SLM": "SLM"}
    open_statuses = frozenset({"open", "pending", "trigger pending", "transit"})

    def __init__(self, credentials: dict[str, Any], settings: Settings, http: BrokerHttpClient | None = None) -> None:
        super().__init__(credentials, settings)
        base_url = self.credentials.get("base_url") or settings.dhan_base_url
        self.http = http or BrokerHttpClient(base_url, timeout=settings.http_timeout, broker=self.name)

    # -------------------- session --------------------
    def _authenticate(self) -> None:
        token = self.credentials.get("access_token")
        client_id = self.credentials.get("client_id")
        if not token or not client_id:
            raise UnauthenticatedError("DHAN_ACCESS_TOKEN and DHAN_CLIENT_ID must be set", broker=self.name)
        self.http.set_header("Authorization", f"Bearer {token}")
        self.http.set_header("client-id", str(client_id))

    # -------------------- instruments --------------------
    def _fetch_instruments(self) -> list[dict[str, Any]]:
        instruments: list[dict[str, Any]] = []
        for segment in INSTRUMENT_SEGMENTS:
            rows = self.http.get(f"/instruments/{segment}") or []
            logger.debug("Dhan segment {}: {} instruments", segment, len(rows))
            instruments.extend(rows)
        return instruments

    def _parse_instrument(self, record: dict[str, Any]) -> Instrument:
        return Instrument(
            broker=self.name,
            symbol=record["tradingSymbol"],
            exchange=record.get("exchange") or record.get("exchangeSegment"),
            security_id=str(record["securityId"]),
            exchange_token=_int_or_none(record.get("exchangeToken")),
            name=record.get("name") or record.get("customSymbol"),
            segment=record.get("segment"),
            lot_size=_int_or_none(record.get("lotSize")),
            tick_size=record.get("tickSize"),
        )

    # -------------------- orders --------------------
    def build_order_payload(self, req: OrderRequest) -> dict[str, Any]:
        security_id, exchange = req.security_id, req.exchange
        if not security_id:
            instrument = self.resolve_instrument(req.symbol)
            security_id, exchange = instrument.security_id, instrument.exchange

        order_type = self.map_order_type(req.order_type)
        payload: dict[str, Any] = {
            "securityId": security_id,
            "exchange": exchange,
            "quantity": req.quantity,
            "product": self.map_product(req.product),
            "validity": self.map_validity(req.validity),
            "orderType": order_type,
            "transactionType": req.transaction_type,
            "disclosedQuantity": 0,
            "source": "API",
        }
        if order_type in ("LIMIT", "SL") and req.price is not None:
            payload["price"] = req.price
        if order_type in ("SL", "SLM") and req.trigger_price is not None:
            payload["triggerPrice"] = req.trigger_price
        if req.tag:
            payload["correlationId"] = req.tag
        return payload

    def _submit_order(self, payload: dict[str, Any]) -> OrderResult:
        with translate_errors(self.name, rejected=OrderRejectedError, what="order"):
            data = self.http.post("/orders", json=payload) or {}
        order_id = data.get("orderId")
        if not order_id:
            reason = data.get("errorMessage") or data.get("orderStatus") or str(data)
            raise OrderRejectedError("dhan rejected order", broker=self.name, detail=str(reason))
        return OrderResult(broker=self.name, order_id=str(order_id), status="success", message="Order placed successfully", raw=data)

    def _modify_order(self, order_id: str, changes: OrderModification) -> OrderResult:
        body: dict[str, Any] = {"orderId": order_id}
        if changes.quantity is not None:
            body["quantity"] = changes.quantity
        if changes.price is not None:
            body["price"] = changes.price
        if changes.trigger_price is not None:
            body["triggerPrice"] = changes.trigger_price
        if changes.order_type:
            body["orderType"] = self.map_order_type(changes.order_type)
        if changes.validity:
            body["validity"] = self.map_validity(changes.validity)
        with translate_errors(self.name, rejected=OrderRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            data = self.http.put(f"/orders/{order_id}", json=body) or {}
        return OrderResult(broker=self.name, order_id=order_id, status="success", message="Order modified successfully", raw=data)

    def _cancel_order(self, order_id: str) -> OrderResult:
        with translate_errors(self.name, rejected=CancelRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            data = self.http.delete(f"/orders/{order_id}")
        return OrderResult(broker=self.name, order_id=order_id, status="success", message="Order cancelled successfully", raw=data)

    def _order_id(self, order: dict[str, Any]) -> Any:
        return order.get("orderId")

    def _order_status(self, order: dict[str, Any]) -> str | None:
        return order.get("orderStatus") or order.get("status")

    # -------------------- books --------------------
    def _list(self, path: str) -> list[dict[str, Any]]:
        with translate_errors(self.name):
            return self.http.get(path) or []

    def _orders(self) -> list[dict[str, Any]]:
        return self._list("/orders")

    def _positions(self) -> list[dict[str, Any]]:
        return self._list("/positions")

    def _holdings(self) -> list[dict[str, Any]]:
        return self._list("/holdings")

    def _trades(self) -> list[dict[str, Any]]:
        return self._list("/trades")

    def _parse_position(self, raw: dict[str, Any]) -> Position:
        qty = raw.get("netQty", raw.get("quantity", 0))
        security_id = raw.get("securityId")
        return Position(
            symbol=raw.get("tradingSymbol"),
            security_id=str(security_id) if security_id is not None else None,
            exchange=raw.get("exchange") or raw.get("exchangeSegment"),
            quantity=int(qty or 0),
            product=raw.get("productType") or raw.get("product") or self.default_product,
            raw=raw,
        )

    # -------------------- quotes --------------------
    def _quote(self, exchange: str | None, security_id: str | None, symbol: str | None) -> float:
        with translate_errors(self.name):
            data = self.http.get(f"/quotes/{exchange}/{security_id}") or {}
        ltp = data.get("lastTradedPrice") if isinstance(data, dict) else None
        if ltp is None:
            raise TransportError(f"No Dhan quote for {exchange}:{security_id}", broker=self.name, detail=str(data))
        return float(ltp)
