from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import requests
from kiteconnect import KiteConnect
from kiteconnect import exceptions as kite_errors
from loguru import logger

from brokerhub.config import Settings
from brokerhub.exceptions import (
    BrokerError,
    CancelRejectedError,
    OrderNotFoundError,
    OrderRejectedError,
    TransportError,
    UnauthenticatedError,
)
from brokerhub.models import OrderModification, OrderRequest, OrderResult, Position
from brokerhub.services.brokers.base import BrokerAdapter
from brokerhub.services.instruments import Instrument


class ZerodhaAdapter(BrokerAdapter):
    name = "zerodha"
    cache_file = "zerodha_instruments.json"

    product_map = {
        "INTRADAY": "MIS",
        "DELIVERY": "CNC",
        "MARGIN": "NRML",
        "NORMAL": "NRML",
        "MIS": "MIS",
        "CNC": "CNC",
        "NRML": "NRML",
    }
    default_product = "MIS"
    open_statuses = frozenset({
        "open",
        "pending",
        "trigger pending",
        "open pending",
        "validation pending",
        "put order req received",
        "amo req received",
    })

    def __init__(self, credentials: dict[str, Any], settings: Settings, kite: Any = None) -> None:
        super().__init__(credentials, settings)
        if kite is None:
            if not self.credentials.get("api_key"):
                raise ValueError("ZERODHA_API_KEY not set")
            kite = KiteConnect(api_key=self.credentials["api_key"])
        self.kite = kite

    @contextmanager
    def _kite_errors(self, rejected: type[BrokerError] | None = None, not_found: type[BrokerError] | None = None, what: str = "request") -> Iterator[None]:
        try:
            yield
        except (kite_errors.TokenException, kite_errors.PermissionException) as e:
            raise UnauthenticatedError("Zerodha rejected the session", broker=self.name, detail=str(e)) from e
        except kite_errors.NetworkException as e:
            raise TransportError(f"Zerodha {what} failed", broker=self.name, detail=str(e)) from e
        except kite_errors.KiteException as e:
            if not_found is not None and getattr(e, "code", None) == 404:
                raise not_found(f"Zerodha {what} not found", broker=self.name, detail=str(e)) from e
            raise (rejected or BrokerError)(f"Zerodha rejected {what}", broker=self.name, detail=str(e)) from e
        except requests.RequestException as e:
            raise TransportError(f"Zerodha {what} failed", broker=self.name, detail=str(e)) from e

    # -------------------- session --------------------
    def _authenticate(self) -> None:
        token = self.credentials.get("access_token")
        if not token:
            request_token = self.credentials.get("request_token")
            api_secret = self.credentials.get("api_secret")
            if not request_token or not api_secret:
                raise UnauthenticatedError("ZERODHA_ACCESS_TOKEN not set and no request token to exchange", broker=self.name)
            with self._kite_errors(rejected=UnauthenticatedError, what="session"):
                session = self.kite.generate_session(request_token, api_secret=api_secret)
            token = session["access_token"]
            self.credentials["access_token"] = token
            logger.info("Zerodha access token generated")
        self.kite.set_access_token(token)

    def _logout(self) -> None:
        with self._kite_errors(what="logout"):
            self.kite.invalidate_access_token()

    # -------------------- instruments --------------------
    def _fetch_instruments(self) -> list[dict[str, Any]]:
        with self._kite_errors(what="instruments"):
            return self.kite.instruments()

    def _parse_instrument(self, record: dict[str, Any]) -> Instrument:
        token = record.get("exchange_token")
        return Instrument(
            broker=self.name,
            symbol=record["tradingsymbol"],
            exchange=record.get("exchange"),
            security_id=str(record["instrument_token"]),
            exchange_token=int(token) if token not in (None, "") else None,
            name=record.get("name"),
            segment=record.get("segment"),
            lot_size=record.get("lot_size"),
            tick_size=record.get("tick_size"),
        )

    # -------------------- orders --------------------
    def build_order_payload(self, req: OrderRequest) -> dict[str, Any]:
        exchange, tradingsymbol = req.exchange, req.symbol
        # Kite is keyed by exchange + tradingsymbol; only consult the catalog when one is missing
        if not exchange or not tradingsymbol:
            key: str | int = req.security_id or req.symbol
            if isinstance(key, str) and key.isdigit():
                key = int(key)
            instrument = self.resolve_instrument(key)
            exchange, tradingsymbol = instrument.exchange, instrument.symbol

        order_type = self.map_order_type(req.order_type)
        payload: dict[str, Any] = {
            "variety": KiteConnect.VARIETY_REGULAR,
            "exchange": exchange,
            "tradingsymbol": tradingsymbol,
            "transaction_type": req.transaction_type,
            "quantity": req.quantity,
            "product": self.map_product(req.product),
            "order_type": order_type,
            "validity": self.map_validity(req.validity),
        }
        if order_type in ("LIMIT", "SL") and req.price is not None:
            payload["price"] = req.price
        if order_type in ("SL", "SL-M") and req.trigger_price is not None:
            payload["trigger_price"] = req.trigger_price
        if req.tag:
            payload["tag"] = req.tag
        return payload

    def _submit_order(self, payload: dict[str, Any]) -> OrderResult:
        with self._kite_errors(rejected=OrderRejectedError, what="order"):
            order_id = self.kite.place_order(**payload)
        return OrderResult(broker=self.name, order_id=str(order_id), status="success", message="Order placed successfully")

    def _modify_order(self, order_id: str, changes: OrderModification) -> OrderResult:
        kwargs: dict[str, Any] = {}
        if changes.quantity is not None:
            kwargs["quantity"] = changes.quantity
        if changes.price is not None:
            kwargs["price"] = changes.price
        if changes.trigger_price is not None:
            kwargs["trigger_price"] = changes.trigger_price
        if changes.order_type:
            kwargs["order_type"] = self.map_order_type(changes.order_type)
        if changes.validity:
            kwargs["validity"] = self.map_validity(changes.validity)
        with self._kite_errors(rejected=OrderRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            self.kite.modify_order(KiteConnect.VARIETY_REGULAR, order_id, **kwargs)
        return OrderResult(broker=self.name, order_id=order_id, status="success", message="Order modified successfully")

    def _cancel_order(self, order_id: str) -> OrderResult:
        with self._kite_errors(rejected=CancelRejectedError, not_found=OrderNotFoundError, what=f"order {order_id}"):
            cancelled = self.kite.cancel_order(KiteConnect.VARIETY_REGULAR, order_id)
        return OrderResult(broker=self.name, order_id=str(cancelled or order_id), status="success", message="Order cancelled successfully")

    def _order_id(self, order: dict[str, Any]) -> Any:
        return order.get("order_id")

    def _order_status(self, order: dict[str, Any]) -> str | None:
        return order.get("status")

    # -------------------- books --------------------
    def _orders(self) -> list[dict[str, Any]]:
        with self._kite_errors(what="orders"):
            return self.kite.orders() or []

    def _positions(self) -> list[dict[str, Any]]:
        with self._kite_errors(what="positions"):
            positions = self.kite.positions() or {}
        return positions.get("net") or []

    def _holdings(self) -> list[dict[str, Any]]:
        with self._kite_errors(what="holdings"):
            return self.kite.holdings() or []

    def _trades(self) -> list[dict[str, Any]]:
        with self._kite_errors(what="trades"):
            return self.kite.trades() or []

    def _parse_position(self, raw: dict[str, Any]) -> Position:
        token = raw.get("instrument_token")
        return Position(
            symbol=raw.get("tradingsymbol"),
            security_id=str(token) if token is not None else None,
            exchange=raw.get("exchange"),
            quantity=int(raw.get("quantity") or 0),
            product=raw.get("product") or self.default_product,
            raw=raw,
        )

    # -------------------- quotes --------------------
    def _quote(self, exchange: str | None, security_id: str | None, symbol: str | None) -> float:
        key = f"{exchange}:{symbol}"
        with self._kite_errors(what=f"quote {key}"):
            data = self.kite.ltp([key])
        if key not in data:
            raise TransportError(f"No Zerodha quote for {key}", broker=self.name)
        return float(data[key]["last_price"])
