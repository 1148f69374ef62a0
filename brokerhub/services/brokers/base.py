from __future__ import annotations

import asyncio
import functools
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from brokerhub.config import Settings
from brokerhub.exceptions import InstrumentNotFoundError, UnauthenticatedError
from brokerhub.models import (
    BulkResult,
    InitResult,
    OrderModification,
    OrderRequest,
    OrderResult,
    Position,
)
from brokerhub.services import exits
from brokerhub.services.instruments import (
    CacheStore,
    CatalogLoadResult,
    Instrument,
    InstrumentCatalog,
)


def _translate(table: dict[str, str], default: str, value: str | None) -> str:
    if not value:
        return default
    return table.get(value.strip().upper(), default)


class BrokerAdapter(ABC):
    """Common capability surface over one broker.

    Construction is pure; ``initialize()`` authenticates and loads the
    instrument catalog and reports the outcome. Public operations are
    coroutines, the blocking transport runs on the default executor.
    Unknown products, order types and validities are coerced to the
    broker's defaults rather than rejected.
    """

    name = "base"
    cache_file = "instruments.json"
    cache_compressed = False

    product_map: dict[str, str] = {}
    default_product = "INTRADAY"
    order_type_map: dict[str, str] = {"MARKET": "MARKET", "LIMIT": "LIMIT", "SL": "SL", "SL-M": "SL-M", "SLM": "SL-M"}
    default_order_type = "MARKET"
    validity_map: dict[str, str] = {"DAY": "DAY", "IOC": "IOC"}
    default_validity = "DAY"
    open_statuses: frozenset[str] = frozenset({"open", "pending", "trigger pending"})

    def __init__(self, credentials: dict[str, Any], settings: Settings) -> None:
        self.credentials = dict(credentials or {})
        self.settings = settings
        self.authenticated = False
        store = CacheStore(
            Path(settings.cache_dir) / self.cache_file,
            compressed=self.cache_compressed,
            max_age_hours=settings.instrument_cache_expiry_hours,
        )
        self.catalog = InstrumentCatalog(self.name, store, self._fetch_instruments, self._parse_instrument)

    # -------------------- mapping tables --------------------
    def map_product(self, product: str | None) -> str:
        return _translate(self.product_map, self.default_product, product)

    def map_order_type(self, order_type: str | None) -> str:
        return _translate(self.order_type_map, self.default_order_type, order_type)

    def map_validity(self, validity: str | None) -> str:
        return _translate(self.validity_map, self.default_validity, validity)

    def is_open(self, order: dict[str, Any]) -> bool:
        status = self._order_status(order)
        return bool(status) and status.strip().lower() in self.open_statuses

    # -------------------- lifecycle --------------------
    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _require_session(self) -> None:
        if not self.authenticated:
            raise UnauthenticatedError(f"{self.name} session is not authenticated", broker=self.name)

    async def initialize(self) -> InitResult:
        try:
            await self._run(self._authenticate)
        except Exception as e:
            logger.error("Failed to authenticate {}: {}", self.name, e)
            self.authenticated = False
            return InitResult(broker=self.name, authenticated=False, error=str(e))
        self.authenticated = True
        catalog = await self.refresh_instruments(force=False)
        if not catalog.loaded:
            logger.warning("{} initialized without an instrument catalog", self.name)
        return InitResult(broker=self.name, authenticated=True, catalog=catalog, error=catalog.error)

    async def refresh_instruments(self, force: bool = True) -> CatalogLoadResult:
        return await self._run(self.catalog.refresh, force)

    async def logout(self) -> bool:
        if not self.authenticated:
            return False
        await self._run(self._logout)
        self.authenticated = False
        logger.info("Logged out of {}", self.name)
        return True

    # -------------------- instruments --------------------
    def get_instrument_details(self, key: str | int) -> Instrument | None:
        return self.catalog.lookup(key)

    def resolve_instrument(self, key: str | int) -> Instrument:
        instrument = self.catalog.lookup(key)
        if instrument is None:
            raise InstrumentNotFoundError(f"Instrument not found: {key}", broker=self.name)
        return instrument

    # -------------------- orders --------------------
    async def place_order(self, req: OrderRequest) -> OrderResult:
        self._require_session()
        payload = self.build_order_payload(req)
        logger.info("{} place_order: {}", self.name, payload)
        return await self._run(self._submit_order, payload)

    async def modify_order(self, order_id: str, changes: OrderModification) -> OrderResult:
        self._require_session()
        return await self._run(self._modify_order, str(order_id), changes)

    async def cancel_order(self, order_id: str) -> OrderResult:
        self._require_session()
        return await self._run(self._cancel_order, str(order_id))

    async def cancel_all_orders(self) -> BulkResult:
        orders = await self.list_orders()
        open_ids = []
        for order in orders:
            if not self.is_open(order):
                continue
            order_id = self._order_id(order)
            if order_id in (None, ""):
                logger.warning("{} open order without an id left in place: {}", self.name, order)
                continue
            open_ids.append(str(order_id))
        result = await exits.fan_out(open_ids, self.cancel_order, key=str)
        result.skipped = len(orders) - len(open_ids)
        result.message = f"Cancelled {result.succeeded} of {len(open_ids)} open orders"
        return result

    # -------------------- books --------------------
    async def list_orders(self) -> list[dict[str, Any]]:
        self._require_session()
        return await self._run(self._orders) or []

    async def list_positions(self) -> list[dict[str, Any]]:
        self._require_session()
        return await self._run(self._positions) or []

    async def list_holdings(self) -> list[dict[str, Any]]:
        self._require_session()
        return await self._run(self._holdings) or []

    async def list_trades(self) -> list[dict[str, Any]]:
        self._require_session()
        return await self._run(self._trades) or []

    async def open_positions(self) -> list[Position]:
        return [self._parse_position(p) for p in await self.list_positions()]

    # -------------------- quotes --------------------
    async def get_ltp(self, key: str | int) -> float:
        self._require_session()
        instrument = self.resolve_instrument(key)
        return await self._run(self._quote, instrument.exchange, instrument.security_id, instrument.symbol)

    async def position_ltp(self, position: Position) -> float:
        return await self._run(self._quote, position.exchange, position.security_id, position.symbol)

    # -------------------- exits --------------------
    async def exit_all_positions(self) -> BulkResult:
        positions = await self.open_positions()
        result = await exits.unwind_positions(positions, "MARKET", self.place_order)
        result.message = f"Exited {result.succeeded} positions"
        return result

    async def exit_all_positions_limit(self, price_offset: float = 0, convention: str | None = None) -> BulkResult:
        positions = await self.open_positions()
        pricing = exits.limit_pricing(price_offset, convention or self.settings.limit_offset_convention)
        result = await exits.unwind_positions(positions, "LIMIT", self.place_order, quote=self.position_ltp, pricing=pricing)
        result.message = f"Exited {result.succeeded} positions with limit orders"
        return result

    async def exit_all_positions_add_stop_loss(self, sl_percentage: float = 1) -> BulkResult:
        positions = await self.open_positions()
        pricing = exits.stop_loss_pricing(sl_percentage)
        result = await exits.unwind_positions(positions, "SL-M", self.place_order, quote=self.position_ltp, pricing=pricing)
        result.message = f"Added stop loss orders for {result.succeeded} positions"
        return result

    # -------------------- broker hooks (blocking) --------------------
    @abstractmethod
    def _authenticate(self) -> None: ...

    def _logout(self) -> None:
        pass

    @abstractmethod
    def _fetch_instruments(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def _parse_instrument(self, record: dict[str, Any]) -> Instrument: ...

    @abstractmethod
    def build_order_payload(self, req: OrderRequest) -> dict[str, Any]:
        """Translate a broker-agnostic request into the broker's order body."""

    @abstractmethod
    def _submit_order(self, payload: dict[str, Any]) -> OrderResult: ...

    @abstractmethod
    def _modify_order(self, order_id: str, changes: OrderModification) -> OrderResult: ...

    @abstractmethod
    def _cancel_order(self, order_id: str) -> OrderResult: ...

    @abstractmethod
    def _orders(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def _positions(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def _holdings(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def _trades(self) -> list[dict[str, Any]]: ...

    @abstractmethod
    def _quote(self, exchange: str | None, security_id: str | None, symbol: str | None) -> float: ...

    @abstractmethod
    def _parse_position(self, raw: dict[str, Any]) -> Position: ...

    @abstractmethod
    def _order_id(self, order: dict[str, Any]) -> Any: ...

    @abstractmethod
    def _order_status(self, order: dict[str, Any]) -> str | None: ...
