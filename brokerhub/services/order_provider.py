"""One entry point over every registered broker adapter.

All operations delegate to the adapter registered under the given name;
nothing here aggregates across brokers.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from brokerhub.config import Settings, settings as default_settings
from brokerhub.exceptions import BrokerNotRegisteredError
from brokerhub.models import BulkResult, InitResult, OrderModification, OrderRequest, OrderResult
from brokerhub.services.broker_registry import broker_credentials, create_adapter
from brokerhub.services.brokers.base import BrokerAdapter
from brokerhub.services.instruments import CatalogLoadResult, Instrument


class OrderProvider:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings
        self._adapters: Dict[str, BrokerAdapter] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OrderProvider":
        provider = cls(settings)
        for name in provider.settings.enabled_brokers():
            provider.register_broker(name, broker_credentials(provider.settings, name))
        return provider

    @property
    def brokers(self) -> List[str]:
        return list(self._adapters)

    def register_broker(self, name: str, credentials: Dict[str, Any]) -> Optional[BrokerAdapter]:
        """Build and store an adapter, replacing any previous one under ``name``."""
        name = name.lower()
        try:
            adapter = create_adapter(name, credentials, self.settings)
        except Exception as e:
            logger.error("Failed to register broker {}: {}", name, e)
            return None
        self._adapters[name] = adapter
        logger.info("Registered broker {}", name)
        return adapter

    def add_adapter(self, name: str, adapter: BrokerAdapter) -> None:
        self._adapters[name.lower()] = adapter

    def get_adapter(self, name: str) -> BrokerAdapter:
        adapter = self._adapters.get((name or "").lower())
        if adapter is None:
            raise BrokerNotRegisteredError(f"Broker {name} is not registered", broker=name)
        return adapter

    async def initialize(self, name: str) -> InitResult:
        result = await self.get_adapter(name).initialize()
        if result.ready:
            logger.info("{} ready with {} instruments", name, result.catalog.count)
        else:
            logger.warning("{} initialized in degraded state: {}", name, result.error)
        return result

    async def initialize_all(self) -> Dict[str, InitResult]:
        names = self.brokers
        results = await asyncio.gather(*(self.initialize(n) for n in names))
        return dict(zip(names, results))

    # -------------------- orders --------------------
    async def place_order(self, broker: str, req: OrderRequest) -> OrderResult:
        return await self.get_adapter(broker).place_order(req)

    async def modify_order(self, broker: str, order_id: str, changes: OrderModification) -> OrderResult:
        return await self.get_adapter(broker).modify_order(order_id, changes)

    async def cancel_single_order(self, broker: str, order_id: str) -> OrderResult:
        return await self.get_adapter(broker).cancel_order(order_id)

    async def cancel_all_orders(self, broker: str) -> BulkResult:
        return await self.get_adapter(broker).cancel_all_orders()

    # -------------------- exits --------------------
    async def exit_all_positions(self, broker: str) -> BulkResult:
        return await self.get_adapter(broker).exit_all_positions()

    async def exit_all_positions_limit(self, broker: str, price_offset: float = 0, convention: str | None = None) -> BulkResult:
        return await self.get_adapter(broker).exit_all_positions_limit(price_offset=price_offset, convention=convention)

    async def exit_all_positions_add_stop_loss(self, broker: str, sl_percentage: float = 1) -> BulkResult:
        return await self.get_adapter(broker).exit_all_positions_add_stop_loss(sl_percentage=sl_percentage)

    # -------------------- books --------------------
    async def list_all_orders(self, broker: str) -> List[dict]:
        return await self.get_adapter(broker).list_orders()

    async def list_all_positions(self, broker: str) -> List[dict]:
        return await self.get_adapter(broker).list_positions()

    async def list_all_holdings(self, broker: str) -> List[dict]:
        return await self.get_adapter(broker).list_holdings()

    async def list_all_trades(self, broker: str) -> List[dict]:
        return await self.get_adapter(broker).list_trades()

    # -------------------- instruments & quotes --------------------
    async def get_ltp(self, broker: str, key: str | int) -> float:
        return await self.get_adapter(broker).get_ltp(key)

    def get_instrument_details(self, broker: str, key: str | int) -> Instrument | None:
        return self.get_adapter(broker).get_instrument_details(key)

    async def update_instrument_cache(self, broker: str, force: bool = True) -> CatalogLoadResult:
        return await self.get_adapter(broker).refresh_instruments(force=force)

    async def logout(self, broker: str) -> bool:
        return await self.get_adapter(broker).logout()
