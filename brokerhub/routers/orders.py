from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from brokerhub.models import BulkResult, OrderModification, OrderRequest, OrderResult
from brokerhub.exceptions import InstrumentNotFoundError
from brokerhub.services.instruments import CatalogLoadResult, Instrument
from brokerhub.services.order_provider import OrderProvider

router = APIRouter(prefix="/brokers", tags=["brokers"])

def get_provider(request: Request) -> OrderProvider:
    return request.app.state.provider

class ExitRequest(BaseModel):
    mode: Literal["market", "limit", "stop_loss"] = "market"
    price_offset: float = Field(0, ge=0)
    sl_percentage: float = Field(1, gt=0)
    convention: Optional[Literal["marketable", "passive"]] = None

def _key(key: str) -> str | int:
    # numeric path segments are exchange tokens
    return int(key) if key.isdigit() else key

@router.get("")
def list_brokers(provider: OrderProvider = Depends(get_provider)):
    return {"brokers": provider.brokers}

@router.post("/{broker}/orders", response_model=OrderResult)
async def place_order(broker: str, order: OrderRequest, provider: OrderProvider = Depends(get_provider)):
    return await provider.place_order(broker, order)

@router.get("/{broker}/orders")
async def list_orders(broker: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.list_all_orders(broker)

@router.patch("/{broker}/orders/{order_id}", response_model=OrderResult)
async def modify_order(broker: str, order_id: str, changes: OrderModification, provider: OrderProvider = Depends(get_provider)):
    return await provider.modify_order(broker, order_id, changes)

@router.delete("/{broker}/orders/{order_id}", response_model=OrderResult)
async def cancel_order(broker: str, order_id: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.cancel_single_order(broker, order_id)

@router.delete("/{broker}/orders", response_model=BulkResult)
async def cancel_all_orders(broker: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.cancel_all_orders(broker)

@router.get("/{broker}/positions")
async def list_positions(broker: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.list_all_positions(broker)

@router.post("/{broker}/positions/exit", response_model=BulkResult)
async def exit_positions(broker: str, body: ExitRequest, provider: OrderProvider = Depends(get_provider)):
    if body.mode == "limit":
        return await provider.exit_all_positions_limit(broker, price_offset=body.price_offset, convention=body.convention)
    if body.mode == "stop_loss":
        return await provider.exit_all_positions_add_stop_loss(broker, sl_percentage=body.sl_percentage)
    return await provider.exit_all_positions(broker)

@router.get("/{broker}/holdings")
async def list_holdings(broker: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.list_all_holdings(broker)

@router.get("/{broker}/trades")
async def list_trades(broker: str, provider: OrderProvider = Depends(get_provider)):
    return await provider.list_all_trades(broker)

@router.get("/{broker}/instruments/{key}", response_model=Instrument)
def get_instrument(broker: str, key: str, provider: OrderProvider = Depends(get_provider)):
    instrument = provider.get_instrument_details(broker, _key(key))
    if instrument is None:
        raise InstrumentNotFoundError(f"Instrument not found: {key}", broker=broker)
    return instrument

@router.post("/{broker}/instruments/refresh", response_model=CatalogLoadResult)
async def refresh_instruments(broker: str, force: bool = True, provider: OrderProvider = Depends(get_provider)):
    return await provider.update_instrument_cache(broker, force=force)

@router.get("/{broker}/quotes/{key}")
async def get_quote(broker: str, key: str, provider: OrderProvider = Depends(get_provider)):
    return {"broker": broker, "key": key, "ltp": await provider.get_ltp(broker, _key(key))}

@router.post("/{broker}/logout")
async def logout(broker: str, provider: OrderProvider = Depends(get_provider)):
    return {"broker": broker, "logged_out": await provider.logout(broker)}
