from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from brokerhub.services.instruments import CatalogLoadResult

LIMIT_ORDER_TYPES = {"LIMIT", "SL"}
STOP_ORDER_TYPES = {"SL", "SL-M", "SLM"}


def _upper(v: Any) -> Any:
    return v.strip().upper() if isinstance(v, str) else v


class OrderRequest(BaseModel):
    symbol: str | None = Field(None, description="Trading symbol. Resolved through the instrument catalog when security_id is absent.")
    security_id: str | None = Field(None, description="Broker-native instrument id. Skips catalog resolution.")
    exchange: str | None = None
    transaction_type: Literal["BUY", "SELL"]
    order_type: str = Field("MARKET", description="MARKET, LIMIT, SL or SL-M. Unknown values fall back to the broker default.")
    quantity: int = Field(..., gt=0)
    price: float | None = None
    trigger_price: float | None = None
    validity: str = "DAY"
    product: str = Field("INTRADAY", description="INTRADAY, DELIVERY, MARGIN, NORMAL (or MIS/CNC/NRML).")
    tag: str | None = None

    @field_validator("transaction_type", "order_type", "validity", "product", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> Any:
        return _upper(v)

    @field_validator("security_id", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @model_validator(mode="after")
    def _check_prices(self) -> "OrderRequest":
        if not self.symbol and not self.security_id:
            raise ValueError("either symbol or security_id is required")
        if self.order_type in LIMIT_ORDER_TYPES and self.price is None:
            raise ValueError(f"price is required for {self.order_type} orders")
        if self.order_type in STOP_ORDER_TYPES and self.trigger_price is None:
            raise ValueError(f"trigger_price is required for {self.order_type} orders")
        return self

    @property
    def label(self) -> str:
        return self.symbol or str(self.security_id)


class OrderModification(BaseModel):
    quantity: int | None = Field(None, gt=0)
    price: float | None = None
    trigger_price: float | None = None
    order_type: str | None = None
    validity: str | None = None

    @field_validator("order_type", "validity", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> Any:
        return _upper(v)


class Position(BaseModel):
    """Broker-reported open exposure. Sign of quantity encodes long/short."""
    symbol: str | None = None
    security_id: str | None = None
    exchange: str | None = None
    quantity: int = 0
    product: str = "INTRADAY"
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.symbol or str(self.security_id)


class OrderResult(BaseModel):
    broker: str
    order_id: str | None = None
    status: str = "success"
    message: str | None = None
    raw: Any = None


class BulkItemResult(BaseModel):
    key: str
    ok: bool
    result: OrderResult | None = None
    error: str | None = None
    error_type: str | None = None


class BulkResult(BaseModel):
    success: bool
    message: str = ""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[BulkItemResult] = Field(default_factory=list)


class InitResult(BaseModel):
    broker: str
    authenticated: bool = False
    catalog: CatalogLoadResult | None = None
    error: str | None = None

    @property
    def ready(self) -> bool:
        return self.authenticated and self.catalog is not None and self.catalog.loaded
