import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from brokerhub.config import settings
from brokerhub.exceptions import (
    BrokerAPIError,
    BrokerError,
    BrokerNotRegisteredError,
    CancelRejectedError,
    InstrumentNotFoundError,
    NotLoadedError,
    OrderNotFoundError,
    OrderRejectedError,
    TransportError,
    UnauthenticatedError,
)
from brokerhub.routers import orders as orders_routes
from brokerhub.services.order_provider import OrderProvider

# most specific first
_STATUS_BY_ERROR = (
    (BrokerNotRegisteredError, 404),
    (InstrumentNotFoundError, 404),
    (OrderNotFoundError, 404),
    (UnauthenticatedError, 401),
    (NotLoadedError, 503),
    (OrderRejectedError, 422),
    (CancelRejectedError, 422),
    (TransportError, 502),
    (BrokerAPIError, 502),
)

def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

def status_for(exc: BrokerError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 500

@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    provider = OrderProvider.from_settings(settings)
    results = await provider.initialize_all()
    for name, result in results.items():
        if not result.ready:
            logger.warning("Broker {} not ready: {}", name, result.error)
    app.state.provider = provider
    yield

def create_app(provider: OrderProvider | None = None) -> FastAPI:
    app = FastAPI(title=settings.app_name, lifespan=None if provider else lifespan)
    if provider is not None:
        app.state.provider = provider

    # CORS - adjust as needed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError):
        code = status_for(exc)
        if code >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "broker": exc.broker, "message": str(exc), "detail": exc.detail},
        )

    app.include_router(orders_routes.router)

    @app.get("/healthz")
    def health():
        return {"status": "ok", "brokers": app.state.provider.brokers if hasattr(app.state, "provider") else []}

    return app

app = create_app()
