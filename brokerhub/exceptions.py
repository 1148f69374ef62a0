"""Error taxonomy shared by every broker adapter and the order provider."""

from __future__ import annotations


class BrokerError(Exception):
    """Base error. Carries the broker name and the broker's raw error text."""

    def __init__(self, message: str, broker: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.broker = broker
        self.detail = detail

    def __str__(self) -> str:
        msg = super().__str__()
        if self.detail and self.detail not in msg:
            return f"{msg}: {self.detail}"
        return msg


class NotLoadedError(BrokerError):
    """Instrument catalog is empty or was never loaded."""


class InstrumentNotFoundError(BrokerError):
    """Symbol could not be resolved against the instrument catalog."""


class BrokerNotRegisteredError(BrokerError):
    pass


class UnauthenticatedError(BrokerError):
    """Session or access token missing, expired or rejected."""


class OrderRejectedError(BrokerError):
    """Broker refused to place or modify an order."""


class CancelRejectedError(BrokerError):
    pass


class OrderNotFoundError(CancelRejectedError):
    pass


class TransportError(BrokerError):
    """Network or protocol failure, distinct from a business rejection."""


class BrokerAPIError(BrokerError):
    """Non-2xx response from a broker REST endpoint."""

    def __init__(self, status_code: int, detail: str, broker: str | None = None) -> None:
        super().__init__(f"HTTP {status_code}", broker=broker, detail=detail)
        self.status_code = status_code
