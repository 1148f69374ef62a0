from typing import Any, Callable, Dict

from brokerhub.config import Settings, settings as default_settings
from brokerhub.services.brokers.base import BrokerAdapter
from brokerhub.services.brokers.dhan import DhanAdapter
from brokerhub.services.brokers.upstox import UpstoxAdapter
from brokerhub.services.brokers.zerodha import ZerodhaAdapter

AdapterFactory = Callable[[Dict[str, Any], Settings], BrokerAdapter]

_FACTORIES: Dict[str, AdapterFactory] = {
    "dhan": DhanAdapter,
    "upstox": UpstoxAdapter,
    "zerodha": ZerodhaAdapter,
}

_CREDENTIAL_FIELDS = {
    "dhan": ("client_id", "access_token", "base_url"),
    "upstox": ("api_key", "api_secret", "redirect_uri", "auth_code", "access_token", "base_url"),
    "zerodha": ("api_key", "api_secret", "access_token", "request_token"),
}

def supported_brokers() -> list[str]:
    return sorted(_FACTORIES)

def create_adapter(name: str, credentials: Dict[str, Any], settings: Settings | None = None) -> BrokerAdapter:
    b = (name or "").lower()
    factory = _FACTORIES.get(b)
    if factory is None:
        raise ValueError(f"Unsupported broker: {b}")
    return factory(credentials, settings or default_settings)

def broker_credentials(settings: Settings, name: str) -> Dict[str, Any]:
    b = name.lower()
    if b not in _CREDENTIAL_FIELDS:
        raise ValueError(f"Unsupported broker: {b}")
    return {field: getattr(settings, f"{b}_{field}") for field in _CREDENTIAL_FIELDS[b]}
