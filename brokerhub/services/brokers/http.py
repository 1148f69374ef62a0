from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import requests
from loguru import logger

from brokerhub.exceptions import BrokerAPIError, BrokerError, TransportError, UnauthenticatedError


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason or ""
    if isinstance(body, dict):
        for key in ("errorMessage", "message", "error", "remarks"):
            if body.get(key):
                return str(body[key])
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            return str(first.get("message", first)) if isinstance(first, dict) else str(first)
    return str(body)


class BrokerHttpClient:
    """Thin blocking JSON client around one ``requests.Session``."""

    def __init__(self, base_url: str, headers: dict[str, str] | None = None, timeout: float = 10.0, broker: str | None = None, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.broker = broker
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        if headers:
            self.session.headers.update(headers)

    def set_header(self, name: str, value: str) -> None:
        self.session.headers[name] = value

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method: str, path: str, *, params: dict | None = None, json: Any = None, data: Any = None, headers: dict | None = None, raw: bool = False) -> Any:
        url = self._url(path)
        try:
            resp = self.session.request(method, url, params=params, json=json, data=data, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("{} {} {} failed: {}", self.broker, method, url, e)
            raise TransportError(f"{method} {url} failed", broker=self.broker, detail=str(e)) from e
        if resp.status_code >= 400:
            raise BrokerAPIError(resp.status_code, _error_detail(resp), broker=self.broker)
        if raw:
            return resp.content
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned invalid JSON", broker=self.broker, detail=resp.text[:200]) from e

    def get(self, path: str, **kw: Any) -> Any:
        return self.request("GET", path, **kw)

    def post(self, path: str, **kw: Any) -> Any:
        return self.request("POST", path, **kw)

    def put(self, path: str, **kw: Any) -> Any:
        return self.request("PUT", path, **kw)

    def delete(self, path: str, **kw: Any) -> Any:
        return self.request("DELETE", path, **kw)


@contextmanager
def translate_errors(broker: str, rejected: type[BrokerError] | None = None, not_found: type[BrokerError] | None = None, what: str = "request") -> Iterator[None]:
    """Map broker HTTP failures onto the error taxonomy.

    401/403 become UnauthenticatedError, 404 becomes ``not_found`` when
    given, anything else becomes ``rejected`` (or propagates unchanged).
    """
    try:
        yield
    except BrokerAPIError as e:
        if e.status_code in (401, 403):
            raise UnauthenticatedError(f"{broker} rejected the session", broker=broker, detail=e.detail) from e
        if not_found is not None and e.status_code == 404:
            raise not_found(f"{broker} {what} not found", broker=broker, detail=e.detail) from e
        if rejected is not None:
            raise rejected(f"{broker} rejected {what}", broker=broker, detail=e.detail) from e
        raise
