from typing import Literal

from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    app_name: str = Field("BrokerHub", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Instrument catalogs: one file per broker under cache_dir
    cache_dir: str = Field("./cache", alias="CACHE_DIR")
    instrument_cache_expiry_hours: float = Field(24, alias="INSTRUMENT_CACHE_EXPIRY_HOURS")

    http_timeout: float = Field(10.0, alias="HTTP_TIMEOUT")

    # "marketable": SELL exits priced below LTP, BUY above. "passive": the reverse.
    limit_offset_convention: Literal["marketable", "passive"] = Field("marketable", alias="LIMIT_OFFSET_CONVENTION")

    # Dhan (bearer access token + client id)
    dhan_enabled: bool = Field(False, alias="DHAN_ENABLED")
    dhan_client_id: str | None = Field(default=None, alias="DHAN_CLIENT_ID")
    dhan_access_token: str | None = Field(default=None, alias="DHAN_ACCESS_TOKEN")
    dhan_base_url: str = Field("https://api.dhan.co", alias="DHAN_BASE_URL")

    # Upstox (authorization code exchanged for a bearer token)
    upstox_enabled: bool = Field(False, alias="UPSTOX_ENABLED")
    upstox_api_key: str | None = Field(default=None, alias="UPSTOX_API_KEY")
    upstox_api_secret: str | None = Field(default=None, alias="UPSTOX_API_SECRET")
    upstox_redirect_uri: str | None = Field(default=None, alias="UPSTOX_REDIRECT_URI")
    upstox_auth_code: str | None = Field(default=None, alias="UPSTOX_AUTH_CODE")
    upstox_access_token: str | None = Field(default=None, alias="UPSTOX_ACCESS_TOKEN")
    upstox_base_url: str = Field("https://api.upstox.com/v2", alias="UPSTOX_BASE_URL")

    # Zerodha (kiteconnect session; request token is exchanged if no access token)
    zerodha_enabled: bool = Field(False, alias="ZERODHA_ENABLED")
    zerodha_api_key: str | None = Field(default=None, alias="ZERODHA_API_KEY")
    zerodha_api_secret: str | None = Field(default=None, alias="ZERODHA_API_SECRET")
    zerodha_access_token: str | None = Field(default=None, alias="ZERODHA_ACCESS_TOKEN")
    zerodha_request_token: str | None = Field(default=None, alias="ZERODHA_REQUEST_TOKEN")

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True

    def enabled_brokers(self) -> list[str]:
        return [name for name in ("dhan", "upstox", "zerodha") if getattr(self, f"{name}_enabled")]

settings = Settings()
