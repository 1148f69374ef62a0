from __future__ import annotations

import gzip
import json
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from brokerhub.exceptions import NotLoadedError

DEFAULT_MAX_AGE_HOURS = 24


class Instrument(BaseModel):
    """A tradable security as one broker identifies it."""

    model_config = ConfigDict(frozen=True)

    broker: str
    symbol: str
    exchange: str | None = None
    security_id: str
    exchange_token: int | None = None
    name: str | None = None
    segment: str | None = None
    lot_size: int | None = None
    tick_size: float | None = None


class CatalogLoadResult(BaseModel):
    broker: str
    source: Literal["cache", "download", "stale_cache", "none"]
    count: int = 0
    error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.count > 0


# ---------------- Persisted store ----------------

class CacheStore:
    """One JSON array of instrument records on disk, optionally gzip-compressed."""

    def __init__(self, path: Path | str, compressed: bool = False, max_age_hours: float = DEFAULT_MAX_AGE_HOURS) -> None:
        self.path = Path(path)
        self.compressed = compressed
        self.max_age = timedelta(hours=max_age_hours)

    def exists(self) -> bool:
        return self.path.is_file()

    def age(self) -> Optional[timedelta]:
        if not self.exists():
            return None
        return timedelta(seconds=max(0.0, time.time() - self.path.stat().st_mtime))

    def is_fresh(self) -> bool:
        age = self.age()
        return age is not None and age <= self.max_age

    def read(self) -> List[dict]:
        raw = self.path.read_bytes()
        if self.compressed:
            raw = gzip.decompress(raw)
        records = json.loads(raw.decode("utf-8"))
        if not isinstance(records, list):
            raise ValueError(f"{self.path} does not hold a JSON array")
        return records

    def write(self, records: List[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(records, default=str).encode("utf-8")
        if self.compressed:
            data = gzip.compress(data)
        # replace atomically so readers never see a half-written file
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(self.path)


# ---------------- Catalog ----------------

class InstrumentCatalog:
    def __init__(
        self,
        broker: str,
        store: CacheStore,
        fetch: Callable[[], List[dict]],
        parse: Callable[[dict], Instrument],
    ) -> None:
        self.broker = broker
        self.store = store
        self._fetch = fetch
        self._parse = parse
        self._instruments: List[Instrument] = []

    def __len__(self) -> int:
        return len(self._instruments)

    @property
    def loaded(self) -> bool:
        return bool(self._instruments)

    def _load(self, records: List[dict]) -> int:
        parsed: List[Instrument] = []
        for rec in records:
            try:
                parsed.append(self._parse(rec))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping malformed {} instrument {}: {}", self.broker, rec, e)
        self._instruments = parsed
        return len(parsed)

    def _load_from_store(self) -> int:
        return self._load(self.store.read())

    def refresh(self, force: bool = False) -> CatalogLoadResult:
        """Load from the persisted file if fresh, else download and persist.

        A failed download falls back to whatever file exists, however old.
        """
        if not force and self.store.is_fresh():
            try:
                count = self._load_from_store()
                logger.info("Loaded {} instruments from {} cache", count, self.broker)
                return CatalogLoadResult(broker=self.broker, source="cache", count=count)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable {} instrument cache {}: {}", self.broker, self.store.path, e)

        try:
            records = self._fetch()
        except Exception as e:
            return self._fall_back(e)

        count = self._load(records)
        if count == 0:
            # never persist an empty catalog over a usable file
            return self._fall_back(ValueError(f"download returned no usable instruments ({len(records or [])} records)"))
        try:
            self.store.write(records)
        except OSError:
            logger.exception("Failed to persist {} instruments to {}", self.broker, self.store.path)
        logger.info("Downloaded {} instruments for {}", count, self.broker)
        return CatalogLoadResult(broker=self.broker, source="download", count=count)

    def _fall_back(self, error: Exception) -> CatalogLoadResult:
        if self.store.exists():
            logger.warning("Failed to download {} instruments ({}); using cached file {}", self.broker, error, self.store.path)
            try:
                count = self._load_from_store()
                return CatalogLoadResult(broker=self.broker, source="stale_cache", count=count, error=str(error))
            except (OSError, ValueError) as e:
                logger.error("Cached {} instruments unreadable: {}", self.broker, e)
        else:
            logger.error("Failed to download {} instruments and no cache exists: {}", self.broker, error)
        self._instruments = []
        return CatalogLoadResult(broker=self.broker, source="none", count=0, error=str(error))

    def lookup(self, key: str | int) -> Instrument | None:
        """First instrument matching symbol (exact or case-insensitive), native id, or token.

        Integer keys match the exchange token or a native id equal to the
        integer's text.
        """
        if not self._instruments:
            raise NotLoadedError(f"{self.broker} instruments cache not loaded", broker=self.broker)
        if isinstance(key, int) and not isinstance(key, bool):
            text = str(key)
            for ins in self._instruments:
                if ins.exchange_token == key or ins.security_id == text:
                    return ins
            return None
        if not isinstance(key, str):
            return None
        upper = key.upper()
        for ins in self._instruments:
            if ins.symbol == key or ins.symbol.upper() == upper or ins.security_id == key:
                return ins
        return None
