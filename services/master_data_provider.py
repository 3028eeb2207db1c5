"""Sources of ERP master data (vendors, GL accounts, cost centers, ...).

Every provider answers one question: which codes does ``client_id`` have for
``category``.  Providers never raise to the validation engine.  A store that
is unreachable, a table that does not exist or a category with no rows all
come back as an empty list.

The SQL provider reads the ``erp_master_data`` staging table that mirrors a
client's ERP.  Swapping in a live ERP connector only requires another
:class:`MasterDataProvider` subclass returning the same item shape.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import closing
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import psycopg2
from pydantic import ValidationError

from agents.schemas import MasterDataItem
from config.settings import settings
from utils.reference_loader import load_reference_dataset

logger = logging.getLogger(__name__)


class MasterDataProvider:
    """Interface for master data lookups."""

    def fetch_master_data(self, client_id: str, category: str) -> List[MasterDataItem]:  # pragma: no cover - interface method
        raise NotImplementedError


def coerce_master_data_items(rows: Iterable[Any], *, source: str) -> List[MasterDataItem]:
    items: List[MasterDataItem] = []
    for row in rows:
        if isinstance(row, MasterDataItem):
            items.append(row)
            continue
        if isinstance(row, Mapping):
            payload = dict(row)
        elif isinstance(row, (list, tuple)):
            payload = dict(zip(("code", "name", "description"), row))
        else:
            logger.debug("Skipping unsupported master data row %r from %s", row, source)
            continue
        for key in ("code", "name"):
            if payload.get(key) is not None:
                payload[key] = str(payload[key])
        try:
            items.append(MasterDataItem(**payload))
        except ValidationError:
            logger.debug("Skipping invalid master data row %r from %s", row, source)
    return items


class SQLMasterDataProvider(MasterDataProvider):
    """Read active master data rows through a DB-API connection factory."""

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        *,
        table: Optional[str] = None,
    ) -> None:
        self._connection_factory = connection_factory
        self._table = table or settings.master_data_table

    @classmethod
    def from_settings(cls) -> "SQLMasterDataProvider":
        def factory():
            return psycopg2.connect(
                host=settings.db_host,
                dbname=settings.db_name,
                user=settings.db_user,
                password=settings.db_password,
                port=settings.db_port,
            )

        return cls(factory)

    def fetch_master_data(self, client_id: str, category: str) -> List[MasterDataItem]:
        try:
            with closing(self._connection_factory()) as conn:
                cursor = conn.cursor()
                try:
                    placeholder = self._placeholder(cursor)
                    sql = (
                        f"SELECT code, name, description FROM {self._quote_identifier(self._table)} "
                        f"WHERE client_id = {placeholder} AND data_type = {placeholder} "
                        "AND is_active = TRUE"
                    )
                    cursor.execute(sql, (client_id, category))
                    rows = cursor.fetchall()
                finally:
                    cursor.close()
        except Exception:
            logger.exception(
                "Error fetching %s master data for client %s", category, client_id
            )
            return []

        return coerce_master_data_items(rows or [], source=self._table)

    @staticmethod
    def _placeholder(cursor: Any) -> str:
        module_name = getattr(type(cursor), "__module__", "")
        if module_name.startswith("psycopg"):
            return "%s"
        return "?"

    @staticmethod
    def _quote_identifier(identifier: str) -> str:
        parts = identifier.split(".")
        return ".".join('"{}"'.format(part.strip('"').replace('"', '""')) for part in parts)


class InMemoryMasterDataProvider(MasterDataProvider):
    """Dictionary backed provider, keyed by client id then category."""

    def __init__(self, data: Optional[Mapping[str, Mapping[str, Iterable[Any]]]] = None) -> None:
        self._data: Dict[Tuple[str, str], List[MasterDataItem]] = {}
        for client_id, categories in (data or {}).items():
            if not isinstance(categories, Mapping):
                continue
            for category, rows in categories.items():
                self._data[(str(client_id), str(category))] = coerce_master_data_items(
                    rows or [], source=f"{client_id}/{category}"
                )

    @classmethod
    def from_reference(cls, name: str = "sample_master_data") -> "InMemoryMasterDataProvider":
        payload = load_reference_dataset(name)
        return cls(payload.get("clients") or {})

    def fetch_master_data(self, client_id: str, category: str) -> List[MasterDataItem]:
        return list(self._data.get((client_id, category), []))


class CachedMasterDataProvider(MasterDataProvider):
    """Keep recent code lists in memory for ``ttl`` seconds.

    Empty lists are not cached so a store that recovers is picked up on the
    next lookup.
    """

    def __init__(
        self,
        provider: MasterDataProvider,
        *,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._ttl = float(settings.master_data_cache_ttl if ttl is None else ttl)
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, List[MasterDataItem]]] = {}
        self._lock = threading.Lock()

    def fetch_master_data(self, client_id: str, category: str) -> List[MasterDataItem]:
        key = (client_id, category)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                stored_at, items = entry
                if now - stored_at <= self._ttl:
                    logger.debug("Master data cache hit: %s/%s", client_id, category)
                    return list(items)
                del self._entries[key]

        items = self._provider.fetch_master_data(client_id, category)
        if items:
            with self._lock:
                self._entries[key] = (now, list(items))
        return list(items)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def build_master_data_provider(provider: Optional[MasterDataProvider] = None) -> MasterDataProvider:
    """Return ``provider`` (or the SQL provider) wrapped in a cache when enabled."""

    base = provider or SQLMasterDataProvider.from_settings()
    if settings.master_data_cache_enabled:
        return CachedMasterDataProvider(base)
    return base


__all__ = [
    "CachedMasterDataProvider",
    "InMemoryMasterDataProvider",
    "MasterDataProvider",
    "SQLMasterDataProvider",
    "build_master_data_provider",
    "coerce_master_data_items",
]
