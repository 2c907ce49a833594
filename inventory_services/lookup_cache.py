"""
inventory_services.lookup_cache -- Injected time-bounded lookup cache.

Responsibility:
    Holds slow-changing reference lookups (warehouse names and codes) for
    a bounded time so that reports and numbering do not re-query them on
    every row.

Architecture position:
    Services -- owned by whoever constructs it and passed in.  There is no
    module-level cache; two directories never share entries unless they
    share a ``TTLCache`` instance.

Invariants enforced:
    - An entry is served only while ``clock.monotonic() < expires_at``.
    - ``get_or_load`` calls the loader at most once per miss and caches
      only successful results (a raising loader caches nothing).
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Warehouse

logger = get_logger("services.lookup_cache")

V = TypeVar("V")

_MISSING: Any = object()


@dataclass(frozen=True, slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache(Generic[V]):
    """
    Key/value cache with a fixed time to live.

    Expiry is measured on the injected clock's monotonic reading, so tests
    advance a DeterministicClock instead of sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Clock | None = None):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = float(ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: dict[Hashable, _Entry] = {}
        self.hits = 0
        self.misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        if self._clock.monotonic() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            logger.debug("cache_entry_expired", extra={"cache_key": str(key)})
            return default
        self.hits += 1
        return entry.value

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = _Entry(value, self._clock.monotonic() + self._ttl)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = loader()
        self.put(key, value)
        return value

    def invalidate(self, key: Hashable) -> bool:
        """Drop one key.  Returns whether it was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()


@dataclass(frozen=True)
class WarehouseInfo:
    warehouse_id: UUID
    code: str
    name: str


class WarehouseDirectory:
    """Cached warehouse code/name resolution."""

    def __init__(self, session: Session, cache: TTLCache):
        self._session = session
        self._cache = cache

    def get(self, warehouse_id: UUID) -> WarehouseInfo | None:
        return self._cache.get_or_load(
            ("warehouse", warehouse_id), lambda: self._load(warehouse_id)
        )

    def code(self, warehouse_id: UUID) -> str:
        info = self.get(warehouse_id)
        return info.code if info else ""

    def name(self, warehouse_id: UUID) -> str:
        info = self.get(warehouse_id)
        return info.name if info else ""

    def invalidate(self, warehouse_id: UUID) -> None:
        self._cache.invalidate(("warehouse", warehouse_id))

    def _load(self, warehouse_id: UUID) -> WarehouseInfo | None:
        row = self._session.execute(
            select(Warehouse.id, Warehouse.code, Warehouse.name).where(
                Warehouse.id == warehouse_id
            )
        ).one_or_none()
        if row is None:
            return None
        return WarehouseInfo(warehouse_id=row[0], code=row[1], name=row[2])
