from __future__ import annotations

import logging
from threading import Lock

from sqlalchemy.orm import sessionmaker

from app.repositories.stations import (
    StationBinding,
    StationRecord,
    find_station_by_uuid,
    list_station_bindings,
)


class MetadataCache:
    """Memoizes station and binding lookups for the lifetime of the owner.

    Unknown station UUIDs are cached as ``None`` so a stream of documents from
    an unregistered station costs one query. Binding maps are never refreshed:
    bindings added while the process runs are seen after a restart or an
    explicit ``clear()``. Lookup errors propagate and are not cached.
    """

    def __init__(self, *, session_factory: sessionmaker, name: str = "default"):
        self._session_factory = session_factory
        self._logger = logging.getLogger(f"app.metadata_cache.{name}")
        self._lock = Lock()
        self._stations: dict[str, StationRecord | None] = {}
        self._bindings: dict[int, dict[str, StationBinding]] = {}

    def resolve_station(self, uuid: str) -> StationRecord | None:
        with self._lock:
            if uuid in self._stations:
                return self._stations[uuid]

        with self._session_factory() as db:
            station = find_station_by_uuid(db, uuid)

        with self._lock:
            cached = self._stations.setdefault(uuid, station)
        if station is None:
            self._logger.info("station not registered uuid=%s (cached as missing)", uuid)
        return cached

    def resolve_bindings(self, station_pk: int) -> dict[str, StationBinding]:
        with self._lock:
            cached = self._bindings.get(station_pk)
        if cached is not None:
            return cached

        with self._session_factory() as db:
            bindings = list_station_bindings(db, station_pk)

        with self._lock:
            cached = self._bindings.setdefault(station_pk, bindings)
        self._logger.debug("bindings loaded station_pk=%s count=%s", station_pk, len(cached))
        return cached

    def clear(self) -> None:
        with self._lock:
            self._stations.clear()
            self._bindings.clear()

    def get_status_snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "stations_cached": sum(1 for value in self._stations.values() if value is not None),
                "stations_missing": sum(1 for value in self._stations.values() if value is None),
                "binding_maps_cached": len(self._bindings),
            }
