from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import requests

from ..client import ConsoleAPIError
from ..models import DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY, IdentityRecord
from .store import LocalCacheStore

CACHE_KEYS = {
    DISCORD_DIRECTORY: "relayconsole_discord_members_cache",
    JELLYSEERR_DIRECTORY: "relayconsole_jellyseerr_users_cache",
}


class DirectorySource(Protocol):
    def fetch_directory_records(
        self, directory: str
    ) -> tuple[list[IdentityRecord], bool]: ...


@dataclass(frozen=True)
class FetchResult:
    records: list[IdentityRecord]
    realtime: bool = True


def _log(message: str) -> None:
    from ..runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


def _dedupe(records: list[IdentityRecord]) -> list[IdentityRecord]:
    seen: set[str] = set()
    unique: list[IdentityRecord] = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique


class DirectoryCache:
    """In-memory identity list for one directory, backed by the local cache.

    The list is only ever replaced wholesale. ``apply`` swaps the list and
    notifies listeners in one step so observers never see a partial update.
    """

    def __init__(
        self,
        directory: str,
        source: DirectorySource,
        store: LocalCacheStore,
        *,
        on_error: Callable[[str, Exception], None] | None = None,
    ) -> None:
        self.directory = directory
        self.source = source
        self.store = store
        self.cache_key = CACHE_KEYS.get(directory, f"relayconsole_{directory}_cache")
        self.entries: list[IdentityRecord] = []
        self.fetched_at: datetime | None = None
        self.loaded = False
        self.last_error: Exception | None = None
        self.last_realtime: bool | None = None
        self._on_error = on_error
        self._listeners: list[Callable[[DirectoryCache], None]] = []

    def subscribe(self, listener: Callable[[DirectoryCache], None]) -> None:
        self._listeners.append(listener)

    def find(self, record_id: Any) -> IdentityRecord | None:
        if record_id is None:
            return None
        wanted = str(record_id)
        for record in self.entries:
            if record.id == wanted:
                return record
        return None

    def load(self, force_refresh: bool = False) -> list[IdentityRecord]:
        from ..runtime import get_refresh_cache

        force_refresh = force_refresh or get_refresh_cache()
        if not force_refresh:
            if self.loaded and self.entries:
                return self.entries
            cached = self._read_cached()
            if cached:
                _log(f"  {self.directory}: using {len(cached)} cached records")
                self._replace(cached, persist=False)
                return self.entries

        try:
            result = self.fetch()
        except (ConsoleAPIError, requests.RequestException) as exc:
            self.fail(exc)
            return self.entries
        self.apply(result)
        return self.entries

    def fetch(self) -> FetchResult:
        records, realtime = self.source.fetch_directory_records(self.directory)
        return FetchResult(records=_dedupe(list(records)), realtime=realtime)

    def apply(self, result: FetchResult) -> None:
        self.last_error = None
        self.last_realtime = result.realtime
        self._replace(result.records, persist=True)

    def fail(self, exc: Exception) -> None:
        self.last_error = exc
        _log(f"  {self.directory}: fetch failed ({exc}); keeping {len(self.entries)} records")
        if self._on_error is not None:
            self._on_error(self.directory, exc)

    def invalidate(self) -> None:
        self.store.evict(self.cache_key)
        self.loaded = False

    def _read_cached(self) -> list[IdentityRecord]:
        payload = self.store.read(self.cache_key)
        if not isinstance(payload, list):
            return []
        records = [
            record
            for record in (IdentityRecord.from_cached(item) for item in payload)
            if record is not None
        ]
        return _dedupe(records)

    def _replace(self, records: list[IdentityRecord], *, persist: bool) -> None:
        self.entries = list(records)
        self.fetched_at = datetime.now(timezone.utc)
        self.loaded = True
        if persist:
            self.store.write(self.cache_key, [record.to_cached() for record in self.entries])
        for listener in list(self._listeners):
            listener(self)
