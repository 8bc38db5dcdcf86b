from __future__ import annotations

import hashlib
import json
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

CACHE_ROOT = Path(
    os.environ.get(
        "RELAYCONSOLE_CACHE",
        os.path.expanduser("~/.local/share/relayconsole/cache/v1"),
    )
)
DEFAULT_TTL = timedelta(minutes=30)
CACHE_VERSION = 1

_MISS = object()

_DURATION_RE = re.compile(r"^(\d+)\s*([wdhms]?)$")
_DURATION_UNITS = {
    "w": timedelta(weeks=1),
    "d": timedelta(days=1),
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "": timedelta(seconds=1),
}


def parse_duration(text: str) -> timedelta:
    """Parse `<int>[w|d|h|m|s]`; a bare number counts seconds."""
    match = _DURATION_RE.match((text or "").strip().lower())
    if match is None:
        raise ValueError(f"Invalid duration: {text!r}")
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


def directory_cache_ttl() -> timedelta:
    raw = (os.environ.get("RELAYCONSOLE_DIRECTORY_TTL") or "").strip()
    if not raw:
        return DEFAULT_TTL
    try:
        return parse_duration(raw)
    except ValueError:
        return DEFAULT_TTL


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cache_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _is_expired(timestamp: str, now: datetime, ttl: timedelta) -> bool:
    if ttl == timedelta(0):
        return True
    try:
        ts = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return True
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (now - ts) > ttl


class LocalCacheStore:
    """TTL-bounded key/value store, one JSON envelope file per key.

    Caching is an optimization only: every read failure is a miss and every
    write failure is dropped silently.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        *,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.root = Path(root) if root is not None else CACHE_ROOT
        self.ttl = DEFAULT_TTL if ttl is None else ttl
        self._clock = clock or _utcnow

    def _path(self, key: str) -> Path:
        return self.root / f"{_cache_key(key)}.json"

    def read(self, key: str, default: Any = None) -> Any:
        value = self._read(key)
        return default if value is _MISS else value

    def contains(self, key: str) -> bool:
        return self._read(key) is not _MISS

    def _read(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return _MISS
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return _MISS
        if not isinstance(envelope, dict):
            return _MISS
        if envelope.get("cache_version") != CACHE_VERSION or "value" not in envelope:
            return _MISS
        if _is_expired(str(envelope.get("timestamp") or ""), self._clock(), self.ttl):
            self.evict(key)
            return _MISS
        return envelope["value"]

    def write(self, key: str, value: Any) -> None:
        path = self._path(key)
        body = {
            "cache_version": CACHE_VERSION,
            "timestamp": self._clock().isoformat(),
            "value": value,
        }
        try:
            text = json.dumps(body, ensure_ascii=False)
        except (TypeError, ValueError):
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(path)
        except OSError:
            return

    def evict(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except OSError:
            return

    def clear(self) -> None:
        if not self.root.exists():
            return
        for path in self.root.glob("*.json"):
            try:
                path.unlink()
            except OSError:
                continue
