from __future__ import annotations

from contextvars import ContextVar, Token
import os

_VERBOSE_LOGGING: ContextVar[bool] = ContextVar(
    "relayconsole_verbose_logging", default=False
)
_REFRESH_CACHE: ContextVar[bool] = ContextVar(
    "relayconsole_refresh_cache", default=False
)

_DEFAULT_REFRESH_JOBS = 2
_MAX_REFRESH_JOBS = 8


def _read_positive_int_env(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return min(value, _MAX_REFRESH_JOBS)


def _env_flag(name: str) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def get_verbose_logging() -> bool:
    return _VERBOSE_LOGGING.get() or _env_flag("RELAYCONSOLE_VERBOSE")


def set_verbose_logging(enabled: bool) -> Token[bool]:
    return _VERBOSE_LOGGING.set(bool(enabled))


def reset_verbose_logging(token: Token[bool]) -> None:
    _VERBOSE_LOGGING.reset(token)


def get_refresh_cache() -> bool:
    return _REFRESH_CACHE.get()


def set_refresh_cache(enabled: bool) -> Token[bool]:
    return _REFRESH_CACHE.set(bool(enabled))


def reset_refresh_cache(token: Token[bool]) -> None:
    _REFRESH_CACHE.reset(token)


def get_refresh_jobs() -> int:
    return _read_positive_int_env("RELAYCONSOLE_REFRESH_JOBS", _DEFAULT_REFRESH_JOBS)
