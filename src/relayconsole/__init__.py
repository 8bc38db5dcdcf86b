from typing import Any


def open_session(*, api_base: str | None = None, cache_root: str | None = None):
    from .cache import LocalCacheStore, directory_cache_ttl
    from .client import ClientSettings, ConsoleClient
    from .session import ConsoleSession

    client = ConsoleClient(ClientSettings.from_env(api_base=api_base))
    store = LocalCacheStore(cache_root, ttl=directory_cache_ttl())
    return ConsoleSession(client, store)


def list_links(*, api_base: str | None = None):
    session = open_session(api_base=api_base)
    session.open_mappings()
    return session.link_views()


def refresh_directories(*, api_base: str | None = None):
    session = open_session(api_base=api_base)
    return session.refresh_all()


def parse_routing(raw: Any, *, default_channel: str = "") -> dict[str, str]:
    from .routing import parse_routing_map

    return parse_routing_map(raw, default_channel)


__all__ = [
    "open_session",
    "list_links",
    "refresh_directories",
    "parse_routing",
]
