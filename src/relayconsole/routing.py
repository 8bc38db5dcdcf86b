from __future__ import annotations

import json
from typing import Any, Iterable

EPISODES_CATEGORY = "episodes"
SEASONS_CATEGORY = "seasons"
FIXED_CATEGORIES = (EPISODES_CATEGORY, SEASONS_CATEGORY)


def _decode(raw: Any) -> Any:
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def parse_routing_map(raw: Any, default_channel: str | None = "") -> dict[str, str]:
    """Decode a stored routing map.

    Legacy list form ``["libA", "libB"]`` becomes ``{"libA": <default>, ...}``
    using the default channel as it is right now. Anything that is neither a
    list nor an object decodes to ``{}``.
    """
    decoded = _decode(raw)
    default = default_channel or ""
    if isinstance(decoded, list):
        return {
            str(category): default
            for category in decoded
            if category is not None and str(category).strip()
        }
    if isinstance(decoded, dict):
        return {
            str(category): "" if channel is None else str(channel)
            for category, channel in decoded.items()
        }
    return {}


def compute_enabled_set(
    routing: dict[str, str], known_categories: Iterable[str]
) -> set[str]:
    if not routing:
        return set(known_categories)
    return set(routing)


def serialize_routing_map(routing: dict[str, str]) -> str:
    return json.dumps(dict(routing), sort_keys=True, separators=(",", ":"))


class RoutingMap:
    """Editable ``{category: channel_id}`` map with bootstrap semantics.

    A key present means enabled; ``""`` means the default channel. While the
    map is empty and has never been touched, every known category counts as
    enabled. The first edit writes those implicit entries out before the
    edit is applied.
    """

    def __init__(
        self,
        entries: dict[str, str] | None = None,
        *,
        known_categories: Iterable[str] = (),
        configured: bool | None = None,
    ) -> None:
        self.entries: dict[str, str] = dict(entries or {})
        self.known_categories: list[str] = list(dict.fromkeys(known_categories))
        self.configured = bool(self.entries) if configured is None else configured

    @classmethod
    def parse(
        cls,
        raw: Any,
        *,
        default_channel: str | None = "",
        known_categories: Iterable[str] = (),
    ) -> RoutingMap:
        return cls(
            parse_routing_map(raw, default_channel),
            known_categories=known_categories,
        )

    @property
    def bootstrapping(self) -> bool:
        return not self.entries and not self.configured

    def set_known_categories(self, categories: Iterable[str]) -> None:
        self.known_categories = list(dict.fromkeys(categories))

    def enabled_categories(self) -> set[str]:
        if self.bootstrapping:
            return compute_enabled_set(self.entries, self.known_categories)
        return set(self.entries)

    def is_enabled(self, category: str) -> bool:
        return category in self.enabled_categories()

    def channel_for(self, category: str) -> str | None:
        if not self.is_enabled(category):
            return None
        return self.entries.get(category, "")

    def resolve_channel(self, category: str, default_channel: str | None) -> str | None:
        channel = self.channel_for(category)
        if channel is None:
            return None
        return channel or (default_channel or None)

    def _materialize(self) -> None:
        if self.bootstrapping:
            self.entries = {category: "" for category in self.known_categories}
        self.configured = True

    def toggle(self, category: str, enabled: bool) -> None:
        self._materialize()
        if enabled:
            self.entries.setdefault(category, "")
        else:
            self.entries.pop(category, None)

    def set_channel(self, category: str, channel_id: str | None) -> bool:
        if not self.is_enabled(category):
            return False
        self._materialize()
        self.entries[category] = channel_id or ""
        return True

    def as_dict(self) -> dict[str, str]:
        return dict(self.entries)

    def serialize(self) -> str:
        return serialize_routing_map(self.entries)
