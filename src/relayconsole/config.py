from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import urlparse

from .mappings import parse_identity_links, serialize_identity_links
from .models import FieldError, IdentityLink
from .routing import RoutingMap

ROUTING_FIELD = "JELLYFIN_NOTIFICATION_LIBRARIES"
DEFAULT_CHANNEL_FIELD = "JELLYFIN_CHANNEL_ID"
MAPPINGS_FIELD = "USER_MAPPINGS"
GUILD_FIELD = "GUILD_ID"
MEDIA_URL_FIELD = "JELLYFIN_BASE_URL"
MEDIA_API_KEY_FIELD = "JELLYFIN_API_KEY"

URL_FIELDS = ("JELLYSEERR_URL", "JELLYFIN_BASE_URL")
STRICT_FLAG_FIELDS = (
    "JELLYFIN_NOTIFY_MOVIES",
    "JELLYFIN_NOTIFY_SERIES",
    "AUTO_START_BOT",
    "NOTIFY_ON_AVAILABLE",
    "PRIVATE_MESSAGE_MODE",
    "DEBUG",
)
OPTIONAL_FLAG_FIELDS = ("JELLYFIN_NOTIFY_SEASONS", "JELLYFIN_NOTIFY_EPISODES")
SECRET_SUFFIXES = ("_TOKEN", "_API_KEY")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _int_in_range(value: Any, low: int, high: int) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = int(str(value).strip())
    except ValueError:
        return False
    return low <= number <= high


def validate_document(values: dict[str, Any]) -> list[FieldError]:
    errors: list[FieldError] = []
    for name in URL_FIELDS:
        value = values.get(name)
        if value in (None, ""):
            continue
        if not isinstance(value, str) or not _is_http_url(value.strip()):
            errors.append(FieldError(name, "must be a valid http(s) URL"))
    for name in STRICT_FLAG_FIELDS:
        value = values.get(name)
        if value is None:
            continue
        if value not in ("true", "false"):
            errors.append(FieldError(name, 'must be "true" or "false"'))
    for name in OPTIONAL_FLAG_FIELDS:
        value = values.get(name)
        if value is None:
            continue
        if value not in ("true", "false", ""):
            errors.append(FieldError(name, 'must be "true", "false" or empty'))
    port = values.get("WEBHOOK_PORT")
    if port not in (None, "") and not _int_in_range(port, 1, 65535):
        errors.append(FieldError("WEBHOOK_PORT", "must be a port number (1-65535)"))
    debounce = values.get("WEBHOOK_DEBOUNCE_MS")
    if debounce not in (None, "") and not _int_in_range(debounce, 1000, 600000):
        errors.append(
            FieldError("WEBHOOK_DEBOUNCE_MS", "must be between 1000 and 600000")
        )
    return errors


@dataclass
class ConfigDocument:
    """Flat key/value configuration as stored by the bot."""

    values: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: str = "") -> str:
        value = self.values.get(key)
        if value is None:
            return default
        return value if isinstance(value, str) else str(value)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    @property
    def default_channel(self) -> str:
        return self.get(DEFAULT_CHANNEL_FIELD)

    @property
    def guild_id(self) -> str:
        return self.get(GUILD_FIELD)

    def routing_map(self, known_categories: Iterable[str] = ()) -> RoutingMap:
        return RoutingMap.parse(
            self.values.get(ROUTING_FIELD),
            default_channel=self.default_channel,
            known_categories=known_categories,
        )

    def store_routing_map(self, routing: RoutingMap) -> None:
        self.values[ROUTING_FIELD] = routing.serialize()

    def identity_links(self) -> list[IdentityLink]:
        return parse_identity_links(self.values.get(MAPPINGS_FIELD))

    def store_identity_links(self, links: list[IdentityLink]) -> None:
        self.values[MAPPINGS_FIELD] = serialize_identity_links(links)

    def validate(self) -> list[FieldError]:
        return validate_document(self.values)

    def to_payload(self) -> dict[str, Any]:
        return dict(self.values)

    def redacted(self) -> dict[str, Any]:
        shown: dict[str, Any] = {}
        for key, value in self.values.items():
            if key.endswith(SECRET_SUFFIXES) and value:
                shown[key] = "********"
            else:
                shown[key] = value
        return shown
