from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

DISCORD_DIRECTORY = "discord-members"
JELLYSEERR_DIRECTORY = "jellyseerr-users"


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text else None


@dataclass(frozen=True)
class IdentityRecord:
    id: str
    display_name: str
    secondary_label: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_discord_member(cls, payload: dict[str, Any]) -> IdentityRecord | None:
        member_id = _opt_str(payload.get("id"))
        if member_id is None:
            return None
        username = _opt_str(payload.get("username"))
        return cls(
            id=member_id,
            display_name=_opt_str(payload.get("displayName")) or username or member_id,
            secondary_label=username,
            avatar_url=_opt_str(payload.get("avatar")),
        )

    @classmethod
    def from_jellyseerr_user(cls, payload: dict[str, Any]) -> IdentityRecord | None:
        user_id = _opt_str(payload.get("id"))
        if user_id is None:
            return None
        email = _opt_str(payload.get("email"))
        return cls(
            id=user_id,
            display_name=_opt_str(payload.get("displayName")) or email or user_id,
            secondary_label=email,
            avatar_url=_opt_str(payload.get("avatar")),
        )

    @classmethod
    def from_cached(cls, payload: Any) -> IdentityRecord | None:
        if not isinstance(payload, dict):
            return None
        record_id = _opt_str(payload.get("id"))
        display_name = _opt_str(payload.get("display_name"))
        if record_id is None or display_name is None:
            return None
        return cls(
            id=record_id,
            display_name=display_name,
            secondary_label=_opt_str(payload.get("secondary_label")),
            avatar_url=_opt_str(payload.get("avatar_url")),
        )

    def to_cached(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "secondary_label": self.secondary_label,
            "avatar_url": self.avatar_url,
        }

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        if needle in self.display_name.lower():
            return True
        return bool(self.secondary_label) and needle in self.secondary_label.lower()


@dataclass(frozen=True)
class IdentityLink:
    """A persisted association between a Discord member and a Jellyseerr user."""

    primary_id: str
    secondary_id: str
    primary_username: str | None = None
    primary_display_name: str | None = None
    primary_avatar: str | None = None
    secondary_display_name: str | None = None
    created_at: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> IdentityLink | None:
        if not isinstance(payload, dict):
            return None
        primary_id = _opt_str(payload.get("discordUserId"))
        secondary_id = _opt_str(payload.get("jellyseerrUserId"))
        if primary_id is None or secondary_id is None:
            return None
        return cls(
            primary_id=primary_id,
            secondary_id=secondary_id,
            primary_username=_opt_str(payload.get("discordUsername")),
            primary_display_name=_opt_str(payload.get("discordDisplayName")),
            primary_avatar=_opt_str(payload.get("discordAvatar")),
            secondary_display_name=_opt_str(payload.get("jellyseerrDisplayName")),
            created_at=_opt_str(payload.get("createdAt")),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "discordUserId": self.primary_id,
            "jellyseerrUserId": self.secondary_id,
            "discordUsername": self.primary_username,
            "discordDisplayName": self.primary_display_name,
            "discordAvatar": self.primary_avatar,
            "jellyseerrDisplayName": self.secondary_display_name,
        }
        if self.created_at:
            payload["createdAt"] = self.created_at
        return payload

    def with_metadata(self, **changes: Any) -> IdentityLink:
        return replace(self, **changes)


@dataclass(frozen=True)
class LinkView:
    primary_id: str
    secondary_id: str
    primary_label: str
    secondary_label: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    kind: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> Channel | None:
        if not isinstance(payload, dict):
            return None
        channel_id = _opt_str(payload.get("id"))
        if channel_id is None:
            return None
        kind = payload.get("type", payload.get("kind"))
        return cls(
            id=channel_id,
            name=_opt_str(payload.get("name")) or channel_id,
            kind=_opt_str(kind),
        )


@dataclass(frozen=True)
class Library:
    id: str
    name: str
    kind: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> Library | None:
        if not isinstance(payload, dict):
            return None
        library_id = _opt_str(payload.get("id"))
        if library_id is None:
            return None
        return cls(
            id=library_id,
            name=_opt_str(payload.get("name")) or library_id,
            kind=_opt_str(payload.get("type", payload.get("collectionType"))),
        )


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass(frozen=True)
class SaveResult:
    success: bool
    message: str | None = None
    errors: tuple[FieldError, ...] = ()


@dataclass(frozen=True)
class Notice:
    level: str
    message: str


@dataclass
class ApiResult:
    success: bool
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
