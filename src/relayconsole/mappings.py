from __future__ import annotations

import json
import sys
from typing import Any, Callable, Protocol

from .models import ApiResult, IdentityLink, IdentityRecord, LinkView


class MappingSource(Protocol):
    def load_mappings(self) -> list[IdentityLink]: ...

    def upsert_mapping(self, link: IdentityLink) -> ApiResult: ...

    def delete_mapping(self, primary_id: str) -> ApiResult: ...


class RecordLookup(Protocol):
    def find(self, record_id: Any) -> IdentityRecord | None: ...


def _log(message: str) -> None:
    from .runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


def needs_reconciliation(link: IdentityLink) -> bool:
    return not link.primary_display_name or not link.secondary_display_name


def unique_by_primary(links: list[IdentityLink]) -> list[IdentityLink]:
    # later entries replace earlier ones, the same way an upsert would
    by_primary: dict[str, IdentityLink] = {}
    for link in links:
        by_primary[link.primary_id] = link
    return list(by_primary.values())


def parse_identity_links(raw: Any) -> list[IdentityLink]:
    """Decode the ``USER_MAPPINGS`` document field; anything malformed is empty."""
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, list):
        return []
    links = [link for link in (IdentityLink.from_payload(item) for item in raw) if link]
    return unique_by_primary(links)


def serialize_identity_links(links: list[IdentityLink]) -> str:
    return json.dumps([link.to_payload() for link in links], separators=(",", ":"))


def build_link(primary: IdentityRecord, secondary: IdentityRecord) -> IdentityLink:
    return IdentityLink(
        primary_id=primary.id,
        secondary_id=secondary.id,
        primary_username=primary.secondary_label,
        primary_display_name=primary.display_name or None,
        primary_avatar=primary.avatar_url,
        secondary_display_name=secondary.display_name or None,
    )


def _first(*candidates: str | None) -> str | None:
    for candidate in candidates:
        if candidate:
            return candidate
    return None


def _primary_label(link: IdentityLink, fresh: IdentityRecord | None) -> str:
    if fresh is not None:
        if fresh.secondary_label:
            return f"{fresh.display_name} (@{fresh.secondary_label})"
        return fresh.display_name
    if link.primary_display_name:
        if link.primary_username:
            return f"{link.primary_display_name} (@{link.primary_username})"
        return link.primary_display_name
    if link.primary_username:
        return f"@{link.primary_username}"
    return f"Discord ID: {link.primary_id}"


def _secondary_label(link: IdentityLink, fresh: IdentityRecord | None) -> str:
    if fresh is not None:
        if fresh.secondary_label:
            return f"{fresh.display_name} ({fresh.secondary_label})"
        return fresh.display_name
    if link.secondary_display_name:
        return link.secondary_display_name
    return f"Jellyseerr ID: {link.secondary_id}"


def describe(
    link: IdentityLink,
    primary_lookup: RecordLookup | None = None,
    secondary_lookup: RecordLookup | None = None,
) -> LinkView:
    primary = primary_lookup.find(link.primary_id) if primary_lookup else None
    secondary = secondary_lookup.find(link.secondary_id) if secondary_lookup else None
    return LinkView(
        primary_id=link.primary_id,
        secondary_id=link.secondary_id,
        primary_label=_primary_label(link, primary),
        secondary_label=_secondary_label(link, secondary),
        avatar_url=_first(primary.avatar_url if primary else None, link.primary_avatar),
    )


class MappingStore:
    """Server-confirmed list of identity links.

    The list is only ever replaced by a full reload from the API, never by
    local edits, so what is shown is what the server holds.
    """

    def __init__(self, source: MappingSource) -> None:
        self.source = source
        self.links: list[IdentityLink] = []
        self._listeners: list[Callable[[MappingStore], None]] = []

    def subscribe(self, listener: Callable[[MappingStore], None]) -> None:
        self._listeners.append(listener)

    def load_all(self) -> list[IdentityLink]:
        links = unique_by_primary(self.source.load_mappings())
        self.links = links
        for listener in list(self._listeners):
            listener(self)
        return self.links

    def get(self, primary_id: str) -> IdentityLink | None:
        for link in self.links:
            if link.primary_id == primary_id:
                return link
        return None

    def primary_ids(self) -> set[str]:
        return {link.primary_id for link in self.links}

    def secondary_ids(self) -> set[str]:
        return {link.secondary_id for link in self.links}

    def pending(self) -> list[IdentityLink]:
        return [link for link in self.links if needs_reconciliation(link)]

    def add(self, primary: IdentityRecord | None, secondary: IdentityRecord | None) -> ApiResult:
        if primary is None or secondary is None:
            raise ValueError("Select both a Discord user and a Jellyseerr user.")
        link = build_link(primary, secondary)
        result = self.source.upsert_mapping(link)
        _log(f"  upsert mapping {link.primary_id} -> {link.secondary_id}: {result.success}")
        if result.success:
            self.load_all()
        return result

    def remove(self, primary_id: str, confirm: Callable[[str], bool]) -> ApiResult | None:
        """Delete the link for ``primary_id`` once ``confirm`` agrees.

        Returns ``None`` when the operator declines; nothing is sent then.
        """
        if not confirm(primary_id):
            return None
        result = self.source.delete_mapping(primary_id)
        _log(f"  delete mapping {primary_id}: {result.success}")
        if result.success:
            self.load_all()
        return result
