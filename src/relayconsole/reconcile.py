from __future__ import annotations

import sys
from dataclasses import dataclass, field

import requests

from .cache.directory import DirectoryCache
from .client import ConsoleAPIError
from .mappings import MappingStore, needs_reconciliation
from .models import IdentityLink, IdentityRecord

# field -> ordered sources; "fresh" is the directory record, "stored" the link
FIELD_PRECEDENCE: dict[str, tuple[str, ...]] = {
    "primary_username": ("fresh", "stored"),
    "primary_display_name": ("fresh", "stored"),
    "primary_avatar": ("fresh", "stored"),
    "secondary_display_name": ("fresh", "stored"),
}

_FRESH_ATTRIBUTE = {
    "primary_username": "secondary_label",
    "primary_display_name": "display_name",
    "primary_avatar": "avatar_url",
    "secondary_display_name": "display_name",
}


@dataclass
class ReconcileReport:
    attempted: int = 0
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.updated)


def _log(message: str) -> None:
    from .runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


def _pick(
    name: str,
    link: IdentityLink,
    fresh: IdentityRecord | None,
) -> str | None:
    for source in FIELD_PRECEDENCE[name]:
        if source == "fresh":
            value = getattr(fresh, _FRESH_ATTRIBUTE[name]) if fresh is not None else None
        else:
            value = getattr(link, name)
        if value:
            return value
    return None


def corrected_link(
    link: IdentityLink,
    primary: IdentityRecord | None,
    secondary: IdentityRecord | None,
) -> IdentityLink:
    return link.with_metadata(
        primary_username=_pick("primary_username", link, primary),
        primary_display_name=_pick("primary_display_name", link, primary),
        primary_avatar=_pick("primary_avatar", link, primary),
        secondary_display_name=_pick("secondary_display_name", link, secondary),
    )


def reconcile(
    store: MappingStore,
    primary_cache: DirectoryCache,
    secondary_cache: DirectoryCache,
) -> ReconcileReport:
    """Fill in missing display metadata on stored links.

    Requires both directory caches to be loaded; otherwise nothing happens.
    Only links whose corrected form differs are pushed, and the store is
    reloaded from the server only when something was pushed.
    """
    report = ReconcileReport()
    if not (primary_cache.loaded and secondary_cache.loaded):
        report.skipped_reason = "directories not loaded"
        return report

    for link in store.pending():
        if not needs_reconciliation(link):
            continue
        primary = primary_cache.find(link.primary_id)
        secondary = secondary_cache.find(link.secondary_id)
        if primary is None and secondary is None:
            continue
        updated = corrected_link(link, primary, secondary)
        if updated == link:
            continue
        report.attempted += 1
        try:
            result = store.source.upsert_mapping(updated)
        except (ConsoleAPIError, requests.RequestException) as exc:
            _log(f"  reconcile {link.primary_id} failed: {exc}")
            report.failed.append(link.primary_id)
            continue
        if result.success:
            report.updated.append(link.primary_id)
        else:
            _log(f"  reconcile {link.primary_id} rejected: {result.message}")
            report.failed.append(link.primary_id)

    if report.attempted:
        store.load_all()
    return report
