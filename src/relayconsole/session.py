from __future__ import annotations

import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import requests

from .cache.directory import DirectoryCache
from .cache.store import LocalCacheStore, directory_cache_ttl
from .client import ConsoleAPIError, ConsoleClient
from .concurrency import run_indexed_tasks_settled
from .config import MEDIA_API_KEY_FIELD, MEDIA_URL_FIELD, ConfigDocument
from .mappings import MappingStore, describe
from .models import (
    DISCORD_DIRECTORY,
    JELLYSEERR_DIRECTORY,
    ApiResult,
    Channel,
    Library,
    LinkView,
    Notice,
    SaveResult,
)
from .reconcile import ReconcileReport, reconcile
from .routing import FIXED_CATEGORIES, RoutingMap
from .runtime import get_refresh_jobs
from .selector import Consume, IdentitySelector

_DIRECTORY_LABELS = {
    DISCORD_DIRECTORY: "Discord",
    JELLYSEERR_DIRECTORY: "Jellyseerr",
}


class ControlBusyError(RuntimeError):
    def __init__(self, control: str):
        self.control = control
        super().__init__(f"{control} is already running")


@dataclass
class RefreshReport:
    refreshed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    realtime: dict[str, bool] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.failed:
            return "success"
        if self.refreshed:
            return "partial"
        return "failure"

    def summary(self) -> str:
        parts = []
        for directory in (DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY):
            label = _DIRECTORY_LABELS[directory]
            if directory in self.refreshed:
                mode = "real-time" if self.realtime.get(directory, True) else "cached"
                parts.append(f"{label} ({mode})")
            elif directory in self.failed:
                parts.append(f"{label} failed")
        return ", ".join(parts)


def _log(message: str) -> None:
    from .runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


class ConsoleSession:
    """All console state for one operator session.

    Subcomponents receive what they need from here instead of reading
    shared module state.
    """

    def __init__(
        self,
        api: Any | None = None,
        store: LocalCacheStore | None = None,
    ) -> None:
        self.api = api if api is not None else ConsoleClient()
        self.store = store or LocalCacheStore(ttl=directory_cache_ttl())
        self.notices: list[Notice] = []
        self.busy: set[str] = set()
        self.document = ConfigDocument()
        self.routing = RoutingMap()
        self.libraries: list[Library] = []
        self.channels: list[Channel] = []
        self.config_loaded = False
        self.libraries_loaded = False
        self.discord = DirectoryCache(
            DISCORD_DIRECTORY, self.api, self.store, on_error=self._directory_failed
        )
        self.jellyseerr = DirectoryCache(
            JELLYSEERR_DIRECTORY, self.api, self.store, on_error=self._directory_failed
        )
        self.mappings = MappingStore(self.api)
        self.discord_selector = IdentitySelector(
            self.discord, linked_ids=self.mappings.primary_ids
        )
        self.jellyseerr_selector = IdentitySelector(
            self.jellyseerr, linked_ids=self.mappings.secondary_ids
        )

    # notices and controls

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append(Notice(level=level, message=message))

    def drain_notices(self) -> list[Notice]:
        notices, self.notices = self.notices, []
        return notices

    @contextmanager
    def engage(self, control: str) -> Iterator[None]:
        if control in self.busy:
            raise ControlBusyError(control)
        self.busy.add(control)
        try:
            yield
        finally:
            self.busy.discard(control)

    def _directory_failed(self, directory: str, exc: Exception) -> None:
        label = _DIRECTORY_LABELS.get(directory, directory)
        self.notify(f"Failed to load {label} users: {exc}", level="error")

    # configuration

    def load_config(self) -> ConfigDocument:
        with self.engage("load-config"):
            try:
                self.document = ConfigDocument(dict(self.api.load_config()))
            except (ConsoleAPIError, requests.RequestException) as exc:
                self.notify(f"Failed to load configuration: {exc}", level="error")
                return self.document
        self.config_loaded = True
        self.routing = self.document.routing_map(self.routing.known_categories)
        return self.document

    def save_config(self) -> SaveResult:
        if not self.config_loaded:
            message = "Configuration was not loaded; refusing to overwrite it."
            self.notify(message, level="error")
            return SaveResult(success=False, message=message)
        with self.engage("save-config"):
            self.document.store_routing_map(self.routing)
            errors = self.document.validate()
            if errors:
                for error in errors:
                    self.notify(f"{error.field}: {error.message}", level="error")
                return SaveResult(success=False, errors=tuple(errors))
            try:
                result = self.api.save_config(self.document.to_payload())
            except (ConsoleAPIError, requests.RequestException) as exc:
                self.notify(f"Failed to save configuration: {exc}", level="error")
                return SaveResult(success=False, message=str(exc))
        for error in result.errors:
            self.notify(f"{error.field}: {error.message}", level="error")
        if result.success:
            self.notify(result.message or "Configuration saved.")
        elif not result.errors:
            self.notify(result.message or "Configuration was not saved.", level="error")
        return result

    # directories and mappings

    def refresh_all(self) -> RefreshReport:
        caches = (self.discord, self.jellyseerr)
        report = RefreshReport()
        with self.engage("refresh-all"):
            for cache in caches:
                cache.invalidate()
            tasks = [(index, cache.fetch) for index, cache in enumerate(caches)]
            outcomes = run_indexed_tasks_settled(tasks, max_workers=get_refresh_jobs())
            # results are applied here, on the caller's thread, one cache at a time
            for outcome in outcomes:
                cache = caches[outcome.index]
                if outcome.ok:
                    cache.apply(outcome.result)
                    report.refreshed.append(cache.directory)
                    report.realtime[cache.directory] = outcome.result.realtime
                else:
                    cache.fail(outcome.error)
                    report.failed[cache.directory] = str(outcome.error)
        level = {"success": "info", "partial": "warning", "failure": "error"}[report.status]
        self.notify(f"Refreshed users: {report.summary()}", level=level)
        return report

    def open_mappings(self) -> ReconcileReport | None:
        with self.engage("mappings"):
            try:
                links = self.mappings.load_all()
            except (ConsoleAPIError, requests.RequestException) as exc:
                self.notify(f"Failed to load user mappings: {exc}", level="error")
                return None
            if links:
                if not self.discord.loaded:
                    self.discord.load(False)
                if not self.jellyseerr.loaded:
                    self.jellyseerr.load(False)
            if not self.mappings.pending():
                return None
            return self.reconcile()

    def reconcile(self) -> ReconcileReport:
        try:
            report = reconcile(self.mappings, self.discord, self.jellyseerr)
        except (ConsoleAPIError, requests.RequestException) as exc:
            self.notify(f"Failed to reload user mappings: {exc}", level="error")
            return ReconcileReport(skipped_reason=str(exc))
        if report.skipped_reason:
            _log(f"  reconcile skipped: {report.skipped_reason}")
        if report.failed:
            self.notify(
                f"Could not update {len(report.failed)} mapping(s).", level="warning"
            )
        return report

    def link_views(self) -> list[LinkView]:
        return [describe(link, self.discord, self.jellyseerr) for link in self.mappings.links]

    def add_selected_link(self) -> ApiResult | None:
        primary = self.discord_selector.selection
        secondary = self.jellyseerr_selector.selection
        if primary is None or secondary is None:
            self.notify(
                "Please select both a Discord user and a Jellyseerr user.",
                level="warning",
            )
            return None
        with self.engage("add-mapping"):
            try:
                result = self.mappings.add(primary, secondary)
            except (ConsoleAPIError, requests.RequestException) as exc:
                self.notify(f"Failed to add mapping: {exc}", level="error")
                return None
        if result.success:
            self.discord_selector.dispatch(Consume())
            self.jellyseerr_selector.dispatch(Consume())
            self.notify("Mapping added successfully!")
        else:
            self.notify(f"Error: {result.message}", level="error")
        return result

    def remove_link(
        self, primary_id: str, confirm: Callable[[str], bool]
    ) -> ApiResult | None:
        with self.engage(f"remove-mapping:{primary_id}"):
            try:
                result = self.mappings.remove(primary_id, confirm)
            except (ConsoleAPIError, requests.RequestException) as exc:
                self.notify(f"Failed to remove mapping: {exc}", level="error")
                return None
        if result is None:
            return None
        if result.success:
            self.notify("Mapping removed successfully!")
        else:
            self.notify(f"Error: {result.message}", level="error")
        return result

    # routing

    def load_routing(self) -> RoutingMap:
        with self.engage("fetch-libraries"):
            url = self.document.get(MEDIA_URL_FIELD).strip()
            api_key = self.document.get(MEDIA_API_KEY_FIELD).strip()
            if not url or not api_key:
                self.notify("Please enter the Jellyfin URL and API key first.", level="warning")
            else:
                try:
                    self.libraries = self.api.load_libraries(url, api_key)
                    self.libraries_loaded = True
                except (ConsoleAPIError, requests.RequestException) as exc:
                    self.notify(f"Failed to load libraries: {exc}", level="error")
        categories = [library.id for library in self.libraries] + list(FIXED_CATEGORIES)
        self.routing.set_known_categories(categories)
        return self.routing

    def load_channels(self) -> list[Channel]:
        guild_id = self.document.guild_id.strip()
        if not guild_id:
            return self.channels
        with self.engage("fetch-channels"):
            try:
                self.channels = self.api.fetch_channels_for_guild(guild_id)
            except (ConsoleAPIError, requests.RequestException) as exc:
                _log(f"  channel fetch failed for guild {guild_id}: {exc}")
        return self.channels

    def _routing_editable(self) -> bool:
        # a bootstrapping map is written out from the library list on first edit
        if self.routing.bootstrapping and not self.libraries_loaded:
            self.notify(
                "Libraries are not loaded; routing cannot be changed yet.", level="error"
            )
            return False
        return True

    def toggle_category(self, category: str, enabled: bool) -> bool:
        if not self._routing_editable():
            return False
        if (
            enabled
            and self.libraries_loaded
            and category not in self.routing.known_categories
        ):
            self.notify(f"Unknown category: {category}", level="error")
            return False
        self.routing.toggle(category, enabled)
        return True

    def set_category_channel(self, category: str, channel_id: str | None) -> bool:
        if not self._routing_editable():
            return False
        applied = self.routing.set_channel(category, channel_id)
        if not applied:
            self.notify(
                f"Enable {category} before choosing its channel.", level="warning"
            )
        return applied
