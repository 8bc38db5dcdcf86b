from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from .cache.directory import DirectoryCache
from .models import IdentityRecord


class SelectorState(str, Enum):
    CLOSED = "closed"
    OPEN_SEARCHING = "open_searching"
    SELECTED = "selected"


@dataclass(frozen=True)
class Activate:
    pass


@dataclass(frozen=True)
class Search:
    text: str


@dataclass(frozen=True)
class Choose:
    record_id: str


@dataclass(frozen=True)
class Dismiss:
    pass


@dataclass(frozen=True)
class Consume:
    pass


SelectorEvent = Union[Activate, Search, Choose, Dismiss, Consume]


class IdentitySelector:
    """Searchable single-choice control bound to one directory cache."""

    def __init__(
        self,
        cache: DirectoryCache,
        *,
        linked_ids: Callable[[], set[str]] | None = None,
    ) -> None:
        self.cache = cache
        self.state = SelectorState.CLOSED
        self.query = ""
        self.selection: IdentityRecord | None = None
        self._linked_ids = linked_ids or set

    def dispatch(self, event: SelectorEvent) -> SelectorState:
        if isinstance(event, Activate):
            self._activate()
        elif isinstance(event, Search):
            if self.state is SelectorState.OPEN_SEARCHING:
                self.query = event.text
        elif isinstance(event, Choose):
            self._choose(event.record_id)
        elif isinstance(event, Dismiss):
            self._close()
        elif isinstance(event, Consume):
            self.selection = None
            self._close()
        else:
            raise TypeError(f"Unsupported selector event: {event!r}")
        return self.state

    def _activate(self) -> None:
        if self.state is SelectorState.OPEN_SEARCHING:
            self._close()
            return
        if not self.cache.loaded:
            self.cache.load(False)
        self.query = ""
        self.state = SelectorState.OPEN_SEARCHING

    def _choose(self, record_id: str) -> None:
        if self.state is not SelectorState.OPEN_SEARCHING:
            return
        record = self.cache.find(record_id)
        if record is None:
            return
        self.selection = record
        self.query = ""
        self.state = SelectorState.SELECTED

    def _close(self) -> None:
        self.query = ""
        self.state = SelectorState.SELECTED if self.selection else SelectorState.CLOSED

    def visible_records(self) -> list[IdentityRecord]:
        return [record for record in self.cache.entries if record.matches(self.query)]

    def is_linked(self, record: IdentityRecord) -> bool:
        return record.id in self._linked_ids()
