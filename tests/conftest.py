from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from relayconsole.cache.store import LocalCacheStore
from relayconsole.client import ConsoleAPIError
from relayconsole.models import (
    DISCORD_DIRECTORY,
    JELLYSEERR_DIRECTORY,
    ApiResult,
    Channel,
    IdentityLink,
    IdentityRecord,
    Library,
    SaveResult,
)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeConsoleAPI:
    """In-memory stand-in for the bot's configuration API."""

    def __init__(self) -> None:
        self.directories: dict[str, list[IdentityRecord]] = {
            DISCORD_DIRECTORY: [],
            JELLYSEERR_DIRECTORY: [],
        }
        self.failing: set[str] = set()
        self.mappings: dict[str, IdentityLink] = {}
        self.config: dict = {}
        self.libraries: list[Library] = []
        self.channels: list[Channel] = []
        self.calls: list[tuple] = []

    def fetch_directory_records(self, directory: str):
        self.calls.append(("fetch_directory_records", directory))
        if directory in self.failing:
            raise ConsoleAPIError("request_failed", path=directory)
        return list(self.directories[directory]), True

    def load_mappings(self) -> list[IdentityLink]:
        self.calls.append(("load_mappings",))
        return list(self.mappings.values())

    def upsert_mapping(self, link: IdentityLink) -> ApiResult:
        self.calls.append(("upsert_mapping", link.primary_id))
        self.mappings[link.primary_id] = link
        return ApiResult(success=True)

    def delete_mapping(self, primary_id: str) -> ApiResult:
        self.calls.append(("delete_mapping", primary_id))
        if self.mappings.pop(primary_id, None) is None:
            return ApiResult(success=False, message="Mapping not found")
        return ApiResult(success=True)

    def load_config(self) -> dict:
        self.calls.append(("load_config",))
        return dict(self.config)

    def save_config(self, document: dict) -> SaveResult:
        self.calls.append(("save_config",))
        self.config = dict(document)
        return SaveResult(success=True, message="Configuration saved successfully!")

    def load_libraries(self, url: str, api_key: str) -> list[Library]:
        self.calls.append(("load_libraries", url))
        return list(self.libraries)

    def fetch_channels_for_guild(self, guild_id: str) -> list[Channel]:
        self.calls.append(("fetch_channels_for_guild", guild_id))
        return list(self.channels)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


ALICE = IdentityRecord("111", "Alice", "alice", "https://cdn.example/a.png")
BOB = IdentityRecord("222", "Bob", "bobby", None)
ALICE_SEERR = IdentityRecord("7", "Alice S", "alice@example.com", None)
BOB_SEERR = IdentityRecord("8", "Bob S", None, None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock) -> LocalCacheStore:
    return LocalCacheStore(tmp_path / "cache", clock=clock)


@pytest.fixture
def api() -> FakeConsoleAPI:
    fake = FakeConsoleAPI()
    fake.directories[DISCORD_DIRECTORY] = [ALICE, BOB]
    fake.directories[JELLYSEERR_DIRECTORY] = [ALICE_SEERR, BOB_SEERR]
    return fake
