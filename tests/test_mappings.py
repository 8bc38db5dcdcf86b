from __future__ import annotations

import json

import pytest
from conftest import ALICE, ALICE_SEERR, BOB, BOB_SEERR

from relayconsole.cache.directory import DirectoryCache
from relayconsole.mappings import (
    MappingStore,
    describe,
    needs_reconciliation,
    parse_identity_links,
    serialize_identity_links,
)
from relayconsole.models import DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY, IdentityLink


def test_add_builds_link_from_both_records(api) -> None:
    store = MappingStore(api)
    result = store.add(ALICE, ALICE_SEERR)

    assert result.success
    assert store.links == [
        IdentityLink(
            primary_id="111",
            secondary_id="7",
            primary_username="alice",
            primary_display_name="Alice",
            primary_avatar="https://cdn.example/a.png",
            secondary_display_name="Alice S",
        )
    ]


def test_add_requires_both_records(api) -> None:
    with pytest.raises(ValueError):
        MappingStore(api).add(ALICE, None)
    assert api.count("upsert_mapping") == 0


def test_primary_ids_stay_unique_after_repeated_adds(api) -> None:
    store = MappingStore(api)
    store.add(ALICE, ALICE_SEERR)
    store.add(ALICE, BOB_SEERR)
    store.add(BOB, BOB_SEERR)

    primary_ids = [link.primary_id for link in store.links]
    assert sorted(primary_ids) == ["111", "222"]
    assert store.get("111").secondary_id == "8"


def test_load_all_dedupes_server_list() -> None:
    class _Source:
        def load_mappings(self):
            return [
                IdentityLink("1", "a"),
                IdentityLink("1", "b"),
                IdentityLink("2", "c"),
            ]

    store = MappingStore(_Source())  # type: ignore[arg-type]
    assert [(l.primary_id, l.secondary_id) for l in store.load_all()] == [
        ("1", "b"),
        ("2", "c"),
    ]


def test_remove_requires_confirmation(api) -> None:
    store = MappingStore(api)
    store.add(ALICE, ALICE_SEERR)

    assert store.remove("111", lambda _id: False) is None
    assert api.count("delete_mapping") == 0
    assert len(store.links) == 1

    asked: list[str] = []
    result = store.remove("111", lambda _id: asked.append(_id) or True)
    assert result.success
    assert asked == ["111"]
    assert store.links == []


def test_needs_reconciliation_checks_display_names() -> None:
    assert needs_reconciliation(IdentityLink("1", "2"))
    assert needs_reconciliation(IdentityLink("1", "2", primary_display_name="A"))
    assert needs_reconciliation(
        IdentityLink("1", "2", primary_display_name="", secondary_display_name="B")
    )
    assert not needs_reconciliation(
        IdentityLink("1", "2", primary_display_name="A", secondary_display_name="B")
    )


def test_describe_prefers_fresh_directory_records(api, store) -> None:
    members = DirectoryCache(DISCORD_DIRECTORY, api, store)
    users = DirectoryCache(JELLYSEERR_DIRECTORY, api, store)
    members.load()
    users.load()
    link = IdentityLink(
        "111",
        "7",
        primary_username="old",
        primary_display_name="Old Alice",
        primary_avatar="https://cdn.example/old.png",
        secondary_display_name="Old S",
    )

    view = describe(link, members, users)
    assert view.primary_label == "Alice (@alice)"
    assert view.secondary_label == "Alice S (alice@example.com)"
    assert view.avatar_url == "https://cdn.example/a.png"


def test_describe_falls_back_to_stored_then_ids() -> None:
    stored = IdentityLink(
        "5", "9", primary_username="eve", primary_display_name="Eve",
        secondary_display_name="Eve S",
    )
    view = describe(stored)
    assert view.primary_label == "Eve (@eve)"
    assert view.secondary_label == "Eve S"

    username_only = describe(IdentityLink("5", "9", primary_username="eve"))
    assert username_only.primary_label == "@eve"

    bare = describe(IdentityLink("5", "9"))
    assert bare.primary_label == "Discord ID: 5"
    assert bare.secondary_label == "Jellyseerr ID: 9"
    assert bare.avatar_url is None


def test_wire_payload_roundtrip_keeps_created_at() -> None:
    payload = {
        "discordUserId": "1",
        "jellyseerrUserId": 42,
        "discordUsername": None,
        "discordDisplayName": "A",
        "discordAvatar": "",
        "jellyseerrDisplayName": "B",
        "createdAt": "2025-01-01T00:00:00Z",
    }
    link = IdentityLink.from_payload(payload)
    assert link.secondary_id == "42"
    assert link.primary_avatar is None
    assert link.to_payload()["createdAt"] == "2025-01-01T00:00:00Z"


def test_parse_identity_links_tolerates_bad_input() -> None:
    assert parse_identity_links(None) == []
    assert parse_identity_links("") == []
    assert parse_identity_links("{oops") == []
    assert parse_identity_links('{"a": "b"}') == []

    text = serialize_identity_links([IdentityLink("1", "2"), IdentityLink("3", "4")])
    assert [link.primary_id for link in parse_identity_links(text)] == ["1", "3"]
    assert json.loads(text)[0]["discordUserId"] == "1"
    assert parse_identity_links([{"discordUserId": "1"}]) == []
