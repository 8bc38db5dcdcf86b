from __future__ import annotations

import pytest
import yaml
from click.testing import CliRunner

from relayconsole.cli import cli
from relayconsole.client import ConsoleAPIError
from relayconsole.models import DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY, IdentityLink, Library
from relayconsole.session import ConsoleSession


@pytest.fixture
def session(api, store) -> ConsoleSession:
    return ConsoleSession(api, store)


def _invoke(session, args, **kwargs):
    return CliRunner().invoke(cli, args, obj={"session": session}, **kwargs)


def test_help_groups_commands() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "IDENTITY" in result.output
    assert "NOTIFICATIONS" in result.output
    assert result.output.index("IDENTITY") < result.output.index("NOTIFICATIONS")


def test_mappings_list_empty(session) -> None:
    result = _invoke(session, ["mappings", "list"])
    assert result.exit_code == 0
    assert "No user mappings configured yet." in result.output


def test_mappings_add_and_list(session, api) -> None:
    result = _invoke(session, ["mappings", "add", "111", "7"])
    assert result.exit_code == 0, result.output
    assert "Mapping added successfully!" in result.output
    assert "111" in api.mappings

    listed = _invoke(ConsoleSession(api, session.store), ["mappings", "list"])
    assert "Alice (@alice)" in listed.output


def test_mappings_add_unknown_user_fails(session, api) -> None:
    result = _invoke(session, ["mappings", "add", "999", "7"])
    assert result.exit_code == 1
    assert "Discord user 999 was not found." in result.output
    assert api.count("upsert_mapping") == 0


def test_mappings_remove_declined(session, api) -> None:
    api.mappings["111"] = IdentityLink("111", "7")
    result = _invoke(session, ["mappings", "remove", "111"], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled." in result.output
    assert api.count("delete_mapping") == 0


def test_mappings_remove_confirmed(session, api) -> None:
    api.mappings["111"] = IdentityLink("111", "7")
    result = _invoke(session, ["mappings", "remove", "111", "--yes"])
    assert result.exit_code == 0
    assert "Mapping removed successfully!" in result.output
    assert api.mappings == {}


def test_mappings_remove_missing_link_fails(session) -> None:
    result = _invoke(session, ["mappings", "remove", "111", "-y"])
    assert result.exit_code == 1
    assert "Mapping not found" in result.output


def test_directory_search_marks_linked(session, api) -> None:
    api.mappings["111"] = IdentityLink("111", "7")
    result = _invoke(session, ["directory", "search", "discord", "ALI"])
    assert result.exit_code == 0
    rows = yaml.safe_load(result.output)
    assert rows == [{"id": "111", "name": "Alice", "label": "alice", "linked": True}]


def test_directory_refresh_failure_exits_nonzero(session, api) -> None:
    api.failing.update({DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY})
    result = _invoke(session, ["directory", "refresh"])
    assert result.exit_code == 1
    assert "status: failure" in result.output


def test_routing_disable_saves_materialized_map(session, api) -> None:
    api.config = {"JELLYFIN_BASE_URL": "http://jf:8096", "JELLYFIN_API_KEY": "k"}
    api.libraries = [Library("libA", "Movies"), Library("libB", "Shows")]

    result = _invoke(session, ["routing", "disable", "libB"])

    assert result.exit_code == 0, result.output
    assert api.config["JELLYFIN_NOTIFICATION_LIBRARIES"] == (
        '{"episodes":"","libA":"","seasons":""}'
    )


def test_routing_set_channel_on_disabled_category_fails(session, api) -> None:
    api.config = {"JELLYFIN_NOTIFICATION_LIBRARIES": '{"libA": ""}'}
    result = _invoke(session, ["routing", "set-channel", "libB", "C2"])
    assert result.exit_code == 1
    assert "Enable libB before choosing its channel." in result.output
    assert api.count("save_config") == 0


def test_routing_show_resolves_default_channel(session, api) -> None:
    api.config = {
        "JELLYFIN_BASE_URL": "http://jf:8096",
        "JELLYFIN_API_KEY": "k",
        "JELLYFIN_CHANNEL_ID": "C1",
        "JELLYFIN_NOTIFICATION_LIBRARIES": '{"libA": "", "libB": "C9"}',
    }
    result = _invoke(session, ["routing", "show"])
    assert result.exit_code == 0, result.output
    data = yaml.safe_load(result.output)
    rows = {row["category"]: row for row in data["categories"]}
    assert rows["libA"]["delivers_to"] == "C1"
    assert rows["libB"]["delivers_to"] == "C9"
    assert rows["episodes"]["enabled"] is False


def test_config_show_masks_secrets(session, api) -> None:
    api.config = {"DISCORD_TOKEN": "abc", "GUILD_ID": "g1"}
    result = _invoke(session, ["config", "show"])
    assert result.exit_code == 0
    assert "abc" not in result.output
    assert "GUILD_ID: g1" in result.output


def _unavailable(*_args, **_kwargs):
    raise ConsoleAPIError("request_failed", path="/api/config", status=503)


def test_routing_edit_fails_when_config_cannot_load(session, api, monkeypatch) -> None:
    api.config = {"DISCORD_TOKEN": "secret", "GUILD_ID": "g1"}
    monkeypatch.setattr(api, "load_config", _unavailable)

    result = _invoke(session, ["routing", "disable", "episodes"])

    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output
    assert api.count("save_config") == 0
    assert api.config == {"DISCORD_TOKEN": "secret", "GUILD_ID": "g1"}


def test_routing_edit_fails_when_libraries_cannot_load(session, api, monkeypatch) -> None:
    api.config = {"JELLYFIN_BASE_URL": "http://jf:8096", "JELLYFIN_API_KEY": "k"}
    monkeypatch.setattr(api, "load_libraries", _unavailable)

    result = _invoke(session, ["routing", "disable", "seasons"])

    assert result.exit_code == 1
    assert "routing cannot be changed yet" in result.output
    assert api.count("save_config") == 0


def test_routing_set_channel_fails_when_libraries_cannot_load(session, api, monkeypatch) -> None:
    api.config = {"JELLYFIN_BASE_URL": "http://jf:8096", "JELLYFIN_API_KEY": "k"}
    monkeypatch.setattr(api, "load_libraries", _unavailable)

    result = _invoke(session, ["routing", "set-channel", "episodes", "C2"])

    assert result.exit_code == 1
    assert api.count("save_config") == 0


def test_routing_enable_rejects_unknown_category(session, api) -> None:
    api.config = {"JELLYFIN_BASE_URL": "http://jf:8096", "JELLYFIN_API_KEY": "k"}
    api.libraries = [Library("libA", "Movies")]

    result = _invoke(session, ["routing", "enable", "libAA"])

    assert result.exit_code == 1
    assert "Unknown category: libAA" in result.output
    assert api.count("save_config") == 0


def test_config_show_fails_when_config_cannot_load(session, api, monkeypatch) -> None:
    monkeypatch.setattr(api, "load_config", _unavailable)
    result = _invoke(session, ["config", "show"])
    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output
