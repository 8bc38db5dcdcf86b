from __future__ import annotations

from collections.abc import Sequence
from functools import wraps

import click
import requests
import yaml
from click.formatting import term_len

from .client import ClientSettings, ConsoleAPIError, ConsoleClient
from .models import DISCORD_DIRECTORY, JELLYSEERR_DIRECTORY
from .runtime import (
    reset_refresh_cache,
    reset_verbose_logging,
    set_refresh_cache,
    set_verbose_logging,
)
from .selector import Activate, Choose, Search
from .session import ConsoleSession, ControlBusyError

COMMAND_GROUPS = (
    ("Identity", ("mappings", "directory")),
    ("Notifications", ("routing",)),
    ("Settings", ("config",)),
)
HELP_COL_MAX = 30
HELP_COL_SPACING = 2

_NOTICE_COLORS = {"error": "red", "warning": "yellow"}
_DIRECTORY_CHOICES = {
    "discord": DISCORD_DIRECTORY,
    "jellyseerr": JELLYSEERR_DIRECTORY,
}


def _write_bold_section(
    formatter: click.HelpFormatter, title: str, records: list[tuple[str, str]]
) -> None:
    if not records:
        return
    formatter.write("\n")
    formatter.write(click.style(title, bold=True) + "\n")
    formatter.indent()
    formatter.write_dl(records, col_max=HELP_COL_MAX, col_spacing=HELP_COL_SPACING)
    formatter.dedent()


def _command_help_limit(formatter: click.HelpFormatter, names: Sequence[str]) -> int:
    if not names:
        return 45
    max_name = max(term_len(name) for name in names)
    first_col = min(max_name, HELP_COL_MAX) + HELP_COL_SPACING
    return max(formatter.width - first_col - 2, 10)


class OrderedGroup(click.Group):
    def __init__(
        self,
        *args,
        command_groups: Sequence[tuple[str, Sequence[str]]] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._command_groups = [
            (title, list(commands)) for title, commands in (command_groups or [])
        ]

    def list_commands(self, ctx: click.Context) -> list[str]:
        ordered = [
            name
            for _, commands in self._command_groups
            for name in commands
            if name in self.commands
        ]
        remaining = [name for name in super().list_commands(ctx) if name not in ordered]
        return ordered + remaining

    def format_commands(
        self, ctx: click.Context, formatter: click.HelpFormatter
    ) -> None:
        if not self._command_groups:
            return super().format_commands(ctx, formatter)
        grouped = {name for _, commands in self._command_groups for name in commands}
        for title, commands in self._command_groups:
            entries = [
                (name, self.commands[name])
                for name in commands
                if name in self.commands and not self.commands[name].hidden
            ]
            if not entries:
                continue
            limit = _command_help_limit(formatter, [name for name, _ in entries])
            rows = [(name, cmd.get_short_help_str(limit=limit)) for name, cmd in entries]
            _write_bold_section(formatter, title.upper(), rows)
        other = [
            (name, self.commands[name])
            for name in super().list_commands(ctx)
            if name not in grouped and not self.commands[name].hidden
        ]
        if other:
            limit = _command_help_limit(formatter, [name for name, _ in other])
            rows = [(name, cmd.get_short_help_str(limit=limit)) for name, cmd in other]
            _write_bold_section(formatter, "OTHER", rows)


def _dump(data) -> str:
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip("\n")


def _session(ctx: click.Context) -> ConsoleSession:
    root = ctx.find_root()
    session = root.obj.get("session")
    if session is None:
        settings = ClientSettings.from_env(api_base=root.obj.get("api_base"))
        session = ConsoleSession(ConsoleClient(settings))
        root.obj["session"] = session
    return session


@click.group(
    cls=OrderedGroup,
    command_groups=COMMAND_GROUPS,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("-v", "--verbose", is_flag=True, help="Log API and cache activity to stderr.")
@click.option(
    "--api-base",
    default=None,
    help="Console API base URL (overrides RELAYCONSOLE_API_BASE).",
)
@click.option(
    "--refresh",
    is_flag=True,
    help="Ignore locally cached directory data for this run.",
)
@click.pass_context
def cli(ctx, verbose, api_base, refresh):
    """
    Relay console - notification routing and identity mapping for the relay bot
    """
    ctx.ensure_object(dict)
    ctx.obj["api_base"] = api_base
    if verbose:
        token = set_verbose_logging(True)
        ctx.call_on_close(lambda: reset_verbose_logging(token))
    if refresh:
        refresh_token = set_refresh_cache(True)
        ctx.call_on_close(lambda: reset_refresh_cache(refresh_token))


@cli.result_callback()
@click.pass_context
def process_output(ctx, subcommand_output, *args, **kwargs):
    """
    Print queued notices to stderr, then the command's output to stdout.
    """
    _flush(ctx, subcommand_output)


def _flush(ctx: click.Context, output: str | None) -> None:
    session = ctx.find_root().obj.get("session")
    if session is not None:
        for notice in session.drain_notices():
            color = _NOTICE_COLORS.get(notice.level)
            click.secho(notice.message, fg=color, err=True)
    if output:
        click.echo(output)


def _fail(ctx: click.Context, output: str | None = None) -> None:
    _flush(ctx, output)
    ctx.exit(1)


def _busy_guard(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ControlBusyError as exc:
            raise click.ClickException(str(exc)) from None

    return wrapper


# mappings


@cli.group("mappings", invoke_without_command=False)
def mappings_group():
    """
    List, add, remove and repair Discord/Jellyseerr user links.
    """


@mappings_group.command("list")
@click.pass_context
@_busy_guard
def mappings_list_cmd(ctx):
    """
    Show every user link with resolved display names.
    """
    session = _session(ctx)
    session.open_mappings()
    views = session.link_views()
    if not views:
        return "No user mappings configured yet."
    return _dump(
        [
            {
                "discord_id": view.primary_id,
                "discord": view.primary_label,
                "jellyseerr_id": view.secondary_id,
                "jellyseerr": view.secondary_label,
                "avatar": view.avatar_url,
            }
            for view in views
        ]
    )


def _select(selector, record_id: str, label: str) -> None:
    selector.dispatch(Activate())
    selector.dispatch(Choose(record_id))
    if selector.selection is None or selector.selection.id != str(record_id):
        raise click.ClickException(f"{label} user {record_id} was not found.")


@mappings_group.command("add")
@click.argument("discord_id")
@click.argument("jellyseerr_id")
@click.pass_context
@_busy_guard
def mappings_add_cmd(ctx, discord_id, jellyseerr_id):
    """
    Link a Discord member to a Jellyseerr user.
    """
    session = _session(ctx)
    session.open_mappings()
    _select(session.discord_selector, discord_id, "Discord")
    _select(session.jellyseerr_selector, jellyseerr_id, "Jellyseerr")
    result = session.add_selected_link()
    if result is None or not result.success:
        _fail(ctx)
    return None


@mappings_group.command("remove")
@click.argument("discord_id")
@click.option("-y", "--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
@_busy_guard
def mappings_remove_cmd(ctx, discord_id, yes):
    """
    Remove the link for a Discord member (asks for confirmation).
    """
    session = _session(ctx)

    def _confirm(primary_id: str) -> bool:
        if yes:
            return True
        return click.confirm(
            f"Remove mapping for Discord user {primary_id}?", default=False, err=True
        )

    result = session.remove_link(discord_id, _confirm)
    if result is None:
        if not session.notices:
            return "Cancelled."
        _fail(ctx)
    if not result.success:
        _fail(ctx)
    return None


@mappings_group.command("reconcile")
@click.pass_context
@_busy_guard
def mappings_reconcile_cmd(ctx):
    """
    Fill in missing display names from the user directories.
    """
    session = _session(ctx)
    report = session.open_mappings()
    if report is None:
        return "All mappings have display metadata."
    return _dump(
        {
            "attempted": report.attempted,
            "updated": report.updated,
            "failed": report.failed,
            "skipped": report.skipped_reason,
        }
    )


# directory


@cli.group("directory")
def directory_group():
    """
    Inspect and refresh the cached user directories.
    """


@directory_group.command("refresh")
@click.pass_context
@_busy_guard
def directory_refresh_cmd(ctx):
    """
    Re-fetch Discord members and Jellyseerr users in parallel.
    """
    session = _session(ctx)
    report = session.refresh_all()
    output = _dump(
        {
            "status": report.status,
            "refreshed": report.refreshed,
            "failed": report.failed,
        }
    )
    if report.status == "failure":
        _fail(ctx, output)
    return output


@directory_group.command("search")
@click.argument("directory", type=click.Choice(sorted(_DIRECTORY_CHOICES)))
@click.argument("query", required=False, default="")
@click.pass_context
@_busy_guard
def directory_search_cmd(ctx, directory, query):
    """
    Search a directory by name, username or email.
    """
    session = _session(ctx)
    try:
        session.mappings.load_all()
    except (ConsoleAPIError, requests.RequestException) as exc:
        session.notify(f"Failed to load user mappings: {exc}", level="warning")
    selector = (
        session.discord_selector if directory == "discord" else session.jellyseerr_selector
    )
    selector.dispatch(Activate())
    selector.dispatch(Search(query))
    records = selector.visible_records()
    if not records:
        return "No matching users."
    return _dump(
        [
            {
                "id": record.id,
                "name": record.display_name,
                "label": record.secondary_label,
                "linked": selector.is_linked(record),
            }
            for record in records
        ]
    )


# routing


@cli.group("routing")
def routing_group():
    """
    Choose which libraries notify, and in which channel.
    """


def _load_routing(ctx: click.Context, session: ConsoleSession):
    session.load_config()
    if not session.config_loaded:
        _fail(ctx)
    return session.load_routing()


def _routing_rows(session: ConsoleSession) -> list[dict]:
    routing = session.routing
    names = {library.id: library.name for library in session.libraries}
    channel_names = {channel.id: channel.name for channel in session.channels}
    default_channel = session.document.default_channel
    categories = list(routing.known_categories) + [
        category for category in routing.entries if category not in routing.known_categories
    ]
    rows = []
    for category in categories:
        resolved = routing.resolve_channel(category, default_channel)
        rows.append(
            {
                "category": category,
                "name": names.get(category, category),
                "enabled": routing.is_enabled(category),
                "channel": routing.channel_for(category) or None,
                "delivers_to": (
                    f"#{channel_names[resolved]}" if resolved in channel_names else resolved
                ),
            }
        )
    return rows


@routing_group.command("show")
@click.pass_context
@_busy_guard
def routing_show_cmd(ctx):
    """
    Show each category, whether it is enabled and where it delivers.
    """
    session = _session(ctx)
    _load_routing(ctx, session)
    session.load_channels()
    return _dump(
        {
            "default_channel": session.document.default_channel or None,
            "configured": session.routing.configured,
            "categories": _routing_rows(session),
        }
    )


def _save_or_fail(ctx: click.Context, session: ConsoleSession) -> None:
    result = session.save_config()
    if not result.success:
        _fail(ctx)


@routing_group.command("enable")
@click.argument("category")
@click.pass_context
@_busy_guard
def routing_enable_cmd(ctx, category):
    """
    Enable notifications for a category (uses the default channel).
    """
    session = _session(ctx)
    _load_routing(ctx, session)
    if not session.toggle_category(category, True):
        _fail(ctx)
    _save_or_fail(ctx, session)
    return None


@routing_group.command("disable")
@click.argument("category")
@click.pass_context
@_busy_guard
def routing_disable_cmd(ctx, category):
    """
    Disable notifications for a category.
    """
    session = _session(ctx)
    _load_routing(ctx, session)
    if not session.toggle_category(category, False):
        _fail(ctx)
    _save_or_fail(ctx, session)
    return None


@routing_group.command("set-channel")
@click.argument("category")
@click.argument("channel_id", required=False, default="")
@click.pass_context
@_busy_guard
def routing_set_channel_cmd(ctx, category, channel_id):
    """
    Route an enabled category to a channel (omit CHANNEL_ID for the default).
    """
    session = _session(ctx)
    _load_routing(ctx, session)
    if not session.set_category_channel(category, channel_id):
        _fail(ctx)
    _save_or_fail(ctx, session)
    return None


# config


@cli.group("config")
def config_group():
    """
    View the bot configuration document.
    """


@config_group.command("show")
@click.pass_context
@_busy_guard
def config_show_cmd(ctx):
    """
    Print the configuration with secrets masked.
    """
    session = _session(ctx)
    document = session.load_config()
    if not session.config_loaded:
        _fail(ctx)
    return _dump(document.redacted())


def main():
    cli()


if __name__ == "__main__":
    main()
