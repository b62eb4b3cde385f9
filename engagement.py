"""Core data processing for Slack export engagement statistics.

Loads the user directory and per-channel message logs from an unpacked Slack
export, folds them into a channel -> day -> user table of engagement stats,
and writes the table out as a flat CSV report.
Used by both the CLI (slack_export_stats.py) and the report service (app.py).
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Any, Iterator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
USERS_FILENAME = "users.json"
MESSAGE_EXTENSION = ".json"
DAY_FORMAT = "%Y-%m-%d"
CSV_HEADER = [
    "display_name",
    "name",
    "is_restricted",
    "deleted",
    "day",
    "posts",
    "received_reations",
    "received_reaction_users",
    "given_reactions",
    "given_reation_users",
    "channel_name",
]


class ExportFormatError(ValueError):
    """A JSON document in the export does not have the expected shape."""


class TimestampError(ValueError):
    """A message carries a non-empty timestamp that is not a number."""


@dataclass(frozen=True, slots=True)
class User:
    id: str
    display_name: str
    is_restricted: bool = False
    deleted: bool = False


@dataclass(slots=True)
class Reaction:
    name: str
    users: list[str] = field(default_factory=list)
    count: int = 0


@dataclass(slots=True)
class Message:
    user: str
    text: str = ""
    reactions: list[Reaction] = field(default_factory=list)
    ts: str = ""


@dataclass(slots=True)
class Stats:
    """Engagement counters for one user in one channel on one day."""

    user_id: str
    name: str
    display_name: str
    is_restricted: bool
    deleted: bool
    posts: int = 0
    given_reactions: int = 0
    given_reaction_users: set[str] = field(default_factory=set)
    received_reactions: int = 0
    received_reaction_users: set[str] = field(default_factory=set)


# channel name -> day -> user id -> Stats
StatsTable = dict[str, dict[str, dict[str, Stats]]]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _typed_field(raw: dict, key: str, kind: type, default: Any, source: str) -> Any:
    """Fetch ``raw[key]`` and check its JSON type.

    Missing keys and JSON nulls fall back to *default*.

    Raises:
        ExportFormatError: If the value is present but of another type.
    """
    value = raw.get(key)
    if value is None:
        return default
    # bool is a subclass of int; a JSON true is never a valid count
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ExportFormatError(
            f"{source}: field '{key}' should be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _read_json_array(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ExportFormatError(f"{path}: expected a JSON array, got {type(data).__name__}")
    return data


def _parse_user(raw: Any, source: str) -> User:
    if not isinstance(raw, dict):
        raise ExportFormatError(f"{source}: user entry should be an object")
    profile = _typed_field(raw, "profile", dict, {}, source)
    return User(
        id=_typed_field(raw, "id", str, "", source),
        display_name=_typed_field(profile, "display_name", str, "", source),
        is_restricted=_typed_field(raw, "is_restricted", bool, False, source),
        deleted=_typed_field(raw, "deleted", bool, False, source),
    )


def load_users(path: str) -> dict[str, User]:
    """Load the export's user directory.

    Only the fields the report needs are kept: id, profile display name and
    the restricted/deleted flags.

    Args:
        path: Filesystem path to the export's ``users.json``.

    Returns:
        Dict mapping user id to a reduced ``User`` record.  When the file
        lists the same id twice the later record wins.

    Raises:
        FileNotFoundError: If the file at *path* does not exist.
        json.JSONDecodeError: If the file contains invalid JSON.
        ExportFormatError: If the document is not an array of user objects.
    """
    users: dict[str, User] = {}
    for raw in _read_json_array(path):
        user = _parse_user(raw, path)
        users[user.id] = user
    logger.debug("Loaded %d users from %s", len(users), path)
    return users


def iter_channel_files(root: str) -> Iterator[tuple[str, str]]:
    """Yield ``(channel_name, file_path)`` for every message log under *root*.

    The tree is walked recursively in lexical order.  A ``.json`` file is a
    message log when its parent directory is named differently from *root*
    itself; the parent directory's name is the channel.  Files directly under
    the root (``users.json``, ``channels.json`` ...) are therefore skipped.

    Raises:
        OSError: If any directory in the tree cannot be listed.
    """
    root_name = os.path.basename(os.path.normpath(root))

    def _raise(err: OSError) -> None:
        raise err

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        channel_name = os.path.basename(os.path.normpath(dirpath))
        for filename in sorted(filenames):
            if not filename.endswith(MESSAGE_EXTENSION):
                continue
            if channel_name == root_name:
                continue
            yield channel_name, os.path.join(dirpath, filename)


def _parse_reaction(raw: Any, source: str) -> Reaction:
    if not isinstance(raw, dict):
        raise ExportFormatError(f"{source}: reaction entry should be an object")
    users = _typed_field(raw, "users", list, [], source)
    for user_id in users:
        if not isinstance(user_id, str):
            raise ExportFormatError(f"{source}: reaction users should be strings")
    return Reaction(
        name=_typed_field(raw, "name", str, "", source),
        users=list(users),
        count=_typed_field(raw, "count", int, 0, source),
    )


def _parse_message(raw: Any, source: str) -> Message:
    if not isinstance(raw, dict):
        raise ExportFormatError(f"{source}: message entry should be an object")
    reactions = _typed_field(raw, "reactions", list, [], source)
    return Message(
        user=_typed_field(raw, "user", str, "", source),
        text=_typed_field(raw, "text", str, "", source),
        reactions=[_parse_reaction(r, source) for r in reactions],
        ts=_typed_field(raw, "ts", str, "", source),
    )


def load_messages(path: str) -> list[Message]:
    """Decode one channel message log into ``Message`` records, in file order.

    Raises:
        FileNotFoundError: If the file at *path* does not exist.
        json.JSONDecodeError: If the file contains invalid JSON.
        ExportFormatError: If the document is not an array of message objects
            or a field has the wrong JSON type.
    """
    return [_parse_message(raw, path) for raw in _read_json_array(path)]


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def message_day(ts: str) -> str:
    """Convert a Slack ``ts`` string to its UTC calendar day.

    Fractional seconds are truncated before conversion.

    Args:
        ts: Seconds since the epoch as a decimal string, e.g.
            ``"1700000000.000200"``.

    Returns:
        The day as ``YYYY-MM-DD``.

    Raises:
        TimestampError: If *ts* is not a number or is out of range.  Surrounding
            whitespace and ``_`` digit separators count as not a number.
    """
    if ts != ts.strip() or "_" in ts:
        raise TimestampError(f"invalid timestamp {ts!r}")
    try:
        seconds = int(float(ts))
        return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime(DAY_FORMAT)
    except (ValueError, OverflowError, OSError) as e:
        raise TimestampError(f"invalid timestamp {ts!r}: {e}") from e


def _get_or_create_stats(
    by_user: dict[str, Stats],
    user_id: str,
    users: dict[str, User],
) -> Stats | None:
    """Return the bucket's Stats for *user_id*, creating it on first use.

    Returns None when the id is not in the user directory.
    """
    stats = by_user.get(user_id)
    if stats is not None:
        return stats
    user = users.get(user_id)
    if user is None:
        return None
    stats = Stats(
        user_id=user.id,
        # users.json "name" is not carried by the loader
        name="",
        display_name=user.display_name.replace(",", " "),
        is_restricted=user.is_restricted,
        deleted=user.deleted,
    )
    by_user[user_id] = stats
    return stats


def update_stats(
    stats_by_channel: StatsTable,
    channel_name: str,
    messages: list[Message],
    users: dict[str, User] | None,
) -> None:
    """Fold one channel log's messages into the aggregation table.

    The author of each message gets one post.  Every user id listed under
    every reaction on the message is one reaction event: the reactor's
    received counter and the author's given counter both go up by one, and
    each side records the other's id in its distinct-user set.  Reacting to
    your own message counts on both sides.

    Messages with an empty ``ts`` are skipped, as are authors and reactors
    missing from *users*.  A non-empty ``ts`` that does not parse aborts the
    whole fold.

    Args:
        stats_by_channel: The aggregation table.  Modified in place.
        channel_name: Channel the messages were read from.
        messages: Messages from one log file.
        users: User directory from ``load_users``.  When None, nothing is
            counted.

    Raises:
        TimestampError: If a message's ``ts`` is not a number.
    """
    by_day = stats_by_channel.setdefault(channel_name, {})
    skipped_empty_ts = 0
    skipped_unknown = 0

    for message in messages:
        if users is None:
            continue
        if not message.ts:
            skipped_empty_ts += 1
            continue

        by_user = by_day.setdefault(message_day(message.ts), {})

        author = _get_or_create_stats(by_user, message.user, users)
        if author is None:
            skipped_unknown += 1
            continue

        author.posts += 1

        for reaction in message.reactions:
            for reactor_id in reaction.users:
                reactor = _get_or_create_stats(by_user, reactor_id, users)
                if reactor is None:
                    skipped_unknown += 1
                    continue

                reactor.received_reactions += 1
                reactor.received_reaction_users.add(message.user)

                author.given_reactions += 1
                author.given_reaction_users.add(reactor_id)

    if skipped_empty_ts or skipped_unknown:
        logger.debug(
            "#%s: skipped %d messages without ts and %d unknown user references",
            channel_name, skipped_empty_ts, skipped_unknown,
        )


def aggregate_export(root: str, users: dict[str, User] | None) -> StatsTable:
    """Walk the export under *root* and aggregate every channel message log.

    Raises:
        OSError: If the tree cannot be walked or a log cannot be read.
        json.JSONDecodeError: If a message log contains invalid JSON.
        ExportFormatError: If a message log has the wrong shape.
        TimestampError: If a message has an unparseable ``ts``.
    """
    stats_by_channel: StatsTable = {}
    files = 0
    for channel_name, path in iter_channel_files(root):
        update_stats(stats_by_channel, channel_name, load_messages(path), users)
        files += 1

    counted = any(
        by_user for by_day in stats_by_channel.values() for by_user in by_day.values()
    )
    if files and not counted:
        logger.warning(
            "Read %d message logs under %s but none produced stats. "
            "Check that users.json matches the channel logs.",
            files, root,
        )
    return stats_by_channel


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def iter_rows(stats_by_channel: StatsTable) -> Iterator[list[str]]:
    """Flatten the table into CSV rows (header not included).

    The counter columns come out as given count, given users, received
    count, received users.
    """
    for channel_name, by_day in stats_by_channel.items():
        for day, by_user in by_day.items():
            for s in by_user.values():
                yield [
                    s.display_name,
                    s.name,
                    _format_bool(s.is_restricted),
                    _format_bool(s.deleted),
                    day,
                    str(s.posts),
                    str(s.given_reactions),
                    str(len(s.given_reaction_users)),
                    str(s.received_reactions),
                    str(len(s.received_reaction_users)),
                    channel_name,
                ]


def write_csv(f: IO[str], stats_by_channel: StatsTable) -> int:
    """Write the header and one row per Stats record to an open text file.

    Returns:
        Number of data rows written.
    """
    writer = csv.writer(f, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    rows = 0
    for row in iter_rows(stats_by_channel):
        writer.writerow(row)
        rows += 1
    return rows


def export_csv(file_name: str, stats_by_channel: StatsTable) -> int:
    """Write the CSV report to *file_name*, replacing any existing file.

    Returns:
        Number of data rows written.

    Raises:
        OSError: If the file cannot be created or written.  A partially
            written file is left in place.
    """
    with open(file_name, "w", newline="", encoding="utf-8") as f:
        return write_csv(f, stats_by_channel)


def render_csv(stats_by_channel: StatsTable) -> tuple[str, int]:
    """Render the CSV report in memory; returns ``(text, row_count)``."""
    buf = io.StringIO()
    rows = write_csv(buf, stats_by_channel)
    return buf.getvalue(), rows


def output_filename(base_path: str) -> str:
    """Derive the report name from the export path.

    Every ``.`` and ``/`` is removed and ``.csv`` appended; the file lands in
    the current working directory.

    >>> output_filename("./exports/acme/")
    './exportsacme.csv'
    """
    return "./" + base_path.replace(".", "").replace("/", "") + ".csv"


def summarize_table(stats_by_channel: StatsTable) -> dict[str, int]:
    """Count channels, days, users, rows, posts and reactions in the table."""
    days: set[str] = set()
    user_ids: set[str] = set()
    rows = posts = reactions = 0
    for by_day in stats_by_channel.values():
        for day, by_user in by_day.items():
            if by_user:
                days.add(day)
            for s in by_user.values():
                user_ids.add(s.user_id)
                rows += 1
                posts += s.posts
                reactions += s.given_reactions
    return {
        "channels": len(stats_by_channel),
        "days": len(days),
        "users": len(user_ids),
        "rows": rows,
        "posts": posts,
        "reactions": reactions,
    }


def build_csv_report(root: str) -> dict[str, Any]:
    """One-call entry point: load, aggregate and render the report for *root*.

    This is the only function the report service needs to call.

    Returns:
        Dict with keys generated_at (ISO timestamp), filename (report file
        name without directory), rows, csv (report text) and summary.

    Raises:
        FileNotFoundError: If ``users.json`` is missing under *root*.
        OSError, ValueError: Propagated from loading and aggregation.
    """
    users = load_users(os.path.join(root, USERS_FILENAME))
    stats_by_channel = aggregate_export(root, users)
    text, rows = render_csv(stats_by_channel)
    return {
        "generated_at": datetime.now().isoformat(),
        "filename": os.path.basename(output_filename(root)),
        "rows": rows,
        "csv": text,
        "summary": summarize_table(stats_by_channel),
    }


def print_summary_report(summary: dict[str, int]) -> None:
    """Print the CLI run summary to stdout.

    Args:
        summary: Counts dict from ``summarize_table``.
    """
    print(f"\n{'=' * 60}")
    print("Slack Export Engagement Summary")
    print(f"{'=' * 60}")
    print(f"Channels: {summary['channels']:,}")
    print(f"Days with Activity: {summary['days']:,}")
    print(f"Active Users: {summary['users']:,}")
    print(f"Posts: {summary['posts']:,}")
    print(f"Reactions: {summary['reactions']:,}")
    print(f"Report Rows: {summary['rows']:,}")
    print(f"{'=' * 60}")
