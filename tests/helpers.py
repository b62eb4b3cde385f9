"""Shared test helpers for slack_export_stats tests.

Regular functions (not fixtures) that can be imported by any test module.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path

# 2023-11-14 22:13:20 UTC
BASE_TS = 1_700_000_000


def make_user(
    user_id: str,
    display_name: str,
    is_restricted: bool = False,
    deleted: bool = False,
) -> dict:
    """Build a users.json entry with the fields the export carries."""
    return {
        "id": user_id,
        "name": display_name.lower(),
        "profile": {"display_name": display_name},
        "is_restricted": is_restricted,
        "deleted": deleted,
    }


def make_message(
    user: str,
    ts: float | str = BASE_TS,
    reactions: dict[str, list[str]] | None = None,
    text: str = "hi",
) -> dict:
    """Build a channel log message; *reactions* maps reaction name to user ids."""
    message = {"user": user, "text": text, "ts": str(ts)}
    if reactions:
        message["reactions"] = [
            {"name": name, "users": users, "count": len(users)}
            for name, users in reactions.items()
        ]
    return message


def write_json(path: Path, data: object) -> Path:
    """Write *data* as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def make_export(
    root: Path,
    users: list[dict],
    channels: dict[str, dict[str, list[dict]]],
) -> Path:
    """Lay out an unpacked export under *root*.

    Args:
        root: Export directory (created if missing).
        users: Entries for users.json.
        channels: channel name -> {log file name -> messages}.

    Returns:
        The export root.
    """
    write_json(root / "users.json", users)
    write_json(root / "channels.json", [{"name": name} for name in channels])
    for channel, logs in channels.items():
        for file_name, messages in logs.items():
            write_json(root / channel / file_name, messages)
    return root


def read_report(path: Path) -> tuple[list[str], list[dict]]:
    """Return (header, rows) of a written report, rows keyed by header."""
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.reader(f)
        header = next(reader)
        rows = [dict(zip(header, row)) for row in reader]
    return header, rows
