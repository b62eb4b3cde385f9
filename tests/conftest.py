"""Shared fixtures for slack_export_stats tests."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import BASE_TS, make_export, make_message, make_user


# ── Minimal report payload for app.py tests ──


def _minimal_report_payload() -> dict:
    """Return a minimal payload matching build_csv_report() shape."""
    return {
        "generated_at": "2024-01-15T12:00:00",
        "filename": "export.csv",
        "rows": 1,
        "csv": (
            "display_name,name,is_restricted,deleted,day,posts,received_reations,"
            "received_reaction_users,given_reactions,given_reation_users,channel_name\n"
            "Alice,,false,false,2023-11-14,1,1,1,1,1,general\n"
        ),
        "summary": {
            "channels": 1,
            "days": 1,
            "users": 1,
            "rows": 1,
            "posts": 1,
            "reactions": 1,
        },
    }


@pytest.fixture()
def mock_payload():
    """Return the minimal report payload dict."""
    return _minimal_report_payload()


@pytest.fixture()
def client(mock_payload):
    """TestClient for app.py with mocked report data.

    Patches build_csv_report so no export directory is needed.
    Resets the module-level cache between tests.
    """
    import app as app_module

    with patch.object(
        app_module, "_cache", {"data": None, "built_at": 0.0}
    ):
        with patch(
            "app.build_csv_report", return_value=mock_payload
        ):
            with TestClient(app_module.app) as tc:
                yield tc


@pytest.fixture()
def export_dir(tmp_path):
    """A small export: three users, two channels, reactions across users."""
    users = [
        make_user("U1", "Alice"),
        make_user("U2", "Bob, Jr.", is_restricted=True),
        make_user("U3", "Carol", deleted=True),
    ]
    channels = {
        "general": {
            "2023-11-14.json": [
                make_message("U1", BASE_TS, {"thumbsup": ["U2", "U3"], "eyes": ["U2"]}),
                make_message("U2", BASE_TS + 60),
                make_message("U9", BASE_TS + 120, {"tada": ["U1"]}),
            ],
            "2023-11-15.json": [
                make_message("U1", BASE_TS + 86_400, {"wave": ["U1"]}),
            ],
        },
        "random": {
            "2023-11-14.json": [
                make_message("U3", "", {"thumbsup": ["U1"]}),
                make_message("U3", f"{BASE_TS}.000200"),
            ],
        },
    }
    return make_export(tmp_path / "export", users, channels)
