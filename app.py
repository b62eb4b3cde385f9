"""FastAPI service for the Slack export engagement report.

Serves the CSV report built from the export next to this file, cached
(1-hour TTL since data only changes when a new export is unpacked).

Deployment: uvicorn app:app --host 127.0.0.1 --port 8204
"""

from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response

from engagement import build_csv_report

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
EXPORT_PATH = Path(__file__).parent / "export"
CACHE_TTL_SECONDS = 3600  # 1 hour

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Slack Export Engagement Report",
    root_path="/slack_stats",
)

# ---------------------------------------------------------------------------
# Thread-safe cache
# ---------------------------------------------------------------------------
_cache_lock = threading.Lock()
_cache: dict[str, Any] = {
    "data": None,
    "built_at": 0.0,
}


def _build_report() -> dict[str, Any]:
    """Build the report, mapping export problems to HTTP errors."""
    try:
        return build_csv_report(str(EXPORT_PATH))
    except FileNotFoundError:
        raise HTTPException(status_code=503, detail="Export not found")
    except json.JSONDecodeError:
        raise HTTPException(status_code=500, detail="Invalid JSON in export")
    except (OSError, ValueError) as e:
        raise HTTPException(status_code=500, detail=f"Could not build report: {e}")


def _get_cached_data(force_refresh: bool = False) -> dict[str, Any]:
    """Return cached report data, rebuilding if stale or forced."""
    now = time.monotonic()
    with _cache_lock:
        if (
            not force_refresh
            and _cache["data"] is not None
            and (now - _cache["built_at"]) < CACHE_TTL_SECONDS
        ):
            return _cache["data"]

    data = _build_report()

    with _cache_lock:
        _cache["data"] = data
        _cache["built_at"] = time.monotonic()

    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/report.csv")
def report_csv():
    """Serve the CSV report as a download."""
    data = _get_cached_data()
    return Response(
        content=data["csv"],
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{data["filename"]}"'},
    )


@app.get("/api/refresh")
def api_refresh():
    """Force a cache rebuild and report what was built."""
    data = _get_cached_data(force_refresh=True)
    return {
        "status": "refreshed",
        "generated_at": data["generated_at"],
        "rows": data["rows"],
    }
