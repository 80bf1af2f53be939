"""
Loading sanding pass summaries from the tabular query boundary.

The robot's summary sensor records one row per pass. Rows carry their
readings under data.readings::

    {"part_id": "...",
     "data": {"readings": {"start": ..., "end": ..., "success": true,
                           "pass_id": "...", "err_string": null,
                           "steps": [{"name": ..., "start": ..., "end": ...}]}}}

Some robots report steps under runs[0] instead of steps; both are read.
"""

import logging
import re
from datetime import datetime
from typing import Any, Optional

from .errors import StoreUnavailable
from .protocol import RecordStoreProtocol
from .types import RunPass, Step, parse_utc_timestamp

logger = logging.getLogger(__name__)

SUMMARY_COMPONENT_NAME = "sanding-summary"
SUMMARY_COMPONENT_TYPE = "rdk:component:sensor"
DEFAULT_PASS_LIMIT = 100

# Hosting URL path: /machine/<name>-main.<location>.viam.cloud
_MACHINE_NAME_RE = re.compile(r"/machine/(.+?)-main\.")
_LOCATION_ID_RE = re.compile(r"main\.([^.]+)\.viam\.cloud")


def parse_machine_path(path: str) -> tuple[Optional[str], Optional[str]]:
    """Extract (machine_name, location_id) from the app hosting path."""
    name = _MACHINE_NAME_RE.search(path)
    location = _LOCATION_ID_RE.search(path)
    return (
        name.group(1) if name else None,
        location.group(1) if location else None,
    )


def summary_pipeline(
    org_id: str,
    location_id: str,
    machine_id: str,
    *,
    limit: int = DEFAULT_PASS_LIMIT,
) -> list[dict[str, Any]]:
    """Match/sort/limit pipeline selecting this machine's pass summaries, newest first."""
    return [
        {
            "$match": {
                "organization_id": org_id,
                "location_id": location_id,
                "component_name": SUMMARY_COMPONENT_NAME,
                "robot_id": machine_id,
                "component_type": SUMMARY_COMPONENT_TYPE,
            },
        },
        {"$sort": {"time_received": -1}},
        {"$limit": limit},
    ]


def _steps_of(readings: dict[str, Any]) -> list[dict[str, Any]]:
    steps = readings.get("steps")
    if steps:
        return steps
    runs = readings.get("runs")
    if runs and runs[0]:
        return runs[0]
    return []


def pass_from_row(row: dict[str, Any]) -> RunPass:
    """
    Build a RunPass from one summary row.

    Raises:
        ValueError: If the row lacks readings, a pass_id, or valid times
    """
    try:
        readings = row["data"]["readings"]
    except (KeyError, TypeError) as e:
        raise ValueError("Summary row has no data.readings") from e
    if not isinstance(readings, dict):
        raise ValueError("Summary readings is not an object")

    pass_id = readings.get("pass_id")
    if not pass_id:
        raise ValueError("Summary row has no pass_id")

    try:
        steps = tuple(
            Step(
                name=str(s["name"]),
                start=parse_utc_timestamp(s["start"]),
                end=parse_utc_timestamp(s["end"]),
                pass_id=str(pass_id),
            )
            for s in _steps_of(readings)
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed step in pass {pass_id}: {e}") from e

    success = readings.get("success")
    return RunPass(
        pass_id=str(pass_id),
        start=parse_utc_timestamp(readings.get("start")),
        end=parse_utc_timestamp(readings.get("end")),
        success=True if success is None else bool(success),
        err_string=readings.get("err_string") or None,
        steps=steps,
    )


def earliest_start(passes: list[RunPass]) -> Optional[datetime]:
    """Backfill boundary: the earliest pass start, or None without passes."""
    if not passes:
        return None
    return min(p.start for p in passes)


async def load_passes(
    client: RecordStoreProtocol,
    org_id: str,
    location_id: str,
    machine_id: str,
    *,
    limit: int = DEFAULT_PASS_LIMIT,
) -> tuple[list[RunPass], str]:
    """
    Load the most recent pass summaries.

    Rows that don't parse are logged and skipped.

    Returns:
        (passes newest first, part_id of the newest row or "")

    Raises:
        StoreUnavailable: If the tabular query fails
    """
    rows = await client.tabular_by_query(
        org_id, summary_pipeline(org_id, location_id, machine_id, limit=limit),
    )
    if not isinstance(rows, list):
        raise StoreUnavailable("Tabular query did not return a list of rows")

    passes: list[RunPass] = []
    for row in rows:
        try:
            passes.append(pass_from_row(row))
        except ValueError as e:
            logger.warning("Skipping malformed pass summary: %s", e)

    part_id = ""
    if rows and isinstance(rows[0], dict):
        part_id = str(rows[0].get("part_id") or "")
    logger.info("Loaded %d passes", len(passes))
    return passes, part_id
