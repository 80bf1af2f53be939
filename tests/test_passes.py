"""Tests for sandpass.passes: building passes from summary rows."""

import pytest

from conftest import summary_row, ts
from sandpass.errors import StoreUnavailable
from sandpass.passes import (
    earliest_start,
    load_passes,
    parse_machine_path,
    pass_from_row,
    summary_pipeline,
)


class TestPassFromRow:
    def test_full_row(self):
        row = summary_row(
            "p1", ts(0), ts(10),
            [("approach", ts(0), ts(2)), ("sand", ts(2), ts(9))],
            success=False, err_string="belt slipped",
        )

        p = pass_from_row(row)

        assert p.pass_id == "p1"
        assert p.start == ts(0)
        assert p.end == ts(10)
        assert p.success is False
        assert p.err_string == "belt slipped"
        assert [s.name for s in p.steps] == ["approach", "sand"]
        assert all(s.pass_id == "p1" for s in p.steps)

    def test_success_defaults_true(self):
        p = pass_from_row(summary_row("p1", ts(0), ts(1), success=None))
        assert p.success is True

    def test_empty_err_string_is_none(self):
        row = summary_row("p1", ts(0), ts(1))
        row["data"]["readings"]["err_string"] = ""
        assert pass_from_row(row).err_string is None

    def test_missing_steps(self):
        row = summary_row("p1", ts(0), ts(1))
        del row["data"]["readings"]["steps"]
        assert pass_from_row(row).steps == ()

    def test_steps_under_runs(self):
        row = summary_row("p1", ts(0), ts(10))
        readings = row["data"]["readings"]
        readings["steps"] = []
        readings["runs"] = [[{"name": "sand", "start": ts(1).isoformat(), "end": ts(2).isoformat()}]]

        assert [s.name for s in pass_from_row(row).steps] == ["sand"]

    def test_z_timestamps(self):
        row = {"data": {"readings": {
            "pass_id": "p1",
            "start": "2025-03-01T10:00:00.000Z",
            "end": "2025-03-01T10:05:00.000Z",
        }}}
        p = pass_from_row(row)
        assert p.start == ts(0)
        assert p.end == ts(5)

    @pytest.mark.parametrize("row", [
        {},
        {"data": None},
        {"data": {"readings": "nope"}},
        {"data": {"readings": {"start": "2025-03-01T10:00:00Z", "end": "2025-03-01T10:01:00Z"}}},
        {"data": {"readings": {"pass_id": "p1", "start": "bad", "end": "2025-03-01T10:01:00Z"}}},
        {"data": {"readings": {"pass_id": "p1", "end": "2025-03-01T10:01:00Z"}}},
        {"data": {"readings": {
            "pass_id": "p1", "start": "2025-03-01T10:00:00Z", "end": "2025-03-01T10:01:00Z",
            "steps": [{"name": "no times"}],
        }}},
        {"data": {"readings": {
            "pass_id": "p1", "start": "2025-03-01T10:05:00Z", "end": "2025-03-01T10:01:00Z",
        }}},
    ])
    def test_malformed_rows(self, row):
        with pytest.raises(ValueError):
            pass_from_row(row)


class TestHelpers:
    def test_earliest_start(self):
        passes = [
            pass_from_row(summary_row("p2", ts(30), ts(40))),
            pass_from_row(summary_row("p1", ts(5), ts(10))),
        ]
        assert earliest_start(passes) == ts(5)

    def test_earliest_start_without_passes(self):
        assert earliest_start([]) is None

    def test_pipeline_shape(self):
        pipeline = summary_pipeline("org", "loc", "machine", limit=25)
        assert pipeline[0]["$match"] == {
            "organization_id": "org",
            "location_id": "loc",
            "component_name": "sanding-summary",
            "robot_id": "machine",
            "component_type": "rdk:component:sensor",
        }
        assert pipeline[1] == {"$sort": {"time_received": -1}}
        assert pipeline[2] == {"$limit": 25}

    def test_parse_machine_path(self):
        name, location = parse_machine_path("/machine/sander-7-main.abc123.viam.cloud/app")
        assert name == "sander-7"
        assert location == "abc123"

    def test_parse_machine_path_no_match(self):
        assert parse_machine_path("/somewhere/else") == (None, None)


class TestLoadPasses:
    @pytest.mark.asyncio
    async def test_loads_and_takes_part_id_from_first_row(self, store):
        store.rows = [
            summary_row("p2", ts(10), ts(20), part_id="part-new"),
            summary_row("p1", ts(0), ts(5), part_id="part-old"),
        ]

        passes, part_id = await load_passes(store, "org-1", "loc-1", "machine-1")

        assert [p.pass_id for p in passes] == ["p2", "p1"]
        assert part_id == "part-new"
        assert store.last_pipeline[0]["$match"]["robot_id"] == "machine-1"

    @pytest.mark.asyncio
    async def test_skips_malformed_rows(self, store, caplog):
        store.rows = [{"data": {}}, summary_row("p1", ts(0), ts(5))]

        with caplog.at_level("WARNING", logger="sandpass.passes"):
            passes, _ = await load_passes(store, "org-1", "loc-1", "machine-1")

        assert [p.pass_id for p in passes] == ["p1"]
        assert "Skipping malformed pass summary" in caplog.text

    @pytest.mark.asyncio
    async def test_no_rows(self, store):
        assert await load_passes(store, "org-1", "loc-1", "machine-1") == ([], "")

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, store):
        store.fail_tabular = True
        with pytest.raises(StoreUnavailable):
            await load_passes(store, "org-1", "loc-1", "machine-1")
