"""Tests for sandpass.correlate: matching videos to step windows."""

from datetime import datetime

from conftest import make_record, ts
from sandpass.correlate import correlate_pass, videos_for_pass, videos_for_step
from sandpass.types import RunPass, Step


def _step(start, end, name="sand"):
    return Step(name=name, start=start, end=end, pass_id="p1")


class TestVideosForStep:
    def test_inclusive_containment(self):
        step = _step(ts(0), ts(5))  # 10:00:00 - 10:05:00
        inside = make_record("inside", ts(2, 30))
        at_end = make_record("at_end", ts(5))
        after = make_record("after", ts(5, 1))
        at_start = make_record("at_start", ts(0))
        before = make_record("before", ts(0, -1))

        matched = videos_for_step(step, [inside, at_end, after, at_start, before])

        assert [r.id for r in matched] == ["inside", "at_end", "at_start"]

    def test_naive_step_times_compare_with_store_records(self):
        step = _step(datetime(2025, 3, 1, 10, 0), datetime(2025, 3, 1, 10, 5))
        inside = make_record("inside", ts(2, 30))

        assert videos_for_step(step, [inside]) == [inside]

    def test_zero_length_step_matches_exact_time_only(self):
        step = _step(ts(3), ts(3))
        exact = make_record("exact", ts(3))
        near = make_record("near", ts(3, 0.001))

        assert videos_for_step(step, [exact, near]) == [exact]

    def test_non_video_excluded(self):
        step = _step(ts(0), ts(5))
        note = make_record("note", ts(1), file_name="n.json", mime_type="application/json")
        image = make_record("img", ts(1), file_name="frame.jpg", mime_type="image/jpeg")

        assert videos_for_step(step, [note, image]) == []

    def test_record_without_time_excluded(self):
        step = _step(ts(0), ts(5))
        assert videos_for_step(step, [make_record("untimed", None)]) == []

    def test_empty_input_is_empty_result(self):
        assert videos_for_step(_step(ts(0), ts(5)), []) == []

    def test_preserves_input_order(self):
        step = _step(ts(0), ts(10))
        records = [make_record(f"v{i}", ts(9 - i)) for i in range(5)]
        assert [r.id for r in videos_for_step(step, records)] == ["v0", "v1", "v2", "v3", "v4"]


class TestCorrelatePass:
    def _pass(self):
        return RunPass(
            pass_id="p1",
            start=ts(0),
            end=ts(20),
            steps=(
                _step(ts(0), ts(5), "approach"),
                _step(ts(5), ts(15), "sand"),
                _step(ts(15), ts(20), "retract"),
            ),
        )

    def test_one_entry_per_step_in_order(self):
        records = [
            make_record("a", ts(1)),
            make_record("boundary", ts(5)),
            make_record("b", ts(10)),
            make_record("late", ts(25)),
        ]

        result = correlate_pass(self._pass(), records)

        assert [sv.step.name for sv in result] == ["approach", "sand", "retract"]
        assert [r.id for r in result[0].videos] == ["a", "boundary"]
        assert [r.id for r in result[1].videos] == ["boundary", "b"]
        assert result[2].videos == ()

    def test_pass_without_steps(self):
        p = RunPass(pass_id="p", start=ts(0), end=ts(1))
        assert correlate_pass(p, [make_record("a", ts(0))]) == []

    def test_videos_for_pass_uses_pass_interval(self):
        records = [make_record("in", ts(19)), make_record("out", ts(21))]
        assert [r.id for r in videos_for_pass(self._pass(), records)] == ["in"]
